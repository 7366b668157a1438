"""
HourLog — Maintenance entry point.

`python main.py sweep` closes every registered user's past, still-open days.
Days are normally swept lazily when a user opens today; this is the
catch-up for users who have not been back.
"""

import logging
import sys
from datetime import datetime, timezone

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from hourlog.core.dates import today_in_timezone
from hourlog.core.sweep import sweep_all_past_unswept
from hourlog.data.db import Database

logger = logging.getLogger("hourlog")


def sweep_everyone(db: Database, instant: datetime) -> int:
    """Sweep past days for all users. A failing user is logged and skipped."""
    with db.session() as store:
        users = store.list_users()

    total = 0
    for user in users:
        try:
            today = today_in_timezone(user.timezone, instant)
            total += sweep_all_past_unswept(db, user.id, today, now=instant)
        except Exception as exc:
            logger.error("Failed to sweep days for user %d: %s", user.id, exc)
    logger.info("Sweep finished: %d day(s) closed across %d user(s)", total, len(users))
    return total


def main(argv: list[str]) -> int:
    if argv[1:] != ["sweep"]:
        print("usage: python main.py sweep", file=sys.stderr)
        return 2
    sweep_everyone(Database(), datetime.now(timezone.utc))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
