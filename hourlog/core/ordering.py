"""
HourLog — Todo ordering within hour slots.

Every slot keeps its todos in a dense sort order 0..n-1. Structural edits
(create, delete, move) never trust a stored or client-supplied position on
its own: they re-read the slot's current members inside the active
transaction, splice, and rewrite the whole sequence.

Index convention for placement: the target index is clamped against the
slot's size *without* the item being placed, so any index >= that size
appends, and moving an item to the end of its own slot is index n-1 or
anything larger.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from hourlog.data.models import HourBlock, Todo

if TYPE_CHECKING:
    from hourlog.data.db import LogStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def normalize(items: Sequence[Todo]) -> list[int]:
    """Ids in display order: sort_order, then creation time, then id."""
    ordered = sorted(items, key=lambda t: (t.sort_order, t.created_at, t.id))
    return [t.id for t in ordered]


def clamp_index(index: int | None, size: int) -> int:
    if index is None:
        return size
    return max(0, min(size, index))


def insert_at(ordered_ids: Sequence[int], item_id: int, index: int | None) -> list[int]:
    """Place item_id at index among ordered_ids (it is removed first if present)."""
    rest = [i for i in ordered_ids if i != item_id]
    rest.insert(clamp_index(index, len(rest)), item_id)
    return rest


def dense_orders(ordered_ids: Sequence[int]) -> list[tuple[int, int]]:
    return [(todo_id, position) for position, todo_id in enumerate(ordered_ids)]


# ---------------------------------------------------------------------------
# Transactional operations (call inside Database.transaction())
# ---------------------------------------------------------------------------


def _write_order(store: LogStore, current: Sequence[Todo], ordered_ids: Sequence[int]) -> None:
    """Persist ordered_ids as 0..n-1, touching only rows whose order changed."""
    stored = {t.id: t.sort_order for t in current}
    changes = [
        (todo_id, position)
        for todo_id, position in dense_orders(ordered_ids)
        if stored.get(todo_id) != position
    ]
    if changes:
        store.set_sort_orders(changes)


def resequence_block(store: LogStore, hour_block_id: int) -> list[int]:
    """Close gaps and duplicates in one slot. Returns ids in their new order."""
    current = store.list_block_todos(hour_block_id)
    ordered = normalize(current)
    _write_order(store, current, ordered)
    return ordered


def create_in_block(
    store: LogStore,
    block: HourBlock,
    title: str,
    estimated_minutes: int,
    actual_minutes: int | None = None,
    index: int | None = None,
) -> Todo:
    """Insert a new pending todo into block, appended unless index is given."""
    current = store.list_block_todos(block.id)
    ordered = normalize(current)
    todo = store.insert_todo(
        daily_log_id=block.daily_log_id,
        hour_block_id=block.id,
        title=title,
        estimated_minutes=estimated_minutes,
        actual_minutes=actual_minutes,
        sort_order=len(ordered),
    )
    placed = insert_at(ordered, todo.id, index)
    _write_order(store, [*current, todo], placed)
    todo.sort_order = placed.index(todo.id)
    return todo


def move_across_blocks(
    store: LogStore,
    todo: Todo,
    target_block: HourBlock,
    target_index: int | None = None,
) -> list[int]:
    """Move todo into target_block at target_index, resequencing both slots.

    The caller must be inside a transaction: the reassignment and both
    resequences commit together or not at all. Returns the target's new order.
    """
    source_block_id = todo.hour_block_id

    if source_block_id != target_block.id:
        store.set_todo_block(todo.id, target_block.id)

    target_current = store.list_block_todos(target_block.id)
    placed = insert_at(normalize(target_current), todo.id, target_index)
    _write_order(store, target_current, placed)

    if source_block_id != target_block.id:
        resequence_block(store, source_block_id)

    logger.info(
        "Todo #%d moved: block #%d -> block #%d at %d",
        todo.id, source_block_id, target_block.id, placed.index(todo.id),
    )
    todo.hour_block_id = target_block.id
    todo.sort_order = placed.index(todo.id)
    return placed


def delete_and_resequence(store: LogStore, todo: Todo) -> list[int]:
    """Delete todo and close the gap it leaves in its slot."""
    store.delete_todos([todo.id])
    return resequence_block(store, todo.hour_block_id)
