"""Deterministic day summary.

Renders a day's plan, completed todos and reflections as plain text. The
output depends only on the input, so a sweep can freeze it and a later
regeneration of an untouched day yields the same text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from hourlog.data.models import HourBlock, Todo


@dataclass
class HourText:
    hour: int
    text: str


@dataclass
class HourTodos:
    hour: int
    todos: list[Todo] = field(default_factory=list)


@dataclass
class SummaryInput:
    date: str
    planned_by_hour: list[HourText]
    reflection_by_hour: list[HourText]
    todos_by_hour: list[HourTodos]
    deferred_count: int = 0


def hour_label(hour: int) -> str:
    """12-hour label, e.g. 0 -> "12:00 AM", 13 -> "01:00 PM"."""
    h = max(0, min(23, int(hour)))
    ampm = "AM" if h < 12 else "PM"
    twelve = 12 if h % 12 == 0 else h % 12
    return f"{twelve:02d}:00 {ampm}"


def summary_input_for_day(
    date: str,
    blocks: Iterable[HourBlock],
    hour_todos: Iterable[tuple[int, Todo]],
    deferred_count: int = 0,
) -> SummaryInput:
    """Group a day's slots and (hour, todo) pairs into a SummaryInput."""
    blocks = sorted(blocks, key=lambda b: b.hour)
    by_hour: dict[int, list[Todo]] = {}
    for hour, todo in hour_todos:
        by_hour.setdefault(hour, []).append(todo)

    return SummaryInput(
        date=date,
        planned_by_hour=[HourText(b.hour, b.planned_text) for b in blocks],
        reflection_by_hour=[HourText(b.hour, b.reflection_text) for b in blocks],
        todos_by_hour=[HourTodos(h, by_hour.get(h, [])) for h in range(24)],
        deferred_count=deferred_count,
    )


def _completed_line(hour: int, todo: Todo) -> str:
    time_bits: list[str] = []
    if todo.estimated_minutes and todo.estimated_minutes > 0:
        time_bits.append(f"est {todo.estimated_minutes}m")
    if todo.actual_minutes is not None and todo.actual_minutes > 0:
        time_bits.append(f"act {todo.actual_minutes}m")
    suffix = f" ({', '.join(time_bits)})" if time_bits else ""
    return f"- {hour_label(hour)} - {todo.title.strip()}{suffix}"


def build_deterministic_summary(data: SummaryInput) -> str:
    planned = [p for p in data.planned_by_hour if p.text.strip()]
    reflections = [r for r in data.reflection_by_hour if r.text.strip()]
    completed = [
        (group.hour, todo)
        for group in data.todos_by_hour
        for todo in group.todos
        if todo.is_done and todo.title.strip()
    ]

    lines = [f"Daily Summary ({data.date})", ""]

    lines.append("Plan")
    if not planned:
        lines.append("- (No planned blocks)")
    for p in planned:
        lines.append(f"- {hour_label(p.hour)} - {p.text.strip()}")
    lines.append("")

    lines.append("Completed")
    if not completed:
        lines.append("- (No completed tasks)")
    for hour, todo in completed:
        lines.append(_completed_line(hour, todo))
    lines.append("")

    lines.append("Reflection")
    if not reflections:
        lines.append("- (No reflections)")
    for r in reflections:
        lines.append(f"- {hour_label(r.hour)} - {r.text.strip()}")

    lines.append("")
    lines.append(f"Deferred to Backlog: {data.deferred_count}")
    return "\n".join(lines)
