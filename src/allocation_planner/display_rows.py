from __future__ import annotations

from typing import List

from .allocation_models import AllocationPlan, DisplayRow
from .continuity import sort_phases
from .dates import days_between
from .recurrence import describe_pattern


def to_display_rows(plan: AllocationPlan) -> list[DisplayRow]:
    """
    Convert a classified plan into a flat list of display rows.

    Phases come first by start date, then the recurring template as a single
    summary line followed by its instances by date, then plain milestones in
    their stored order. The template itself is never shown as a dated row.
    """

    rows: List[DisplayRow] = []

    phases = sort_phases(plan.phases)
    for idx, phase in enumerate(phases):
        detail = ""
        if idx + 1 < len(phases):
            following = phases[idx + 1]
            if phase.end_date > following.start_date:
                detail = f'overlaps "{following.name}"'
            elif phase.end_date < following.start_date:
                detail = f"{days_between(phase.end_date, following.start_date)}-day gap after"
        rows.append(
            DisplayRow(
                order=len(rows),
                kind="phase",
                name=phase.name,
                start_date=phase.start_date,
                end_date=phase.end_date,
                hours=phase.time_allocation,
                detail=detail,
                record_id=phase.id,
            )
        )

    for template in [plan.template, *plan.extra_templates]:
        if template is None:
            continue
        rows.append(
            DisplayRow(
                order=len(rows),
                kind="recurring_summary",
                name=template.name,
                hours=template.time_allocation,
                detail=f"{describe_pattern(template.pattern)}, {template.time_allocation:g}h each",
                record_id=template.id,
            )
        )

    for instance in plan.instances:
        rows.append(
            DisplayRow(
                order=len(rows),
                kind="recurring_instance",
                name=instance.name,
                start_date=instance.due_date,
                end_date=instance.due_date,
                hours=instance.time_allocation,
                record_id=instance.id,
            )
        )

    for milestone in plan.milestones:
        rows.append(
            DisplayRow(
                order=len(rows),
                kind="milestone",
                name=milestone.name,
                end_date=milestone.due_date,
                hours=milestone.time_allocation,
                record_id=milestone.id,
            )
        )

    return rows


def format_row(row: DisplayRow) -> str:
    """One text line per row; dated rows show their span, the summary shows its rule."""

    if row.kind == "recurring_summary":
        return f"[recurring] {row.name}: {row.detail}"
    if row.kind == "phase":
        text = f"[phase] {row.name}: {row.start_date} -> {row.end_date}, {row.hours:g}h"
    else:
        text = f"[{row.kind.replace('recurring_', '')}] {row.name}: {row.end_date}, {row.hours:g}h"
    if row.detail:
        text = f"{text} ({row.detail})"
    return text
