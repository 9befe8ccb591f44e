from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Iterable, Literal

from .allocation_models import Phase
from .dates import add_days, days_between

logger = logging.getLogger(__name__)

IssueKind = Literal["overlap", "gap", "late_start", "early_end"]


@dataclass(frozen=True)
class ContinuityIssue:
    """One finding of the continuity check, with the phases involved."""

    kind: IssueKind
    message: str
    phase_names: tuple[str, ...] = ()
    gap_days: int = 0

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class ContinuityReport:
    """Overlaps are errors; gaps and uncovered project edges are warnings."""

    errors: list[ContinuityIssue] = field(default_factory=list)
    warnings: list[ContinuityIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def overlaps(self) -> list[ContinuityIssue]:
        return [issue for issue in self.errors if issue.kind == "overlap"]

    @property
    def gaps(self) -> list[ContinuityIssue]:
        return [issue for issue in self.warnings if issue.kind == "gap"]


@dataclass(frozen=True)
class RepairInstruction:
    """Boundary correction for a single phase."""

    phase_id: str | None
    end_date: date
    start_date: date | None = None

    def as_updates(self) -> dict[str, date]:
        """Storage fields to write; due_date follows end_date."""
        updates = {"end_date": self.end_date, "due_date": self.end_date}
        if self.start_date is not None:
            updates["start_date"] = self.start_date
        return updates


def sort_phases(phases: Iterable[Phase]) -> list[Phase]:
    return sorted(phases, key=lambda p: (p.start_date, p.end_date))


def validate_continuity(
    phases: Iterable[Phase],
    project_start: date,
    project_end: date | None,
) -> ContinuityReport:
    """
    Check that phases tile the project span.

    - Adjacent phases whose end runs past the next start are an overlap error.
    - A next start after the previous end is a gap warning.
    - A first phase starting after the project start, or a last phase ending
      before the project end, is a warning. A None project_end (continuous
      project) skips the end check.
    """

    ordered = sort_phases(phases)
    report = ContinuityReport()
    if not ordered:
        return report

    first, last = ordered[0], ordered[-1]
    if first.start_date > project_start:
        report.warnings.append(
            ContinuityIssue(
                kind="late_start",
                message=f'First phase "{first.name}" starts after the project start ({project_start})',
                phase_names=(first.name,),
                gap_days=days_between(project_start, first.start_date),
            )
        )
    if project_end is not None and last.end_date < project_end:
        report.warnings.append(
            ContinuityIssue(
                kind="early_end",
                message=f'Last phase "{last.name}" ends before the project end ({project_end})',
                phase_names=(last.name,),
                gap_days=days_between(last.end_date, project_end),
            )
        )

    for current, following in zip(ordered, ordered[1:]):
        if current.end_date > following.start_date:
            report.errors.append(
                ContinuityIssue(
                    kind="overlap",
                    message=f'Overlap between "{current.name}" and "{following.name}"',
                    phase_names=(current.name, following.name),
                )
            )
        elif current.end_date < following.start_date:
            gap = days_between(current.end_date, following.start_date)
            report.warnings.append(
                ContinuityIssue(
                    kind="gap",
                    message=f'{gap}-day gap between "{current.name}" and "{following.name}"',
                    phase_names=(current.name, following.name),
                    gap_days=gap,
                )
            )

    logger.debug(
        "continuity check: %d phase(s), %d error(s), %d warning(s)",
        len(ordered),
        len(report.errors),
        len(report.warnings),
    )
    return report


def has_overlaps(phases: Iterable[Phase]) -> bool:
    ordered = sort_phases(phases)
    return any(a.end_date > b.start_date for a, b in zip(ordered, ordered[1:]))


def plan_repairs(phases: Iterable[Phase]) -> list[RepairInstruction]:
    """
    Compute boundary corrections that remove every overlap.

    The later phase wins a contested boundary: the earlier phase's end is
    pulled back to the later phase's start. At most one instruction is
    produced per boundary; a continuous list yields no instructions.
    """

    ordered = sort_phases(phases)
    repairs: list[RepairInstruction] = []
    for previous, current in zip(ordered, ordered[1:]):
        if current.start_date < previous.end_date:
            repairs.append(RepairInstruction(phase_id=previous.id, end_date=current.start_date))
    return repairs


def apply_repairs(phases: Iterable[Phase], repairs: Iterable[RepairInstruction]) -> list[Phase]:
    """Return a copy of the phases with the repair instructions applied, sorted by start."""

    ordered = sort_phases(phases)
    pending = list(repairs)
    result: list[Phase] = []
    for idx, phase in enumerate(ordered):
        updated = phase
        for repair in pending:
            if _targets(repair, phase, idx, ordered):
                updated = replace(
                    updated,
                    end_date=repair.end_date,
                    start_date=repair.start_date or updated.start_date,
                )
        result.append(updated)
    return sort_phases(result)


def _targets(repair: RepairInstruction, phase: Phase, idx: int, ordered: list[Phase]) -> bool:
    if repair.phase_id is not None:
        return repair.phase_id == phase.id
    # Unsaved phases carry no id; match the boundary position instead.
    return (
        phase.id is None
        and idx + 1 < len(ordered)
        and ordered[idx + 1].start_date == repair.end_date
        and phase.end_date > repair.end_date
    )


def cascade_adjustments(phases: Iterable[Phase], phase_id: str, new_end: date) -> list[Phase]:
    """
    Resize one phase's end and push later phases forward to keep them sequential.

    Each following phase moves, keeping its duration, only when it would start
    before the day after its predecessor's end; the cascade stops at the first
    phase that already fits.
    """

    ordered = sort_phases(phases)
    index = next((i for i, phase in enumerate(ordered) if phase.id == phase_id), None)
    if index is None:
        raise KeyError(f"unknown phase id '{phase_id}'")

    result = list(ordered)
    result[index] = replace(result[index], end_date=new_end)
    previous_end = new_end
    for i in range(index + 1, len(result)):
        phase = result[i]
        min_start = add_days(previous_end, 1)
        if phase.start_date >= min_start:
            break
        shift = days_between(phase.start_date, min_start)
        result[i] = replace(phase, start_date=add_days(phase.start_date, shift), end_date=add_days(phase.end_date, shift))
        previous_end = result[i].end_date
        logger.debug("cascade moved phase %s by %d day(s)", phase.name, shift)
    return result
