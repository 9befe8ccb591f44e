from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from .allocation_models import Phase, Project
from .continuity import sort_phases
from .dates import add_days, days_between, midpoint
from .errors import AllocationError
from .settings import DEFAULT_SETTINGS, EngineSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitPlan:
    """The two phases produced by splitting a project estimate."""

    phase1: Phase
    phase2: Phase

    @property
    def phases(self) -> list[Phase]:
        return [self.phase1, self.phase2]


@dataclass(frozen=True)
class NewPhaseAllocation:
    """Dates for an appended phase and the shrunk end of the current last phase."""

    new_phase_start: date
    new_phase_end: date
    last_phase_new_end: date
    last_phase_id: str | None = None


def split_estimate(project: Project) -> SplitPlan:
    """
    Split the project span at its midpoint into two phases with half the budget each.

    Phase 2 starts the day after Phase 1 ends, so no date belongs to both.
    Budget is conserved: the second half is whatever the first half leaves.
    """

    if days_between(project.start_date, project.end_date) < 1:
        raise AllocationError(f"Project '{project.name}' spans less than two days; it cannot be split")

    mid = midpoint(project.start_date, project.end_date)
    first_half = project.estimated_hours / 2
    second_half = project.estimated_hours - first_half

    phase1 = Phase(
        project_id=project.id,
        name="Phase 1",
        start_date=project.start_date,
        end_date=mid,
        time_allocation=first_half,
    )
    phase2 = Phase(
        project_id=project.id,
        name="Phase 2",
        start_date=add_days(mid, 1),
        end_date=project.end_date,
        time_allocation=second_half,
    )
    logger.debug("split %s at %s (%.2fh + %.2fh)", project.id, mid, first_half, second_half)
    return SplitPlan(phase1=phase1, phase2=phase2)


def allocate_new_phase(
    phases: Iterable[Phase],
    project_end: date,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> NewPhaseAllocation:
    """
    Compute where an appended phase goes without breaking continuity.

    The new phase starts where the last phase ends and runs to the project
    end; the last phase's end becomes the new phase's start. When the last
    phase already reaches the project end, a tail is carved off it: a short
    tail for short phases, a longer one past the configured threshold.
    """

    ordered = sort_phases(phases)
    if not ordered:
        raise AllocationError("Cannot add a phase: the project has no phases yet; split the estimate first")

    last = ordered[-1]
    if last.end_date < project_end:
        start = last.end_date
    else:
        span = days_between(last.start_date, last.end_date)
        tail = settings.short_tail_days if span <= settings.long_phase_threshold_days else settings.long_tail_days
        start = add_days(project_end, -tail)
        if start <= last.start_date:
            raise AllocationError(
                f'Cannot add a phase: "{last.name}" is too short to make room before the project end'
            )

    allocation = NewPhaseAllocation(
        new_phase_start=start,
        new_phase_end=project_end,
        last_phase_new_end=start,
        last_phase_id=last.id,
    )
    logger.debug(
        "new phase %s..%s, last phase %s now ends %s",
        allocation.new_phase_start,
        allocation.new_phase_end,
        last.name,
        allocation.last_phase_new_end,
    )
    return allocation


def build_new_phase(project: Project, existing: list[Phase], allocation: NewPhaseAllocation) -> Phase:
    """New phase record with a placeholder allocation of zero hours."""

    return Phase(
        project_id=project.id,
        name=f"Phase {len(existing) + 1}",
        start_date=allocation.new_phase_start,
        end_date=allocation.new_phase_end,
        time_allocation=0.0,
    )
