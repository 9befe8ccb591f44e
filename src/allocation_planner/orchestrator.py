from __future__ import annotations

import asyncio
import datetime as _dt
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Iterable

from . import allocator
from .allocation_models import (
    AllocationPlan,
    AllocationRecord,
    Project,
    RecurringPattern,
    RecurringTemplate,
)
from .budget import BudgetAnalysis, analyze_budget
from .continuity import ContinuityReport, plan_repairs, validate_continuity
from .dates import add_days
from .errors import (
    AllocationError,
    BatchWriteError,
    ConfirmationRequired,
    ExclusivityError,
    PatternValidationError,
)
from .exclusivity import GuardDecision, GuardOutcome, check_add_phase, check_plan, check_recurring, check_split
from .records import from_record, parse_records, to_record
from .recurrence import RecurringGenerator, require_valid_pattern
from .settings import DEFAULT_SETTINGS, EngineSettings
from .store import AllocationStore

logger = logging.getLogger(__name__)

FIX_OVERLAPS = "Fix Overlaps"
RESET = "Delete All & Reset"
REGENERATE = "Regenerate recurring instances"


@dataclass
class OperationResult:
    """Outcome of a successful orchestrated operation."""

    operation: str
    message: str
    created: list[AllocationRecord] = field(default_factory=list)
    updated: int = 0
    deleted: int = 0


@dataclass
class PlanHealth:
    """Continuity and exclusivity findings with the one remedial action to offer."""

    continuity: ContinuityReport
    exclusivity: GuardDecision
    remedy: str | None = None

    @property
    def is_healthy(self) -> bool:
        return self.continuity.is_valid and self.exclusivity.allowed


class AllocationOrchestrator:
    """
    Record-level operations over a project's allocation plan.

    Each operation reads the plan from the store, consults the guards, and
    writes through the store. Multi-record writes are submitted concurrently
    and fail as a whole; succeeded writes are kept and the plan is re-read.
    """

    def __init__(
        self,
        store: AllocationStore,
        settings: EngineSettings = DEFAULT_SETTINGS,
        generator: RecurringGenerator | None = None,
    ):
        self.store = store
        self.settings = settings
        self.generator = generator or RecurringGenerator(settings)

    async def load_plan(self, project: Project) -> AllocationPlan:
        rows = await self.store.list_allocations(project.id)
        return AllocationPlan.from_records(project.id, parse_records(rows))

    # Phase mode

    async def split_estimate(self, project: Project, confirm: bool = False) -> OperationResult:
        """Replace an empty plan with two phases halving the span and the budget."""

        plan = await self.load_plan(project)
        decision = check_split(plan)
        self._enforce(decision, confirm)

        split = allocator.split_estimate(project)
        deleted = 0
        if decision.outcome is GuardOutcome.REQUIRE_CONFIRMATION:
            stale = [*plan.milestones, *plan.instances]
            deleted = await self._delete_all(project, "split_estimate", stale, remedy=RESET)
            plan = await self.load_plan(project)
            self._enforce(check_split(plan), confirm)

        created = await self._run_batch(
            "split_estimate",
            [self._create(phase, silent=True) for phase in split.phases],
            remedy=RESET,
            project=project,
        )
        logger.info("split project %s into %d phases", project.id, len(created))
        return OperationResult(
            "split_estimate",
            f"Split {project.estimated_hours:g}h into two phases",
            created=created,
            deleted=deleted,
        )

    async def add_phase(self, project: Project) -> OperationResult:
        """Append a placeholder phase, shrinking the current last phase to make room."""

        plan = await self.load_plan(project)
        self._enforce(check_add_phase(plan), confirm=False)

        allocation = allocator.allocate_new_phase(plan.phases, project.end_date, self.settings)
        new_phase = allocator.build_new_phase(project, plan.phases, allocation)
        last = plan.phases[-1]

        updated = 0
        if allocation.last_phase_new_end != last.end_date:
            if last.id is None:
                raise AllocationError(f'Phase "{last.name}" has not been saved yet')
            await self.store.update_allocation(
                last.id,
                {"end_date": allocation.last_phase_new_end, "due_date": allocation.last_phase_new_end},
                silent=True,
            )
            updated = 1
        created = await self._create(new_phase, silent=True)
        logger.info("added %s to project %s", new_phase.name, project.id)
        return OperationResult("add_phase", f"Added {new_phase.name}", created=[created], updated=updated)

    async def repair_phases(self, project: Project) -> OperationResult:
        """Apply the repair planner's boundary corrections; safe to retry."""

        plan = await self.load_plan(project)
        repairs = plan_repairs(plan.phases)
        if not repairs:
            return OperationResult("repair_phases", "No repairs needed; phases are already sequential")

        unsaved = [r for r in repairs if r.phase_id is None]
        if unsaved:
            raise AllocationError(f"{len(unsaved)} overlapping phase(s) have not been saved yet")

        await self._run_batch(
            "repair_phases",
            [self.store.update_allocation(r.phase_id, r.as_updates(), silent=True) for r in repairs],
            remedy=FIX_OVERLAPS,
            project=project,
        )
        logger.info("repaired %d phase boundary(ies) in project %s", len(repairs), project.id)
        return OperationResult("repair_phases", f"Fixed {len(repairs)} overlapping phase(s)", updated=len(repairs))

    async def delete_all_and_reset(self, project: Project) -> OperationResult:
        """Remove every phase and recurring record; plain milestones are left alone."""

        plan = await self.load_plan(project)
        targets: list[AllocationRecord] = [*plan.phases, *plan.recurring_records]
        for template in [plan.template, *plan.extra_templates]:
            if template is not None:
                self.generator.forget(template)
        deleted = await self._delete_all(project, "delete_all_and_reset", targets, remedy=RESET)
        await self.load_plan(project)
        return OperationResult("delete_all_and_reset", f"Deleted {deleted} allocation record(s)", deleted=deleted)

    # Recurring mode

    async def create_recurring(
        self,
        project: Project,
        name: str,
        hours: float,
        pattern: RecurringPattern,
        confirm: bool = False,
        horizon: _dt.date | None = None,
    ) -> OperationResult:
        """Create the project's recurring template and generate instances up to the horizon."""

        require_valid_pattern(pattern, hours)
        plan = await self.load_plan(project)
        decision = check_recurring(plan)
        self._enforce(decision, confirm)

        deleted = 0
        if decision.outcome is GuardOutcome.REQUIRE_CONFIRMATION:
            deleted = await self._delete_all(project, "create_recurring", plan.phases, remedy=RESET)
            plan = await self.load_plan(project)
            self._enforce(check_recurring(plan), confirm)

        template = RecurringTemplate(
            project_id=project.id,
            name=name,
            time_allocation=hours,
            pattern=pattern,
            anchor_date=project.start_date,
        )
        saved = await self._create(template)
        coverage = await self.ensure_recurring_coverage(project, horizon)
        return OperationResult(
            "create_recurring",
            f"Created recurring template '{name}' with {len(coverage.created)} instance(s)",
            created=[saved, *coverage.created],
            deleted=deleted,
        )

    async def ensure_recurring_coverage(self, project: Project, horizon: _dt.date | None = None) -> OperationResult:
        """
        Make sure an instance exists for every occurrence before the horizon.

        Idempotent: a horizon that is already covered performs no writes.
        """

        plan = await self.load_plan(project)
        if plan.template is None:
            return OperationResult("ensure_coverage", "Project has no recurring template")

        target = self._clamp_horizon(project, horizon)
        missing = self.generator.plan_coverage(plan.template, plan.instances, target)
        if not missing:
            return OperationResult("ensure_coverage", f"Already covered through {target}")

        created = await self._run_batch(
            "ensure_coverage",
            [self._create(instance, silent=True) for instance in missing],
            remedy=REGENERATE,
            project=project,
        )
        self.generator.mark_covered(plan.template, target)
        logger.debug("generated %d instance(s) for project %s through %s", len(created), project.id, target)
        return OperationResult("ensure_coverage", f"Generated {len(created)} instance(s)", created=created)

    async def change_recurring_load(self, project: Project, hours: float) -> OperationResult:
        """Set hours per occurrence on the template and every generated instance; dates are untouched."""

        if hours < 0:
            raise PatternValidationError(["Hours per occurrence must not be negative"])
        plan = await self.load_plan(project)
        template = self._require_template(plan)

        writes = [self.store.update_allocation(template.id, {"time_allocation": hours})]
        writes.extend(
            self.store.update_allocation(instance.id, {"time_allocation": hours}, silent=True)
            for instance in plan.instances
            if instance.id is not None
        )
        await self._run_batch("change_recurring_load", writes, remedy=REGENERATE, project=project)
        return OperationResult(
            "change_recurring_load",
            f"Set '{template.name}' to {hours:g}h per occurrence",
            updated=len(writes),
        )

    async def change_recurring_pattern(
        self,
        project: Project,
        pattern: RecurringPattern,
        horizon: _dt.date | None = None,
    ) -> OperationResult:
        """Recreate the template with a new rule and regenerate its instances from scratch."""

        require_valid_pattern(pattern)
        plan = await self.load_plan(project)
        template = self._require_template(plan)
        if plan.phases:
            self._enforce(check_plan(plan), confirm=False)

        self.generator.forget(template)
        deleted = await self._delete_all(project, "change_recurring_pattern", plan.recurring_records, remedy=RESET)

        plan = await self.load_plan(project)
        self._enforce(check_recurring(plan), confirm=False)
        replacement = RecurringTemplate(
            project_id=project.id,
            name=template.name,
            time_allocation=template.time_allocation,
            pattern=pattern,
            anchor_date=template.anchor_date,
        )
        saved = await self._create(replacement)
        coverage = await self.ensure_recurring_coverage(project, horizon)
        return OperationResult(
            "change_recurring_pattern",
            f"Regenerated '{template.name}' with {len(coverage.created)} instance(s)",
            created=[saved, *coverage.created],
            deleted=deleted,
        )

    async def delete_recurring(self, project: Project) -> OperationResult:
        plan = await self.load_plan(project)
        self._require_template(plan)
        for template in [plan.template, *plan.extra_templates]:
            self.generator.forget(template)
        deleted = await self._delete_all(project, "delete_recurring", plan.recurring_records, remedy=RESET)
        await self.load_plan(project)
        return OperationResult("delete_recurring", f"Deleted {deleted} recurring record(s)", deleted=deleted)

    # Read-only checks

    async def validate(self, project: Project) -> PlanHealth:
        plan = await self.load_plan(project)
        continuity = validate_continuity(
            plan.phases,
            project.start_date,
            None if project.continuous else project.end_date,
        )
        exclusivity = check_plan(plan)
        remedy = None
        if not exclusivity.allowed:
            remedy = exclusivity.remedy
        elif continuity.overlaps:
            remedy = FIX_OVERLAPS
        return PlanHealth(continuity=continuity, exclusivity=exclusivity, remedy=remedy)

    async def analyze(self, project: Project) -> BudgetAnalysis:
        return analyze_budget(await self.load_plan(project), project, self.settings)

    # Helpers

    @staticmethod
    def _enforce(decision: GuardDecision, confirm: bool) -> None:
        if decision.outcome is GuardOutcome.REJECT:
            raise ExclusivityError(decision)
        if decision.outcome is GuardOutcome.REQUIRE_CONFIRMATION and not confirm:
            raise ConfirmationRequired(decision)

    @staticmethod
    def _require_template(plan: AllocationPlan) -> RecurringTemplate:
        if plan.template is None or plan.template.id is None:
            raise AllocationError("Project has no saved recurring template")
        return plan.template

    def _clamp_horizon(self, project: Project, horizon: _dt.date | None) -> _dt.date:
        if horizon is None:
            horizon = add_days(max(project.start_date, _dt.date.today()), self.settings.default_horizon_days)
        if not project.continuous:
            # Occurrences on the last project day still belong to the project.
            horizon = min(horizon, add_days(project.end_date, 1))
        return horizon

    async def _create(self, model: AllocationRecord, silent: bool = False) -> AllocationRecord:
        stored = await self.store.create_allocation(to_record(model), silent=silent)
        return from_record(stored)

    async def _delete_all(
        self,
        project: Project,
        operation: str,
        records: Iterable[AllocationRecord],
        remedy: str,
    ) -> int:
        ids = [record.id for record in records if record.id is not None]
        if not ids:
            return 0
        await self._run_batch(operation, [self.store.delete_allocation(i) for i in ids], remedy=remedy, project=project)
        return len(ids)

    async def _run_batch(
        self,
        operation: str,
        writes: Iterable[Awaitable[Any]],
        remedy: str,
        project: Project,
    ) -> list[Any]:
        """Await all writes together; any failure fails the batch after a fresh read."""

        results = await asyncio.gather(*writes, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, Exception):
                raise failure
        if failures:
            succeeded = len(results) - len(failures)
            logger.warning(
                "%s on project %s: %d of %d write(s) failed; re-reading",
                operation,
                project.id,
                len(failures),
                len(results),
            )
            await self.load_plan(project)
            raise BatchWriteError(operation, failures, succeeded, f"re-run '{remedy}'")
        return list(results)
