from __future__ import annotations

import logging
from dataclasses import dataclass

from .allocation_models import AllocationPlan, Project, RecurringTemplate
from .dates import add_days, date_in_window
from .recurrence import occurrence_dates
from .settings import DEFAULT_SETTINGS, EngineSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetAnalysis:
    """Allocated hours against the project's estimated-hours budget."""

    total_allocated: float
    estimated_hours: float
    continuous: bool
    is_over_budget: bool
    near_capacity: bool = False

    @property
    def overage(self) -> float:
        if self.continuous:
            return 0.0
        return max(self.total_allocated - self.estimated_hours, 0.0)

    @property
    def remaining(self) -> float | None:
        if self.continuous:
            return None
        return self.estimated_hours - self.total_allocated

    @property
    def utilization(self) -> float | None:
        """Allocated share of the budget; None when uncapped or the budget is zero."""
        if self.continuous or self.estimated_hours <= 0:
            return None
        return self.total_allocated / self.estimated_hours


def analyze_budget(
    plan: AllocationPlan,
    project: Project,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> BudgetAnalysis:
    """
    Sum the hours a project's plan allocates and compare them with its budget.

    Split plans count their phases; recurring plans count generated
    instances inside the project window (every instance for continuous
    projects). Continuous projects are never over budget.
    """

    if plan.phases:
        total = sum(phase.time_allocation for phase in plan.phases)
    else:
        window_end = None if project.continuous else project.end_date
        total = sum(
            instance.time_allocation
            for instance in plan.instances
            if date_in_window(instance.due_date, project.start_date, window_end)
        )

    over = not project.continuous and total > project.estimated_hours
    near = (
        not project.continuous
        and not over
        and project.estimated_hours > 0
        and total / project.estimated_hours > settings.near_capacity_ratio
    )
    if over:
        logger.info(
            "project %s is overbooked: %.2fh allocated against %.2fh", project.id, total, project.estimated_hours
        )
    return BudgetAnalysis(
        total_allocated=total,
        estimated_hours=project.estimated_hours,
        continuous=project.continuous,
        is_over_budget=over,
        near_capacity=near,
    )


def projected_recurring_total(
    template: RecurringTemplate,
    project: Project,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> float:
    """
    Hours a template would allocate if fully generated.

    Non-continuous projects count occurrences through the project end;
    continuous projects use the configured look-ahead from the anchor.
    """

    if project.continuous:
        horizon = add_days(template.anchor_date, settings.continuous_horizon_days)
    else:
        horizon = add_days(project.end_date, 1)
    count = len(occurrence_dates(template.pattern, template.anchor_date, horizon, limit=settings.max_recurring_instances))
    return count * template.time_allocation


def display_budget(analysis: BudgetAnalysis) -> str:
    """Text shown next to the budget; continuous projects have no ceiling to compare with."""

    if analysis.continuous:
        return f"{analysis.total_allocated:g}h allocated / N/A"
    text = f"{analysis.total_allocated:g}h / {analysis.estimated_hours:g}h"
    if analysis.is_over_budget:
        return f"{text} (over by {analysis.overage:g}h)"
    if analysis.near_capacity:
        return f"{text} (near capacity)"
    return text
