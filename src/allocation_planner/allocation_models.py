from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Literal

RecurringType = Literal["weekly", "monthly"]
MonthlyPattern = Literal["date", "weekday"]
PlanMode = Literal["none", "split", "recurring", "conflict"]
"""Allocation mode of a project: nothing planned, split phases, recurring template, or both (invalid)."""


@dataclass
class Project:
    """Owning project: its span and estimated-hours budget."""

    id: str
    name: str
    start_date: date
    end_date: date
    estimated_hours: float = 0.0
    continuous: bool = False


@dataclass(frozen=True)
class RecurringPattern:
    """Recurrence rule of a template; day-of-week numbers run 0 (Sunday) to 6 (Saturday)."""

    recurring_type: RecurringType
    interval: int = 1
    weekly_day_of_week: int | None = None
    monthly_pattern: MonthlyPattern | None = None
    monthly_date: int | None = None
    monthly_week_of_month: int | None = None
    monthly_day_of_week: int | None = None

    @classmethod
    def weekly(cls, day_of_week: int, interval: int = 1) -> "RecurringPattern":
        return cls("weekly", interval=interval, weekly_day_of_week=day_of_week)

    @classmethod
    def monthly_on_date(cls, day: int, interval: int = 1) -> "RecurringPattern":
        return cls("monthly", interval=interval, monthly_pattern="date", monthly_date=day)

    @classmethod
    def monthly_on_weekday(cls, week_of_month: int, day_of_week: int, interval: int = 1) -> "RecurringPattern":
        return cls(
            "monthly",
            interval=interval,
            monthly_pattern="weekday",
            monthly_week_of_month=week_of_month,
            monthly_day_of_week=day_of_week,
        )


@dataclass
class Phase:
    """Contiguous slice of the project timeline carrying part of its budget."""

    project_id: str
    name: str
    start_date: date
    end_date: date
    time_allocation: float = 0.0
    id: str | None = None

    @property
    def due_date(self) -> date:
        """Legacy alias kept equal to end_date."""
        return self.end_date

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days


@dataclass
class RecurringTemplate:
    """Single record defining a repeating allocation; never shown as a slice itself."""

    project_id: str
    name: str
    time_allocation: float
    pattern: RecurringPattern
    anchor_date: date
    id: str | None = None


@dataclass
class RecurringInstance:
    """One generated occurrence of a template."""

    project_id: str
    name: str
    due_date: date
    time_allocation: float
    template_id: str | None = None
    occurrence: int | None = None
    id: str | None = None


@dataclass
class PlainMilestone:
    """Point-in-time item outside the phase/recurring modes."""

    project_id: str
    name: str
    due_date: date
    time_allocation: float = 0.0
    order: int | None = None
    id: str | None = None


AllocationRecord = Phase | RecurringTemplate | RecurringInstance | PlainMilestone
"""Tagged union of everything stored in the allocation table."""


@dataclass
class AllocationPlan:
    """Classified view of a single project's allocation records."""

    project_id: str
    phases: list[Phase] = field(default_factory=list)
    template: RecurringTemplate | None = None
    instances: list[RecurringInstance] = field(default_factory=list)
    milestones: list[PlainMilestone] = field(default_factory=list)
    extra_templates: list[RecurringTemplate] = field(default_factory=list)

    @property
    def mode(self) -> PlanMode:
        if self.phases and self.template is not None:
            return "conflict"
        if self.phases:
            return "split"
        if self.template is not None:
            return "recurring"
        return "none"

    @property
    def recurring_records(self) -> list[RecurringTemplate | RecurringInstance]:
        records: list[RecurringTemplate | RecurringInstance] = []
        if self.template is not None:
            records.append(self.template)
        records.extend(self.extra_templates)
        records.extend(self.instances)
        return records

    @classmethod
    def from_records(cls, project_id: str, records: list[AllocationRecord]) -> "AllocationPlan":
        """Sort records into their variants; phases by start date, instances by date."""

        plan = cls(project_id=project_id)
        for record in records:
            if isinstance(record, Phase):
                plan.phases.append(record)
            elif isinstance(record, RecurringTemplate):
                if plan.template is None:
                    plan.template = record
                else:
                    plan.extra_templates.append(record)
            elif isinstance(record, RecurringInstance):
                plan.instances.append(record)
            else:
                plan.milestones.append(record)

        plan.phases.sort(key=lambda p: (p.start_date, p.end_date))
        plan.instances.sort(key=lambda i: (i.due_date, i.occurrence or 0))
        plan.milestones.sort(key=lambda m: (m.order is None, m.order or 0, m.due_date))
        return plan


@dataclass
class DisplayRow:
    """
    Flattened view of a plan used for text output.

    Only display fields are kept: position, row kind, label, dates and hours,
    plus a free-form detail column (pattern summary, gap notes).
    """

    order: int
    kind: Literal["phase", "recurring_summary", "recurring_instance", "milestone"]
    name: str
    start_date: date | None = None
    end_date: date | None = None
    hours: float = 0.0
    detail: str = ""
    record_id: str | None = None
