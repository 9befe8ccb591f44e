from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .allocation_models import AllocationPlan


class GuardOutcome(str, Enum):
    ALLOW = "allow"
    REQUIRE_CONFIRMATION = "require_confirmation"
    REJECT = "reject"


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of an exclusivity check plus the message and the one safe remedy."""

    outcome: GuardOutcome
    reason: str = ""
    remedy: str = ""

    @property
    def allowed(self) -> bool:
        return self.outcome is GuardOutcome.ALLOW

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(GuardOutcome.ALLOW)

    @classmethod
    def confirm(cls, reason: str, remedy: str) -> "GuardDecision":
        return cls(GuardOutcome.REQUIRE_CONFIRMATION, reason, remedy)

    @classmethod
    def reject(cls, reason: str, remedy: str) -> "GuardDecision":
        return cls(GuardOutcome.REJECT, reason, remedy)


def check_split(plan: AllocationPlan) -> GuardDecision:
    """Splitting the estimate needs a plan with neither a template nor phases."""

    if plan.template is not None:
        return GuardDecision.reject(
            "Project already has a recurring template; delete it first to create split phases.",
            "Delete recurring template",
        )
    if plan.phases:
        return GuardDecision.reject(
            "Split phases already exist.",
            "Add Phase",
        )
    if plan.milestones or plan.instances:
        count = len(plan.milestones) + len(plan.instances)
        return GuardDecision.confirm(
            f"Splitting deletes the project's {count} existing milestone(s).",
            "Delete milestones and split",
        )
    return GuardDecision.allow()


def check_add_phase(plan: AllocationPlan) -> GuardDecision:
    if plan.template is not None:
        return GuardDecision.reject(
            "Project uses a recurring template; phases cannot be added.",
            "Delete recurring template",
        )
    if not plan.phases:
        return GuardDecision.reject(
            "Project has no phases yet.",
            "Split estimate into phases",
        )
    return GuardDecision.allow()


def check_recurring(plan: AllocationPlan) -> GuardDecision:
    """Creating a template switches modes: existing phases are deleted only on confirmation."""

    if plan.template is not None:
        return GuardDecision.reject(
            "Project already has a recurring template; change its pattern or delete it first.",
            "Change recurring pattern",
        )
    if plan.phases:
        return GuardDecision.confirm(
            f"Switching to a recurring template deletes the project's {len(plan.phases)} phase(s).",
            "Delete phases and create template",
        )
    return GuardDecision.allow()


def check_plan(plan: AllocationPlan) -> GuardDecision:
    """Report a stored plan that already breaks exclusivity or template singularity."""

    if plan.mode == "conflict":
        return GuardDecision.reject(
            "Project has both split phases and a recurring template.",
            "Delete All & Reset",
        )
    if plan.extra_templates:
        return GuardDecision.reject(
            f"Project has {1 + len(plan.extra_templates)} recurring templates; only one is allowed.",
            "Delete All & Reset",
        )
    return GuardDecision.allow()
