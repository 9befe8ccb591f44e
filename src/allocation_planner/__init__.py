"""Phase and recurring allocation planning for project time budgets."""

from .allocation_models import (
    AllocationPlan,
    DisplayRow,
    Phase,
    PlainMilestone,
    Project,
    RecurringInstance,
    RecurringPattern,
    RecurringTemplate,
)
from .orchestrator import AllocationOrchestrator, OperationResult
from .settings import DEFAULT_SETTINGS, EngineSettings, load_settings
from .store import AllocationStore, InMemoryAllocationStore, YamlAllocationStore

__all__ = [
    "AllocationOrchestrator",
    "AllocationPlan",
    "AllocationStore",
    "DEFAULT_SETTINGS",
    "DisplayRow",
    "EngineSettings",
    "InMemoryAllocationStore",
    "OperationResult",
    "Phase",
    "PlainMilestone",
    "Project",
    "RecurringInstance",
    "RecurringPattern",
    "RecurringTemplate",
    "YamlAllocationStore",
    "load_settings",
]
