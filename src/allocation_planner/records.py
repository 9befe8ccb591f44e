from __future__ import annotations

import datetime as _dt
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .allocation_models import (
    AllocationRecord,
    PlainMilestone,
    Phase,
    Project,
    RecurringInstance,
    RecurringPattern,
    RecurringTemplate,
)
from .dates import parse_date
from .errors import RecordValidationError

RECORD_FIELDS = {
    "id",
    "project_id",
    "name",
    "start_date",
    "end_date",
    "due_date",
    "time_allocation",
    "is_recurring",
    "recurring_type",
    "recurring_interval",
    "weekly_day_of_week",
    "monthly_pattern",
    "monthly_date",
    "monthly_week_of_month",
    "monthly_day_of_week",
    "recurring_group_id",
    "order",
}
PROJECT_FIELDS = {"id", "name", "start_date", "end_date", "estimated_hours", "continuous"}

OCCURRENCE_SUFFIX = re.compile(r"\s(\d+)$")


@dataclass(frozen=True)
class _Path:
    """Helper to produce readable record paths like allocations[2].due_date."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> "_Path":
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:  # pragma: no cover - trivial
        return ".".join(self.parts) if self.parts else "record"


def occurrence_from_name(name: str) -> int | None:
    """Occurrence counter encoded as the trailing ' <n>' of an instance name."""
    match = OCCURRENCE_SUFFIX.search(name)
    return int(match.group(1)) if match else None


def to_record(model: AllocationRecord) -> dict[str, Any]:
    """Serialise a variant into the storage schema; unset optional fields are omitted."""

    if isinstance(model, Phase):
        record: dict[str, Any] = {
            "project_id": model.project_id,
            "name": model.name,
            "start_date": model.start_date,
            "end_date": model.end_date,
            "due_date": model.end_date,
            "time_allocation": model.time_allocation,
            "is_recurring": False,
        }
    elif isinstance(model, RecurringTemplate):
        pattern = model.pattern
        record = {
            "project_id": model.project_id,
            "name": model.name,
            "due_date": model.anchor_date,
            "time_allocation": model.time_allocation,
            "is_recurring": True,
            "recurring_type": pattern.recurring_type,
            "recurring_interval": pattern.interval,
            "weekly_day_of_week": pattern.weekly_day_of_week,
            "monthly_pattern": pattern.monthly_pattern,
            "monthly_date": pattern.monthly_date,
            "monthly_week_of_month": pattern.monthly_week_of_month,
            "monthly_day_of_week": pattern.monthly_day_of_week,
        }
    elif isinstance(model, RecurringInstance):
        record = {
            "project_id": model.project_id,
            "name": model.name,
            "due_date": model.due_date,
            "time_allocation": model.time_allocation,
            "is_recurring": False,
            "recurring_group_id": model.template_id,
        }
    elif isinstance(model, PlainMilestone):
        record = {
            "project_id": model.project_id,
            "name": model.name,
            "due_date": model.due_date,
            "time_allocation": model.time_allocation,
            "is_recurring": False,
            "order": model.order,
        }
    else:
        raise TypeError(f"Unsupported allocation record type: {type(model)}")

    if model.id is not None:
        record["id"] = model.id
    return {key: value for key, value in record.items() if value is not None}


def from_record(data: Any, path: _Path | None = None) -> AllocationRecord:
    """
    Classify and parse one stored record.

    is_recurring marks the template; a start_date marks a phase; a
    recurring_group_id marks a generated instance; anything else is a plain
    milestone.
    """

    path = path or _Path()
    if not isinstance(data, Mapping):
        raise RecordValidationError(f"{path}: expected mapping for allocation record")
    _assert_allowed_keys(data, RECORD_FIELDS, path)

    record_id = _optional_str(data, "id", path)
    project_id = _require_str(data, "project_id", path)
    name = _require_str(data, "name", path)
    hours = _parse_hours(data.get("time_allocation", 0), path.child("time_allocation"))

    if _parse_bool(data.get("is_recurring", False), path.child("is_recurring")):
        anchor = _parse_date(_require_value(data, "due_date", path), path.child("due_date"))
        return RecurringTemplate(
            id=record_id,
            project_id=project_id,
            name=name,
            time_allocation=hours,
            pattern=_parse_pattern(data, path),
            anchor_date=anchor,
        )

    if data.get("start_date") is not None:
        start = _parse_date(data["start_date"], path.child("start_date"))
        end_raw = data.get("end_date")
        if end_raw is None:
            end_raw = _require_value(data, "due_date", path)
        end = _parse_date(end_raw, path.child("end_date"))
        if end < start:
            raise RecordValidationError(f"{path}: phase ends ({end}) before it starts ({start})")
        return Phase(id=record_id, project_id=project_id, name=name, start_date=start, end_date=end, time_allocation=hours)

    due = _parse_date(_require_value(data, "due_date", path), path.child("due_date"))

    group_id = data.get("recurring_group_id")
    if group_id is not None:
        if not isinstance(group_id, str):
            raise RecordValidationError(f"{path.child('recurring_group_id')}: expected string id")
        return RecurringInstance(
            id=record_id,
            project_id=project_id,
            name=name,
            due_date=due,
            time_allocation=hours,
            template_id=group_id,
            occurrence=occurrence_from_name(name),
        )

    order = data.get("order")
    if order is not None and (not isinstance(order, int) or isinstance(order, bool)):
        raise RecordValidationError(f"{path.child('order')}: expected integer")
    return PlainMilestone(id=record_id, project_id=project_id, name=name, due_date=due, time_allocation=hours, order=order)


def parse_records(items: Any, root: str = "allocations") -> list[AllocationRecord]:
    """Parse a list of stored records, reporting errors as root[i].field."""

    path = _Path((root,))
    if items is None:
        return []
    if not isinstance(items, list):
        raise RecordValidationError(f"{path}: expected list")
    return [from_record(item, _Path((f"{root}[{idx}]",))) for idx, item in enumerate(items)]


def dump_records(models: Iterable[AllocationRecord]) -> list[dict[str, Any]]:
    return [to_record(model) for model in models]


def project_from_mapping(data: Any, path: _Path | None = None) -> Project:
    path = path or _Path(("project",))
    if not isinstance(data, Mapping):
        raise RecordValidationError(f"{path}: expected mapping")
    _assert_allowed_keys(data, PROJECT_FIELDS, path)
    project = Project(
        id=_require_str(data, "id", path),
        name=_require_str(data, "name", path),
        start_date=_parse_date(_require_value(data, "start_date", path), path.child("start_date")),
        end_date=_parse_date(_require_value(data, "end_date", path), path.child("end_date")),
        estimated_hours=_parse_hours(data.get("estimated_hours", 0), path.child("estimated_hours")),
        continuous=_parse_bool(data.get("continuous", False), path.child("continuous")),
    )
    if project.end_date < project.start_date and not project.continuous:
        raise RecordValidationError(f"{path}: end_date precedes start_date")
    return project


def project_to_mapping(project: Project) -> dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "start_date": project.start_date,
        "end_date": project.end_date,
        "estimated_hours": project.estimated_hours,
        "continuous": project.continuous,
    }


def _parse_pattern(data: Mapping[str, Any], path: _Path) -> RecurringPattern:
    recurring_type = _require_value(data, "recurring_type", path)
    if recurring_type not in ("weekly", "monthly"):
        raise RecordValidationError(f"{path.child('recurring_type')}: expected 'weekly' or 'monthly'")
    monthly_pattern = data.get("monthly_pattern")
    if monthly_pattern is not None and monthly_pattern not in ("date", "weekday"):
        raise RecordValidationError(f"{path.child('monthly_pattern')}: expected 'date' or 'weekday'")
    interval = _optional_int(data, "recurring_interval", path)
    return RecurringPattern(
        recurring_type=recurring_type,
        interval=1 if interval is None else interval,
        weekly_day_of_week=_optional_int(data, "weekly_day_of_week", path),
        monthly_pattern=monthly_pattern,
        monthly_date=_optional_int(data, "monthly_date", path),
        monthly_week_of_month=_optional_int(data, "monthly_week_of_month", path),
        monthly_day_of_week=_optional_int(data, "monthly_day_of_week", path),
    )


def _assert_allowed_keys(data: Mapping[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise RecordValidationError(f"{path}: unexpected fields {extras}")


def _require_str(data: Mapping[str, Any], key: str, path: _Path) -> str:
    value = _require_value(data, key, path)
    if not isinstance(value, str) or not value.strip():
        raise RecordValidationError(f"{path.child(key)}: expected non-empty string")
    return value


def _optional_str(data: Mapping[str, Any], key: str, path: _Path) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise RecordValidationError(f"{path.child(key)}: expected string")
    return value


def _optional_int(data: Mapping[str, Any], key: str, path: _Path) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise RecordValidationError(f"{path.child(key)}: expected integer")
    return value


def _require_value(data: Mapping[str, Any], key: str, path: _Path) -> Any:
    if key not in data or data[key] is None:
        raise RecordValidationError(f"{path}: missing required field '{key}'")
    return data[key]


def _parse_hours(value: Any, path: _Path) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise RecordValidationError(f"{path}: expected non-negative number")
    return float(value)


def _parse_bool(value: Any, path: _Path) -> bool:
    if not isinstance(value, bool):
        raise RecordValidationError(f"{path}: expected boolean")
    return value


def _parse_date(value: Any, path: _Path) -> _dt.date:
    try:
        return parse_date(value)
    except ValueError as exc:
        raise RecordValidationError(f"{path}: expected YYYY-MM-DD date") from exc
