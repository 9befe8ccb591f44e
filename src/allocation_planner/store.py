from __future__ import annotations

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

import yaml

from .allocation_models import Project
from .errors import PersistenceError, RecordValidationError
from .records import RECORD_FIELDS, project_from_mapping, project_to_mapping

logger = logging.getLogger(__name__)


class AllocationStore(ABC):
    """
    Persistence collaborator for allocation records.

    Records are plain mappings in the storage schema (see records.py).
    Failures surface as PersistenceError.
    """

    @abstractmethod
    async def create_allocation(self, record: Mapping[str, Any], silent: bool = False) -> dict[str, Any]:
        """Persist a new record and return it with its assigned id; silent suppresses the notification."""

    @abstractmethod
    async def update_allocation(self, record_id: str, fields: Mapping[str, Any], silent: bool = False) -> None:
        """Merge fields into a record; silent suppresses the user-facing notification."""

    @abstractmethod
    async def delete_allocation(self, record_id: str) -> None:
        """Remove a record."""

    @abstractmethod
    async def list_allocations(self, project_id: str) -> list[dict[str, Any]]:
        """Return every record of a project, as stored."""


class InMemoryAllocationStore(AllocationStore):
    """Dictionary-backed store; failures can be injected per operation for tests."""

    def __init__(self, records: list[Mapping[str, Any]] | None = None):
        self._records: dict[str, dict[str, Any]] = {}
        self.notifications: list[str] = []
        self.calls: list[tuple[str, str | None]] = []
        self._failures: list[tuple[str, str | None]] = []
        for record in records or []:
            stored = dict(record)
            stored.setdefault("id", uuid.uuid4().hex)
            self._records[stored["id"]] = stored

    def fail_on(self, operation: str, record_id: str | None = None, times: int = 1) -> None:
        """Make the next `times` calls of an operation (optionally for one id) raise."""
        self._failures.extend([(operation, record_id)] * times)

    def _maybe_fail(self, operation: str, record_id: str | None) -> None:
        for idx, (op, target) in enumerate(self._failures):
            if op == operation and (target is None or target == record_id):
                del self._failures[idx]
                raise PersistenceError(f"{operation} failed for {record_id or 'new record'}")

    def _notify(self, message: str, silent: bool) -> None:
        if silent:
            return
        self.notifications.append(message)
        logger.info(message)

    async def create_allocation(self, record: Mapping[str, Any], silent: bool = False) -> dict[str, Any]:
        self.calls.append(("create", record.get("id")))
        self._maybe_fail("create", record.get("id"))
        _check_fields(record)
        stored = dict(record)
        stored["id"] = stored.get("id") or uuid.uuid4().hex
        self._records[stored["id"]] = stored
        self._notify(f"Created '{stored.get('name')}'", silent)
        return dict(stored)

    async def update_allocation(self, record_id: str, fields: Mapping[str, Any], silent: bool = False) -> None:
        self.calls.append(("update", record_id))
        self._maybe_fail("update", record_id)
        _check_fields(fields)
        if record_id not in self._records:
            raise PersistenceError(f"unknown allocation '{record_id}'")
        _merge(self._records[record_id], fields)
        self._notify(f"Updated '{self._records[record_id].get('name')}'", silent)

    async def delete_allocation(self, record_id: str) -> None:
        self.calls.append(("delete", record_id))
        self._maybe_fail("delete", record_id)
        if self._records.pop(record_id, None) is None:
            raise PersistenceError(f"unknown allocation '{record_id}'")

    async def list_allocations(self, project_id: str) -> list[dict[str, Any]]:
        self.calls.append(("list", project_id))
        return [copy.deepcopy(r) for r in self._records.values() if r.get("project_id") == project_id]

    def writes(self) -> list[tuple[str, str | None]]:
        return [call for call in self.calls if call[0] != "list"]


class YamlAllocationStore(AllocationStore):
    """
    Workspace file holding one project and its allocation records:

        project: {id, name, start_date, end_date, estimated_hours, continuous}
        allocations: [ ...records... ]

    The file is read on every call and rewritten after every write.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load_project(self) -> Project:
        return project_from_mapping(self._read().get("project"))

    def _read(self) -> dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise RecordValidationError(f"{self.path}: invalid YAML ({exc})") from exc
        if not isinstance(raw, dict):
            raise RecordValidationError(f"{self.path}: expected mapping at top level")
        allocations = raw.get("allocations")
        if allocations is None:
            raw["allocations"] = []
        elif not isinstance(allocations, list):
            raise RecordValidationError(f"{self.path}: allocations: expected list")
        return raw

    def _write(self, data: dict[str, Any]) -> None:
        try:
            with self.path.open("w", encoding="utf-8") as fh:
                yaml.safe_dump(data, fh, sort_keys=False)
        except OSError as exc:
            raise PersistenceError(f"cannot write {self.path}: {exc}") from exc

    def save_project(self, project: Project) -> None:
        data = self._read() if self.path.exists() else {"allocations": []}
        data["project"] = project_to_mapping(project)
        self._write(data)

    async def create_allocation(self, record: Mapping[str, Any], silent: bool = False) -> dict[str, Any]:
        _check_fields(record)
        data = self._read()
        stored = dict(record)
        stored["id"] = stored.get("id") or uuid.uuid4().hex
        data["allocations"].append(stored)
        self._write(data)
        if not silent:
            logger.info("Created '%s'", stored.get("name"))
        return dict(stored)

    async def update_allocation(self, record_id: str, fields: Mapping[str, Any], silent: bool = False) -> None:
        _check_fields(fields)
        data = self._read()
        for record in data["allocations"]:
            if record.get("id") == record_id:
                _merge(record, fields)
                self._write(data)
                if not silent:
                    logger.info("Updated '%s'", record.get("name"))
                return
        raise PersistenceError(f"unknown allocation '{record_id}'")

    async def delete_allocation(self, record_id: str) -> None:
        data = self._read()
        remaining = [r for r in data["allocations"] if r.get("id") != record_id]
        if len(remaining) == len(data["allocations"]):
            raise PersistenceError(f"unknown allocation '{record_id}'")
        data["allocations"] = remaining
        self._write(data)

    async def list_allocations(self, project_id: str) -> list[dict[str, Any]]:
        return [dict(r) for r in self._read()["allocations"] if r.get("project_id") == project_id]


def _check_fields(record: Mapping[str, Any]) -> None:
    extras = sorted(set(record.keys()) - RECORD_FIELDS)
    if extras:
        raise PersistenceError(f"unknown allocation fields {extras}")


def _merge(target: dict[str, Any], fields: Mapping[str, Any]) -> None:
    for key, value in fields.items():
        if value is None:
            target.pop(key, None)
        else:
            target[key] = value
