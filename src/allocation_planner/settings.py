from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import SettingsError


@dataclass(frozen=True)
class EngineSettings:
    """Tunable limits of the scheduling engine."""

    max_recurring_instances: int = 1000
    default_horizon_days: int = 90
    continuous_horizon_days: int = 365
    near_capacity_ratio: float = 0.9
    short_tail_days: int = 1
    long_tail_days: int = 6
    long_phase_threshold_days: int = 21


DEFAULT_SETTINGS = EngineSettings()


def load_settings(path: str | Path | None) -> EngineSettings:
    """
    Load settings from a YAML file with an optional top-level 'engine' mapping.

    Missing keys keep their defaults; unknown keys and wrong types are rejected.
    A None path returns the defaults.
    """

    if path is None:
        return DEFAULT_SETTINGS

    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    if raw is None:
        return DEFAULT_SETTINGS
    if not isinstance(raw, dict):
        raise SettingsError(f"{path}: expected mapping at top level")
    section = raw.get("engine", {})
    extras = sorted(set(raw.keys()) - {"engine"})
    if extras:
        raise SettingsError(f"{path}: unexpected fields {extras}")
    return settings_from_mapping(section, where=f"{path}:engine")


def settings_from_mapping(data: Any, where: str = "engine") -> EngineSettings:
    if data is None:
        return DEFAULT_SETTINGS
    if not isinstance(data, dict):
        raise SettingsError(f"{where}: expected mapping")

    known = {f.name: f for f in fields(EngineSettings)}
    extras = sorted(set(data.keys()) - set(known))
    if extras:
        raise SettingsError(f"{where}: unexpected fields {extras}")

    overrides: dict[str, Any] = {}
    for key, value in data.items():
        default = getattr(DEFAULT_SETTINGS, key)
        if isinstance(default, float):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SettingsError(f"{where}.{key}: expected number")
            value = float(value)
        elif isinstance(value, bool) or not isinstance(value, int):
            raise SettingsError(f"{where}.{key}: expected integer")
        if value <= 0:
            raise SettingsError(f"{where}.{key}: expected positive value")
        overrides[key] = value

    return replace(DEFAULT_SETTINGS, **overrides)
