from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from blueprint_scheduler.core.errors import ConfigError
from blueprint_scheduler.core.model import BlueprintType


DEFAULT_TYPE_MINUTES: dict[BlueprintType, float] = {
    BlueprintType.DATABASE: 8,  # migrations + policies
    BlueprintType.API: 7,
    BlueprintType.SERVICE: 6,
    BlueprintType.UI: 10,
    BlueprintType.TEST: 5,
    BlueprintType.OTHER: 7,
}


@dataclass(frozen=True)
class SchedulerConfig:
    type_minutes: dict[BlueprintType, float] = field(
        default_factory=lambda: dict(DEFAULT_TYPE_MINUTES)
    )
    review_minutes: float = 2
    max_concurrent: int = 5
    checksum_length: int = 16
    lock_retry_attempts: int = 30
    lock_retry_seconds: float = 2.0
    max_lock_seconds: float = 15 * 60

    def base_minutes(self, bp_type: BlueprintType) -> float:
        return self.type_minutes[bp_type]


_INT_KEYS = ("max_concurrent", "checksum_length", "lock_retry_attempts")
_FLOAT_KEYS = ("review_minutes", "lock_retry_seconds", "max_lock_seconds")


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load scheduler overrides from a YAML file.

    Format:
      type_minutes: {database: 8, ui: 12}
      review_minutes: 2
      max_concurrent: 5
      checksum_length: 16
      lock_retry_attempts: 30
      lock_retry_seconds: 2.0
      max_lock_seconds: 900

    Returns the validated overrides; unknown keys are rejected.
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(code="E_CONFIG_PARSE", message=str(e), file=str(p)) from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(
            code="E_CONFIG_INVALID",
            message="config file must be a mapping",
            file=str(p),
        )

    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k == "type_minutes":
            out[k] = _parse_type_minutes(v, str(p))
        elif k in _INT_KEYS:
            if isinstance(v, bool) or not isinstance(v, int) or v < 1:
                raise ConfigError(
                    code="E_CONFIG_INVALID",
                    message=f"{k} must be a positive integer",
                    file=str(p),
                    path=k,
                )
            out[k] = v
        elif k in _FLOAT_KEYS:
            if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
                raise ConfigError(
                    code="E_CONFIG_INVALID",
                    message=f"{k} must be a non-negative number",
                    file=str(p),
                    path=k,
                )
            out[k] = float(v)
        else:
            raise ConfigError(
                code="E_CONFIG_UNKNOWN_KEY",
                message=f"unknown config key: {k}",
                file=str(p),
                path=str(k),
            )
    return out


def _parse_type_minutes(v: Any, file: str) -> dict[BlueprintType, float]:
    if not isinstance(v, dict):
        raise ConfigError(
            code="E_CONFIG_INVALID",
            message="type_minutes must be a mapping of type -> minutes",
            file=file,
            path="type_minutes",
        )
    out: dict[BlueprintType, float] = {}
    for name, minutes in v.items():
        try:
            bp_type = BlueprintType(name)
        except ValueError:
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message=f"unknown blueprint type: {name}",
                file=file,
                path=f"type_minutes.{name}",
            ) from None
        if isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes < 0:
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message=f"type_minutes.{name} must be a non-negative number",
                file=file,
                path=f"type_minutes.{name}",
            )
        out[bp_type] = minutes
    return out


def merged_config(overrides: dict[str, Any] | None = None) -> SchedulerConfig:
    """Return the default config with optional overrides applied.

    type_minutes overrides replace individual types; the rest keep defaults.
    """
    config = SchedulerConfig()
    if not overrides:
        return config
    overrides = dict(overrides)
    type_overrides = overrides.pop("type_minutes", None)
    if type_overrides:
        minutes = dict(config.type_minutes)
        minutes.update(type_overrides)
        overrides["type_minutes"] = minutes
    return replace(config, **overrides)


def load_and_merge(config_file: Optional[str]) -> SchedulerConfig:
    if not config_file:
        return merged_config()
    if not Path(config_file).exists():
        raise ConfigError(
            code="E_CONFIG_NOT_FOUND",
            message=f"config file not found: {config_file}",
            file=config_file,
        )
    return merged_config(load_config_file(config_file))
