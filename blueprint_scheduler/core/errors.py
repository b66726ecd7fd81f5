from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SchedulerError(Exception):
    """Base error envelope. Structural problems raise these; runtime conditions are returned as data."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<plan>"
        return f"{loc}: {self.code}: {self.message}"


class BlueprintLoadError(SchedulerError):
    pass


class BlueprintValidationError(SchedulerError):
    pass


class InvalidBlueprintError(SchedulerError):
    pass


class PlanLoadError(SchedulerError):
    pass


class ConfigError(SchedulerError):
    pass


@dataclass(frozen=True)
class DuplicateIdError(SchedulerError):
    blueprint_id: str = ""

    @classmethod
    def for_id(cls, blueprint_id: str) -> DuplicateIdError:
        return cls(
            code="E_DUPLICATE_ID",
            message=f"duplicate blueprint id: {blueprint_id}",
            path=blueprint_id,
            blueprint_id=blueprint_id,
        )


@dataclass(frozen=True)
class DanglingDependencyError(SchedulerError):
    # (blueprint id, missing dependency id) pairs
    missing: tuple[tuple[str, str], ...] = ()

    @classmethod
    def for_missing(cls, missing: list[tuple[str, str]]) -> DanglingDependencyError:
        described = ", ".join(f"{bp} -> {dep}" for bp, dep in missing)
        return cls(
            code="E_UNKNOWN_DEPENDENCY",
            message=f"depends_on references unknown ids: {described}",
            path="depends_on",
            missing=tuple(missing),
        )

    @property
    def missing_ids(self) -> list[str]:
        return sorted({dep for _, dep in self.missing})


@dataclass(frozen=True)
class CycleDetectedError(SchedulerError):
    cycles: tuple[tuple[str, ...], ...] = ()

    @classmethod
    def for_cycles(cls, cycles: list[list[str]]) -> CycleDetectedError:
        described = "; ".join(" -> ".join(c) for c in cycles)
        return cls(
            code="E_CYCLE_DETECTED",
            message=f"dependency cycles detected ({len(cycles)}): {described}",
            path="depends_on",
            cycles=tuple(tuple(c) for c in cycles),
        )
