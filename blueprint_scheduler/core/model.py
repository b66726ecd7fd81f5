from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from blueprint_scheduler.core.errors import InvalidBlueprintError


class BlueprintType(str, Enum):
    DATABASE = "database"
    API = "api"
    SERVICE = "service"
    UI = "ui"
    TEST = "test"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> BlueprintType:
        """Closed enumeration: unknown values fail instead of defaulting to OTHER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidBlueprintError(
                code="E_INVALID_ENUM",
                message=f"type must be one of {[t.value for t in cls]}, got {value!r}",
                path="type",
            ) from None


class AccessMode(str, Enum):
    READ = "read"
    WRITE = "write"

    @classmethod
    def parse(cls, value: Any) -> AccessMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidBlueprintError(
                code="E_INVALID_ENUM",
                message=f"resource mode must be one of {[m.value for m in cls]}, got {value!r}",
                path="resources",
            ) from None


@dataclass(frozen=True)
class ResourceAccess:
    resource: str
    mode: AccessMode = AccessMode.WRITE

    @property
    def is_write(self) -> bool:
        return self.mode is AccessMode.WRITE


def normalize_resources(resources: Any) -> tuple[ResourceAccess, ...]:
    """Collapse duplicate declarations; a resource both read and written is a write.

    Accepts ResourceAccess items or (resource, mode) pairs. Output is sorted by
    resource identifier so that descriptors compare equal regardless of
    declaration order.
    """
    modes: dict[str, AccessMode] = {}
    for item in resources or ():
        if isinstance(item, ResourceAccess):
            res, mode = item.resource, item.mode
        else:
            res, raw_mode = item
            mode = AccessMode.parse(raw_mode)
        if not isinstance(res, str) or not res.strip():
            raise InvalidBlueprintError(
                code="E_INVALID_TYPE",
                message="resource identifiers must be non-empty strings",
                path="resources",
            )
        if modes.get(res) is AccessMode.WRITE:
            continue
        modes[res] = mode
    return tuple(ResourceAccess(resource=r, mode=modes[r]) for r in sorted(modes))


@dataclass(frozen=True)
class BlueprintDescriptor:
    """One independently executable unit of work, as produced by decomposition."""

    id: str
    name: str
    type: BlueprintType
    depends_on: tuple[str, ...] = ()
    resources: tuple[ResourceAccess, ...] = ()
    estimated_minutes: Optional[float] = None
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise InvalidBlueprintError(
                code="E_REQUIRED_FIELD",
                message="id is required and must be a non-empty string",
                path="id",
            )
        object.__setattr__(self, "type", BlueprintType.parse(self.type))
        object.__setattr__(self, "depends_on", tuple(dict.fromkeys(self.depends_on)))
        object.__setattr__(self, "resources", normalize_resources(self.resources))
        if self.estimated_minutes is not None and self.estimated_minutes < 0:
            raise InvalidBlueprintError(
                code="E_INVALID_TYPE",
                message=f"estimated_minutes must be >= 0 for {self.id}",
                path=f"{self.id}.estimated_minutes",
            )

    def modes_by_resource(self) -> dict[str, AccessMode]:
        return {r.resource: r.mode for r in self.resources}

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "depends_on": list(self.depends_on),
            "resources": [{"resource": r.resource, "mode": r.mode.value} for r in self.resources],
        }
        if self.estimated_minutes is not None:
            d["estimated_minutes"] = self.estimated_minutes
        if self.description:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlueprintDescriptor:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            type=BlueprintType.parse(data.get("type", "other")),
            depends_on=tuple(data.get("depends_on", [])),
            resources=tuple(
                (r["resource"], r.get("mode", "write")) for r in data.get("resources", [])
            ),
            estimated_minutes=data.get("estimated_minutes"),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class InferredEdge:
    """An ordering edge synthesized from a resource conflict."""

    predecessor: str
    successor: str
    resources: tuple[str, ...]


@dataclass(frozen=True)
class DependencyGraph:
    nodes: dict[str, BlueprintDescriptor]  # registration order
    predecessors: dict[str, tuple[str, ...]]
    successors: dict[str, tuple[str, ...]]
    inferred_edges: tuple[InferredEdge, ...] = ()

    @property
    def edges(self) -> list[tuple[str, str]]:
        return [(p, s) for s, preds in self.predecessors.items() for p in preds]


@dataclass(frozen=True)
class SpecRef:
    """Reference to the source spec: inline content, or a path plus a name."""

    name: str
    path: Optional[str] = None
    content: Optional[str] = None


@dataclass(frozen=True)
class PlanMetadata:
    total_blueprints: int
    total_layers: int
    estimated_minutes: int
    sequential_minutes: float
    parallel_minutes: float
    review_minutes: float
    parallelization_potential: float
    max_parallelism: int
    type_counts: tuple[tuple[str, int], ...] = ()
    inferred_edges: int = 0

    def count_for(self, bp_type: BlueprintType) -> int:
        return dict(self.type_counts).get(bp_type.value, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_blueprints": self.total_blueprints,
            "total_layers": self.total_layers,
            "estimated_minutes": self.estimated_minutes,
            "sequential_minutes": self.sequential_minutes,
            "parallel_minutes": self.parallel_minutes,
            "review_minutes": self.review_minutes,
            "parallelization_potential": self.parallelization_potential,
            "max_parallelism": self.max_parallelism,
            "type_counts": dict(self.type_counts),
            "inferred_edges": self.inferred_edges,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanMetadata:
        return cls(
            total_blueprints=int(data["total_blueprints"]),
            total_layers=int(data["total_layers"]),
            estimated_minutes=int(data["estimated_minutes"]),
            sequential_minutes=float(data.get("sequential_minutes", 0.0)),
            parallel_minutes=float(data.get("parallel_minutes", 0.0)),
            review_minutes=float(data.get("review_minutes", 0.0)),
            parallelization_potential=float(data["parallelization_potential"]),
            max_parallelism=int(data["max_parallelism"]),
            type_counts=tuple(sorted((k, int(v)) for k, v in data.get("type_counts", {}).items())),
            inferred_edges=int(data.get("inferred_edges", 0)),
        )


@dataclass(frozen=True)
class Plan:
    """Immutable output of planning for one spec revision.

    Discarded (never mutated) when PlanValidator reports it stale.
    """

    id: str
    created_at: str  # ISO 8601, UTC
    spec_name: str
    spec_path: Optional[str]
    spec_checksum: Optional[str]
    blueprints: tuple[BlueprintDescriptor, ...]
    layers: tuple[tuple[str, ...], ...]
    metadata: PlanMetadata

    def blueprint(self, blueprint_id: str) -> BlueprintDescriptor:
        for bp in self.blueprints:
            if bp.id == blueprint_id:
                return bp
        raise KeyError(blueprint_id)

    def layer_of(self, blueprint_id: str) -> int:
        for idx, layer in enumerate(self.layers):
            if blueprint_id in layer:
                return idx
        raise KeyError(blueprint_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "spec": {
                "name": self.spec_name,
                "path": self.spec_path,
                "checksum": self.spec_checksum,
            },
            "blueprints": [bp.to_dict() for bp in self.blueprints],
            "layers": [list(layer) for layer in self.layers],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Plan:
        spec = data.get("spec") or {}
        return cls(
            id=data["id"],
            created_at=data["created_at"],
            spec_name=spec.get("name", ""),
            spec_path=spec.get("path"),
            spec_checksum=spec.get("checksum"),
            blueprints=tuple(BlueprintDescriptor.from_dict(b) for b in data["blueprints"]),
            layers=tuple(tuple(layer) for layer in data["layers"]),
            metadata=PlanMetadata.from_dict(data["metadata"]),
        )


@dataclass(frozen=True)
class LockConflict:
    resource: str
    requested_mode: AccessMode
    held_mode: AccessMode
    holders: tuple[str, ...]

    def __str__(self) -> str:
        return (
            f"{self.resource} ({self.requested_mode.value} requested) "
            f"held in {self.held_mode.value} mode by {', '.join(self.holders)}"
        )


@dataclass(frozen=True)
class LockResult:
    success: bool
    conflicts: tuple[LockConflict, ...] = ()
    resources: tuple[str, ...] = ()  # granted resources on success


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    current_checksum: Optional[str] = None
    plan_checksum: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"valid": self.valid}
        if self.reason is not None:
            d["reason"] = self.reason
        if self.current_checksum is not None:
            d["current_checksum"] = self.current_checksum
        if self.plan_checksum is not None:
            d["plan_checksum"] = self.plan_checksum
        return d


@dataclass
class ExecutionResult:
    """Outcome of an executor run. Mutable: filled in layer by layer."""

    plan_id: str
    success: bool = False
    reason: Optional[str] = None
    layers_completed: int = 0
    completed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # blueprint id -> error
