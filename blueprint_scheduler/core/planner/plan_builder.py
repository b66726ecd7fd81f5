"""
Execution planner: turns a validated graph and its layers into a Plan.

Purely algorithmic and synchronous. Time estimates use a fixed per-type
table (overridable per blueprint and via config) plus a review overhead that
is paid once per blueprint regardless of parallelism.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence

from blueprint_scheduler.core.config.scheduler_config import SchedulerConfig
from blueprint_scheduler.core.graph.build_graph import build_execution_layers
from blueprint_scheduler.core.model import (
    BlueprintDescriptor,
    BlueprintType,
    DependencyGraph,
    Plan,
    PlanMetadata,
    SpecRef,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeEstimate:
    sequential_minutes: float  # reference only
    parallel_minutes: float
    review_minutes: float
    total_minutes: int


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def blueprint_minutes(bp: BlueprintDescriptor, config: SchedulerConfig) -> float:
    if bp.estimated_minutes is not None:
        return bp.estimated_minutes
    return config.base_minutes(bp.type)


def calculate_estimated_time(
    blueprints: Sequence[BlueprintDescriptor],
    layers: Sequence[Sequence[str]],
    config: Optional[SchedulerConfig] = None,
) -> TimeEstimate:
    config = config or SchedulerConfig()
    by_id = {bp.id: bp for bp in blueprints}

    sequential = sum(blueprint_minutes(bp, config) for bp in blueprints)

    parallel = 0.0
    for layer in layers:
        if not layer:
            continue
        # A layer takes as long as its slowest member.
        parallel += max(blueprint_minutes(by_id[bid], config) for bid in layer)

    review = len(blueprints) * config.review_minutes
    return TimeEstimate(
        sequential_minutes=sequential,
        parallel_minutes=parallel,
        review_minutes=review,
        total_minutes=_round_half_up(parallel + review),
    )


def calculate_parallelization_potential(layers: Sequence[Sequence[str]]) -> float:
    """Share of blueprints that run beside another one in their layer.

    0.0 when every layer has width 1; approaches 1.0 as layers widen.
    """
    total = sum(len(layer) for layer in layers)
    if total == 0:
        return 0.0
    parallel_slots = sum(max(0, len(layer) - 1) for layer in layers)
    return parallel_slots / total


def read_spec_bytes(spec: SpecRef) -> bytes:
    """Current spec bytes: the file when a path is given, else inline content.

    The file is read as-is, so line endings and encoding count toward the
    checksum. Raises OSError when a path is given but cannot be read and no
    inline content exists to fall back on.
    """
    if spec.path:
        try:
            return Path(spec.path).read_bytes()
        except OSError:
            if spec.content is None:
                raise
            logger.warning("could not read spec file %s; using inline content", spec.path)
    return (spec.content or "").encode("utf-8")


def checksum_bytes(data: bytes, length: int = 16) -> str:
    # Staleness fingerprint only; not a security boundary.
    return hashlib.sha256(data).hexdigest()[:length]


def checksum_text(content: str, length: int = 16) -> str:
    return checksum_bytes(content.encode("utf-8"), length)


def calculate_spec_checksum(spec: SpecRef, length: int = 16) -> str:
    return checksum_bytes(read_spec_bytes(spec), length)


def _new_plan_id() -> str:
    return f"plan-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def assemble_plan(
    spec: SpecRef,
    blueprints: Sequence[BlueprintDescriptor],
    layers: Sequence[Sequence[str]],
    *,
    graph: Optional[DependencyGraph] = None,
    config: Optional[SchedulerConfig] = None,
    spec_checksum: Optional[str] = None,
) -> Plan:
    config = config or SchedulerConfig()
    estimate = calculate_estimated_time(blueprints, layers, config)
    counts = Counter(bp.type for bp in blueprints)

    if spec_checksum is None:
        spec_checksum = calculate_spec_checksum(spec, config.checksum_length)

    metadata = PlanMetadata(
        total_blueprints=len(blueprints),
        total_layers=len(layers),
        estimated_minutes=estimate.total_minutes,
        sequential_minutes=estimate.sequential_minutes,
        parallel_minutes=estimate.parallel_minutes,
        review_minutes=estimate.review_minutes,
        parallelization_potential=calculate_parallelization_potential(layers),
        max_parallelism=max((len(layer) for layer in layers), default=0),
        type_counts=tuple(sorted((t.value, counts.get(t, 0)) for t in BlueprintType)),
        inferred_edges=len(graph.inferred_edges) if graph is not None else 0,
    )

    return Plan(
        id=_new_plan_id(),
        created_at=datetime.now(timezone.utc).isoformat(),
        spec_name=spec.name,
        spec_path=spec.path,
        spec_checksum=spec_checksum,
        blueprints=tuple(blueprints),
        layers=tuple(tuple(layer) for layer in layers),
        metadata=metadata,
    )


def create_plan(
    spec: SpecRef,
    blueprints: Iterable[BlueprintDescriptor],
    config: Optional[SchedulerConfig] = None,
    log: Optional[logging.Logger] = None,
) -> Plan:
    """Build the graph, layer it, and assemble the Plan.

    Construction and cycle errors propagate unchanged; nothing is partially
    planned.
    """
    blueprints = list(blueprints)
    graph, layers = build_execution_layers(blueprints, log)
    plan = assemble_plan(spec, blueprints, layers, graph=graph, config=config)

    out = log or logger
    md = plan.metadata
    out.info(
        "plan %s: %d blueprints, %d layers, ~%d min, %.0f%% parallel, max %d concurrent",
        plan.id,
        md.total_blueprints,
        md.total_layers,
        md.estimated_minutes,
        md.parallelization_potential * 100,
        md.max_parallelism,
        extra={"event": "plan_created", "plan_id": plan.id},
    )
    return plan
