"""
Dependency graph construction for blueprint scheduling.

Edges run predecessor -> successor ("predecessor finishes before successor
starts") and come from two sources:
  1. explicit ``depends_on`` declarations,
  2. resource conflicts between blueprints that are otherwise unordered.

The gates are strictly sequential: register -> finalize (dangling refs) ->
infer conflict edges -> detect cycles -> layer. A cyclic graph is never
partially layered.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Optional

from blueprint_scheduler.core.errors import (
    CycleDetectedError,
    DanglingDependencyError,
    DuplicateIdError,
)
from blueprint_scheduler.core.model import (
    AccessMode,
    BlueprintDescriptor,
    DependencyGraph,
    InferredEdge,
)

logger = logging.getLogger(__name__)


def conflicting_resources(a: BlueprintDescriptor, b: BlueprintDescriptor) -> list[str]:
    """Resources where at least one of the two blueprints writes.

    Read/read sharing never conflicts.
    """
    a_modes = a.modes_by_resource()
    out: list[str] = []
    for res, b_mode in b.modes_by_resource().items():
        a_mode = a_modes.get(res)
        if a_mode is None:
            continue
        if a_mode is AccessMode.WRITE or b_mode is AccessMode.WRITE:
            out.append(res)
    return sorted(out)


class DependencyGraphBuilder:
    """Builds an acyclic blueprint graph and splits it into execution layers.

    Blueprints may be registered in any order; references are resolved by
    ``finalize``. Registration order is the deterministic tie-break for
    inferred edges and the ordering of ids within a layer.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, BlueprintDescriptor] = {}
        self._index: dict[str, int] = {}
        self._preds: dict[str, set[str]] = {}
        self._succs: dict[str, set[str]] = {}
        self._inferred: list[InferredEdge] = []
        self._finalized = False

    def add_blueprint(self, blueprint: BlueprintDescriptor) -> None:
        if blueprint.id in self._nodes:
            raise DuplicateIdError.for_id(blueprint.id)
        self._index[blueprint.id] = len(self._nodes)
        self._nodes[blueprint.id] = blueprint
        self._preds.setdefault(blueprint.id, set())
        self._succs.setdefault(blueprint.id, set())
        self._finalized = False

    def finalize(self) -> None:
        """Resolve explicit dependencies into edges.

        Raises DanglingDependencyError listing every unresolved reference.
        """
        missing: list[tuple[str, str]] = []
        for bp in self._nodes.values():
            for dep in bp.depends_on:
                if dep not in self._nodes:
                    missing.append((bp.id, dep))
        if missing:
            raise DanglingDependencyError.for_missing(missing)

        for bp in self._nodes.values():
            for dep in bp.depends_on:
                self._add_edge(dep, bp.id)
        self._finalized = True

    def _add_edge(self, predecessor: str, successor: str) -> None:
        self._preds[successor].add(predecessor)
        self._succs[predecessor].add(successor)

    def _ordered(self, ids: Iterable[str]) -> list[str]:
        return sorted(ids, key=self._index.__getitem__)

    def _require_finalized(self) -> None:
        if not self._finalized:
            self.finalize()

    def _has_path(self, src: str, dst: str) -> bool:
        if src == dst:
            return True
        seen = {src}
        q: deque[str] = deque([src])
        while q:
            cur = q.popleft()
            for nxt in self._succs[cur]:
                if nxt == dst:
                    return True
                if nxt not in seen:
                    seen.add(nxt)
                    q.append(nxt)
        return False

    def detect_resource_conflicts(self) -> list[InferredEdge]:
        """Synthesize ordering edges for conflicting, otherwise unordered pairs.

        For every unordered pair with no path between them in either direction,
        a write/write or read/write overlap adds one edge from the
        earlier-registered blueprint to the later one. Pairs are checked in
        registration order and edges added earlier in the sweep count as paths
        for later pairs, so an edge may be added that a later edge makes
        transitively redundant.

        Returns the edges added by this call.
        """
        self._require_finalized()
        blueprints = list(self._nodes.values())
        added: list[InferredEdge] = []

        for i, a in enumerate(blueprints):
            for b in blueprints[i + 1 :]:
                resources = conflicting_resources(a, b)
                if not resources:
                    continue
                if self._has_path(a.id, b.id) or self._has_path(b.id, a.id):
                    continue
                self._add_edge(a.id, b.id)
                edge = InferredEdge(predecessor=a.id, successor=b.id, resources=tuple(resources))
                added.append(edge)
                logger.info(
                    "inferred dependency: %s depends on %s (conflicts: %s)",
                    b.id,
                    a.id,
                    ", ".join(resources),
                    extra={"event": "inferred_edge", "blueprint_id": b.id},
                )

        self._inferred.extend(added)
        return added

    def detect_cycles(self) -> list[list[str]]:
        """Return every cycle found by a depth-first sweep, or [] when acyclic.

        Each back-edge yields one cycle, reported as the node sequence from its
        start back to itself (``[a, b, a]``). Traversal uses an explicit stack,
        so deep graphs do not hit the interpreter recursion limit. O(V+E).
        """
        self._require_finalized()
        WHITE, GRAY, BLACK = 0, 1, 2
        state: dict[str, int] = {nid: WHITE for nid in self._nodes}
        cycles: list[list[str]] = []

        for root in self._nodes:
            if state[root] != WHITE:
                continue

            path: list[str] = [root]
            on_path: dict[str, int] = {root: 0}
            iters = [iter(self._ordered(self._succs[root]))]
            state[root] = GRAY

            while iters:
                nxt = next(iters[-1], None)
                if nxt is None:
                    done = path.pop()
                    del on_path[done]
                    state[done] = BLACK
                    iters.pop()
                    continue
                if state[nxt] == GRAY:
                    cycles.append(path[on_path[nxt] :] + [nxt])
                elif state[nxt] == WHITE:
                    state[nxt] = GRAY
                    on_path[nxt] = len(path)
                    path.append(nxt)
                    iters.append(iter(self._ordered(self._succs[nxt])))

        return cycles

    def generate_execution_layers(self) -> list[list[str]]:
        """Assign each blueprint to layer 1 + max(layer of predecessors).

        Roots sit at layer 0. Precondition: the graph is acyclic; if it is not,
        CycleDetectedError is raised rather than returning a partial layering.
        """
        self._require_finalized()
        in_degree = {nid: len(preds) for nid, preds in self._preds.items()}
        depth: dict[str, int] = {}
        q: deque[str] = deque(nid for nid in self._nodes if in_degree[nid] == 0)
        for nid in q:
            depth[nid] = 0

        while q:
            cur = q.popleft()
            for nxt in self._succs[cur]:
                depth[nxt] = max(depth.get(nxt, 0), depth[cur] + 1)
                in_degree[nxt] -= 1
                if in_degree[nxt] == 0:
                    q.append(nxt)

        if len(depth) != len(self._nodes) or any(in_degree.values()):
            raise CycleDetectedError.for_cycles(self.detect_cycles())

        layers: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for nid in self._nodes:
            layers[depth[nid]].append(nid)
        return layers

    def graph(self) -> DependencyGraph:
        """Immutable snapshot of the current graph."""
        self._require_finalized()
        return DependencyGraph(
            nodes=dict(self._nodes),
            predecessors={nid: tuple(self._ordered(p)) for nid, p in self._preds.items()},
            successors={nid: tuple(self._ordered(s)) for nid, s in self._succs.items()},
            inferred_edges=tuple(self._inferred),
        )

    def visualize(self, log: Optional[logging.Logger] = None) -> None:
        out = log or logger
        out.info("=== Dependency Graph ===")
        for nid, bp in self._nodes.items():
            out.info("[%s] %s (%s)", nid, bp.name, bp.type.value)
            preds = self._ordered(self._preds[nid])
            if preds:
                out.info("  depends on: %s", ", ".join(preds))
            if bp.resources:
                out.info(
                    "  resources: %s",
                    ", ".join(f"{r.resource}:{r.mode.value}" for r in bp.resources),
                )

    def visualize_layers(
        self,
        layers: list[list[str]],
        log: Optional[logging.Logger] = None,
    ) -> None:
        """Log the layer breakdown. Read-only; never touches graph state."""
        out = log or logger
        out.info("=== Execution Plan ===")
        for idx, layer in enumerate(layers):
            mode = "parallel" if len(layer) > 1 else "sequential"
            out.info("Layer %d (%d blueprints, %s):", idx, len(layer), mode)
            for nid in layer:
                bp = self._nodes.get(nid)
                out.info("  - %s %s", nid, bp.name if bp else "[unknown]")
        out.info("Layers: %d", len(layers))


def build_execution_layers(
    blueprints: Iterable[BlueprintDescriptor],
    log: Optional[logging.Logger] = None,
) -> tuple[DependencyGraph, list[list[str]]]:
    """Run the full gate sequence and return (graph, layers).

    Raises DuplicateIdError, DanglingDependencyError or CycleDetectedError;
    layering is never attempted on a cyclic graph.
    """
    builder = DependencyGraphBuilder()
    for bp in blueprints:
        builder.add_blueprint(bp)
    builder.finalize()
    builder.detect_resource_conflicts()

    cycles = builder.detect_cycles()
    if cycles:
        raise CycleDetectedError.for_cycles(cycles)

    layers = builder.generate_execution_layers()
    if log is not None:
        builder.visualize_layers(layers, log)
    return builder.graph(), layers
