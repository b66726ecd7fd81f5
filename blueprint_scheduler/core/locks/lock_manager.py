"""
Resource lock manager: runtime safety net beside the static graph.

Grants or denies a blueprint's whole declared footprint in one atomic step:
either every lock is granted or none is, so no blueprint ever waits while
holding a partial set. Contention is returned as data; retry policy belongs
to the caller.

One manager is created per execution run and owned by the executor. All
mutation of the lock table happens under a single instance mutex.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from blueprint_scheduler.core.model import (
    AccessMode,
    BlueprintDescriptor,
    LockConflict,
    LockResult,
)

logger = logging.getLogger(__name__)


@dataclass
class _ResourceLock:
    """Mutable per-resource state. Only touched while the manager mutex is held."""

    mode: AccessMode
    holders: dict[str, float] = field(default_factory=dict)  # blueprint id -> acquired at


@dataclass(frozen=True)
class LockEvent:
    action: str  # "acquired" | "released" | "expired"
    resource: str
    blueprint_id: str
    at: float


@dataclass(frozen=True)
class HeldLock:
    resource: str
    mode: AccessMode
    holders: tuple[str, ...]
    age_seconds: float


class ResourceLockManager:
    def __init__(
        self,
        *,
        max_lock_seconds: Optional[float] = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._mutex = threading.Lock()
        self._locks: dict[str, _ResourceLock] = {}
        self._history: list[LockEvent] = []
        self._max_lock_seconds = max_lock_seconds
        self._clock = clock

    def acquire_locks(self, blueprint: BlueprintDescriptor) -> LockResult:
        """Atomically acquire every declared resource of ``blueprint``.

        A write request conflicts with any other holder; a read request
        conflicts only with another writer. Locks the blueprint already holds
        never conflict with itself, and a sole reader may upgrade to write.
        """
        requested = sorted(blueprint.resources, key=lambda r: r.resource)

        with self._mutex:
            conflicts: list[LockConflict] = []
            for req in requested:
                held = self._locks.get(req.resource)
                if held is None:
                    continue
                others = tuple(sorted(h for h in held.holders if h != blueprint.id))
                if not others:
                    continue
                if req.mode is AccessMode.WRITE or held.mode is AccessMode.WRITE:
                    conflicts.append(
                        LockConflict(
                            resource=req.resource,
                            requested_mode=req.mode,
                            held_mode=held.mode,
                            holders=others,
                        )
                    )

            if conflicts:
                logger.debug(
                    "lock conflict for %s: %s",
                    blueprint.id,
                    "; ".join(str(c) for c in conflicts),
                    extra={"event": "lock_conflict", "blueprint_id": blueprint.id},
                )
                return LockResult(success=False, conflicts=tuple(conflicts))

            now = self._clock()
            for req in requested:
                held = self._locks.get(req.resource)
                if held is None:
                    held = self._locks[req.resource] = _ResourceLock(mode=req.mode)
                elif req.mode is AccessMode.WRITE:
                    held.mode = AccessMode.WRITE
                held.holders.setdefault(blueprint.id, now)
                self._history.append(
                    LockEvent(action="acquired", resource=req.resource, blueprint_id=blueprint.id, at=now)
                )

        granted = tuple(r.resource for r in requested)
        logger.debug(
            "acquired %d locks for %s",
            len(granted),
            blueprint.id,
            extra={"event": "locks_acquired", "blueprint_id": blueprint.id},
        )
        return LockResult(success=True, resources=granted)

    def release_locks(self, blueprint_id: str) -> list[str]:
        """Release everything held by ``blueprint_id``. Idempotent."""
        with self._mutex:
            released = self._release_locked(blueprint_id, action="released")
        if released:
            logger.debug(
                "released %d locks from %s",
                len(released),
                blueprint_id,
                extra={"event": "locks_released", "blueprint_id": blueprint_id},
            )
        return released

    def _release_locked(self, blueprint_id: str, *, action: str, only: Optional[set[str]] = None) -> list[str]:
        now = self._clock()
        released: list[str] = []
        for resource in sorted(self._locks):
            if only is not None and resource not in only:
                continue
            held = self._locks[resource]
            if blueprint_id not in held.holders:
                continue
            del held.holders[blueprint_id]
            released.append(resource)
            self._history.append(
                LockEvent(action=action, resource=resource, blueprint_id=blueprint_id, at=now)
            )
            if not held.holders:
                del self._locks[resource]
        return released

    def expire_stale_locks(self) -> dict[str, list[str]]:
        """Release holds older than ``max_lock_seconds``.

        Returns blueprint id -> expired resources. Expiry only happens through
        this explicit sweep, never inside ``acquire_locks``.
        """
        if self._max_lock_seconds is None:
            return {}
        expired: dict[str, list[str]] = {}
        with self._mutex:
            now = self._clock()
            stale: dict[str, set[str]] = {}
            for resource, held in self._locks.items():
                for holder, acquired_at in held.holders.items():
                    if now - acquired_at > self._max_lock_seconds:
                        stale.setdefault(holder, set()).add(resource)
            for holder in sorted(stale):
                expired[holder] = self._release_locked(holder, action="expired", only=stale[holder])
        for holder, resources in expired.items():
            logger.warning(
                "expired %d stale locks held by %s: %s",
                len(resources),
                holder,
                ", ".join(resources),
                extra={"event": "locks_expired", "blueprint_id": holder},
            )
        return expired

    def held_by(self, blueprint_id: str) -> list[str]:
        with self._mutex:
            return sorted(r for r, held in self._locks.items() if blueprint_id in held.holders)

    def status(self) -> list[HeldLock]:
        with self._mutex:
            now = self._clock()
            return [
                HeldLock(
                    resource=resource,
                    mode=held.mode,
                    holders=tuple(sorted(held.holders)),
                    age_seconds=now - min(held.holders.values()),
                )
                for resource, held in sorted(self._locks.items())
            ]

    def history(self) -> list[LockEvent]:
        with self._mutex:
            return list(self._history)

    def visualize(self, log: Optional[logging.Logger] = None) -> None:
        out = log or logger
        held = self.status()
        out.info("=== Resource Locks ===")
        if not held:
            out.info("No active locks")
            return
        for lock in held:
            out.info(
                "  %s [%s] held by %s (%.0fs)",
                lock.resource,
                lock.mode.value,
                ", ".join(lock.holders),
                lock.age_seconds,
            )
