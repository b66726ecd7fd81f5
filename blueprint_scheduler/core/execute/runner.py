"""
Layer executor: dispatches a Plan's blueprints to a caller-supplied worker.

Layers run strictly in order. Within a layer, blueprints are dispatched in
sub-batches of at most ``max_concurrent`` on a thread pool; every member of
layer N has finished and released its locks before layer N+1 starts.

Failure policy is fail-fast: siblings already dispatched in the failing layer
finish and release cleanly, no further sub-batch of that layer is started,
and the run stops before the next layer. The worker performs the actual work
and signals failure by raising.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Optional, Sequence

from blueprint_scheduler.core.config.scheduler_config import SchedulerConfig
from blueprint_scheduler.core.io.plan_store import clear_checkpoint, load_checkpoint, save_checkpoint
from blueprint_scheduler.core.locks.lock_manager import ResourceLockManager
from blueprint_scheduler.core.model import BlueprintDescriptor, ExecutionResult, LockResult, Plan
from blueprint_scheduler.core.validate.validate_plan import validate_plan

logger = logging.getLogger(__name__)

WorkerFn = Callable[[BlueprintDescriptor], object]


class LockTimeoutError(RuntimeError):
    def __init__(self, blueprint_id: str, result: LockResult):
        self.blueprint_id = blueprint_id
        self.conflicts = result.conflicts
        described = "; ".join(str(c) for c in result.conflicts)
        super().__init__(f"timed out waiting for resource locks for {blueprint_id}: {described}")


def batches(layer: Sequence[str], size: int) -> list[list[str]]:
    size = max(1, size)
    return [list(layer[i : i + size]) for i in range(0, len(layer), size)]


class LayerExecutor:
    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        *,
        lock_manager_factory: Optional[Callable[[], ResourceLockManager]] = None,
        sleep: Callable[[float], None] = time.sleep,
        check_staleness: bool = True,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._sleep = sleep
        self._check_staleness = check_staleness
        self._log = log or logger
        self._lock_manager_factory = lock_manager_factory or self._default_lock_manager

    def _default_lock_manager(self) -> ResourceLockManager:
        return ResourceLockManager(max_lock_seconds=self.config.max_lock_seconds)

    def execute_plan(
        self,
        plan: Plan,
        worker: WorkerFn,
        *,
        checkpoint_dir: Optional[str | Path] = None,
        spec_content: Optional[str] = None,
    ) -> ExecutionResult:
        result = ExecutionResult(plan_id=plan.id)

        if self._check_staleness:
            validation = validate_plan(plan, spec_content)
            if not validation.valid:
                result.reason = f"plan is stale: {validation.reason}; regenerate the plan"
                self._log.warning(result.reason, extra={"event": "plan_stale", "plan_id": plan.id})
                return result

        start_layer = 0
        if checkpoint_dir is not None:
            checkpoint = load_checkpoint(checkpoint_dir, plan.id)
            if checkpoint is not None:
                start_layer = int(checkpoint["current_layer"]) + 1
                result.completed.extend(checkpoint.get("completed", []))
                result.layers_completed = start_layer
                self._log.info(
                    "resuming plan %s at layer %d/%d",
                    plan.id,
                    start_layer,
                    len(plan.layers),
                    extra={"event": "plan_resumed", "plan_id": plan.id},
                )

        # Fresh lock table per run; never shared between runs.
        locks = self._lock_manager_factory()

        for idx in range(start_layer, len(plan.layers)):
            layer = plan.layers[idx]
            self._log.info(
                "layer %d/%d: %d blueprints",
                idx + 1,
                len(plan.layers),
                len(layer),
                extra={"event": "layer_started", "plan_id": plan.id, "layer": idx},
            )
            failed = self._execute_layer(plan, layer, worker, locks, result)
            if failed:
                result.reason = f"layer {idx} failed: {', '.join(sorted(failed))}"
                # The checkpoint written after the previous layer stays as is.
                self._log.error(result.reason, extra={"event": "layer_failed", "plan_id": plan.id, "layer": idx})
                return result

            result.layers_completed = idx + 1
            if checkpoint_dir is not None:
                save_checkpoint(checkpoint_dir, plan.id, idx, result.completed)

        if checkpoint_dir is not None:
            clear_checkpoint(checkpoint_dir, plan.id)
        result.success = True
        return result

    def _execute_layer(
        self,
        plan: Plan,
        layer: Sequence[str],
        worker: WorkerFn,
        locks: ResourceLockManager,
        result: ExecutionResult,
    ) -> list[str]:
        failed: list[str] = []
        for batch in batches(layer, self.config.max_concurrent):
            with ThreadPoolExecutor(max_workers=len(batch)) as ex:
                futures = {
                    ex.submit(self._run_blueprint, plan.blueprint(bid), worker, locks): bid
                    for bid in batch
                }
                for f in as_completed(futures):
                    bid = futures[f]
                    try:
                        f.result()
                    except Exception as e:
                        result.failed[bid] = str(e)
                        failed.append(bid)
                        self._log.error(
                            "blueprint %s failed: %s",
                            bid,
                            e,
                            extra={"event": "blueprint_failed", "blueprint_id": bid},
                        )
                    else:
                        result.completed.append(bid)
            if failed:
                # Siblings in this batch have finished; do not dispatch more.
                break
        return failed

    def _acquire(self, blueprint: BlueprintDescriptor, locks: ResourceLockManager) -> None:
        attempt = locks.acquire_locks(blueprint)
        retries = 0
        while not attempt.success:
            if retries >= self.config.lock_retry_attempts:
                raise LockTimeoutError(blueprint.id, attempt)
            self._sleep(self.config.lock_retry_seconds)
            retries += 1
            attempt = locks.acquire_locks(blueprint)

    def _run_blueprint(
        self,
        blueprint: BlueprintDescriptor,
        worker: WorkerFn,
        locks: ResourceLockManager,
    ) -> None:
        self._acquire(blueprint, locks)
        try:
            worker(blueprint)
        finally:
            locks.release_locks(blueprint.id)
