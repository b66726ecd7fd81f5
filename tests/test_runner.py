import threading
import time

from blueprint_scheduler.core.config.scheduler_config import merged_config
from blueprint_scheduler.core.execute.runner import LayerExecutor, batches
from blueprint_scheduler.core.io.plan_store import load_checkpoint
from blueprint_scheduler.core.locks.lock_manager import ResourceLockManager
from blueprint_scheduler.core.model import BlueprintDescriptor, SpecRef
from blueprint_scheduler.core.planner.plan_builder import create_plan


def bp(bid, deps=(), writes=()):
    return BlueprintDescriptor(
        id=bid,
        name=bid,
        type="service",
        depends_on=tuple(deps),
        resources=tuple((r, "write") for r in writes),
    )


def _plan(blueprints, content="spec"):
    return create_plan(SpecRef(name="spec", content=content), blueprints)


def _tracking(managers):
    def factory():
        m = ResourceLockManager()
        managers.append(m)
        return m

    return factory


class Recorder:
    def __init__(self, fail=(), delay=0.005):
        self.fail = set(fail)
        self.delay = delay
        self.events = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, blueprint):
        with self._lock:
            self.events.append(("start", blueprint.id))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
            self.events.append(("end", blueprint.id))
        if blueprint.id in self.fail:
            raise RuntimeError(f"{blueprint.id} exploded")

    def started(self):
        return [bid for kind, bid in self.events if kind == "start"]


def test_batches_slice_wide_layers():
    assert batches(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert batches([], 5) == []


def test_layers_complete_before_next_layer_starts():
    plan = _plan([bp("a"), bp("b"), bp("c", deps=["a", "b"]), bp("d", deps=["c"])])
    worker = Recorder()
    result = LayerExecutor().execute_plan(plan, worker)

    assert result.success
    assert result.layers_completed == 3
    assert sorted(result.completed) == ["a", "b", "c", "d"]
    positions = {(kind, bid): i for i, (kind, bid) in enumerate(worker.events)}
    assert positions[("end", "a")] < positions[("start", "c")]
    assert positions[("end", "b")] < positions[("start", "c")]
    assert positions[("end", "c")] < positions[("start", "d")]


def test_concurrency_bounded_by_max_concurrent():
    plan = _plan([bp(f"w{i}") for i in range(7)])
    worker = Recorder(delay=0.02)
    managers = []
    executor = LayerExecutor(merged_config({"max_concurrent": 3}), lock_manager_factory=_tracking(managers))
    result = executor.execute_plan(plan, worker)

    assert result.success
    assert 1 <= worker.max_active <= 3
    assert managers[0].status() == []


def test_fail_fast_lets_siblings_finish_and_stops():
    plan = _plan([bp("a"), bp("b"), bp("c", deps=["a", "b"])])
    worker = Recorder(fail={"a"})
    managers = []
    executor = LayerExecutor(lock_manager_factory=_tracking(managers))
    result = executor.execute_plan(plan, worker)

    assert not result.success
    assert set(result.failed) == {"a"}
    assert "a exploded" in result.failed["a"]
    assert result.completed == ["b"]
    assert "c" not in worker.started()
    assert result.reason.startswith("layer 0 failed")
    # locks were released for the failing blueprint as well
    assert managers[0].status() == []


def test_failure_stops_undispatched_sub_batches():
    plan = _plan([bp(f"w{i}") for i in range(4)])
    worker = Recorder(fail={"w0"})
    result = LayerExecutor(merged_config({"max_concurrent": 2})).execute_plan(plan, worker)

    assert not result.success
    assert sorted(worker.started()) == ["w0", "w1"]


def test_stale_plan_is_not_executed():
    plan = _plan([bp("a")], content="v1")
    worker = Recorder()
    result = LayerExecutor().execute_plan(plan, worker, spec_content="v2")

    assert not result.success
    assert "stale" in result.reason
    assert worker.events == []


def test_lock_contention_times_out_after_retries():
    plan = _plan([bp("a", writes=["x"])])
    sleeps = []

    def contended():
        # Something outside the plan holds x for the whole run.
        m = ResourceLockManager()
        m.acquire_locks(bp("intruder", writes=["x"]))
        return m

    executor = LayerExecutor(
        merged_config({"lock_retry_attempts": 3, "lock_retry_seconds": 0.5}),
        lock_manager_factory=contended,
        sleep=sleeps.append,
    )

    def worker(blueprint):
        raise AssertionError("worker must not run without its locks")

    result = executor.execute_plan(plan, worker)

    assert not result.success
    assert "timed out waiting for resource locks" in result.failed["a"]
    assert "intruder" in result.failed["a"]
    assert sleeps == [0.5, 0.5, 0.5]


def test_checkpoint_resume_skips_completed_layers(tmp_path):
    plan = _plan([bp("a"), bp("b", deps=["a"]), bp("c", deps=["b"])])

    first = LayerExecutor().execute_plan(plan, Recorder(fail={"b"}), checkpoint_dir=tmp_path)
    assert not first.success
    assert load_checkpoint(tmp_path, plan.id)["current_layer"] == 0

    worker = Recorder()
    second = LayerExecutor().execute_plan(plan, worker, checkpoint_dir=tmp_path)
    assert second.success
    assert worker.started() == ["b", "c"]
    assert second.completed == ["a", "b", "c"]
    assert load_checkpoint(tmp_path, plan.id) is None


def test_resume_reruns_whole_failed_layer_without_duplicates(tmp_path):
    plan = _plan([bp("a"), bp("b", deps=["a"]), bp("c", deps=["a"])])

    first = LayerExecutor().execute_plan(plan, Recorder(fail={"b"}), checkpoint_dir=tmp_path)
    assert not first.success
    assert "c" in first.completed
    checkpoint = load_checkpoint(tmp_path, plan.id)
    assert checkpoint["current_layer"] == 0
    assert checkpoint["completed"] == ["a"]

    worker = Recorder()
    second = LayerExecutor().execute_plan(plan, worker, checkpoint_dir=tmp_path)
    assert second.success
    assert sorted(worker.started()) == ["b", "c"]
    assert second.completed[0] == "a"
    assert sorted(second.completed) == ["a", "b", "c"]


def test_each_run_gets_its_own_lock_manager():
    plan = _plan([bp("a", writes=["x"])])
    managers = []
    executor = LayerExecutor(lock_manager_factory=_tracking(managers))
    executor.execute_plan(plan, Recorder())
    executor.execute_plan(plan, Recorder())

    assert len(managers) == 2
    assert managers[0] is not managers[1]
    assert [(e.action, e.blueprint_id) for e in managers[0].history()] == [("acquired", "a"), ("released", "a")]
