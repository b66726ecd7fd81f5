import pytest

from blueprint_scheduler.core.config.scheduler_config import merged_config
from blueprint_scheduler.core.errors import CycleDetectedError
from blueprint_scheduler.core.model import BlueprintDescriptor, BlueprintType, SpecRef
from blueprint_scheduler.core.planner.plan_builder import (
    assemble_plan,
    calculate_estimated_time,
    calculate_parallelization_potential,
    calculate_spec_checksum,
    create_plan,
)


def bp(bid, type="other", deps=(), minutes=None, writes=()):
    return BlueprintDescriptor(
        id=bid,
        name=bid,
        type=type,
        depends_on=tuple(deps),
        resources=tuple((r, "write") for r in writes),
        estimated_minutes=minutes,
    )


def test_estimate_uses_layer_max_plus_review_overhead():
    blueprints = [bp("db", "database"), bp("ui", "ui"), bp("api", "api", deps=["db"])]
    layers = [["db", "ui"], ["api"]]
    est = calculate_estimated_time(blueprints, layers)
    assert est.sequential_minutes == 8 + 10 + 7
    assert est.parallel_minutes == 10 + 7
    assert est.review_minutes == 6
    assert est.total_minutes == 23


def test_estimate_override_wins_and_rounds_half_up():
    blueprints = [bp("a", "test", minutes=2.5), bp("b", "test")]
    est = calculate_estimated_time(blueprints, [["a"], ["b"]])
    assert est.parallel_minutes == 7.5
    # 7.5 + 4 review = 11.5 -> 12
    assert est.total_minutes == 12


def test_estimate_respects_configured_type_minutes():
    config = merged_config({"type_minutes": {BlueprintType.UI: 20}, "review_minutes": 0})
    est = calculate_estimated_time([bp("u", "ui")], [["u"]], config)
    assert est.total_minutes == 20


def test_parallelization_zero_for_sequential_plan():
    assert calculate_parallelization_potential([["a"], ["b"], ["c"]]) == 0.0
    assert calculate_parallelization_potential([]) == 0.0


def test_parallelization_positive_when_any_layer_is_wide():
    assert calculate_parallelization_potential([["a"], ["b", "c"]]) > 0
    assert calculate_parallelization_potential([["a", "b", "c", "d"]]) == pytest.approx(0.75)


def test_scenario_b_plan():
    plan = create_plan(
        SpecRef(name="feature", content="spec text"),
        [bp("bp1"), bp("bp2"), bp("bp3", deps=["bp1", "bp2"])],
    )
    assert plan.layers == (("bp1", "bp2"), ("bp3",))
    assert plan.metadata.parallelization_potential == pytest.approx(1 / 3)
    assert plan.metadata.max_parallelism == 2
    assert plan.metadata.estimated_minutes == 7 + 7 + 3 * 2
    assert plan.metadata.count_for(BlueprintType.OTHER) == 3
    assert plan.metadata.count_for(BlueprintType.UI) == 0


def test_checksum_is_short_stable_and_content_addressed(tmp_path):
    spec_file = tmp_path / "spec.md"
    spec_file.write_text("# Feature\n", encoding="utf-8")

    by_path = calculate_spec_checksum(SpecRef(name="f", path=str(spec_file)))
    by_content = calculate_spec_checksum(SpecRef(name="f", content="# Feature\n"))
    assert by_path == by_content
    assert len(by_path) == 16
    assert calculate_spec_checksum(SpecRef(name="f", content="# Feature!\n")) != by_path
    assert len(calculate_spec_checksum(SpecRef(name="f", content=""), length=8)) == 8


def test_checksum_falls_back_to_inline_content(tmp_path):
    missing = tmp_path / "gone.md"
    with_fallback = SpecRef(name="f", path=str(missing), content="inline")
    assert calculate_spec_checksum(with_fallback) == calculate_spec_checksum(
        SpecRef(name="f", content="inline")
    )
    with pytest.raises(OSError):
        calculate_spec_checksum(SpecRef(name="f", path=str(missing)))


def test_assemble_plan_packages_everything():
    blueprints = [bp("a", "database", writes=["t"]), bp("b", "api", writes=["t"])]
    plan = assemble_plan(SpecRef(name="s", content="x"), blueprints, [["a"], ["b"]])
    assert plan.id.startswith("plan-")
    assert plan.spec_name == "s"
    assert plan.spec_path is None
    assert plan.spec_checksum == calculate_spec_checksum(SpecRef(name="s", content="x"))
    assert plan.blueprints == tuple(blueprints)
    assert plan.metadata.total_layers == 2
    assert dict(plan.metadata.type_counts) == {
        "database": 1,
        "api": 1,
        "service": 0,
        "ui": 0,
        "test": 0,
        "other": 0,
    }
    assert plan.layer_of("b") == 1


def test_plan_ids_are_unique():
    spec = SpecRef(name="s", content="x")
    ids = {assemble_plan(spec, [bp("a")], [["a"]]).id for _ in range(20)}
    assert len(ids) == 20


def test_create_plan_counts_inferred_edges():
    plan = create_plan(
        SpecRef(name="s", content="x"),
        [bp("bp1", writes=["fileX"]), bp("bp2", writes=["fileX"])],
    )
    assert plan.layers == (("bp1",), ("bp2",))
    assert plan.metadata.inferred_edges == 1


def test_create_plan_never_partially_plans_a_cycle():
    with pytest.raises(CycleDetectedError):
        create_plan(
            SpecRef(name="s", content="x"),
            [bp("bp1", deps=["bp2"]), bp("bp2", deps=["bp1"])],
        )


def test_plan_is_immutable():
    plan = create_plan(SpecRef(name="s", content="x"), [bp("a")])
    with pytest.raises(AttributeError):
        plan.layers = ()  # type: ignore[misc]
