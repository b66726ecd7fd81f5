import json

import pytest

from blueprint_scheduler.core.errors import PlanLoadError
from blueprint_scheduler.core.io.plan_store import (
    clear_checkpoint,
    load_checkpoint,
    load_plan,
    save_checkpoint,
    save_plan,
)
from blueprint_scheduler.core.model import BlueprintDescriptor, SpecRef
from blueprint_scheduler.core.planner.plan_builder import create_plan


def _plan(tmp_path):
    spec = tmp_path / "spec.md"
    spec.write_text("spec", encoding="utf-8")
    return create_plan(
        SpecRef(name="spec", path=str(spec)),
        [
            BlueprintDescriptor(id="a", name="A", type="database", resources=(("t", "write"),)),
            BlueprintDescriptor(id="b", name="B", type="api", depends_on=("a",), estimated_minutes=3),
        ],
    )


def test_saved_plan_reads_back_in_full(tmp_path):
    plan = _plan(tmp_path)
    path = save_plan(plan, tmp_path / "plans")
    assert path.name == f"{plan.id}.json"
    assert load_plan(path) == plan


def test_plans_are_written_once(tmp_path):
    plan = _plan(tmp_path)
    save_plan(plan, tmp_path)
    with pytest.raises(PlanLoadError) as ei:
        save_plan(plan, tmp_path)
    assert ei.value.code == "E_PLAN_EXISTS"


def test_malformed_plan_record(tmp_path):
    p = tmp_path / "plan.json"
    p.write_text('{"id": "plan-1"}', encoding="utf-8")
    with pytest.raises(PlanLoadError) as ei:
        load_plan(p)
    assert ei.value.code == "E_INVALID_PLAN"


def test_plan_with_unknown_blueprint_type_is_rejected(tmp_path):
    path = save_plan(_plan(tmp_path), tmp_path / "plans")
    data = json.loads(path.read_text(encoding="utf-8"))
    data["blueprints"][0]["type"] = "bogus"
    path.write_text(json.dumps(data), encoding="utf-8")
    with pytest.raises(PlanLoadError) as ei:
        load_plan(path)
    assert ei.value.code == "E_INVALID_PLAN"
    assert "bogus" in ei.value.message


def test_non_utf8_plan_file_is_a_parse_error(tmp_path):
    p = tmp_path / "plan.json"
    p.write_bytes(b"\xff\xfe{}")
    with pytest.raises(PlanLoadError) as ei:
        load_plan(p)
    assert ei.value.code == "E_JSON_PARSE"


def test_checkpoint_lifecycle(tmp_path):
    assert load_checkpoint(tmp_path, "plan-1") is None
    save_checkpoint(tmp_path, "plan-1", 0, ["a"])
    cp = load_checkpoint(tmp_path, "plan-1")
    assert cp["current_layer"] == 0
    assert cp["completed"] == ["a"]
    clear_checkpoint(tmp_path, "plan-1")
    clear_checkpoint(tmp_path, "plan-1")
    assert load_checkpoint(tmp_path, "plan-1") is None
