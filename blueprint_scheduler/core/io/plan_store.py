"""Plan and checkpoint persistence.

A plan is written once, in full, as ``<plan-id>.json`` and read back in full
for revalidation; there is no partial or incremental format. Checkpoints are
a separate, overwritable record of executor progress.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from blueprint_scheduler.core.errors import PlanLoadError, SchedulerError
from blueprint_scheduler.core.model import Plan

logger = logging.getLogger(__name__)


def plan_path(plan_dir: str | Path, plan_id: str) -> Path:
    return Path(plan_dir) / f"{plan_id}.json"


def save_plan(plan: Plan, plan_dir: str | Path) -> Path:
    p = plan_path(plan_dir, plan.id)
    p.parent.mkdir(parents=True, exist_ok=True)
    try:
        with p.open("x", encoding="utf-8") as f:
            json.dump(plan.to_dict(), f, indent=2, sort_keys=True)
    except FileExistsError as e:
        raise PlanLoadError(
            code="E_PLAN_EXISTS",
            message=f"plan {plan.id} is already persisted; plans are never overwritten",
            file=str(p),
        ) from e
    logger.info("saved plan %s to %s", plan.id, p, extra={"event": "plan_saved", "plan_id": plan.id})
    return p


def load_plan(path: str | Path) -> Plan:
    p = Path(path)
    if not p.exists():
        raise PlanLoadError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(p))
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PlanLoadError(code="E_JSON_PARSE", message=str(e), file=str(p)) from e
    if not isinstance(data, dict):
        raise PlanLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be an object",
            file=str(p),
        )
    try:
        return Plan.from_dict(data)
    except (KeyError, TypeError, ValueError, SchedulerError) as e:
        raise PlanLoadError(
            code="E_INVALID_PLAN",
            message=f"plan record is incomplete or malformed: {e}",
            file=str(p),
        ) from e


def _checkpoint_path(checkpoint_dir: str | Path, plan_id: str) -> Path:
    return Path(checkpoint_dir) / f"checkpoint-{plan_id}.json"


def save_checkpoint(
    checkpoint_dir: str | Path,
    plan_id: str,
    current_layer: int,
    completed: list[str],
) -> Path:
    p = _checkpoint_path(checkpoint_dir, plan_id)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "plan_id": plan_id,
        "current_layer": current_layer,
        "completed": list(completed),
        "saved_at": datetime.now(timezone.utc).isoformat(),
    }
    p.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return p


def load_checkpoint(checkpoint_dir: str | Path, plan_id: str) -> Optional[dict[str, Any]]:
    p = _checkpoint_path(checkpoint_dir, plan_id)
    if not p.exists():
        return None
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("ignoring unreadable checkpoint %s", p)
        return None
    if not isinstance(data, dict) or data.get("plan_id") != plan_id:
        logger.warning("ignoring checkpoint %s recorded for another plan", p)
        return None
    return data


def clear_checkpoint(checkpoint_dir: str | Path, plan_id: str) -> None:
    _checkpoint_path(checkpoint_dir, plan_id).unlink(missing_ok=True)
