from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from blueprint_scheduler.core.config.scheduler_config import load_and_merge
from blueprint_scheduler.core.errors import (
    BlueprintLoadError,
    ConfigError,
    CycleDetectedError,
    PlanLoadError,
    SchedulerError,
)
from blueprint_scheduler.core.io.load_blueprints import load_blueprints
from blueprint_scheduler.core.io.plan_store import load_plan, save_plan
from blueprint_scheduler.core.log import configure_logging
from blueprint_scheduler.core.model import Plan, SpecRef
from blueprint_scheduler.core.planner.plan_builder import create_plan
from blueprint_scheduler.core.validate.validate_blueprints import validate_blueprints
from blueprint_scheduler.core.validate.validate_plan import validate_plan

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


@app.callback()
def _callback(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
    log_json: bool = typer.Option(False, "--log-json", help="Emit JSON log records"),
) -> None:
    """Blueprint scheduler CLI."""
    configure_logging(log_level, json_format=log_json)


def _check_format(format: str, command: str) -> None:
    if format not in ("text", "json"):
        _print_errors(
            [
                SchedulerError(
                    code=f"E_{command.upper()}_UNKNOWN_FORMAT",
                    message=f"unknown format: {format} (choose one of: text, json)",
                    path="format",
                )
            ]
        )
        raise typer.Exit(code=2)


def _to_item(e: SchedulerError) -> dict[str, Any]:
    item: dict[str, Any] = {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "error",
    }
    if isinstance(e, CycleDetectedError):
        item["cycles"] = [list(c) for c in e.cycles]
    return item


def _emit_json(payload: dict[str, Any], exit_code: int) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    raise typer.Exit(code=exit_code)


@app.command("plan")
def plan_cmd(
    path: str = typer.Argument(..., help="Path to a blueprint list (.yaml/.yml/.json)"),
    spec: Optional[str] = typer.Option(None, "--spec", help="Path to the source spec"),
    spec_name: Optional[str] = typer.Option(None, "--spec-name", help="Spec name (defaults to the file name)"),
    out: Optional[str] = typer.Option(None, "--out", help="Directory to persist the plan in"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Optional YAML scheduler config"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Build an execution plan from blueprint descriptors."""
    _check_format(format, "plan")

    def _fail(errors: list[SchedulerError], exit_code: int) -> None:
        if format == "json":
            _emit_json(
                {
                    "tool": "blueprint-scheduler",
                    "command": "plan",
                    "ok": False,
                    "error_count": len(errors),
                    "errors": [_to_item(e) for e in errors],
                },
                exit_code,
            )
        _print_errors(errors)
        raise typer.Exit(code=exit_code)

    try:
        config = load_and_merge(config_file)
        doc = load_blueprints(path)
    except (BlueprintLoadError, ConfigError) as e:
        _fail([e], 1)

    blueprints, errors = validate_blueprints(doc)
    if errors or blueprints is None:
        _fail(list(errors), 2)

    spec_ref = _spec_ref(doc, spec, spec_name)
    try:
        plan = create_plan(spec_ref, blueprints, config)
    except SchedulerError as e:
        _fail([e], 2)
    except OSError as e:
        _fail([SchedulerError(code="E_SPEC_READ", message=str(e), file=spec_ref.path, path="spec")], 1)

    saved_to = None
    if out is not None:
        try:
            saved_to = str(save_plan(plan, out))
        except PlanLoadError as e:
            _fail([e], 1)

    if format == "json":
        _emit_json(
            {
                "tool": "blueprint-scheduler",
                "command": "plan",
                "ok": True,
                "error_count": 0,
                "errors": [],
                "saved_to": saved_to,
                "plan": plan.to_dict(),
            },
            0,
        )

    typer.echo(summarize_plan(plan))
    if saved_to:
        typer.echo(f"Wrote: {saved_to}")


@app.command("validate")
def validate_cmd(
    path: str = typer.Argument(..., help="Path to a persisted plan (.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Check whether a persisted plan is stale relative to its spec."""
    _check_format(format, "validate")
    try:
        plan = load_plan(path)
    except PlanLoadError as e:
        if format == "json":
            _emit_json({"command": "validate", "ok": False, "errors": [_to_item(e)]}, 1)
        _print_errors([e])
        raise typer.Exit(code=1)

    result = validate_plan(plan)
    if format == "json":
        _emit_json(
            {"command": "validate", "ok": result.valid, "plan_id": plan.id, "result": result.to_dict()},
            0 if result.valid else 2,
        )

    if result.valid:
        typer.echo(f"OK: plan {plan.id} matches its spec")
        return
    typer.echo(f"STALE: plan {plan.id}: {result.reason}", err=True)
    if result.current_checksum:
        typer.echo(f"  plan checksum:    {result.plan_checksum}", err=True)
        typer.echo(f"  current checksum: {result.current_checksum}", err=True)
    raise typer.Exit(code=2)


@app.command("show")
def show_cmd(
    path: str = typer.Argument(..., help="Path to a persisted plan (.json)"),
) -> None:
    """Render a persisted plan's layers as a table."""
    try:
        plan = load_plan(path)
    except PlanLoadError as e:
        _print_errors([e])
        raise typer.Exit(code=1)

    table = Table(title=f"{plan.id} ({plan.spec_name})")
    table.add_column("Layer")
    table.add_column("Blueprint")
    table.add_column("Type")
    table.add_column("Depends on")
    table.add_column("Resources")
    for idx, layer in enumerate(plan.layers):
        for bid in layer:
            bp = plan.blueprint(bid)
            table.add_row(
                str(idx),
                f"{bp.id} {bp.name}" if bp.name != bp.id else bp.id,
                bp.type.value,
                ", ".join(bp.depends_on),
                ", ".join(f"{r.resource}:{r.mode.value}" for r in bp.resources),
            )
    console.print(table)
    console.print(summarize_plan(plan))


def summarize_plan(plan: Plan) -> str:
    md = plan.metadata
    type_parts = [f"{t}={n}" for t, n in md.type_counts]
    lines = [
        f"OK: plan {plan.id} ({md.total_blueprints} blueprints, {md.total_layers} layers)",
        "Types: " + ", ".join(type_parts),
        f"Estimated: {md.estimated_minutes} min (sequential {md.sequential_minutes:g} min)",
        f"Parallelization: {md.parallelization_potential * 100:.0f}% (max {md.max_parallelism} concurrent)",
    ]
    for idx, layer in enumerate(plan.layers):
        lines.append(f"Layer {idx}: " + ", ".join(layer))
    return "\n".join(lines)


def _spec_ref(doc: dict[str, Any], spec: Optional[str], spec_name: Optional[str]) -> SpecRef:
    raw = doc.get("spec") if isinstance(doc.get("spec"), dict) else {}
    path = spec
    if path is None and isinstance(raw.get("path"), str):
        # Paths inside the blueprint file are relative to that file.
        path = str(Path(doc["__file__"]).parent / raw["path"])
    name = spec_name or raw.get("name") or (path.rsplit("/", 1)[-1] if path else "")
    return SpecRef(name=name, path=path, content=raw.get("content"))


def _print_errors(errors: list[SchedulerError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="blueprint-scheduler")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
