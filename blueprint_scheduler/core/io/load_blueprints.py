from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from blueprint_scheduler.core.errors import BlueprintLoadError


def load_blueprints(path: str) -> dict[str, Any]:
    """Load a YAML/JSON blueprint list.

    Accepts either a top-level array of blueprints or a mapping with a
    ``blueprints`` key and an optional ``spec`` reference. Returns a dict with
    keys: blueprints, optional spec. Does not coerce types; the validator owns
    shape checking.
    """

    p = Path(path)
    if not p.exists():
        raise BlueprintLoadError(
            code="E_FILE_NOT_FOUND",
            message="file does not exist",
            file=str(p),
        )

    suffix = p.suffix.lower()
    try:
        raw_text = p.read_text(encoding="utf-8")
    except Exception as e:  # pragma: no cover
        raise BlueprintLoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw_text)
        elif suffix == ".json":
            data = json.loads(raw_text)
        else:
            raise BlueprintLoadError(
                code="E_UNSUPPORTED_FORMAT",
                message="supported formats are .yaml/.yml and .json",
                file=str(p),
            )
    except BlueprintLoadError:
        raise
    except Exception as e:
        code = "E_YAML_PARSE" if suffix in {".yaml", ".yml"} else "E_JSON_PARSE"
        raise BlueprintLoadError(code=code, message=str(e), file=str(p)) from e

    if isinstance(data, list):
        data = {"blueprints": data}

    if not isinstance(data, dict):
        raise BlueprintLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object or an array",
            file=str(p),
        )

    normalized: dict[str, Any] = {"blueprints": data.get("blueprints")}
    if "spec" in data:
        normalized["spec"] = data.get("spec")

    normalized["__file__"] = str(p)
    return normalized
