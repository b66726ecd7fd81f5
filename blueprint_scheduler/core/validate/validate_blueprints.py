from __future__ import annotations

from typing import Any, Iterable, Optional, cast

from blueprint_scheduler.core.errors import BlueprintValidationError, InvalidBlueprintError
from blueprint_scheduler.core.model import AccessMode, BlueprintDescriptor, BlueprintType


ALLOWED_TYPES: list[str] = [t.value for t in BlueprintType]
ALLOWED_MODES: list[str] = [m.value for m in AccessMode]


def _is_list_of_str(v: Any) -> bool:
    return isinstance(v, list) and all(isinstance(x, str) and x.strip() for x in v)


def _parse_resources(
    raw: Any, *, file: Optional[str], path: str, errors: list[BlueprintValidationError]
) -> Optional[list[tuple[str, str]]]:
    """Accept either {read: [...], write: [...]} or [{resource, mode}, ...]."""
    if raw is None:
        return []

    out: list[tuple[str, str]] = []
    if isinstance(raw, dict):
        for mode, items in raw.items():
            if mode not in ALLOWED_MODES:
                errors.append(
                    BlueprintValidationError(
                        code="E_INVALID_ENUM",
                        message=f"resource mode must be one of {ALLOWED_MODES}",
                        file=file,
                        path=f"{path}.{mode}",
                    )
                )
                return None
            if not _is_list_of_str(items):
                errors.append(
                    BlueprintValidationError(
                        code="E_INVALID_TYPE",
                        message=f"resources.{mode} must be an array of non-empty strings",
                        file=file,
                        path=f"{path}.{mode}",
                    )
                )
                return None
            out.extend((r, mode) for r in items)
        return out

    if isinstance(raw, list):
        for ri, item in enumerate(raw):
            resource = item.get("resource") if isinstance(item, dict) else None
            if not isinstance(resource, str) or not resource.strip():
                errors.append(
                    BlueprintValidationError(
                        code="E_INVALID_TYPE",
                        message="resource entries must be objects with a non-empty 'resource' string",
                        file=file,
                        path=f"{path}[{ri}]",
                    )
                )
                return None
            mode = item.get("mode", "write")
            if mode not in ALLOWED_MODES:
                errors.append(
                    BlueprintValidationError(
                        code="E_INVALID_ENUM",
                        message=f"resource mode must be one of {ALLOWED_MODES}",
                        file=file,
                        path=f"{path}[{ri}].mode",
                    )
                )
                return None
            out.append((resource, mode))
        return out

    errors.append(
        BlueprintValidationError(
            code="E_INVALID_TYPE",
            message="resources must be a mapping of mode -> list or an array of objects",
            file=file,
            path=path,
        )
    )
    return None


def validate_blueprints(
    doc: dict[str, Any],
) -> tuple[Optional[list[BlueprintDescriptor]], list[BlueprintValidationError]]:
    """Shape-check raw blueprint descriptors.

    Returns (blueprints, errors); blueprints is None when errors exist.
    Duplicate ids and dangling references are left to the graph builder,
    which owns those construction errors.
    """
    file = cast(Optional[str], doc.get("__file__"))
    errors: list[BlueprintValidationError] = []

    raw_list = doc.get("blueprints")
    if not isinstance(raw_list, list):
        errors.append(
            BlueprintValidationError(
                code="E_REQUIRED_FIELD",
                message="blueprints is required and must be an array",
                file=file,
                path="blueprints",
            )
        )
        return None, errors

    out: list[BlueprintDescriptor] = []
    for i, raw in enumerate(raw_list):
        bp_path = f"blueprints[{i}]"
        if not isinstance(raw, dict):
            errors.append(
                BlueprintValidationError(
                    code="E_INVALID_TYPE",
                    message="blueprint must be an object",
                    file=file,
                    path=bp_path,
                )
            )
            continue

        bid = raw.get("id")
        if not isinstance(bid, str) or not bid.strip():
            errors.append(
                BlueprintValidationError(
                    code="E_REQUIRED_FIELD",
                    message="id is required and must be a non-empty string",
                    file=file,
                    path=f"{bp_path}.id",
                )
            )
            continue

        btype = raw.get("type", "other")
        if btype not in ALLOWED_TYPES:
            errors.append(
                BlueprintValidationError(
                    code="E_INVALID_ENUM",
                    message=f"type must be one of {ALLOWED_TYPES}",
                    file=file,
                    path=f"{bp_path}.type",
                )
            )
            continue

        name = raw.get("name", bid)
        if not isinstance(name, str):
            errors.append(
                BlueprintValidationError(
                    code="E_INVALID_TYPE",
                    message="name must be a string",
                    file=file,
                    path=f"{bp_path}.name",
                )
            )
            continue

        deps = raw.get("depends_on") or []
        if not _is_list_of_str(deps):
            errors.append(
                BlueprintValidationError(
                    code="E_INVALID_TYPE",
                    message="depends_on must be an array of strings",
                    file=file,
                    path=f"{bp_path}.depends_on",
                )
            )
            continue

        resources = _parse_resources(
            raw.get("resources"), file=file, path=f"{bp_path}.resources", errors=errors
        )
        if resources is None:
            continue

        minutes = raw.get("estimated_minutes")
        if minutes is not None and (
            isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes < 0
        ):
            errors.append(
                BlueprintValidationError(
                    code="E_INVALID_TYPE",
                    message="estimated_minutes must be a non-negative number",
                    file=file,
                    path=f"{bp_path}.estimated_minutes",
                )
            )
            continue

        description = raw.get("description", "")
        try:
            out.append(
                BlueprintDescriptor(
                    id=bid,
                    name=name,
                    type=BlueprintType(btype),
                    depends_on=tuple(deps),
                    resources=tuple(resources),
                    estimated_minutes=minutes,
                    description=description if isinstance(description, str) else "",
                )
            )
        except InvalidBlueprintError as e:
            errors.append(
                BlueprintValidationError(code=e.code, message=e.message, file=file, path=bp_path)
            )

    if errors:
        return None, _sorted(errors)
    return out, []


def _sorted(errors: Iterable[BlueprintValidationError]) -> list[BlueprintValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )
