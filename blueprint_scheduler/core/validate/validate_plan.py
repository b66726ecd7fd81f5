from __future__ import annotations

from typing import Optional

from blueprint_scheduler.core.model import Plan, SpecRef, ValidationResult
from blueprint_scheduler.core.planner.plan_builder import checksum_bytes, read_spec_bytes


def validate_plan(plan: Plan, spec_content: Optional[str] = None) -> ValidationResult:
    """Check that a stored plan still matches its originating spec.

    The checksum is recomputed from ``spec_content`` when given, otherwise
    from the raw bytes of the file at ``plan.spec_path``. A plan recorded
    without a spec path (and with no content to compare) is valid by
    definition. An unreadable spec is reported as invalid, never raised.
    """
    if spec_content is None and not plan.spec_path:
        return ValidationResult(valid=True)

    if plan.spec_checksum is None:
        return ValidationResult(valid=False, reason="plan has no recorded spec checksum")

    if spec_content is not None:
        data = spec_content.encode("utf-8")
    else:
        try:
            data = read_spec_bytes(SpecRef(name=plan.spec_name, path=plan.spec_path))
        except OSError as e:
            return ValidationResult(valid=False, reason=f"could not read spec: {e}")

    current = checksum_bytes(data, len(plan.spec_checksum))
    if current != plan.spec_checksum:
        return ValidationResult(
            valid=False,
            reason="spec has changed since plan was created",
            current_checksum=current,
            plan_checksum=plan.spec_checksum,
        )
    return ValidationResult(valid=True)
