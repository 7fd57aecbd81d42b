"""
Configuration validation (``approval_config.validator``).

Checks a resolved ``ProjectApprovalConfig`` for structural problems before
it is handed to the workflow service.  Collects every error instead of
stopping at the first one, so a broken file is fixed in one pass.
"""

from __future__ import annotations

from dataclasses import dataclass

from approval_config.schema import ProjectApprovalConfig


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_project_config(config: ProjectApprovalConfig) -> ValidationResult:
    errors: list[str] = []

    if not config.approval_chain:
        errors.append("approval_chain must contain at least one step")

    for i, step in enumerate(config.approval_chain):
        if step.weight <= 0:
            errors.append(f"approval_chain[{i}].weight must be positive, got {step.weight}")
        if step.due_in_days is not None and step.due_in_days < 0:
            errors.append(f"approval_chain[{i}].due_in_days must not be negative")

    if config.required_weight is not None:
        if config.required_weight <= 0:
            errors.append(f"required_weight must be positive, got {config.required_weight}")
        elif config.approval_chain and config.required_weight > config.total_weight:
            errors.append(
                f"required_weight {config.required_weight} exceeds total chain "
                f"weight {config.total_weight}"
            )

    return ValidationResult(errors=tuple(errors))
