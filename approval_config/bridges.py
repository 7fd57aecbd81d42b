"""
Config -> Kernel Bridges.

Functions that convert a ``ProjectApprovalConfig`` into kernel inputs.
These live in approval_config (the producer) because the kernel must
NEVER import approval_config.

Usage:
    from approval_config.bridges import build_step_assignments, build_workflow_policy

    config = get_active_config(project_id)
    policy = build_workflow_policy(config)
    assignments = build_step_assignments(config, gateway_lookup, now)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from approval_config.schema import ProjectApprovalConfig
from approval_kernel.domain.workflow import StepAssignment, WorkflowPolicy
from approval_kernel.exceptions import ValidationFailedError
from approval_kernel.logging_config import get_logger

logger = get_logger("config.bridges")

ReviewerLookup = Callable[[str], Sequence[UUID]]


def build_workflow_policy(config: ProjectApprovalConfig) -> WorkflowPolicy:
    return WorkflowPolicy(
        admin_roles=config.admin_roles,
        auto_start=config.auto_start,
        required_weight=config.required_weight,
    )


def build_step_assignments(
    config: ProjectApprovalConfig,
    reviewers_for_role: ReviewerLookup,
    now: datetime,
    created_by: UUID | None = None,
) -> tuple[StepAssignment, ...]:
    """Resolve the configured chain into concrete reviewer assignments.

    A role entry takes the first candidate the lookup returns that is
    neither ``created_by`` nor already assigned an earlier step, so every
    step of the chain has its own reviewer.  Fixed ``reviewer_id`` entries
    are taken as configured.  A role with no eligible candidate is dropped
    when the entry may be skipped.

    Raises:
        ValidationFailedError: a non-skippable role has no eligible candidate.
    """
    assignments = []
    taken: set[UUID] = {
        step.reviewer_id for step in config.approval_chain if step.reviewer_id is not None
    }
    for index, step in enumerate(config.approval_chain):
        if step.reviewer_id is not None:
            reviewer = step.reviewer_id
        else:
            candidates = [
                c for c in reviewers_for_role(step.role)
                if c not in taken and c != created_by
            ]
            if not candidates:
                if step.can_skip:
                    logger.info(
                        "chain_step_dropped",
                        extra={"role": step.role, "chain_index": index},
                    )
                    continue
                raise ValidationFailedError(
                    "approval_chain",
                    f"no distinct reviewer available for role {step.role!r}",
                )
            reviewer = candidates[0]
            taken.add(reviewer)

        assignments.append(StepAssignment(
            reviewer_id=reviewer,
            can_skip=step.can_skip,
            approval_weight=step.weight,
            due_date=(
                now + timedelta(days=step.due_in_days)
                if step.due_in_days is not None else None
            ),
            required_role=step.role,
        ))
    return tuple(assignments)


def explicit_assignments(reviewer_ids: Sequence[UUID]) -> tuple[StepAssignment, ...]:
    """One plain step per reviewer id, in the given order."""
    return tuple(
        StepAssignment(reviewer_id=rid, approval_weight=Decimal("1"))
        for rid in reviewer_ids
    )
