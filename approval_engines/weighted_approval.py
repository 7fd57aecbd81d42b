"""
approval_engines.weighted_approval -- Quorum computation over step weights.

Responsibility:
    Compute approved, total and required weight for a workflow's steps and
    decide whether the quorum is met.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Skipped steps never count toward either approved or total weight.
    - Without a configured threshold the required weight is the total
      non-skipped weight (unanimous approval).
    - Decimal-only arithmetic.  Identical inputs give identical outputs, so
      two reads with no intervening transition return equal values.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from approval_kernel.domain.workflow import ApprovalStep, StepAction, WeightedApproval


def compute_weighted_approval(
    steps: Iterable[ApprovalStep],
    required_weight: Decimal | None = None,
) -> WeightedApproval:
    """Return the quorum status for ``steps``.

    Args:
        steps: The workflow's steps in any order.
        required_weight: Configured threshold, or None for unanimous.
    """
    approved = Decimal("0")
    total = Decimal("0")
    for step in steps:
        if step.is_completed and step.action == StepAction.SKIP:
            continue
        total += step.approval_weight
        if step.is_completed and step.action == StepAction.APPROVE:
            approved += step.approval_weight

    required = total if required_weight is None else required_weight
    return WeightedApproval(
        approved_weight=approved,
        total_weight=total,
        required_weight=required,
        is_approved=approved >= required,
    )
