"""
Approval workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the report approval lifecycle: workflow and step
snapshots, comments, history entries, information requests and the
read-side projections (weighted approval, reviewer workload).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
* Status is a closed enum whose value equals its name; it is the single
  normalized representation at every boundary.
* ``TERMINAL_STATUSES`` have no outgoing transitions except RESUBMIT from
  REJECTED.
* ``ApprovalWorkflow.current_step`` is derived from the steps on every
  read.  There is no stored step pointer that could drift.
* ``ApprovalWorkflow.steps`` is ordered by ``step_order``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Status and action enums
# =========================================================================


class WorkflowStatus(str, Enum):
    """Approval workflow lifecycle states."""

    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    CANCELLED = "CANCELLED"
    ESCALATED = "ESCALATED"


TERMINAL_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
    WorkflowStatus.CANCELLED,
})

# Statuses in which the current step may be acted on.  ESCALATED is
# IN_REVIEW with an escalation flag.
REVIEWABLE_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.PENDING,
    WorkflowStatus.IN_REVIEW,
    WorkflowStatus.ESCALATED,
})

CANCELLABLE_STATUSES: frozenset[WorkflowStatus] = REVIEWABLE_STATUSES

RESUBMITTABLE_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.REJECTED,
    WorkflowStatus.CHANGES_REQUESTED,
})


class StepAction(str, Enum):
    """Decision recorded on a completed step."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    SKIP = "SKIP"


# =========================================================================
# Workflow snapshot
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One ordered review assignment within a workflow. Immutable snapshot."""

    id: UUID
    step_order: int
    reviewer_id: UUID
    created_at: datetime
    delegated_to: UUID | None = None
    is_completed: bool = False
    action: StepAction | None = None
    comment: str | None = None
    reasoning: str | None = None
    completed_at: datetime | None = None
    completed_by: UUID | None = None
    due_date: datetime | None = None
    started_at: datetime | None = None
    can_skip: bool = False
    escalation_level: int = 0
    approval_weight: Decimal = Decimal("1")
    required_role: str | None = None

    @property
    def effective_reviewer(self) -> UUID:
        """The principal currently authorized to act on this step."""
        return self.delegated_to if self.delegated_to is not None else self.reviewer_id

    def is_overdue(self, as_of: datetime) -> bool:
        return (
            self.due_date is not None
            and not self.is_completed
            and self.due_date < as_of
        )


@dataclass(frozen=True)
class ApprovalWorkflow:
    """Immutable snapshot of one report's approval lifecycle.

    ``required_weight`` of ``None`` means unanimous approval (threshold is
    the total non-skipped weight).  ``version`` is the optimistic
    concurrency counter of the stored row.
    """

    id: UUID
    report_id: UUID
    project_id: UUID
    status: WorkflowStatus
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    steps: tuple[ApprovalStep, ...] = ()
    required_weight: Decimal | None = None
    file_ids: tuple[UUID, ...] = ()
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_reviewable(self) -> bool:
        return self.status in REVIEWABLE_STATUSES

    @property
    def current_step(self) -> ApprovalStep | None:
        """Earliest incomplete step, recomputed on every read."""
        for step in self.steps:
            if not step.is_completed:
                return step
        return None

    @property
    def completed_orders(self) -> tuple[int, ...]:
        return tuple(s.step_order for s in self.steps if s.is_completed)

    def step_by_id(self, step_id: UUID) -> ApprovalStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def involves(self, user_id: UUID) -> bool:
        """True if ``user_id`` is a reviewer or delegate on any step."""
        return any(
            user_id in (s.reviewer_id, s.delegated_to) for s in self.steps
        )


# =========================================================================
# Thread, audit and communication records
# =========================================================================


@dataclass(frozen=True)
class Comment:
    """Thread entry on a workflow.  Replies nest one level deep."""

    id: UUID
    workflow_id: UUID
    author_id: UUID
    content: str
    is_internal: bool
    created_at: datetime
    parent_id: UUID | None = None
    replies: tuple[Comment, ...] = ()


@dataclass(frozen=True)
class StatusHistoryEntry:
    """Append-only audit row.  ``changes`` is the effect record."""

    id: UUID
    workflow_id: UUID
    seq: int
    transition: str
    status: WorkflowStatus
    previous_status: WorkflowStatus | None
    changed_by: UUID
    created_at: datetime
    reason: str | None = None
    assigned_to: UUID | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    prev_hash: str | None = None
    hash: str | None = None


@dataclass(frozen=True)
class InformationRequest:
    """Informational side-channel record.  Never changes workflow status."""

    id: UUID
    workflow_id: UUID
    requested_by: UUID
    requested_from: UUID
    information: str
    created_at: datetime
    deadline: datetime | None = None


# =========================================================================
# Read-side projections
# =========================================================================


@dataclass(frozen=True)
class WeightedApproval:
    """Quorum status of a workflow."""

    approved_weight: Decimal
    total_weight: Decimal
    required_weight: Decimal
    is_approved: bool


@dataclass(frozen=True)
class WorkloadItem:
    """One incomplete step assigned to a reviewer."""

    workflow_id: UUID
    report_id: UUID
    step_id: UUID
    step_order: int
    is_current: bool
    is_overdue: bool
    days_pending: int
    due_date: datetime | None = None


@dataclass(frozen=True)
class ReviewerWorkload:
    """Per-reviewer workload summary."""

    reviewer_id: UUID
    pending_count: int
    overdue_count: int
    completed_count: int
    average_review_seconds: float | None
    items: tuple[WorkloadItem, ...] = ()


# =========================================================================
# Submission inputs
# =========================================================================


@dataclass(frozen=True)
class StepAssignment:
    """A resolved reviewer-chain entry, ready to become a step on SUBMIT."""

    reviewer_id: UUID
    can_skip: bool = False
    approval_weight: Decimal = Decimal("1")
    due_date: datetime | None = None
    required_role: str | None = None


@dataclass(frozen=True)
class WorkflowPolicy:
    """Per-project knobs that influence transitions.

    ``admin_roles`` grant ESCALATE, SET_DUE_DATE, RESUBMIT and CANCEL on any
    workflow in the project.  They never grant REVIEW, DELEGATE or
    RETURN_TO_STEP, which belong to the effective reviewer alone.
    """

    admin_roles: frozenset[str] = frozenset()
    auto_start: bool = False
    required_weight: Decimal | None = None
