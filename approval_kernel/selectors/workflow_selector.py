"""
Module: approval_kernel.selectors.workflow_selector
Responsibility: Read-only workflow listings backing the aggregation views:
    pending reviews for a user, reports submitted by a user, and the
    workflow sets a workload report folds over.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: no add, delete, flush or commit.
    - "Current step" is derived from the loaded steps, never from a stored
      pointer.  SQL narrows candidates; the DTO decides.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import and_, or_, select

from approval_kernel.domain.workflow import (
    REVIEWABLE_STATUSES,
    ApprovalWorkflow,
    WorkflowStatus,
)
from approval_kernel.models.workflow import ApprovalStepModel, ApprovalWorkflowModel
from approval_kernel.selectors.base import BaseSelector

_REVIEWABLE_VALUES = tuple(s.value for s in REVIEWABLE_STATUSES)


class WorkflowSelector(BaseSelector[ApprovalWorkflowModel]):
    """Workflow listing queries returning frozen DTOs."""

    def list_pending_for_reviewer(
        self,
        user_id: UUID,
        project_id: UUID | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        """Active workflows whose current step's effective reviewer is ``user_id``.

        Oldest first.
        """
        assigned = or_(
            ApprovalStepModel.delegated_to == user_id,
            and_(
                ApprovalStepModel.delegated_to.is_(None),
                ApprovalStepModel.reviewer_id == user_id,
            ),
        )
        stmt = (
            select(ApprovalWorkflowModel)
            .where(
                ApprovalWorkflowModel.status.in_(_REVIEWABLE_VALUES),
                ApprovalWorkflowModel.id.in_(
                    select(ApprovalStepModel.workflow_id).where(
                        ApprovalStepModel.is_completed.is_(False),
                        assigned,
                    )
                ),
            )
            .order_by(ApprovalWorkflowModel.created_at, ApprovalWorkflowModel.id)
        )
        if project_id is not None:
            stmt = stmt.where(ApprovalWorkflowModel.project_id == project_id)

        result = []
        for model in self.session.execute(stmt).scalars().all():
            dto = model.to_dto()
            current = dto.current_step
            if current is not None and current.effective_reviewer == user_id:
                result.append(dto)
        return tuple(result)

    def list_submitted_by_user(
        self,
        user_id: UUID,
        project_id: UUID | None = None,
        status: WorkflowStatus | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        """Workflows created by ``user_id``, newest first."""
        stmt = select(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.created_by == user_id
        )
        if project_id is not None:
            stmt = stmt.where(ApprovalWorkflowModel.project_id == project_id)
        if status is not None:
            stmt = stmt.where(ApprovalWorkflowModel.status == status.value)
        stmt = stmt.order_by(
            ApprovalWorkflowModel.created_at.desc(), ApprovalWorkflowModel.id,
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars().all())

    def list_for_project(
        self,
        project_id: UUID,
        involving: UUID | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        """All workflows of a project, optionally only those a user touched.

        A user "touches" a workflow as reviewer, delegate or completer of
        any step.
        """
        stmt = select(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.project_id == project_id
        )
        if involving is not None:
            stmt = stmt.where(
                ApprovalWorkflowModel.id.in_(
                    select(ApprovalStepModel.workflow_id).where(
                        or_(
                            ApprovalStepModel.reviewer_id == involving,
                            ApprovalStepModel.delegated_to == involving,
                            ApprovalStepModel.completed_by == involving,
                        )
                    )
                )
            )
        stmt = stmt.order_by(ApprovalWorkflowModel.created_at, ApprovalWorkflowModel.id)
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars().all())
