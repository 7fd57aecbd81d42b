"""
AggregationService -- Read-only projections over workflow state.

Responsibility:
    Pending reviews, submitted reports, weighted approval and reviewer
    workload.  Reads through the WorkflowStore and folds with the pure
    engines.

Architecture position:
    Services -- read side.  Never writes, never transitions status.

Failure modes:
    - NotFoundError for unknown workflows, StoreUnavailableError on read
      failures.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from approval_engines.weighted_approval import compute_weighted_approval
from approval_engines.workload import compute_reviewer_workload
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    ReviewerWorkload,
    WeightedApproval,
    WorkflowStatus,
)
from approval_kernel.services.workflow_store import WorkflowStore


class AggregationService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._store = WorkflowStore(session, self._clock)

    def pending_for_reviewer(
        self, user_id: UUID, project_id: UUID | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        return self._store.list_pending_for_reviewer(user_id, project_id)

    def submitted_by_user(
        self,
        user_id: UUID,
        project_id: UUID | None = None,
        status: WorkflowStatus | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        return self._store.list_submitted_by_user(user_id, project_id, status)

    def weighted_approval(self, workflow_id: UUID) -> WeightedApproval:
        """Quorum status.  Two calls with no transition in between agree."""
        workflow = self._store.get_by_id(workflow_id)
        return compute_weighted_approval(workflow.steps, workflow.required_weight)

    def reviewer_workload(
        self,
        project_id: UUID,
        reviewer_id: UUID | None = None,
        as_of: datetime | None = None,
    ) -> tuple[ReviewerWorkload, ...]:
        workflows = self._store.list_for_project(project_id, involving=reviewer_id)
        return compute_reviewer_workload(
            workflows=workflows,
            as_of=as_of or self._clock.now(),
            reviewer_id=reviewer_id,
        )
