"""
approval_engines.workload -- Reviewer workload projection.

Responsibility:
    Fold a set of workflow snapshots into per-reviewer counts of pending,
    overdue and completed steps, plus average time-to-completion.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``as_of`` replaces any
    clock access.

Invariants enforced:
    - Pending work is attributed to the step's effective reviewer, and only
      on workflows that are still awaiting review.
    - Completed work is attributed to the principal that completed the
      step (``completed_by``), independent of the workflow's final status.
    - A step is overdue iff it has a due date, is incomplete, and the due
      date is before ``as_of``.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    ReviewerWorkload,
    WorkloadItem,
)


@traced_engine("reviewer_workload", "1.0", fingerprint_fields=("as_of", "reviewer_id"))
def compute_reviewer_workload(
    *,
    workflows: Iterable[ApprovalWorkflow],
    as_of: datetime,
    reviewer_id: UUID | None = None,
) -> tuple[ReviewerWorkload, ...]:
    """Compute workload per reviewer, sorted by reviewer id.

    When ``reviewer_id`` is given, exactly one entry is returned for that
    reviewer, with zero counts if they have no work in ``workflows``.
    """
    items: dict[UUID, list[WorkloadItem]] = defaultdict(list)
    durations: dict[UUID, list[float]] = defaultdict(list)

    for wf in workflows:
        current = wf.current_step
        for step in wf.steps:
            if step.is_completed:
                if step.completed_by is not None and step.completed_at is not None:
                    durations[step.completed_by].append(
                        (step.completed_at - step.created_at).total_seconds()
                    )
                continue
            if not wf.is_reviewable:
                continue
            items[step.effective_reviewer].append(WorkloadItem(
                workflow_id=wf.id,
                report_id=wf.report_id,
                step_id=step.id,
                step_order=step.step_order,
                is_current=current is not None and current.id == step.id,
                is_overdue=step.is_overdue(as_of),
                days_pending=max((as_of - step.created_at).days, 0),
                due_date=step.due_date,
            ))

    if reviewer_id is not None:
        reviewers = [reviewer_id]
    else:
        reviewers = sorted(set(items) | set(durations), key=str)

    result = []
    for rid in reviewers:
        pending = sorted(
            items.get(rid, []), key=lambda i: (not i.is_current, -i.days_pending, str(i.workflow_id)),
        )
        completed = durations.get(rid, [])
        result.append(ReviewerWorkload(
            reviewer_id=rid,
            pending_count=len(pending),
            overdue_count=sum(1 for i in pending if i.is_overdue),
            completed_count=len(completed),
            average_review_seconds=(sum(completed) / len(completed)) if completed else None,
            items=tuple(pending),
        ))
    return tuple(result)
