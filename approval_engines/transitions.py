"""
approval_engines.transitions -- Pure transition planning and authorization.

Responsibility:
    Given a frozen workflow snapshot, the acting principal and a transition
    request, decide whether the transition is allowed and compute the
    complete post-transition snapshot plus the notifications it implies.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and kernel exceptions.

Invariants enforced:
    - Authorization before state: every planner checks the actor first and
      raises ``UnauthorizedError`` before looking at step or status
      preconditions.  A failed plan returns nothing, so the caller has
      nothing to persist.
    - REVIEW, DELEGATE and RETURN_TO_STEP are authorized for the effective
      reviewer only.  Admin roles do not bypass this.
    - Sequentiality: only the earliest incomplete step can be completed.
      RETURN_TO_STEP reopens a suffix, so completed orders remain a prefix.
    - Terminal workflows accept no state transition except RESUBMIT from
      REJECTED.
    - Purity: no clock access, no I/O, no database.  ``now`` is a parameter.

Failure modes:
    - UnauthorizedError, InvalidTransitionError, AlreadyCompletedError,
      StepNotFoundError, ValidationFailedError.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from approval_engines.weighted_approval import compute_weighted_approval
from approval_kernel.domain.identity import Principal
from approval_kernel.domain.transitions import (
    Cancel,
    Delegate,
    Escalate,
    Notification,
    Resubmit,
    ReturnToStep,
    Review,
    SetDueDate,
    StartReview,
    StateTransition,
    TransitionKind,
    TransitionOutcome,
)
from approval_kernel.domain.workflow import (
    CANCELLABLE_STATUSES,
    RESUBMITTABLE_STATUSES,
    ApprovalStep,
    ApprovalWorkflow,
    StepAction,
    StepAssignment,
    WorkflowPolicy,
    WorkflowStatus,
)
from approval_kernel.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    StepNotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)


# =========================================================================
# Submission
# =========================================================================


def plan_submission(
    *,
    workflow_id: UUID,
    report_id: UUID,
    project_id: UUID,
    created_by: UUID,
    assignments: Iterable[StepAssignment],
    step_ids: Iterable[UUID],
    policy: WorkflowPolicy,
    now: datetime,
    file_ids: Iterable[UUID] = (),
) -> ApprovalWorkflow:
    """Build the initial snapshot of a freshly submitted workflow.

    Steps are numbered 1..n in chain order.  ``step_ids`` supplies one id
    per assignment so that the function stays deterministic.

    Raises:
        ValidationFailedError: empty chain, non-positive weight, or a
            quorum larger than the total chain weight.
    """
    assignments = tuple(assignments)
    step_ids = tuple(step_ids)
    if not assignments:
        raise ValidationFailedError("approval_chain", "reviewer chain is empty")
    if len(step_ids) != len(assignments):
        raise ValueError("step_ids must supply one id per assignment")

    steps = []
    for order, (step_id, assignment) in enumerate(zip(step_ids, assignments), start=1):
        if assignment.approval_weight <= 0:
            raise ValidationFailedError(
                "approval_weight", f"step {order} weight must be positive",
            )
        steps.append(ApprovalStep(
            id=step_id,
            step_order=order,
            reviewer_id=assignment.reviewer_id,
            created_at=now,
            can_skip=assignment.can_skip,
            approval_weight=assignment.approval_weight,
            due_date=assignment.due_date,
            required_role=assignment.required_role,
        ))

    if policy.required_weight is not None:
        total = sum((s.approval_weight for s in steps), Decimal("0"))
        if policy.required_weight <= 0 or policy.required_weight > total:
            raise ValidationFailedError(
                "required_weight",
                f"{policy.required_weight} must be positive and at most {total}",
            )

    return ApprovalWorkflow(
        id=workflow_id,
        report_id=report_id,
        project_id=project_id,
        status=WorkflowStatus.IN_REVIEW if policy.auto_start else WorkflowStatus.PENDING,
        created_by=created_by,
        created_at=now,
        updated_at=now,
        steps=tuple(steps),
        required_weight=policy.required_weight,
        file_ids=tuple(file_ids),
    )


def submission_notifications(
    workflow: ApprovalWorkflow, actor_id: UUID | None = None,
) -> tuple[Notification, ...]:
    current = workflow.current_step
    if current is None:
        return ()
    return _without_actor(
        (_notify("review_requested", workflow, [current.effective_reviewer],
                 step_id=current.id, step_order=current.step_order),),
        actor_id,
    )


def side_channel_notifications(
    event_type: str,
    workflow: ApprovalWorkflow,
    recipients: Iterable[UUID | None],
    actor_id: UUID,
    **payload,
) -> tuple[Notification, ...]:
    """Notifications for comments and information requests, actor excluded."""
    return _without_actor((_notify(event_type, workflow, recipients, **payload),), actor_id)


# =========================================================================
# Authorization predicates
# =========================================================================


def is_effective_reviewer(principal: Principal, step: ApprovalStep | None) -> bool:
    return step is not None and principal.user_id == step.effective_reviewer


def is_creator_or_admin(
    principal: Principal, workflow: ApprovalWorkflow, policy: WorkflowPolicy,
) -> bool:
    return (
        principal.user_id == workflow.created_by
        or principal.has_any_role(policy.admin_roles)
    )


def can_see_internal_comments(
    principal: Principal, workflow: ApprovalWorkflow, policy: WorkflowPolicy,
) -> bool:
    """Internal comments are visible to step reviewers, delegates and admins."""
    return workflow.involves(principal.user_id) or principal.has_any_role(policy.admin_roles)


def _unauthorized(principal: Principal, kind: TransitionKind, target: UUID, reason: str):
    return UnauthorizedError(
        actor_id=str(principal.user_id),
        action=kind.value,
        target_id=str(target),
        reason=reason,
    )


def _invalid(workflow: ApprovalWorkflow, kind: TransitionKind, reason: str):
    return InvalidTransitionError(
        workflow_id=str(workflow.id),
        transition=kind.value,
        current_status=workflow.status.value,
        reason=reason,
    )


def _require_step(workflow: ApprovalWorkflow, step_id: UUID) -> ApprovalStep:
    step = workflow.step_by_id(step_id)
    if step is None:
        raise StepNotFoundError(str(step_id))
    return step


def _require_reviewable(workflow: ApprovalWorkflow, kind: TransitionKind) -> None:
    if not workflow.is_reviewable:
        raise _invalid(workflow, kind, "workflow is not awaiting review")


# =========================================================================
# Snapshot helpers
# =========================================================================


def _replace_steps(
    workflow: ApprovalWorkflow, updated: dict[UUID, ApprovalStep],
) -> tuple[ApprovalStep, ...]:
    return tuple(updated.get(s.id, s) for s in workflow.steps)


def _reopen(step: ApprovalStep) -> ApprovalStep:
    return replace(
        step,
        is_completed=False,
        action=None,
        comment=None,
        reasoning=None,
        completed_at=None,
        completed_by=None,
    )


def _notify(
    event_type: str,
    workflow: ApprovalWorkflow,
    recipients: Iterable[UUID | None],
    **payload,
) -> Notification:
    unique: list[UUID] = []
    for r in recipients:
        if r is not None and r not in unique:
            unique.append(r)
    body = {
        "workflow_id": str(workflow.id),
        "report_id": str(workflow.report_id),
        "status": workflow.status.value,
    }
    body.update({k: (str(v) if isinstance(v, UUID) else v) for k, v in payload.items()})
    return Notification(event_type=event_type, recipients=tuple(unique), payload=body)


# =========================================================================
# Planners
# =========================================================================


def _plan_review(
    workflow: ApprovalWorkflow,
    request: Review,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.REVIEW
    current = workflow.current_step
    if request.step_id is not None:
        target = _require_step(workflow, request.step_id)
    else:
        target = current

    if target is None:
        raise _invalid(workflow, kind, "no incomplete step to review")
    if not is_effective_reviewer(principal, target):
        raise _unauthorized(principal, kind, target.id, "not the effective reviewer of the step")
    if request.expected_version is not None and request.expected_version != workflow.version:
        raise AlreadyCompletedError(str(workflow.id))
    if target.is_completed:
        raise AlreadyCompletedError(str(workflow.id), str(target.id))
    _require_reviewable(workflow, kind)
    if current is None or target.id != current.id:
        raise _invalid(workflow, kind, f"step {target.step_order} is not the current step")
    if request.action == StepAction.SKIP and not target.can_skip:
        raise _invalid(workflow, kind, f"step {target.step_order} cannot be skipped")

    completed = replace(
        target,
        is_completed=True,
        action=request.action,
        comment=request.note,
        reasoning=request.reasoning,
        completed_at=now,
        completed_by=principal.user_id,
    )
    steps = _replace_steps(workflow, {target.id: completed})

    if request.action == StepAction.SKIP and workflow.required_weight is not None:
        reachable = sum(
            (s.approval_weight for s in steps
             if not s.is_completed or s.action == StepAction.APPROVE),
            Decimal("0"),
        )
        if reachable < workflow.required_weight:
            raise _invalid(
                workflow, kind,
                f"skipping step {target.step_order} leaves at most {reachable} of "
                f"the required weight {workflow.required_weight}",
            )

    if request.action == StepAction.REJECT:
        status = WorkflowStatus.REJECTED
    elif request.action == StepAction.REQUEST_CHANGES:
        status = WorkflowStatus.CHANGES_REQUESTED
    elif all(s.is_completed for s in steps):
        status = WorkflowStatus.APPROVED
    elif (
        workflow.required_weight is not None
        and compute_weighted_approval(steps, workflow.required_weight).is_approved
    ):
        status = WorkflowStatus.APPROVED
    else:
        status = WorkflowStatus.IN_REVIEW

    updated = replace(workflow, steps=steps, status=status, updated_at=now)

    notifications: list[Notification] = []
    if status == WorkflowStatus.IN_REVIEW:
        nxt = updated.current_step
        notifications.append(_notify(
            "review_requested", updated, [nxt.effective_reviewer],
            step_id=nxt.id, step_order=nxt.step_order,
        ))
    else:
        event = {
            WorkflowStatus.APPROVED: "workflow_approved",
            WorkflowStatus.REJECTED: "workflow_rejected",
            WorkflowStatus.CHANGES_REQUESTED: "changes_requested",
        }[status]
        notifications.append(_notify(
            event, updated, [workflow.created_by],
            step_order=target.step_order, note=request.note,
        ))

    return TransitionOutcome(
        kind=kind,
        workflow=updated,
        reason=request.note,
        notifications=tuple(notifications),
    )


def _plan_delegate(
    workflow: ApprovalWorkflow,
    request: Delegate,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.DELEGATE
    step = _require_step(workflow, request.step_id)
    if not is_effective_reviewer(principal, step):
        raise _unauthorized(principal, kind, step.id, "not the effective reviewer of the step")
    _require_reviewable(workflow, kind)
    if step.is_completed:
        raise _invalid(workflow, kind, f"step {step.step_order} is already completed")
    if request.to_user_id == step.effective_reviewer:
        raise ValidationFailedError("to_user_id", "is already the effective reviewer")

    delegated = replace(step, delegated_to=request.to_user_id)
    updated = replace(
        workflow, steps=_replace_steps(workflow, {step.id: delegated}), updated_at=now,
    )
    return TransitionOutcome(
        kind=kind,
        workflow=updated,
        reason=request.reason,
        assigned_to=request.to_user_id,
        notifications=(_notify(
            "review_delegated", updated, [request.to_user_id],
            step_id=step.id, step_order=step.step_order, reason=request.reason,
        ),),
    )


def _plan_escalate(
    workflow: ApprovalWorkflow,
    request: Escalate,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.ESCALATE
    current = workflow.current_step
    if not (is_effective_reviewer(principal, current)
            or is_creator_or_admin(principal, workflow, policy)):
        raise _unauthorized(
            principal, kind, workflow.id,
            "only the current reviewer, the submitter or an admin may escalate",
        )
    _require_reviewable(workflow, kind)
    if request.to_user_id == current.effective_reviewer:
        raise ValidationFailedError("to_user_id", "is already the effective reviewer")

    escalated = replace(
        current,
        delegated_to=request.to_user_id,
        escalation_level=current.escalation_level + 1,
    )
    updated = replace(
        workflow,
        steps=_replace_steps(workflow, {current.id: escalated}),
        status=WorkflowStatus.ESCALATED,
        updated_at=now,
    )
    return TransitionOutcome(
        kind=kind,
        workflow=updated,
        reason=request.reason,
        assigned_to=request.to_user_id,
        notifications=(_notify(
            "review_escalated", updated, [request.to_user_id, workflow.created_by],
            step_id=current.id,
            escalation_level=escalated.escalation_level,
            reason=request.reason,
        ),),
    )


def _plan_set_due_date(
    workflow: ApprovalWorkflow,
    request: SetDueDate,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.SET_DUE_DATE
    step = _require_step(workflow, request.step_id)
    if not (is_effective_reviewer(principal, step)
            or is_creator_or_admin(principal, workflow, policy)):
        raise _unauthorized(
            principal, kind, step.id,
            "only the step reviewer, the submitter or an admin may set a due date",
        )
    if workflow.is_terminal:
        raise _invalid(workflow, kind, "workflow is in a terminal state")
    if step.is_completed:
        raise _invalid(workflow, kind, f"step {step.step_order} is already completed")

    updated = replace(
        workflow,
        steps=_replace_steps(workflow, {step.id: replace(step, due_date=request.due_date)}),
        updated_at=now,
    )
    return TransitionOutcome(
        kind=kind,
        workflow=updated,
        notifications=(_notify(
            "due_date_set", updated, [step.effective_reviewer],
            step_id=step.id, due_date=request.due_date.isoformat(),
        ),),
    )


def _plan_start_review(
    workflow: ApprovalWorkflow,
    request: StartReview,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.START_REVIEW
    step = _require_step(workflow, request.step_id)
    if not is_effective_reviewer(principal, step):
        raise _unauthorized(principal, kind, step.id, "not the effective reviewer of the step")
    _require_reviewable(workflow, kind)
    current = workflow.current_step
    if current is None or current.id != step.id:
        raise _invalid(workflow, kind, f"step {step.step_order} is not the current step")
    if step.started_at is not None:
        raise _invalid(workflow, kind, f"review of step {step.step_order} already started")

    status = workflow.status
    if status == WorkflowStatus.PENDING:
        status = WorkflowStatus.IN_REVIEW
    updated = replace(
        workflow,
        steps=_replace_steps(workflow, {step.id: replace(step, started_at=now)}),
        status=status,
        updated_at=now,
    )
    return TransitionOutcome(kind=kind, workflow=updated)


def _plan_return_to_step(
    workflow: ApprovalWorkflow,
    request: ReturnToStep,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.RETURN_TO_STEP
    current = workflow.current_step
    if current is None:
        raise _invalid(workflow, kind, "no incomplete step to return from")
    if not is_effective_reviewer(principal, current):
        raise _unauthorized(
            principal, kind, current.id, "not the effective reviewer of the current step",
        )
    _require_reviewable(workflow, kind)
    target = _require_step(workflow, request.target_step_id)
    if target.step_order >= current.step_order:
        raise _invalid(
            workflow, kind,
            f"target step {target.step_order} is not before current step {current.step_order}",
        )

    reopened = {
        s.id: _reopen(s) for s in workflow.steps if s.step_order >= target.step_order
    }
    updated = replace(
        workflow,
        steps=_replace_steps(workflow, reopened),
        status=WorkflowStatus.IN_REVIEW,
        updated_at=now,
    )
    return TransitionOutcome(
        kind=kind,
        workflow=updated,
        reason=request.reason,
        assigned_to=target.effective_reviewer,
        notifications=(_notify(
            "review_returned", updated, [target.effective_reviewer],
            step_id=target.id, step_order=target.step_order, reason=request.reason,
        ),),
    )


def _plan_resubmit(
    workflow: ApprovalWorkflow,
    request: Resubmit,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.RESUBMIT
    if not is_creator_or_admin(principal, workflow, policy):
        raise _unauthorized(
            principal, kind, workflow.id, "only the submitter or an admin may resubmit",
        )
    if workflow.status not in RESUBMITTABLE_STATUSES:
        raise _invalid(workflow, kind, "only rejected or changes-requested workflows can be resubmitted")

    reset = {
        s.id: replace(_reopen(s), started_at=None) for s in workflow.steps
    }
    updated = replace(
        workflow,
        steps=_replace_steps(workflow, reset),
        status=WorkflowStatus.IN_REVIEW if policy.auto_start else WorkflowStatus.PENDING,
        file_ids=workflow.file_ids if request.file_ids is None else tuple(request.file_ids),
        updated_at=now,
    )
    first = updated.current_step
    return TransitionOutcome(
        kind=kind,
        workflow=updated,
        notifications=(_notify(
            "review_requested", updated, [first.effective_reviewer],
            step_id=first.id, step_order=first.step_order, resubmitted=True,
        ),),
    )


def _plan_cancel(
    workflow: ApprovalWorkflow,
    request: Cancel,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    kind = TransitionKind.CANCEL
    if not is_creator_or_admin(principal, workflow, policy):
        raise _unauthorized(
            principal, kind, workflow.id, "only the submitter or an admin may cancel",
        )
    if workflow.status not in CANCELLABLE_STATUSES:
        raise _invalid(workflow, kind, "workflow cannot be cancelled in this status")

    current = workflow.current_step
    updated = replace(workflow, status=WorkflowStatus.CANCELLED, updated_at=now)
    return TransitionOutcome(
        kind=kind,
        workflow=updated,
        reason=request.reason,
        notifications=(_notify(
            "workflow_cancelled", updated,
            [current.effective_reviewer if current else None, workflow.created_by],
            reason=request.reason,
        ),),
    )


_Planner = Callable[
    [ApprovalWorkflow, StateTransition, Principal, WorkflowPolicy, datetime],
    TransitionOutcome,
]

_PLANNERS: dict[type, _Planner] = {
    Review: _plan_review,
    Delegate: _plan_delegate,
    Escalate: _plan_escalate,
    SetDueDate: _plan_set_due_date,
    StartReview: _plan_start_review,
    ReturnToStep: _plan_return_to_step,
    Resubmit: _plan_resubmit,
    Cancel: _plan_cancel,
}


def plan_transition(
    workflow: ApprovalWorkflow,
    request: StateTransition,
    principal: Principal,
    policy: WorkflowPolicy,
    now: datetime,
) -> TransitionOutcome:
    """Validate ``request`` against ``workflow`` and compute its effect.

    Args:
        workflow: Current snapshot.
        request: One of the state-changing request types.
        principal: Acting principal as resolved by the identity gateway.
        policy: Project policy (admin roles, auto-start).
        now: Transition timestamp.

    Returns:
        TransitionOutcome with the complete new snapshot.  Recipients equal
        to the actor are dropped from notifications.

    Raises:
        UnauthorizedError, InvalidTransitionError, AlreadyCompletedError,
        StepNotFoundError, ValidationFailedError.
    """
    planner = _PLANNERS.get(type(request))
    if planner is None:
        raise TypeError(f"Not a state-changing request: {type(request).__name__}")
    outcome = planner(workflow, request, principal, policy, now)
    return replace(
        outcome,
        notifications=_without_actor(outcome.notifications, principal.user_id),
    )


def _without_actor(
    notifications: tuple[Notification, ...], actor_id: UUID,
) -> tuple[Notification, ...]:
    kept = []
    for n in notifications:
        recipients = tuple(r for r in n.recipients if r != actor_id)
        if recipients:
            kept.append(replace(n, recipients=recipients))
    return tuple(kept)
