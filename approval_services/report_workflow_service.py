"""
approval_services.report_workflow_service -- Client-facing workflow facade.

Responsibility:
    The operations a client calls to drive report approval.  Every call
    resolves the caller through the identity gateway, runs in its own
    transaction, and dispatches the notification outbox after commit.

Architecture position:
    Services -- top of the stack.  Composes the identity gateway, the
    active configuration, the TransitionEngine, the AggregationService and
    the OutboxDispatcher.

Invariants enforced:
    - One transaction per call (one per workflow for bulk calls).  A failed
      call rolls back and leaves the workflow unchanged.
    - Notifications are delivered only after commit; a delivery failure
      never fails the call.
    - ``review`` without an explicit ``step_id`` pins the step it read at
      the start of its transaction, so of two concurrent duplicates the
      loser fails with AlreadyCompletedError.  A retry sent after the first
      call committed is only recognized when it carries the ``step_id`` or
      ``expected_version`` the client read before the first attempt.

Failure modes:
    - Every ``ApprovalKernelError`` propagates unchanged, except inside
      bulk calls where it is collected into ``BulkResult``.
    - ``ConfigurationError`` when the configuration file is missing,
      malformed or invalid.  Bulk calls record it per workflow.

Usage:
    service = ReportWorkflowService(identity=gateway, notification_hook=hook)
    wf = service.submit_report(ctx, report_id=rid, project_id=pid)
    service.review(reviewer_ctx, wf.id, "APPROVE")
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar
from uuid import UUID

import yaml
from sqlalchemy.orm import Session, sessionmaker

from approval_config import ProjectApprovalConfig, get_active_config
from approval_config.bridges import (
    build_step_assignments,
    build_workflow_policy,
    explicit_assignments,
)
from approval_engines.comments import build_thread
from approval_engines.transitions import can_see_internal_comments
from approval_kernel.db.engine import get_session_factory, session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.identity import Principal
from approval_kernel.domain.transitions import (
    AddComment,
    Cancel,
    Delegate,
    Escalate,
    RequestInformation,
    Resubmit,
    ReturnToStep,
    Review,
    SetDueDate,
    StartReview,
    TransitionKind,
)
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    Comment,
    InformationRequest,
    ReviewerWorkload,
    StatusHistoryEntry,
    StepAction,
    WeightedApproval,
    WorkflowPolicy,
    WorkflowStatus,
)
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ConfigurationError,
    InvalidTransitionError,
    StoreUnavailableError,
    UnauthorizedError,
    ValidationFailedError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_services.aggregation import AggregationService
from approval_services.identity import IdentityGateway
from approval_services.notifications import (
    NotificationHook,
    NullNotificationHook,
    OutboxDispatcher,
)
from approval_services.reports import ReportCatalog, ReportMetadata
from approval_services.transition_engine import TransitionEngine

logger = get_logger("services.report_workflow")

T = TypeVar("T")


@dataclass(frozen=True)
class WorkflowDetail:
    """Everything a client shows on a workflow page."""

    workflow: ApprovalWorkflow
    report: ReportMetadata | None
    comments: tuple[Comment, ...]
    history: tuple[StatusHistoryEntry, ...]
    information_requests: tuple[InformationRequest, ...]
    weighted_approval: WeightedApproval


@dataclass(frozen=True)
class BulkError:
    workflow_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class BulkResult:
    success: tuple[UUID, ...]
    failed: tuple[UUID, ...]
    errors: tuple[BulkError, ...]


def _parse_action(action: StepAction | str) -> StepAction:
    try:
        return StepAction(action)
    except ValueError as exc:
        raise ValidationFailedError("action", f"unknown review action {action!r}") from exc


def _parse_status(status: WorkflowStatus | str | None) -> WorkflowStatus | None:
    if status is None:
        return None
    try:
        return WorkflowStatus(status)
    except ValueError as exc:
        raise ValidationFailedError("status", f"unknown workflow status {status!r}") from exc


class ReportWorkflowService:
    """Facade over the approval workflow.

    Contract:
        Every public method takes the caller's ``request_context`` first.
        The context is opaque here and handed to the identity gateway.
    """

    def __init__(
        self,
        *,
        identity: IdentityGateway,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        notification_hook: NotificationHook | None = None,
        report_catalog: ReportCatalog | None = None,
        clock: Clock | None = None,
        config_dir: Path | None = None,
    ):
        self._identity = identity
        self._session_factory = session_factory or get_session_factory()
        self._catalog = report_catalog
        self._clock = clock or SystemClock()
        self._config_dir = config_dir
        self._dispatcher = OutboxDispatcher(
            self._session_factory,
            notification_hook or NullNotificationHook(),
            self._clock,
        )

    # =====================================================================
    # Plumbing
    # =====================================================================

    def _config_for(self, project_id: UUID) -> ProjectApprovalConfig:
        try:
            return get_active_config(project_id, self._config_dir)
        except (OSError, KeyError, ValueError, yaml.YAMLError) as exc:
            logger.error(
                "approval_config_unavailable",
                extra={"project_id": str(project_id)},
                exc_info=True,
            )
            raise ConfigurationError(
                str(self._config_dir or "default"), str(exc),
            ) from exc

    def _policy_for(self, project_id: UUID) -> WorkflowPolicy:
        return build_workflow_policy(self._config_for(project_id))

    def _engine(self, session: Session) -> TransitionEngine:
        return TransitionEngine(
            session,
            policy_for=self._policy_for,
            is_project_member=self._identity.is_project_member,
            clock=self._clock,
        )

    def _run(
        self,
        request_context: Any,
        operation: str,
        fn: Callable[[Session, Principal], T],
        *,
        dispatch: bool = True,
    ) -> T:
        principal = self._identity.resolve_principal(request_context)
        with LogContext.bind(
            actor_id=principal.user_id,
            correlation_id=getattr(request_context, "correlation_id", None),
        ):
            logger.debug("operation_started", extra={"operation": operation})
            with session_scope(self._session_factory) as session:
                result = fn(session, principal)
            if dispatch:
                self._dispatch()
        return result

    def _dispatch(self) -> None:
        try:
            self._dispatcher.dispatch()
        except StoreUnavailableError:
            # The transition is committed; undelivered rows stay queued.
            logger.warning("outbox_dispatch_deferred", exc_info=True)

    def _transition(self, request_context: Any, build: Callable[[TransitionEngine], Any]) -> ApprovalWorkflow:
        def fn(session: Session, principal: Principal) -> ApprovalWorkflow:
            engine = self._engine(session)
            return engine.apply(principal, build(engine))

        return self._run(request_context, "transition", fn)

    def _require_reader(self, principal: Principal, workflow: ApprovalWorkflow) -> WorkflowPolicy:
        policy = self._policy_for(workflow.project_id)
        if not (
            self._identity.is_project_member(principal.user_id, workflow.project_id)
            or workflow.involves(principal.user_id)
            or principal.has_any_role(policy.admin_roles)
        ):
            raise UnauthorizedError(
                actor_id=str(principal.user_id),
                action="read",
                target_id=str(workflow.id),
                reason="not a member of the project",
            )
        return policy

    # =====================================================================
    # Submission
    # =====================================================================

    def submit_report(
        self,
        request_context: Any,
        report_id: UUID,
        project_id: UUID,
        file_ids: Sequence[UUID] = (),
        reviewer_ids: Sequence[UUID] | None = None,
    ) -> ApprovalWorkflow:
        """Create the report's workflow from the project's reviewer chain.

        ``reviewer_ids`` replaces the configured chain with one plain step
        per reviewer and unanimous approval.
        """
        def fn(session: Session, principal: Principal) -> ApprovalWorkflow:
            if self._catalog is not None and self._catalog.get_report(report_id) is None:
                raise ValidationFailedError("report_id", f"unknown report {report_id}")

            config = self._config_for(project_id)
            policy = build_workflow_policy(config)
            if reviewer_ids is not None:
                for rid in reviewer_ids:
                    if not self._identity.is_project_member(rid, project_id):
                        raise ValidationFailedError(
                            "reviewer_ids", f"{rid} is not a member of the project",
                        )
                assignments = explicit_assignments(reviewer_ids)
                policy = replace(policy, required_weight=None)
            else:
                assignments = build_step_assignments(
                    config,
                    lambda role: self._identity.reviewers_for_role(project_id, role),
                    self._clock.now(),
                    created_by=principal.user_id,
                )
            with LogContext.bind(report_id=report_id):
                return self._engine(session).submit(
                    principal,
                    report_id=report_id,
                    project_id=project_id,
                    assignments=assignments,
                    policy=policy,
                    file_ids=tuple(file_ids),
                )

        return self._run(request_context, "submit_report", fn)

    # =====================================================================
    # Reads
    # =====================================================================

    def get_report_by_id(self, request_context: Any, workflow_or_report_id: UUID) -> WorkflowDetail:
        """Workflow with report metadata, visible comments and history."""
        def fn(session: Session, principal: Principal) -> WorkflowDetail:
            store = self._engine(session).store
            workflow = store.get_by_id(workflow_or_report_id)
            policy = self._require_reader(principal, workflow)
            include_internal = can_see_internal_comments(principal, workflow, policy)
            return WorkflowDetail(
                workflow=workflow,
                report=(
                    self._catalog.get_report(workflow.report_id)
                    if self._catalog is not None else None
                ),
                comments=build_thread(store.comments(workflow.id), include_internal),
                history=store.history(workflow.id),
                information_requests=store.information_requests(workflow.id),
                weighted_approval=AggregationService(session, self._clock).weighted_approval(
                    workflow.id,
                ),
            )

        return self._run(request_context, "get_report_by_id", fn, dispatch=False)

    def get_by_file(self, request_context: Any, file_id: UUID) -> ApprovalWorkflow:
        def fn(session: Session, principal: Principal) -> ApprovalWorkflow:
            workflow = self._engine(session).store.get_by_file(file_id)
            self._require_reader(principal, workflow)
            return workflow

        return self._run(request_context, "get_by_file", fn, dispatch=False)

    def get_pending_reviews(
        self, request_context: Any, project_id: UUID | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        return self._run(
            request_context,
            "get_pending_reviews",
            lambda session, principal: AggregationService(session, self._clock)
            .pending_for_reviewer(principal.user_id, project_id),
            dispatch=False,
        )

    def get_my_reports(
        self,
        request_context: Any,
        project_id: UUID | None = None,
        status: WorkflowStatus | str | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        parsed = _parse_status(status)
        return self._run(
            request_context,
            "get_my_reports",
            lambda session, principal: AggregationService(session, self._clock)
            .submitted_by_user(principal.user_id, project_id, parsed),
            dispatch=False,
        )

    def get_weighted_approval(self, request_context: Any, workflow_id: UUID) -> WeightedApproval:
        def fn(session: Session, principal: Principal) -> WeightedApproval:
            aggregation = AggregationService(session, self._clock)
            self._require_reader(principal, self._engine(session).store.get_by_id(workflow_id))
            return aggregation.weighted_approval(workflow_id)

        return self._run(request_context, "get_weighted_approval", fn, dispatch=False)

    def get_reviewer_workload(
        self,
        request_context: Any,
        project_id: UUID,
        reviewer_id: UUID | None = None,
    ) -> tuple[ReviewerWorkload, ...]:
        def fn(session: Session, principal: Principal) -> tuple[ReviewerWorkload, ...]:
            if not self._identity.is_project_member(principal.user_id, project_id):
                raise UnauthorizedError(
                    actor_id=str(principal.user_id),
                    action="reviewer_workload",
                    target_id=str(project_id),
                    reason="not a member of the project",
                )
            return AggregationService(session, self._clock).reviewer_workload(
                project_id, reviewer_id,
            )

        return self._run(request_context, "get_reviewer_workload", fn, dispatch=False)

    # =====================================================================
    # State-changing transitions
    # =====================================================================

    def review(
        self,
        request_context: Any,
        workflow_or_report_id: UUID,
        action: StepAction | str,
        note: str | None = None,
        reasoning: str | None = None,
        step_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> ApprovalWorkflow:
        """Complete the current step with ``action``.

        A client that may resend the call passes the ``step_id`` or the
        ``expected_version`` it last read; the resent call then fails with
        AlreadyCompletedError.  Without either the call reviews whatever
        step is current when it runs.
        """
        parsed = _parse_action(action)

        def build(engine: TransitionEngine) -> Review:
            workflow = engine.store.get_by_id(workflow_or_report_id)
            guard = step_id
            if guard is None and workflow.current_step is not None:
                guard = workflow.current_step.id
            return Review(
                workflow_id=workflow.id,
                action=parsed,
                note=note,
                reasoning=reasoning,
                step_id=guard,
                expected_version=expected_version,
            )

        return self._transition(request_context, build)

    def delegate_review(
        self, request_context: Any, step_id: UUID, to_user_id: UUID, reason: str,
    ) -> ApprovalWorkflow:
        request = Delegate(step_id=step_id, to_user_id=to_user_id, reason=reason)
        return self._transition(request_context, lambda engine: request)

    def escalate_review(
        self, request_context: Any, workflow_id: UUID, reason: str, to_user_id: UUID,
    ) -> ApprovalWorkflow:
        request = Escalate(workflow_id=workflow_id, to_user_id=to_user_id, reason=reason)
        return self._transition(request_context, lambda engine: request)

    def set_step_due_date(
        self, request_context: Any, step_id: UUID, due_date: datetime,
    ) -> ApprovalWorkflow:
        request = SetDueDate(step_id=step_id, due_date=due_date)
        return self._transition(request_context, lambda engine: request)

    def start_review(self, request_context: Any, step_id: UUID) -> ApprovalWorkflow:
        request = StartReview(step_id=step_id)
        return self._transition(request_context, lambda engine: request)

    def return_to_step(
        self, request_context: Any, workflow_id: UUID, target_step_id: UUID, reason: str,
    ) -> ApprovalWorkflow:
        request = ReturnToStep(
            workflow_id=workflow_id, target_step_id=target_step_id, reason=reason,
        )
        return self._transition(request_context, lambda engine: request)

    def resubmit_workflow(
        self,
        request_context: Any,
        workflow_id: UUID,
        file_ids: Sequence[UUID] | None = None,
    ) -> ApprovalWorkflow:
        request = Resubmit(
            workflow_id=workflow_id,
            file_ids=tuple(file_ids) if file_ids is not None else None,
        )
        return self._transition(request_context, lambda engine: request)

    def cancel_workflow(self, request_context: Any, workflow_id: UUID, reason: str) -> ApprovalWorkflow:
        request = Cancel(workflow_id=workflow_id, reason=reason)
        return self._transition(request_context, lambda engine: request)

    # =====================================================================
    # Side channels
    # =====================================================================

    def request_information(
        self,
        request_context: Any,
        workflow_id: UUID,
        from_user_id: UUID,
        info: str,
        deadline: datetime | None = None,
    ) -> InformationRequest:
        request = RequestInformation(
            workflow_id=workflow_id,
            from_user_id=from_user_id,
            information=info,
            deadline=deadline,
        )
        return self._run(
            request_context,
            "request_information",
            lambda session, principal: self._engine(session).request_information(principal, request),
        )

    def add_comment(
        self,
        request_context: Any,
        workflow_id: UUID,
        content: str,
        is_internal: bool = False,
        reply_to_id: UUID | None = None,
    ) -> Comment:
        request = AddComment(
            workflow_id=workflow_id,
            content=content,
            is_internal=is_internal,
            reply_to_id=reply_to_id,
        )
        return self._run(
            request_context,
            "add_comment",
            lambda session, principal: self._engine(session).add_comment(principal, request),
        )

    # =====================================================================
    # Bulk operations
    # =====================================================================

    def bulk_approve(
        self, request_context: Any, workflow_ids: Iterable[UUID], comment: str | None = None,
    ) -> BulkResult:
        return self._bulk(
            "bulk_approve",
            workflow_ids,
            lambda wid: self.review(request_context, wid, StepAction.APPROVE, note=comment),
        )

    def bulk_reject(self, request_context: Any, workflow_ids: Iterable[UUID], reason: str) -> BulkResult:
        return self._bulk(
            "bulk_reject",
            workflow_ids,
            lambda wid: self.review(request_context, wid, StepAction.REJECT, note=reason),
        )

    def bulk_reassign(
        self,
        request_context: Any,
        workflow_ids: Iterable[UUID],
        to_user_id: UUID,
        reason: str,
    ) -> BulkResult:
        """Delegate the current step of each workflow to ``to_user_id``."""
        def reassign(workflow_id: UUID) -> ApprovalWorkflow:
            def build(engine: TransitionEngine) -> Delegate:
                workflow = engine.store.get_by_id(workflow_id)
                current = workflow.current_step
                if current is None:
                    raise InvalidTransitionError(
                        workflow_id=str(workflow.id),
                        transition=TransitionKind.DELEGATE.value,
                        current_status=workflow.status.value,
                        reason="workflow has no incomplete step",
                    )
                return Delegate(step_id=current.id, to_user_id=to_user_id, reason=reason)

            return self._transition(request_context, build)

        return self._bulk("bulk_reassign", workflow_ids, reassign)

    def _bulk(
        self,
        operation: str,
        workflow_ids: Iterable[UUID],
        apply_one: Callable[[UUID], ApprovalWorkflow],
    ) -> BulkResult:
        success: list[UUID] = []
        failed: list[UUID] = []
        errors: list[BulkError] = []
        for workflow_id in workflow_ids:
            try:
                apply_one(workflow_id)
            except ApprovalKernelError as exc:
                failed.append(workflow_id)
                errors.append(BulkError(workflow_id=workflow_id, code=exc.code, message=str(exc)))
            else:
                success.append(workflow_id)

        logger.info(
            "bulk_operation_completed",
            extra={
                "operation": operation,
                "success_count": len(success),
                "failed_count": len(failed),
            },
        )
        return BulkResult(success=tuple(success), failed=tuple(failed), errors=tuple(errors))
