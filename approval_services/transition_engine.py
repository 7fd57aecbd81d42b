"""
TransitionEngine -- Coordinates planning and persistence of transitions.

Responsibility:
    Runs one transition request end to end inside the caller's
    transaction: resolves the target workflow, plans the transition with
    the pure ``approval_engines.transitions`` planner, and hands the plan to
    ``WorkflowStore.apply_transition``.  Side channels (comments and
    information requests) are checked here and appended without a history
    row.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Holds no
    workflow state between calls.

Invariants enforced:
    - Authorization before state: the planner raises before the store
      writes anything.
    - Exactly one history row per state-changing request, none for a side
      channel or a failed request.
    - Side channels require project membership and stay available on
      terminal workflows.

Failure modes:
    - Every ``ApprovalKernelError`` from planning or the store propagates
      after a ``transition_rejected`` log entry.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_engines.comments import thread_root
from approval_engines.transitions import (
    plan_submission,
    plan_transition,
    side_channel_notifications,
    submission_notifications,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.identity import Principal
from approval_kernel.domain.transitions import (
    AddComment,
    Delegate,
    RequestInformation,
    SetDueDate,
    StartReview,
    StateTransition,
    TransitionKind,
)
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    Comment,
    InformationRequest,
    StepAssignment,
    WorkflowPolicy,
)
from approval_kernel.exceptions import (
    ApprovalKernelError,
    CommentNotFoundError,
    UnauthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.services.workflow_store import WorkflowStore

logger = get_logger("services.transition_engine")

PolicyProvider = Callable[[UUID], WorkflowPolicy]
MembershipCheck = Callable[[UUID, UUID], bool]

# Requests that address a step rather than a workflow.
_STEP_ADDRESSED = (Delegate, SetDueDate, StartReview)


class TransitionEngine:
    """Plans and persists transitions for one session.

    Contract:
        Receives a Session, a per-project policy provider and a membership
        check.  Never commits.
    """

    def __init__(
        self,
        session: Session,
        policy_for: PolicyProvider,
        is_project_member: MembershipCheck,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy_for = policy_for
        self._is_member = is_project_member
        self.store = WorkflowStore(session, self._clock)

    def submit(
        self,
        principal: Principal,
        *,
        report_id: UUID,
        project_id: UUID,
        assignments: Sequence[StepAssignment],
        policy: WorkflowPolicy,
        file_ids: Sequence[UUID] = (),
    ) -> ApprovalWorkflow:
        """Create a workflow from resolved assignments (SUBMIT)."""
        try:
            if not self._is_member(principal.user_id, project_id):
                raise UnauthorizedError(
                    actor_id=str(principal.user_id),
                    action=TransitionKind.SUBMIT.value,
                    target_id=str(report_id),
                    reason="not a member of the project",
                )
            workflow = plan_submission(
                workflow_id=uuid4(),
                report_id=report_id,
                project_id=project_id,
                created_by=principal.user_id,
                assignments=assignments,
                step_ids=[uuid4() for _ in assignments],
                policy=policy,
                now=self._clock.now(),
                file_ids=file_ids,
            )
            return self.store.create(
                workflow,
                principal.user_id,
                submission_notifications(workflow, principal.user_id),
            )
        except ApprovalKernelError as exc:
            self._log_rejected(principal, TransitionKind.SUBMIT, report_id, exc)
            raise

    def apply(self, principal: Principal, request: StateTransition) -> ApprovalWorkflow:
        """Apply one state-changing request and return the new snapshot."""
        target = self._target_id(request)
        try:
            workflow_id = (
                self.store.workflow_id_for_step(request.step_id)
                if isinstance(request, _STEP_ADDRESSED) else request.workflow_id
            )
            now = self._clock.now()

            def mutation(workflow: ApprovalWorkflow):
                return plan_transition(
                    workflow, request, principal, self._policy_for(workflow.project_id), now,
                )

            return self.store.apply_transition(workflow_id, mutation, principal.user_id)
        except ApprovalKernelError as exc:
            self._log_rejected(principal, request.kind, target, exc)
            raise

    def add_comment(self, principal: Principal, request: AddComment) -> Comment:
        try:
            workflow = self.store.get_by_id(request.workflow_id)
            self._require_member(principal, workflow, request.kind)

            parent_id = None
            recipients: list[UUID] = []
            if request.reply_to_id is not None:
                root = thread_root(self.store.comments(workflow.id), request.reply_to_id)
                if root is None:
                    raise CommentNotFoundError(str(request.reply_to_id))
                parent_id = root.id
                recipients.append(root.author_id)

            return self.store.add_comment(
                workflow_id=workflow.id,
                author_id=principal.user_id,
                content=request.content,
                is_internal=request.is_internal,
                parent_id=parent_id,
                notifications=side_channel_notifications(
                    "comment_reply", workflow, recipients, principal.user_id,
                ) if recipients else (),
            )
        except ApprovalKernelError as exc:
            self._log_rejected(principal, request.kind, request.workflow_id, exc)
            raise

    def request_information(
        self, principal: Principal, request: RequestInformation,
    ) -> InformationRequest:
        try:
            workflow = self.store.get_by_id(request.workflow_id)
            self._require_member(principal, workflow, request.kind)
            return self.store.add_information_request(
                workflow_id=workflow.id,
                requested_by=principal.user_id,
                requested_from=request.from_user_id,
                information=request.information,
                deadline=request.deadline,
                notifications=side_channel_notifications(
                    "information_requested", workflow, [request.from_user_id],
                    principal.user_id, information=request.information,
                ),
            )
        except ApprovalKernelError as exc:
            self._log_rejected(principal, request.kind, request.workflow_id, exc)
            raise

    def _require_member(
        self, principal: Principal, workflow: ApprovalWorkflow, kind: TransitionKind,
    ) -> None:
        if not self._is_member(principal.user_id, workflow.project_id):
            raise UnauthorizedError(
                actor_id=str(principal.user_id),
                action=kind.value,
                target_id=str(workflow.id),
                reason="not a member of the project",
            )

    @staticmethod
    def _target_id(request: StateTransition) -> UUID:
        if isinstance(request, _STEP_ADDRESSED):
            return request.step_id
        return request.workflow_id

    @staticmethod
    def _log_rejected(
        principal: Principal, kind: TransitionKind, target: UUID, exc: ApprovalKernelError,
    ) -> None:
        logger.warning(
            "transition_rejected",
            extra={
                "transition": kind.value,
                "target_id": str(target),
                "actor_id": str(principal.user_id),
                "error_code": exc.code,
                "error": str(exc),
            },
        )
