"""
WorkflowStore -- durable, consistent storage of approval workflows.

Responsibility:
    Reads workflows, steps, comments, information requests and history, and
    applies transitions atomically: the state change, exactly one status
    history row, and the transition's outbox rows are flushed together.

Architecture position:
    Kernel > Services -- imperative shell.  The only writer of workflow
    state.  Transition planning happens in the pure engines; the store
    receives the plan as a ``mutation`` callable and persists its result.

Invariants enforced:
    - Every state change appends exactly one history row in the same flush.
      A failed mutation appends nothing.
    - Per-workflow linearizability: the workflow row is locked with
      ``SELECT ... FOR UPDATE`` on PostgreSQL, and on every dialect the
      UPDATE carries the optimistic ``version`` check.  A stale writer gets
      AlreadyCompletedError, never a silent overwrite.
    - At most one non-terminal workflow per report, on SUBMIT and on
      RESUBMIT.
    - Services flush, never commit.  The caller owns the transaction.

Failure modes:
    - WorkflowNotFoundError / StepNotFoundError for unknown ids.
    - AlreadyCompletedError on StaleDataError or a history seq collision.
    - InvalidTransitionError when a report already has an active workflow.
    - StoreUnavailableError on OperationalError / DisconnectionError.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.db.engine import is_postgres
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.effects import diff_workflows, snapshot_workflow
from approval_kernel.domain.transitions import (
    Notification,
    TransitionKind,
    TransitionOutcome,
)
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    Comment,
    InformationRequest,
    StatusHistoryEntry,
    WorkflowStatus,
)
from approval_kernel.exceptions import (
    AlreadyCompletedError,
    CommentNotFoundError,
    InvalidTransitionError,
    StepNotFoundError,
    StoreUnavailableError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.comment import CommentModel, InformationRequestModel
from approval_kernel.models.outbox import NotificationOutboxModel
from approval_kernel.models.workflow import (
    ApprovalStepModel,
    ApprovalWorkflowModel,
    WorkflowFileModel,
)
from approval_kernel.selectors.workflow_selector import WorkflowSelector
from approval_kernel.services.base import BaseService
from approval_kernel.services.history_recorder import HistoryRecorder

logger = get_logger("services.workflow_store")

Mutation = Callable[[ApprovalWorkflow], TransitionOutcome]

_TERMINAL_VALUES = ("APPROVED", "REJECTED", "CANCELLED")


class WorkflowStore(BaseService[ApprovalWorkflowModel]):
    """
    Persistence boundary for approval workflows.

    Contract:
        Accepts a Session from the caller.  Write methods flush; they never
        commit or roll back.  All return values are frozen DTOs.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._history = HistoryRecorder(session)
        self._selector = WorkflowSelector(session)

    @contextmanager
    def _translate_errors(self, operation: str, workflow_id: UUID | None = None) -> Iterator[None]:
        try:
            yield
        except StaleDataError as exc:
            logger.warning(
                "optimistic_lock_conflict",
                extra={"operation": operation, "workflow_id": str(workflow_id)},
            )
            raise AlreadyCompletedError(str(workflow_id)) from exc
        except (OperationalError, DisconnectionError) as exc:
            logger.error(
                "store_unavailable",
                extra={"operation": operation, "detail": str(exc.orig) if hasattr(exc, "orig") else str(exc)},
            )
            raise StoreUnavailableError(operation, str(exc)) from exc

    # =====================================================================
    # Reads
    # =====================================================================

    def _load(self, workflow_or_report_id: UUID, *, for_update: bool = False) -> ApprovalWorkflowModel:
        stmt = select(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.id == workflow_or_report_id
        )
        if for_update:
            stmt = stmt.execution_options(populate_existing=True)
            if is_postgres(self.session):
                stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is not None:
            return model

        # Fall back to the most recent workflow for a report id.
        stmt = (
            select(ApprovalWorkflowModel)
            .where(ApprovalWorkflowModel.report_id == workflow_or_report_id)
            .order_by(ApprovalWorkflowModel.created_at.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.execution_options(populate_existing=True)
            if is_postgres(self.session):
                stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise WorkflowNotFoundError(str(workflow_or_report_id))
        return model

    def get_by_id(self, workflow_or_report_id: UUID) -> ApprovalWorkflow:
        """Workflow by id, or the most recent workflow for a report id."""
        with self._translate_errors("get_by_id"):
            return self._load(workflow_or_report_id).to_dto()

    def workflow_id_for_step(self, step_id: UUID) -> UUID:
        with self._translate_errors("workflow_id_for_step"):
            workflow_id = self.session.execute(
                select(ApprovalStepModel.workflow_id).where(ApprovalStepModel.id == step_id)
            ).scalar_one_or_none()
        if workflow_id is None:
            raise StepNotFoundError(str(step_id))
        return workflow_id

    def get_by_step(self, step_id: UUID) -> ApprovalWorkflow:
        return self.get_by_id(self.workflow_id_for_step(step_id))

    def get_by_file(self, file_id: UUID) -> ApprovalWorkflow:
        """Most recent workflow that has ``file_id`` attached."""
        with self._translate_errors("get_by_file"):
            model = self.session.execute(
                select(ApprovalWorkflowModel)
                .join(WorkflowFileModel, WorkflowFileModel.workflow_id == ApprovalWorkflowModel.id)
                .where(WorkflowFileModel.file_id == file_id)
                .order_by(ApprovalWorkflowModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if model is None:
                raise WorkflowNotFoundError(str(file_id))
            return model.to_dto()

    def find_active_for_report(
        self, report_id: UUID, exclude_id: UUID | None = None,
    ) -> ApprovalWorkflow | None:
        stmt = select(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.report_id == report_id,
            ApprovalWorkflowModel.status.not_in(_TERMINAL_VALUES),
        )
        if exclude_id is not None:
            stmt = stmt.where(ApprovalWorkflowModel.id != exclude_id)
        with self._translate_errors("find_active_for_report"):
            model = self.session.execute(stmt.limit(1)).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_pending_for_reviewer(
        self, user_id: UUID, project_id: UUID | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        with self._translate_errors("list_pending_for_reviewer"):
            return self._selector.list_pending_for_reviewer(user_id, project_id)

    def list_submitted_by_user(
        self,
        user_id: UUID,
        project_id: UUID | None = None,
        status: WorkflowStatus | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        with self._translate_errors("list_submitted_by_user"):
            return self._selector.list_submitted_by_user(user_id, project_id, status)

    def list_for_project(
        self, project_id: UUID, involving: UUID | None = None,
    ) -> tuple[ApprovalWorkflow, ...]:
        with self._translate_errors("list_for_project"):
            return self._selector.list_for_project(project_id, involving)

    def history(self, workflow_id: UUID) -> tuple[StatusHistoryEntry, ...]:
        with self._translate_errors("history", workflow_id):
            return tuple(row.to_dto() for row in self._history.rows(workflow_id))

    def validate_history_chain(self, workflow_id: UUID) -> bool:
        with self._translate_errors("validate_history_chain", workflow_id):
            return self._history.validate_chain(workflow_id)

    def comments(self, workflow_id: UUID) -> tuple[Comment, ...]:
        """Flat comment rows, oldest first."""
        with self._translate_errors("comments", workflow_id):
            rows = self.session.execute(
                select(CommentModel)
                .where(CommentModel.workflow_id == workflow_id)
                .order_by(CommentModel.created_at, CommentModel.id)
            ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def information_requests(self, workflow_id: UUID) -> tuple[InformationRequest, ...]:
        with self._translate_errors("information_requests", workflow_id):
            rows = self.session.execute(
                select(InformationRequestModel)
                .where(InformationRequestModel.workflow_id == workflow_id)
                .order_by(InformationRequestModel.created_at, InformationRequestModel.id)
            ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    # =====================================================================
    # Writes
    # =====================================================================

    def create(
        self,
        workflow: ApprovalWorkflow,
        actor_id: UUID,
        notifications: Iterable[Notification] = (),
    ) -> ApprovalWorkflow:
        """
        Persist a newly submitted workflow with its SUBMIT history row.

        Raises:
            InvalidTransitionError: the report already has an active workflow.
        """
        with self._translate_errors("create", workflow.id):
            existing = self.find_active_for_report(workflow.report_id)
            if existing is not None:
                raise InvalidTransitionError(
                    workflow_id=str(existing.id),
                    transition=TransitionKind.SUBMIT.value,
                    current_status=existing.status.value,
                    reason=f"report {workflow.report_id} already has an active workflow",
                )

            model = ApprovalWorkflowModel.from_dto(workflow)
            self.session.add(model)
            self._history.record(
                workflow_id=workflow.id,
                transition=TransitionKind.SUBMIT.value,
                status=workflow.status,
                previous_status=None,
                changed_by=actor_id,
                changes={"snapshot": snapshot_workflow(workflow)},
                created_at=workflow.created_at,
            )
            self._enqueue(workflow.id, notifications, workflow.created_at)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise InvalidTransitionError(
                    workflow_id=str(workflow.id),
                    transition=TransitionKind.SUBMIT.value,
                    current_status=workflow.status.value,
                    reason="report already has an active workflow",
                ) from exc

        logger.info(
            "workflow_submitted",
            extra={
                "workflow_id": str(workflow.id),
                "report_id": str(workflow.report_id),
                "project_id": str(workflow.project_id),
                "step_count": len(workflow.steps),
                "status": workflow.status.value,
            },
        )
        return model.to_dto()

    def apply_transition(
        self,
        workflow_id: UUID,
        mutation: Mutation,
        actor_id: UUID,
    ) -> ApprovalWorkflow:
        """
        Atomically apply one state-changing transition.

        Preconditions:
            ``mutation`` is pure: given the current snapshot it either
            raises or returns the complete post-transition snapshot.

        Postconditions:
            Workflow and step rows reflect the new snapshot, ``version`` is
            bumped, one history row carries the effect record, and outbox
            rows are queued.  Nothing is committed.

        Raises:
            Whatever ``mutation`` raises (nothing is written in that case),
            AlreadyCompletedError, InvalidTransitionError,
            StoreUnavailableError.
        """
        with self._translate_errors("apply_transition", workflow_id):
            model = self._load(workflow_id, for_update=True)
            before = model.to_dto()
            outcome = mutation(before)
            after = outcome.workflow

            if before.is_terminal and not after.is_terminal:
                other = self.find_active_for_report(after.report_id, exclude_id=after.id)
                if other is not None:
                    raise InvalidTransitionError(
                        workflow_id=str(after.id),
                        transition=outcome.kind.value,
                        current_status=before.status.value,
                        reason=f"report already has active workflow {other.id}",
                    )

            changes = diff_workflows(before, after)
            self._history.record(
                workflow_id=after.id,
                transition=outcome.kind.value,
                status=after.status,
                previous_status=before.status,
                changed_by=actor_id,
                changes=changes,
                created_at=after.updated_at,
                reason=outcome.reason,
                assigned_to=outcome.assigned_to,
            )
            self._apply_changes(model, after, changes)
            self._enqueue(after.id, outcome.notifications, after.updated_at)
            try:
                self.session.flush()
            except IntegrityError as exc:
                # Lost the history seq race to a concurrent writer.
                logger.warning(
                    "history_seq_conflict",
                    extra={"workflow_id": str(workflow_id)},
                )
                raise AlreadyCompletedError(str(workflow_id)) from exc

            result = model.to_dto()

        logger.info(
            "workflow_transition",
            extra={
                "workflow_id": str(result.id),
                "transition": outcome.kind.value,
                "from_status": before.status.value,
                "to_status": result.status.value,
                "version": result.version,
                "changed_steps": len(changes.get("steps", {})),
            },
        )
        return result

    def _apply_changes(
        self,
        model: ApprovalWorkflowModel,
        after: ApprovalWorkflow,
        changes: dict,
    ) -> None:
        if "status" in changes:
            model.status = after.status.value
        wf_changes = changes.get("workflow", {})
        if "required_weight" in wf_changes:
            model.required_weight = after.required_weight
        if "file_ids" in wf_changes:
            model.replace_files(after.file_ids)

        steps_by_id = {s.id: s for s in model.steps}
        new_steps = {s.id: s for s in after.steps}
        for step_id, fields in changes.get("steps", {}).items():
            step_model = steps_by_id[UUID(step_id)]
            new_step = new_steps[UUID(step_id)]
            for name in fields:
                step_model.set_field(name, getattr(new_step, name))

        # Always UPDATE the workflow row so the version check runs, even
        # when the clock has not moved since the previous transition.
        model.updated_at = after.updated_at
        flag_modified(model, "updated_at")

    def _enqueue(
        self,
        workflow_id: UUID,
        notifications: Iterable[Notification],
        at: datetime,
    ) -> None:
        for n in notifications:
            self.session.add(NotificationOutboxModel(
                workflow_id=workflow_id,
                event_type=n.event_type,
                recipients=[str(r) for r in n.recipients],
                payload=dict(n.payload),
                created_at=at,
                attempts=0,
            ))

    def add_comment(
        self,
        *,
        workflow_id: UUID,
        author_id: UUID,
        content: str,
        is_internal: bool = False,
        parent_id: UUID | None = None,
        notifications: Iterable[Notification] = (),
    ) -> Comment:
        """
        Append a comment.  Side channel: no status change, no history row.

        ``parent_id`` must name a top-level comment of the same workflow.
        """
        with self._translate_errors("add_comment", workflow_id):
            if parent_id is not None:
                parent = self.session.get(CommentModel, parent_id)
                if parent is None or parent.workflow_id != workflow_id:
                    raise CommentNotFoundError(str(parent_id))
                if parent.parent_id is not None:
                    parent_id = parent.parent_id

            now = self._clock.now()
            row = CommentModel(
                workflow_id=workflow_id,
                author_id=author_id,
                content=content,
                is_internal=is_internal,
                parent_id=parent_id,
                created_at=now,
            )
            self.session.add(row)
            self._enqueue(workflow_id, notifications, now)
            self.session.flush()

        logger.info(
            "comment_added",
            extra={
                "workflow_id": str(workflow_id),
                "comment_id": str(row.id),
                "is_internal": is_internal,
                "is_reply": parent_id is not None,
            },
        )
        return row.to_dto()

    def add_information_request(
        self,
        *,
        workflow_id: UUID,
        requested_by: UUID,
        requested_from: UUID,
        information: str,
        deadline: datetime | None = None,
        notifications: Iterable[Notification] = (),
    ) -> InformationRequest:
        """Append an information request.  Side channel like comments."""
        with self._translate_errors("add_information_request", workflow_id):
            now = self._clock.now()
            row = InformationRequestModel(
                workflow_id=workflow_id,
                requested_by=requested_by,
                requested_from=requested_from,
                information=information,
                deadline=deadline,
                created_at=now,
            )
            self.session.add(row)
            self._enqueue(workflow_id, notifications, now)
            self.session.flush()

        logger.info(
            "information_requested",
            extra={
                "workflow_id": str(workflow_id),
                "request_id": str(row.id),
                "requested_from": str(requested_from),
            },
        )
        return row.to_dto()
