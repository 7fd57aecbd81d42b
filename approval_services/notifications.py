"""
approval_services.notifications -- Notification hook and outbox dispatch.

Responsibility:
    Delivers the outbox rows written by transitions to the deployment's
    ``NotificationHook``.  Runs after the transition's transaction has
    committed, in its own transaction.

Architecture position:
    Services -- collaborator boundary.

Invariants enforced:
    - A delivery failure never propagates to the caller of a transition.
      It is logged at WARNING with the traceback and recorded on the outbox
      row (``attempts``, ``last_error``) for a later retry.
    - A row is marked delivered only after the hook returned normally.

Failure modes:
    - Store errors while reading or marking rows propagate as
      StoreUnavailableError; the transition itself is already committed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.transitions import Notification
from approval_kernel.exceptions import StoreUnavailableError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.outbox import NotificationOutboxModel

logger = get_logger("services.notifications")

DEFAULT_MAX_ATTEMPTS = 5


@runtime_checkable
class NotificationHook(Protocol):
    def notify(self, notification: Notification) -> None: ...


@dataclass
class RecordingNotificationHook:
    """Keeps every delivered notification in memory."""

    delivered: list[Notification] = field(default_factory=list)

    def notify(self, notification: Notification) -> None:
        self.delivered.append(notification)

    def events(self) -> list[str]:
        return [n.event_type for n in self.delivered]


class NullNotificationHook:
    def notify(self, notification: Notification) -> None:
        return None


class OutboxDispatcher:
    """Drains undelivered outbox rows into a ``NotificationHook``."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        hook: NotificationHook,
        clock: Clock | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self._session_factory = session_factory
        self._hook = hook
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    def dispatch(self, workflow_id: UUID | None = None) -> int:
        """Deliver pending rows, oldest first.  Returns the number delivered."""
        delivered = 0
        try:
            with session_scope(self._session_factory) as session:
                stmt = (
                    select(NotificationOutboxModel)
                    .where(
                        NotificationOutboxModel.delivered_at.is_(None),
                        NotificationOutboxModel.attempts < self._max_attempts,
                    )
                    .order_by(NotificationOutboxModel.created_at, NotificationOutboxModel.id)
                )
                if workflow_id is not None:
                    stmt = stmt.where(NotificationOutboxModel.workflow_id == workflow_id)

                for row in session.execute(stmt).scalars().all():
                    if self._deliver(row):
                        delivered += 1
        except (OperationalError, DisconnectionError) as exc:
            raise StoreUnavailableError("dispatch_outbox", str(exc)) from exc
        return delivered

    def _deliver(self, row: NotificationOutboxModel) -> bool:
        notification = Notification(
            event_type=row.event_type,
            recipients=tuple(UUID(r) for r in row.recipients),
            payload=dict(row.payload),
        )
        row.attempts += 1
        try:
            self._hook.notify(notification)
        except Exception as exc:
            row.last_error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "outbox_id": str(row.id),
                    "workflow_id": str(row.workflow_id),
                    "event_type": row.event_type,
                    "attempts": row.attempts,
                },
                exc_info=True,
            )
            return False

        row.delivered_at = self._clock.now()
        row.last_error = None
        logger.debug(
            "notification_delivered",
            extra={
                "outbox_id": str(row.id),
                "workflow_id": str(row.workflow_id),
                "event_type": row.event_type,
                "recipient_count": len(notification.recipients),
            },
        )
        return True
