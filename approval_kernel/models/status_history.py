"""
Module: approval_kernel.models.status_history
Responsibility: ORM persistence for the append-only status history of a
    workflow.  One row per state-changing transition.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are rejected by ORM event listeners
      with ImmutabilityViolationError.
    - (workflow_id, seq) is unique.  Two transactions that both planned
      from the same state race on the same seq; the loser fails.
    - ``hash`` chains each row to the previous row of the same workflow
      (see utils/hashing.hash_history_entry).

Audit relevance:
    History is the sole source of truth for what happened when.  The
    ``changes`` effect records are sufficient to rebuild the workflow.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import StatusHistoryEntry

logger = get_logger("models.status_history")


class StatusHistoryModel(Base):
    """Persistent status history row. Append-only."""

    __tablename__ = "approval_status_history"

    __table_args__ = (
        UniqueConstraint("workflow_id", "seq", name="uq_approval_status_history_seq"),
        Index("ix_approval_status_history_workflow", "workflow_id", "seq"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    transition: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    changed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StatusHistory {self.workflow_id}#{self.seq} "
            f"{self.transition} -> {self.status}>"
        )

    def to_dto(self) -> StatusHistoryEntry:
        from approval_kernel.domain.workflow import StatusHistoryEntry, WorkflowStatus

        return StatusHistoryEntry(
            id=self.id,
            workflow_id=self.workflow_id,
            seq=self.seq,
            transition=self.transition,
            status=WorkflowStatus(self.status),
            previous_status=(
                WorkflowStatus(self.previous_status)
                if self.previous_status is not None else None
            ),
            changed_by=self.changed_by,
            created_at=self.created_at,
            reason=self.reason,
            assigned_to=self.assigned_to,
            changes=dict(self.changes),
            prev_hash=self.prev_hash,
            hash=self.hash,
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(StatusHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to status history rows."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StatusHistory",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StatusHistory",
        entity_id=str(target.id),
        reason="Status history is append-only -- cannot modify",
    )


@event.listens_for(StatusHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of status history rows."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StatusHistory",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StatusHistory",
        entity_id=str(target.id),
        reason="Status history is append-only -- cannot delete",
    )
