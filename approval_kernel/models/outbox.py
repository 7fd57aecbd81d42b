"""
Module: approval_kernel.models.outbox
Responsibility: Transactional notification outbox.  Rows are written in the
    same transaction as the transition that caused them and delivered after
    commit, so a notification can never describe a transition that rolled
    back, and a delivery failure can never roll a transition back.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString


class NotificationOutboxModel(Base):
    """One pending (or delivered) notification."""

    __tablename__ = "approval_notification_outbox"

    __table_args__ = (
        Index("ix_approval_outbox_pending", "delivered_at", "created_at"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    recipients: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<NotificationOutbox {self.id} {self.event_type} "
            f"attempts={self.attempts} delivered={self.delivered_at is not None}>"
        )
