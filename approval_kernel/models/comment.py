"""
Module: approval_kernel.models.comment
Responsibility: ORM persistence for workflow comment threads and
    information requests.  Both are side channels: writing them never
    changes workflow status and never appends status history.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import Comment, InformationRequest


class CommentModel(Base):
    """Comment on a workflow.  ``parent_id`` always names a top-level comment."""

    __tablename__ = "approval_comments"

    __table_args__ = (
        Index("ix_approval_comments_workflow", "workflow_id", "created_at"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    author_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_comments.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Comment {self.id} workflow={self.workflow_id} internal={self.is_internal}>"

    def to_dto(self) -> Comment:
        from approval_kernel.domain.workflow import Comment

        return Comment(
            id=self.id,
            workflow_id=self.workflow_id,
            author_id=self.author_id,
            content=self.content,
            is_internal=self.is_internal,
            created_at=self.created_at,
            parent_id=self.parent_id,
        )


class InformationRequestModel(Base):
    """Request for additional information from a user on a workflow."""

    __tablename__ = "approval_information_requests"

    __table_args__ = (
        Index("ix_approval_information_requests_workflow", "workflow_id", "created_at"),
        Index("ix_approval_information_requests_recipient", "requested_from"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requested_from: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    information: Mapped[str] = mapped_column(Text, nullable=False)
    deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> InformationRequest:
        from approval_kernel.domain.workflow import InformationRequest

        return InformationRequest(
            id=self.id,
            workflow_id=self.workflow_id,
            requested_by=self.requested_by,
            requested_from=self.requested_from,
            information=self.information,
            created_at=self.created_at,
            deadline=self.deadline,
        )
