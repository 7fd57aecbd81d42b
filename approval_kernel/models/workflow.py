"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for approval workflows, their ordered steps
    and their attached report files.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ DTO types only.

Invariants enforced:
    - Status is one of the WorkflowStatus values (check constraint).
    - At most one non-terminal workflow per report (partial unique index;
      the store checks first and raises a typed error).
    - step_order is unique within a workflow.
    - ``version`` is the optimistic concurrency counter: every UPDATE of a
      workflow row is issued as ``... WHERE id = :id AND version = :v``, so
      a writer holding a stale snapshot fails with StaleDataError.
    - There is no stored "current step" column.  It is derived on read.

Failure modes:
    - IntegrityError on a second active workflow for the same report.
    - IntegrityError on a duplicate step_order.
    - StaleDataError when a concurrent transaction already bumped ``version``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import ApprovalStep, ApprovalWorkflow

_ACTIVE_PREDICATE = "status NOT IN ('APPROVED', 'REJECTED', 'CANCELLED')"


class ApprovalWorkflowModel(Base):
    """Persistent approval workflow.

    Guarantees:
        - Steps load ordered by step_order (selectin, one extra query).
        - ``version`` increments on every flushed UPDATE.
    """

    __tablename__ = "approval_workflows"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_REVIEW', 'APPROVED', 'REJECTED', "
            "'CHANGES_REQUESTED', 'CANCELLED', 'ESCALATED')",
            name="ck_approval_workflows_valid_status",
        ),
        Index(
            "uq_approval_workflows_active_report",
            "report_id",
            unique=True,
            postgresql_where=text(_ACTIVE_PREDICATE),
            sqlite_where=text(_ACTIVE_PREDICATE),
        ),
        Index("ix_approval_workflows_project_status", "project_id", "status"),
        Index("ix_approval_workflows_created_by", "created_by", "created_at"),
    )

    report_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    required_weight: Mapped[Decimal | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        back_populates="workflow",
        order_by="ApprovalStepModel.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    files: Mapped[list["WorkflowFileModel"]] = relationship(
        "WorkflowFileModel",
        back_populates="workflow",
        order_by="WorkflowFileModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalWorkflow {self.id} report={self.report_id} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalWorkflow:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            ApprovalWorkflow as ApprovalWorkflowDTO,
            WorkflowStatus,
        )

        return ApprovalWorkflowDTO(
            id=self.id,
            report_id=self.report_id,
            project_id=self.project_id,
            status=WorkflowStatus(self.status),
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            steps=tuple(
                s.to_dto() for s in sorted(self.steps, key=lambda s: s.step_order)
            ),
            required_weight=self.required_weight,
            file_ids=tuple(
                f.file_id for f in sorted(self.files, key=lambda f: f.position)
            ),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalWorkflow) -> ApprovalWorkflowModel:
        """Create ORM model (with steps and files) from domain DTO."""
        return cls(
            id=dto.id,
            report_id=dto.report_id,
            project_id=dto.project_id,
            status=dto.status.value,
            created_by=dto.created_by,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            required_weight=dto.required_weight,
            steps=[ApprovalStepModel.from_dto(s) for s in dto.steps],
            files=[
                WorkflowFileModel(file_id=fid, position=i)
                for i, fid in enumerate(dto.file_ids)
            ],
        )

    def replace_files(self, file_ids: tuple[UUID, ...]) -> None:
        # Existing rows are reused so (workflow_id, file_id) is never
        # inserted twice in one flush.
        existing = {f.file_id: f for f in self.files}
        files = []
        for i, fid in enumerate(file_ids):
            row = existing.get(fid) or WorkflowFileModel(file_id=fid)
            row.position = i
            files.append(row)
        self.files = files


class ApprovalStepModel(Base):
    """Persistent approval step.  One per required review, in fixed order."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_approval_steps_order"),
        CheckConstraint("step_order >= 1", name="ck_approval_steps_order_positive"),
        CheckConstraint("approval_weight > 0", name="ck_approval_steps_weight_positive"),
        CheckConstraint(
            "action IS NULL OR action IN ('APPROVE', 'REJECT', 'REQUEST_CHANGES', 'SKIP')",
            name="ck_approval_steps_valid_action",
        ),
        Index("ix_approval_steps_reviewer", "reviewer_id", "is_completed"),
        Index("ix_approval_steps_delegate", "delegated_to", "is_completed"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    delegated_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    action: Mapped[str | None] = mapped_column(String(32), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    can_skip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approval_weight: Mapped[Decimal] = mapped_column(nullable=False)
    required_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    workflow: Mapped["ApprovalWorkflowModel"] = relationship(
        "ApprovalWorkflowModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.id} order={self.step_order} "
            f"completed={self.is_completed} action={self.action}>"
        )

    def to_dto(self) -> ApprovalStep:
        from approval_kernel.domain.workflow import (
            ApprovalStep as ApprovalStepDTO,
            StepAction,
        )

        return ApprovalStepDTO(
            id=self.id,
            step_order=self.step_order,
            reviewer_id=self.reviewer_id,
            created_at=self.created_at,
            delegated_to=self.delegated_to,
            is_completed=self.is_completed,
            action=StepAction(self.action) if self.action is not None else None,
            comment=self.comment,
            reasoning=self.reasoning,
            completed_at=self.completed_at,
            completed_by=self.completed_by,
            due_date=self.due_date,
            started_at=self.started_at,
            can_skip=self.can_skip,
            escalation_level=self.escalation_level,
            approval_weight=self.approval_weight,
            required_role=self.required_role,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalStep) -> ApprovalStepModel:
        model = cls(id=dto.id)
        for name in STEP_MUTABLE_FIELDS + ("step_order", "reviewer_id", "created_at",
                                            "can_skip", "approval_weight", "required_role"):
            model.set_field(name, getattr(dto, name))
        return model

    def set_field(self, name: str, value) -> None:
        """Assign a DTO field value, storing enums by value."""
        if name == "action" and value is not None:
            value = value.value
        setattr(self, name, value)


# Fields a transition may change on an existing step.
STEP_MUTABLE_FIELDS: tuple[str, ...] = (
    "delegated_to",
    "is_completed",
    "action",
    "comment",
    "reasoning",
    "completed_at",
    "completed_by",
    "due_date",
    "started_at",
    "escalation_level",
)


class WorkflowFileModel(Base):
    """Report file attached to a workflow at submit or resubmit."""

    __tablename__ = "approval_workflow_files"

    __table_args__ = (
        UniqueConstraint("workflow_id", "file_id", name="uq_approval_workflow_files"),
        Index("ix_approval_workflow_files_file", "file_id"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    file_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    workflow: Mapped["ApprovalWorkflowModel"] = relationship(
        "ApprovalWorkflowModel", back_populates="files",
    )
