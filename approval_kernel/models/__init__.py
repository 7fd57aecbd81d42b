"""ORM models for the approval kernel."""

from approval_kernel.models.comment import CommentModel, InformationRequestModel
from approval_kernel.models.outbox import NotificationOutboxModel
from approval_kernel.models.status_history import StatusHistoryModel
from approval_kernel.models.workflow import (
    STEP_MUTABLE_FIELDS,
    ApprovalStepModel,
    ApprovalWorkflowModel,
    WorkflowFileModel,
)

__all__ = [
    "ApprovalStepModel",
    "ApprovalWorkflowModel",
    "CommentModel",
    "InformationRequestModel",
    "NotificationOutboxModel",
    "STEP_MUTABLE_FIELDS",
    "StatusHistoryModel",
    "WorkflowFileModel",
]
