"""
approval_services -- Orchestration and collaborator boundaries.

Composes the kernel, the pure engines and the configuration into the
client-facing ``ReportWorkflowService``.  Nothing below this package may
import from it.
"""

from approval_services.identity import RequestContext, StaticIdentityGateway
from approval_services.notifications import RecordingNotificationHook
from approval_services.report_workflow_service import (
    BulkError,
    BulkResult,
    ReportWorkflowService,
    WorkflowDetail,
)

__all__ = [
    "BulkError",
    "BulkResult",
    "RecordingNotificationHook",
    "ReportWorkflowService",
    "RequestContext",
    "StaticIdentityGateway",
    "WorkflowDetail",
]
