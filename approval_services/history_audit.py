"""
HistoryAuditService -- Verifies that status history explains the workflow.

Two checks, both read-only:
    - ``verify_chain``: every history row's hash recomputes and links to
      its predecessor.
    - ``verify_replay``: folding the history reproduces the stored
      workflow.  A mismatch means state changed without a history row.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from approval_engines.replay import replay_equivalent, replay_history
from approval_kernel.logging_config import get_logger
from approval_kernel.services.workflow_store import WorkflowStore

logger = get_logger("services.history_audit")


class HistoryAuditService:
    def __init__(self, session: Session):
        self._store = WorkflowStore(session)

    def verify_chain(self, workflow_id: UUID) -> bool:
        """Raises HistoryChainBrokenError on the first bad row."""
        return self._store.validate_history_chain(workflow_id)

    def verify_replay(self, workflow_id: UUID) -> bool:
        stored = self._store.get_by_id(workflow_id)
        replayed = replay_history(self._store.history(stored.id))
        if replay_equivalent(replayed, stored):
            logger.info("history_replay_matched", extra={"workflow_id": str(stored.id)})
            return True
        logger.error(
            "history_replay_mismatch",
            extra={
                "workflow_id": str(stored.id),
                "stored_status": stored.status.value,
                "replayed_status": replayed.status.value,
            },
        )
        return False
