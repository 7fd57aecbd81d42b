"""
HistoryRecorder -- append-only, hash-chained status history.

Responsibility:
    Appends one StatusHistory row per state-changing transition and
    validates a workflow's history chain on demand.

Architecture position:
    Kernel > Services -- imperative shell.  Used only by WorkflowStore,
    inside the transaction that performs the transition.

Invariants enforced:
    - Per-workflow sequence: ``seq`` is 1 for SUBMIT and increments by one
      per transition.  The (workflow_id, seq) unique constraint turns two
      racing writers into one success and one IntegrityError.
    - Hash chain: ``hash = H(workflow_id, seq, transition, status,
      H(changes), prev_hash)`` with ``prev_hash`` the previous row's hash.

Failure modes:
    - HistoryChainBrokenError from ``validate_chain`` when a stored hash does
      not recompute, a link is broken, or seq has a gap.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.workflow import WorkflowStatus
from approval_kernel.exceptions import HistoryChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.status_history import StatusHistoryModel
from approval_kernel.services.base import BaseService
from approval_kernel.utils.hashing import hash_history_entry, hash_payload

logger = get_logger("services.history_recorder")


class HistoryRecorder(BaseService[StatusHistoryModel]):
    """Creates and validates status history rows for one session."""

    def _last_row(self, workflow_id: UUID) -> StatusHistoryModel | None:
        return self.session.execute(
            select(StatusHistoryModel)
            .where(StatusHistoryModel.workflow_id == workflow_id)
            .order_by(StatusHistoryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        *,
        workflow_id: UUID,
        transition: str,
        status: WorkflowStatus,
        previous_status: WorkflowStatus | None,
        changed_by: UUID,
        changes: dict[str, Any],
        created_at: datetime,
        reason: str | None = None,
        assigned_to: UUID | None = None,
    ) -> StatusHistoryModel:
        """
        Append a history row linked to the workflow's previous row.

        Postconditions:
            - The row is added to the session but NOT flushed; the store
              flushes it together with the state change it describes.
        """
        last = self._last_row(workflow_id)
        seq = 1 if last is None else last.seq + 1
        prev_hash = None if last is None else last.hash

        row_hash = hash_history_entry(
            workflow_id=str(workflow_id),
            seq=seq,
            transition=transition,
            status=status.value,
            changes_hash=hash_payload(changes),
            prev_hash=prev_hash,
        )

        row = StatusHistoryModel(
            workflow_id=workflow_id,
            seq=seq,
            transition=transition,
            status=status.value,
            previous_status=previous_status.value if previous_status else None,
            changed_by=changed_by,
            reason=reason,
            assigned_to=assigned_to,
            changes=changes,
            created_at=created_at,
            prev_hash=prev_hash,
            hash=row_hash,
        )
        self.session.add(row)

        logger.debug(
            "history_row_appended",
            extra={
                "workflow_id": str(workflow_id),
                "seq": seq,
                "transition": transition,
                "status": status.value,
            },
        )
        return row

    def rows(self, workflow_id: UUID) -> list[StatusHistoryModel]:
        return list(
            self.session.execute(
                select(StatusHistoryModel)
                .where(StatusHistoryModel.workflow_id == workflow_id)
                .order_by(StatusHistoryModel.seq)
            ).scalars().all()
        )

    def validate_chain(self, workflow_id: UUID) -> bool:
        """
        Validate one workflow's history chain.

        Returns:
            True if every row recomputes and links to its predecessor.

        Raises:
            HistoryChainBrokenError: at the first row that does not verify.
        """
        rows = self.rows(workflow_id)
        prev_hash: str | None = None
        for expected_seq, row in enumerate(rows, start=1):
            if row.seq != expected_seq:
                logger.critical(
                    "history_chain_broken",
                    extra={"workflow_id": str(workflow_id), "seq": row.seq, "problem": "gap"},
                )
                raise HistoryChainBrokenError(
                    str(workflow_id), row.seq, f"seq {expected_seq}", f"seq {row.seq}",
                )
            if row.prev_hash != prev_hash:
                logger.critical(
                    "history_chain_broken",
                    extra={"workflow_id": str(workflow_id), "seq": row.seq, "problem": "link"},
                )
                raise HistoryChainBrokenError(
                    str(workflow_id), row.seq, prev_hash or "None", row.prev_hash or "None",
                )
            expected_hash = hash_history_entry(
                workflow_id=str(row.workflow_id),
                seq=row.seq,
                transition=row.transition,
                status=row.status,
                changes_hash=hash_payload(row.changes),
                prev_hash=row.prev_hash,
            )
            if row.hash != expected_hash:
                logger.critical(
                    "history_chain_broken",
                    extra={"workflow_id": str(workflow_id), "seq": row.seq, "problem": "hash"},
                )
                raise HistoryChainBrokenError(
                    str(workflow_id), row.seq, expected_hash, row.hash,
                )
            prev_hash = row.hash

        logger.info(
            "history_chain_valid",
            extra={"workflow_id": str(workflow_id), "row_count": len(rows)},
        )
        return True
