"""
Transition requests (``approval_kernel.domain.transitions``).

Responsibility
--------------
The closed set of requests a caller can make against a workflow.  Each
request is a frozen dataclass carrying only the fields its precondition
needs, so a partially-filled request cannot be constructed.  Required text
fields are validated at construction time.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Reasons, notes, comment content and information text are non-blank.
* REQUEST_CHANGES carries a non-blank note.
* Due dates are timezone-aware.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Union
from uuid import UUID

from approval_kernel.domain.workflow import ApprovalWorkflow, StepAction
from approval_kernel.exceptions import ValidationFailedError


class TransitionKind(str, Enum):
    """Every kind of call that touches a workflow."""

    SUBMIT = "SUBMIT"
    REVIEW = "REVIEW"
    DELEGATE = "DELEGATE"
    ESCALATE = "ESCALATE"
    SET_DUE_DATE = "SET_DUE_DATE"
    START_REVIEW = "START_REVIEW"
    RETURN_TO_STEP = "RETURN_TO_STEP"
    RESUBMIT = "RESUBMIT"
    CANCEL = "CANCEL"
    # Side channels: no status change, no history row.
    REQUEST_INFORMATION = "REQUEST_INFORMATION"
    ADD_COMMENT = "ADD_COMMENT"


SIDE_CHANNEL_KINDS: frozenset[TransitionKind] = frozenset({
    TransitionKind.REQUEST_INFORMATION,
    TransitionKind.ADD_COMMENT,
})


def _require_text(field_name: str, value: str | None) -> None:
    if value is None or not value.strip():
        raise ValidationFailedError(field_name, "must not be empty")


# =========================================================================
# Requests
# =========================================================================


@dataclass(frozen=True)
class Review:
    """APPROVE / REJECT / REQUEST_CHANGES / SKIP on the current step.

    ``step_id`` and ``expected_version`` are optional double-submit guards.
    A given ``step_id`` must still be the current step.  A given
    ``expected_version`` must equal the workflow version the caller read;
    a retry carrying the version it read before its first attempt fails
    with AlreadyCompletedError.
    """

    kind: ClassVar[TransitionKind] = TransitionKind.REVIEW

    workflow_id: UUID
    action: StepAction
    note: str | None = None
    reasoning: str | None = None
    step_id: UUID | None = None
    expected_version: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.action, StepAction):
            raise ValidationFailedError("action", f"unknown review action {self.action!r}")
        if self.action == StepAction.REQUEST_CHANGES:
            _require_text("note", self.note)


@dataclass(frozen=True)
class Delegate:
    kind: ClassVar[TransitionKind] = TransitionKind.DELEGATE

    step_id: UUID
    to_user_id: UUID
    reason: str

    def __post_init__(self) -> None:
        _require_text("reason", self.reason)


@dataclass(frozen=True)
class Escalate:
    kind: ClassVar[TransitionKind] = TransitionKind.ESCALATE

    workflow_id: UUID
    to_user_id: UUID
    reason: str

    def __post_init__(self) -> None:
        _require_text("reason", self.reason)


@dataclass(frozen=True)
class SetDueDate:
    kind: ClassVar[TransitionKind] = TransitionKind.SET_DUE_DATE

    step_id: UUID
    due_date: datetime

    def __post_init__(self) -> None:
        if self.due_date.tzinfo is None:
            raise ValidationFailedError("due_date", "must be timezone-aware")


@dataclass(frozen=True)
class StartReview:
    kind: ClassVar[TransitionKind] = TransitionKind.START_REVIEW

    step_id: UUID


@dataclass(frozen=True)
class RequestInformation:
    kind: ClassVar[TransitionKind] = TransitionKind.REQUEST_INFORMATION

    workflow_id: UUID
    from_user_id: UUID
    information: str
    deadline: datetime | None = None

    def __post_init__(self) -> None:
        _require_text("information", self.information)
        if self.deadline is not None and self.deadline.tzinfo is None:
            raise ValidationFailedError("deadline", "must be timezone-aware")


@dataclass(frozen=True)
class ReturnToStep:
    kind: ClassVar[TransitionKind] = TransitionKind.RETURN_TO_STEP

    workflow_id: UUID
    target_step_id: UUID
    reason: str

    def __post_init__(self) -> None:
        _require_text("reason", self.reason)


@dataclass(frozen=True)
class Resubmit:
    """Reset a rejected or changes-requested workflow.

    ``file_ids`` of ``None`` keeps the attached files; a tuple replaces them.
    """

    kind: ClassVar[TransitionKind] = TransitionKind.RESUBMIT

    workflow_id: UUID
    file_ids: tuple[UUID, ...] | None = None


@dataclass(frozen=True)
class Cancel:
    kind: ClassVar[TransitionKind] = TransitionKind.CANCEL

    workflow_id: UUID
    reason: str

    def __post_init__(self) -> None:
        _require_text("reason", self.reason)


@dataclass(frozen=True)
class AddComment:
    kind: ClassVar[TransitionKind] = TransitionKind.ADD_COMMENT

    workflow_id: UUID
    content: str
    is_internal: bool = False
    reply_to_id: UUID | None = None

    def __post_init__(self) -> None:
        _require_text("content", self.content)


StateTransition = Union[
    Review, Delegate, Escalate, SetDueDate, StartReview,
    ReturnToStep, Resubmit, Cancel,
]

TransitionRequest = Union[StateTransition, RequestInformation, AddComment]


# =========================================================================
# Outcomes
# =========================================================================


@dataclass(frozen=True)
class Notification:
    """One outbound notification, written to the outbox with the transition."""

    event_type: str
    recipients: tuple[UUID, ...]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of planning a state-changing transition.

    ``workflow`` is the complete post-transition snapshot; the store diffs
    it against the pre-transition snapshot to produce the effect record.
    """

    kind: TransitionKind
    workflow: ApprovalWorkflow
    reason: str | None = None
    assigned_to: UUID | None = None
    notifications: tuple[Notification, ...] = ()
