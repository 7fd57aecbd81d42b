"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the approval engine must react differently to "you may not do
that", "that already happened", and "the database is down".  Parsing message
strings for that distinction is fragile, so every failure has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (workflow_id, step_id, actor_id, ...)

Example:
    try:
        service.review(ctx, workflow_id, StepAction.APPROVE)
    except AlreadyCompletedError as e:
        # Lost the race: somebody else completed the step first
        api_response(code=e.code, step=e.step_id)
    except StoreUnavailableError:
        retry_later()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- UnauthorizedError            actor is not the effective reviewer / lacks role
    +-- InvalidTransitionError       transition not legal from the current state
    +-- ConcurrencyError
    |   +-- AlreadyCompletedError    optimistic-concurrency loss / double submit
    +-- ValidationFailedError        missing reason/note, malformed request
    +-- NotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- StepNotFoundError
    |   +-- CommentNotFoundError
    +-- StoreUnavailableError        transient infrastructure failure (retryable)
    +-- ImmutabilityViolationError   UPDATE/DELETE of a history row
    +-- HistoryChainBrokenError      history hash chain does not verify
    +-- ConfigurationError           approval configuration cannot be loaded

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                  | When Raised                                  | Retry?
----------------------|----------------------------------------------|-------
UNAUTHORIZED          | Actor may not act on the step/workflow       | no
INVALID_TRANSITION    | e.g. REVIEW on terminal workflow             | no
ALREADY_COMPLETED     | Step completed by a concurrent call          | no
VALIDATION_FAILED     | Empty reason/note, bad status filter         | no
WORKFLOW_NOT_FOUND    | Unknown workflow or report id                | no
STEP_NOT_FOUND        | Unknown step id                              | no
COMMENT_NOT_FOUND     | Reply target does not exist                  | no
STORE_UNAVAILABLE     | Database unreachable / operational error     | yes
IMMUTABILITY_VIOLATION| History row update/delete attempted          | no
HISTORY_CHAIN_BROKEN  | Stored history hash does not recompute       | no
CONFIGURATION_ERROR   | Missing, malformed or invalid config file    | no

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Only ``StoreUnavailableError`` sets ``retryable = True``.  Everything
   else is terminal for the call and must be surfaced to the end user.

2. Codes are class attributes so that API documentation and handlers can
   reference ``UnauthorizedError.code`` without instantiation.

3. All context is stored as attributes; the structured log formatter
   copies public attributes of the exception into the log record.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"
    retryable: bool = False


class UnauthorizedError(ApprovalKernelError):
    """Actor is not permitted to perform the requested transition."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, action: str, target_id: str, reason: str = ""):
        self.actor_id = actor_id
        self.action = action
        self.target_id = target_id
        self.reason = reason
        message = f"Actor {actor_id} may not {action} on {target_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidTransitionError(ApprovalKernelError):
    """Transition is not legal from the workflow's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, workflow_id: str, transition: str, current_status: str, reason: str = ""):
        self.workflow_id = workflow_id
        self.transition = transition
        self.current_status = current_status
        self.reason = reason
        message = (
            f"Cannot apply {transition} to workflow {workflow_id} "
            f"in status {current_status}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class AlreadyCompletedError(ConcurrencyError):
    """The targeted step (or workflow version) was changed by another call."""

    code: str = "ALREADY_COMPLETED"

    def __init__(self, workflow_id: str, step_id: str | None = None):
        self.workflow_id = workflow_id
        self.step_id = step_id
        if step_id is not None:
            message = f"Step {step_id} of workflow {workflow_id} is already completed"
        else:
            message = (
                f"Workflow {workflow_id} was modified by another transaction"
            )
        super().__init__(message)


class ValidationFailedError(ApprovalKernelError):
    """A required field is missing or malformed."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class NotFoundError(ApprovalKernelError):
    """Base exception for unknown entities."""

    code: str = "NOT_FOUND"


class WorkflowNotFoundError(NotFoundError):
    """No workflow matches the given workflow, report, or file id."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, lookup_id: str):
        self.lookup_id = lookup_id
        super().__init__(f"Workflow not found: {lookup_id}")


class StepNotFoundError(NotFoundError):
    """No step matches the given id."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Approval step not found: {step_id}")


class CommentNotFoundError(NotFoundError):
    """Reply target comment does not exist on the workflow."""

    code: str = "COMMENT_NOT_FOUND"

    def __init__(self, comment_id: str):
        self.comment_id = comment_id
        super().__init__(f"Comment not found: {comment_id}")


class StoreUnavailableError(ApprovalKernelError):
    """Transient infrastructure failure; the caller may retry."""

    code: str = "STORE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Workflow store unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ImmutabilityViolationError(ApprovalKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


class HistoryChainBrokenError(ApprovalKernelError):
    """Stored status-history hash chain does not verify."""

    code: str = "HISTORY_CHAIN_BROKEN"

    def __init__(self, workflow_id: str, seq: int, expected_hash: str, actual_hash: str):
        self.workflow_id = workflow_id
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"History chain broken for workflow {workflow_id} at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


class ConfigurationError(ApprovalKernelError):
    """The approval configuration is missing, malformed or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Approval configuration {source} cannot be loaded: {detail}")
