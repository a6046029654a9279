"""Custom exceptions for the debate arena."""

from typing import Any


class ArenaError(Exception):
    """Base exception for all arena errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# LLM Errors
# =============================================================================


class LLMError(ArenaError):
    """Base exception for LLM-related errors."""

    transient = True


class LLMRateLimitError(LLMError):
    """Raised when hitting API rate limits."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMContextLengthError(LLMError):
    """Raised when context length is exceeded."""

    transient = False

    def __init__(
        self,
        message: str = "Context length exceeded",
        max_tokens: int | None = None,
        used_tokens: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.max_tokens = max_tokens
        self.used_tokens = used_tokens


class LLMAuthenticationError(LLMError):
    """Raised when API authentication fails."""

    transient = False


class LLMConnectionError(LLMError):
    """Raised when unable to connect to LLM API."""

    pass


class LLMTimeoutError(LLMError):
    """Raised when a single LLM call exceeds the hard timeout."""

    def __init__(self, timeout: float, **kwargs: Any):
        super().__init__(f"LLM call timed out after {timeout}s", **kwargs)
        self.timeout = timeout


class LLMResponseParseError(LLMError):
    """Raised when unable to parse LLM response."""

    def __init__(
        self,
        message: str = "Failed to parse LLM response",
        raw_response: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.raw_response = raw_response


# =============================================================================
# Store Errors
# =============================================================================


class StoreError(ArenaError):
    """Base exception for persistence errors."""

    pass


class RoomNotFoundError(StoreError):
    """Raised when a room does not exist."""

    def __init__(self, room_id: str, **kwargs: Any):
        super().__init__(f"Room not found: {room_id}", **kwargs)
        self.room_id = room_id


class JobNotFoundError(StoreError):
    """Raised when a job does not exist."""

    def __init__(self, job_id: str, **kwargs: Any):
        super().__init__(f"Job not found: {job_id}", **kwargs)
        self.job_id = job_id


class DuplicateSubmissionError(StoreError):
    """Raised when a uniqueness constraint rejects a submission."""

    pass


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(ArenaError):
    """Raised when validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value


class PayloadValidationError(ValidationError):
    """Raised when a job payload does not match its job type's schema."""

    pass


class PermissionDeniedError(ArenaError):
    """Raised when a user acts on a room they do not belong to."""

    def __init__(self, message: str = "Not a participant of this room", **kwargs: Any):
        super().__init__(message, **kwargs)


# =============================================================================
# State Machine Errors
# =============================================================================


class StateMachineError(ArenaError):
    """Base exception for room lifecycle errors."""

    code = "STATE_MACHINE_ERROR"


class InvalidTransitionError(StateMachineError):
    """Raised when an event is not legal from the room's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, room_id: str, status: str, event: str, **kwargs: Any):
        super().__init__(
            f"Event {event} is not allowed from status {status}", **kwargs
        )
        self.room_id = room_id
        self.status = status
        self.event = event


class TransitionGuardError(StateMachineError):
    """Raised when a legal event's precondition is not met in the store."""

    code = "GUARD_FAILED"

    def __init__(self, room_id: str, event: str, reason: str, **kwargs: Any):
        super().__init__(f"Guard for {event} failed: {reason}", **kwargs)
        self.room_id = room_id
        self.event = event
        self.reason = reason


# =============================================================================
# Job Errors
# =============================================================================


class JobError(ArenaError):
    """Base exception for job queue errors."""

    pass


class JobStateError(JobError):
    """Raised when a job is in the wrong status for an operation."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        actual_status: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.job_id = job_id
        self.actual_status = actual_status


class JobCancelledError(JobError):
    """Raised inside a handler when its job stopped being ours mid-flight."""

    def __init__(self, job_id: str, **kwargs: Any):
        super().__init__(f"Job {job_id} is no longer running", **kwargs)
        self.job_id = job_id


class PipelineError(JobError):
    """Raised when a handler cannot proceed with the stored room data."""

    def __init__(self, message: str, retryable: bool = False, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retryable = retryable
