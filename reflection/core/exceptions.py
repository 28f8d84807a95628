"""
Engine-wide exception hierarchy.

Every service raises one of these types; nothing else escapes the service
layer for a business-rule failure. Callers (an HTTP layer, a CLI, the
scheduler) map them once:

    NotFoundError      → 404
    ValidationError    → 400 / 422
    InvalidStateError  → 409
    DependencyError    → 502

Usage:
    from reflection.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="Reflection session", resource_id=session_id)
    raise InvalidStateError(
        "Cannot generate affirmation",
        current_status=session.status,
        required_statuses=("BELIEF_CAPTURED", "AFFIRMATION_GENERATED"),
    )
"""


class ReflectionError(Exception):
    """Base class for all engine errors."""


class NotFoundError(ReflectionError):
    """Raised when a requested resource does not exist within the caller's scope.

    Security note: Used for BOTH genuinely missing records AND resources owned
    by another user. A "forbidden" answer would confirm the resource exists.

    Args:
        resource: Human-readable entity name (e.g. "Wave", "Affirmation").
        resource_id: The id that was looked up. Included in logs.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(ReflectionError):
    """Raised when caller input is unusable (empty text, past start date, ...).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateError(ReflectionError):
    """Raised when the session status or an invariant forbids the operation.

    The message always names the status(es) the operation requires, so the
    caller can tell the user what has to happen first.

    Args:
        message: What was attempted.
        current_status: Session status at the time of the attempt.
        required_statuses: Statuses from which the operation is legal.
    """

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        required_statuses: tuple[str, ...] | None = None,
    ) -> None:
        self.current_status = current_status
        self.required_statuses = tuple(required_statuses or ())
        if self.required_statuses:
            message += (
                f". Session must be in {' or '.join(self.required_statuses)} status"
            )
        if current_status is not None:
            message += f". Current status: {current_status}"
        super().__init__(message)


class DependencyError(ReflectionError):
    """Raised when an external collaborator (transcription, transformation,
    speech synthesis, file storage) fails.

    Args:
        service: Collaborator name, e.g. "transcription".
        message: Provider error text.
    """

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"{service} failed: {message}")
