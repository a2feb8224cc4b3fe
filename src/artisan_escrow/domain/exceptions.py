"""Domain exceptions for the escrow and call signaling core.

These exceptions are framework-agnostic and represent business rule violations.
Escrow errors are caught and translated to HTTP responses by the API layer's
middleware. Signaling errors never escape a call session: they are stored on
the session as its current ``error`` for the UI layer to read.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation Errors ---


class ValidationError(MarketplaceError):
    """An operation was rejected before any write took place."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(ValidationError):
    """Raised when an attempted lifecycle operation is not allowed.

    Example: refund on a released escrow.
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid escrow transition: {attempted} not allowed from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


class EscrowNotEditableError(ValidationError):
    """Raised when the amount of an escrow is changed outside pending/held."""

    def __init__(self, escrow_id: str, current_state: str) -> None:
        super().__init__(
            message=f"Escrow no longer editable: {escrow_id} is {current_state}",
            code="ESCROW_NOT_EDITABLE",
        )
        self.escrow_id = escrow_id
        self.current_state = current_state


class InvalidAmountError(ValidationError):
    """Raised for negative amounts or percentages."""

    def __init__(self, field: str, value: float) -> None:
        super().__init__(
            message=f"{field} must be non-negative, got {value}",
            code="INVALID_AMOUNT",
        )
        self.field = field
        self.value = value


# --- Not Found Errors ---


class NotFoundError(MarketplaceError):
    """Base for references to records that do not exist."""


class EscrowNotFoundError(NotFoundError):
    """Raised when an escrow ID does not exist."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Escrow not found: {escrow_id}",
            code="ESCROW_NOT_FOUND",
        )
        self.escrow_id = escrow_id


class ProjectNotFoundError(NotFoundError):
    """Raised when a project ID does not exist."""

    def __init__(self, project_id: str) -> None:
        super().__init__(
            message=f"Project not found: {project_id}",
            code="PROJECT_NOT_FOUND",
        )
        self.project_id = project_id


# --- Conflict Errors ---


class EscrowAlreadyExistsError(MarketplaceError):
    """Raised when a project already owns an escrow."""

    def __init__(self, project_id: str) -> None:
        super().__init__(
            message=f"Escrow already exists for project: {project_id}",
            code="ESCROW_ALREADY_EXISTS",
        )
        self.project_id = project_id


class ConcurrencyError(MarketplaceError):
    """Raised when an escrow changed since the caller read it.

    The caller should reload the escrow and retry with the fresh version.
    """

    def __init__(self, escrow_id: str, expected: int | None = None, actual: int | None = None) -> None:
        detail = ""
        if expected is not None and actual is not None:
            detail = f" (expected version {expected}, found {actual})"
        super().__init__(
            message=f"Escrow was modified concurrently: {escrow_id}{detail}",
            code="CONCURRENT_MODIFICATION",
        )
        self.escrow_id = escrow_id
        self.expected = expected
        self.actual = actual


# --- Call Signaling Errors ---


class SignalingError(MarketplaceError):
    """Base for call setup and teardown failures held by a call session."""

    def __init__(self, message: str, code: str = "SIGNALING_ERROR") -> None:
        super().__init__(message=message, code=code)


class MediaAccessError(SignalingError):
    """Microphone or camera could not be acquired."""

    def __init__(self, reason: str = "") -> None:
        message = "Cannot access microphone/camera"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message=message, code="MEDIA_ACCESS_DENIED")
        self.reason = reason


class ChannelNotReadyError(SignalingError):
    """The signaling channel did not reach the subscribed state in time."""

    def __init__(self, channel_id: str, timeout: float) -> None:
        super().__init__(
            message=f"Signaling channel not ready: {channel_id} (waited {timeout:g}s)",
            code="CHANNEL_NOT_READY",
        )
        self.channel_id = channel_id
        self.timeout = timeout


class RemoteRejectionError(SignalingError):
    """The callee declined the call. Transient notice, cleared automatically."""

    def __init__(self, peer_id: str) -> None:
        super().__init__(message="Call rejected", code="CALL_REJECTED")
        self.peer_id = peer_id


class TransportFailureError(SignalingError):
    """The peer connection reported disconnected, failed or closed."""

    def __init__(self, state: str) -> None:
        super().__init__(
            message=f"Connection lost ({state})",
            code="TRANSPORT_FAILURE",
        )
        self.state = state


class CallTimeoutError(SignalingError):
    """An outgoing call was not answered within the ring timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(
            message=f"No answer after {timeout:g}s",
            code="CALL_TIMEOUT",
        )
        self.timeout = timeout


class CallSetupError(SignalingError):
    """Session description negotiation failed after media was acquired."""

    def __init__(self, message: str = "Unable to join the call") -> None:
        super().__init__(message=message, code="CALL_SETUP_FAILED")
