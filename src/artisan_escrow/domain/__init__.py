"""Domain layer — pure business logic with zero framework dependencies."""

from artisan_escrow.domain.calculator import (
    EscrowCalculation,
    calculate_escrow,
)
from artisan_escrow.domain.enums import (
    CallStatus,
    EscrowOperation,
    EscrowStatus,
    EventType,
    NotificationType,
    ProjectStatus,
    SignalType,
)
from artisan_escrow.domain.exceptions import (
    ConcurrencyError,
    EscrowNotEditableError,
    EscrowNotFoundError,
    InvalidStateTransitionError,
    MarketplaceError,
    NotFoundError,
    SignalingError,
    ValidationError,
)
from artisan_escrow.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "EscrowCalculation",
    "calculate_escrow",
    "CallStatus",
    "EscrowOperation",
    "EscrowStatus",
    "EventType",
    "NotificationType",
    "ProjectStatus",
    "SignalType",
    "ConcurrencyError",
    "EscrowNotEditableError",
    "EscrowNotFoundError",
    "InvalidStateTransitionError",
    "MarketplaceError",
    "NotFoundError",
    "SignalingError",
    "ValidationError",
    "EscrowStateMachine",
    "validate_transition",
]
