"""Domain enumerations for the escrow and call signaling core.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of a project escrow.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    HELD = "held"
    ADVANCE_PAID = "advance_paid"
    RELEASED = "released"
    FROZEN = "frozen"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (EscrowStatus.RELEASED, EscrowStatus.REFUNDED)

    @property
    def is_editable(self) -> bool:
        """Whether the base amount may still be renegotiated."""
        return self in (EscrowStatus.PENDING, EscrowStatus.HELD)


class EscrowOperation(enum.StrEnum):
    """Lifecycle operations, named after the state machine events they fire."""

    CONFIRM_DEPOSIT = "confirm_deposit"
    RELEASE_ADVANCE = "release_advance"
    RELEASE_FULL_PAYMENT = "release_full_payment"
    FREEZE = "freeze"
    UNFREEZE = "unfreeze"
    REFUND = "refund"
    AMEND_AMOUNT = "amend_amount"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every lifecycle operation produces exactly one event.
    """

    ESCROW_INITIATED = "ESCROW_INITIATED"
    DEPOSIT_CONFIRMED = "DEPOSIT_CONFIRMED"
    ADVANCE_RELEASED = "ADVANCE_RELEASED"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"
    ESCROW_FROZEN = "ESCROW_FROZEN"
    ESCROW_UNFROZEN = "ESCROW_UNFROZEN"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"
    AMOUNT_AMENDED = "AMOUNT_AMENDED"


class ProjectStatus(enum.StrEnum):
    """Project states the escrow core reads or writes.

    The project lifecycle itself belongs to the marketplace; only the
    states around payment are listed here.
    """

    OPEN = "open"
    QUOTE_ACCEPTED = "quote_accepted"
    PAYMENT_RECEIVED = "payment_received"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NotificationType(enum.StrEnum):
    """Notification kinds emitted after escrow transitions."""

    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REFUNDED = "payment_refunded"
    SYSTEM = "system"


class CallStatus(enum.StrEnum):
    """States of a peer's call signaling session."""

    IDLE = "idle"
    CALLING = "calling"
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"


class SignalType(enum.StrEnum):
    """Discriminator of messages on the call signaling channel."""

    OFFER = "offer"
    ANSWER = "answer"
    ICE = "ice"
    HANGUP = "hangup"
    REJECT = "reject"
