"""Escrow Lifecycle State Machine Guard.

Uses python-statemachine to enforce legal escrow transitions at the domain
level. Every lifecycle operation goes through this table before a single
field is written, so an illegal move (e.g. refunding a released escrow)
raises TransitionNotAllowed no matter who calls the service.

The state machine is instantiated per-escrow at its persisted status.

Transition table:
    pending       -> held             (confirm_deposit)
    held          -> advance_paid     (release_advance)
    held          -> released         (release_full_payment)
    advance_paid  -> released         (release_full_payment)
    pending       -> frozen           (freeze)
    held          -> frozen           (freeze)
    frozen        -> held             (unfreeze, frozen after the deposit)
    frozen        -> pending          (unfreeze, frozen before the deposit)
    pending       -> refunded         (refund)
    held          -> refunded         (refund)
    pending       -> pending          (amend_amount)
    held          -> held             (amend_amount)

released and refunded are final.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="held")
        sm.release_advance()  # transitions to advance_paid
        sm.status             # "advance_paid"
    """

    # --- States ---
    PENDING = State("Pending", value="pending", initial=True)
    HELD = State("Held", value="held")
    ADVANCE_PAID = State("Advance paid", value="advance_paid")
    RELEASED = State("Released", value="released", final=True)
    FROZEN = State("Frozen", value="frozen")
    REFUNDED = State("Refunded", value="refunded", final=True)

    # --- Events / Transitions ---

    # Funding
    confirm_deposit = PENDING.to(HELD)

    # Payouts
    release_advance = HELD.to(ADVANCE_PAID)
    release_full_payment = HELD.to(RELEASED) | ADVANCE_PAID.to(RELEASED)

    # Suspension
    freeze = PENDING.to(FROZEN) | HELD.to(FROZEN)
    unfreeze = FROZEN.to(HELD, cond="was_funded") | FROZEN.to(PENDING, unless="was_funded")

    # Cancellation
    refund = PENDING.to(REFUNDED) | HELD.to(REFUNDED)

    # Renegotiation keeps the status
    amend_amount = PENDING.to.itself() | HELD.to.itself()

    def __init__(self, current_status: str = "pending", frozen_from: str | None = None) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "held").
            frozen_from: Status a frozen escrow was frozen from; unfreeze
                returns there. Anything but "pending" resumes to held.
        """
        self.frozen_from = frozen_from
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus enum)."""
        return str(self.current_state.value)

    @property
    def is_terminal(self) -> bool:
        return bool(self.current_state.final)

    def was_funded(self) -> bool:
        return self.frozen_from != "pending"

    def get_allowed_events(self) -> list[str]:
        """Return the event ids that can fire from the current state."""
        return [event.id for event in self.allowed_events]

    def get_all_events(self) -> list[str]:
        return [event.id for event in self.events]


def validate_transition(
    current_status: str, event_name: str, frozen_from: str | None = None
) -> str:
    """Validate a lifecycle transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status, frozen_from=frozen_from)

    if event_name not in sm.get_all_events():
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    getattr(sm, event_name)()
    return sm.status
