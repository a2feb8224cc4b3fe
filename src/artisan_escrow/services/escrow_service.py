"""Escrow Service — core business logic for the escrow lifecycle.

This is the application layer that coordinates between:
    - Escrow calculator (breakdown snapshot)
    - Domain state machine (transition guard)
    - Repositories (data access, optimistic concurrency)
    - Event log (audit trail)
    - Notification sink (fire-and-forget)

The REST routes call into this service, so every lifecycle rule lives here
and in the state machine table, never in the caller.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from statemachine.exceptions import TransitionNotAllowed

from artisan_escrow.config import get_settings
from artisan_escrow.domain.calculator import EscrowCalculation, calculate_escrow
from artisan_escrow.domain.enums import (
    EscrowOperation,
    EscrowStatus,
    EventType,
    NotificationType,
    ProjectStatus,
)
from artisan_escrow.domain.exceptions import (
    ConcurrencyError,
    EscrowAlreadyExistsError,
    EscrowNotEditableError,
    EscrowNotFoundError,
    InvalidAmountError,
    InvalidStateTransitionError,
    ProjectNotFoundError,
)
from artisan_escrow.domain.state_machine import EscrowStateMachine
from artisan_escrow.infrastructure.database.orm_models import Escrow, Project
from artisan_escrow.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    ProjectRepository,
)
from artisan_escrow.logging_config import get_logger
from artisan_escrow.services.notification_service import NotificationService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from artisan_escrow.infrastructure.database.orm_models import EscrowEvent

logger = get_logger(__name__)

# Breakdown columns rewritten together whenever the amount changes.
BREAKDOWN_FIELDS = (
    "base_amount",
    "urgent_surcharge_percent",
    "urgent_surcharge",
    "total_amount",
    "commission_percent",
    "commission_amount",
    "tax_amount",
    "artisan_payout",
    "advance_percent",
    "advance_amount",
    "remaining_amount",
)


def generate_transaction_number(now: datetime | None = None) -> str:
    """Human-readable escrow reference, e.g. ESC-20261018-9F3A6C01."""
    now = now or datetime.now(UTC)
    return f"ESC-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


def calculation_from_escrow(escrow: Escrow) -> EscrowCalculation:
    """Rebuild the persisted breakdown snapshot as a value object."""
    return EscrowCalculation(**{field: getattr(escrow, field) for field in BREAKDOWN_FIELDS})


class EscrowService:
    """Manages the escrow lifecycle of a project."""

    def __init__(
        self,
        session: AsyncSession,
        notifications: NotificationService | None = None,
    ) -> None:
        self._session = session
        self._escrow_repo = EscrowRepository(session)
        self._project_repo = ProjectRepository(session)
        self._event_repo = EventRepository(session)
        self._notifications = notifications or NotificationService(session)

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_escrow(
        self,
        project_id: uuid.UUID,
        base_amount: float,
        artisan_is_verified: bool,
        urgent_surcharge_percent: float = 0,
        commission_percent: float | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Create the escrow of a project in pending state."""
        if commission_percent is None:
            commission_percent = get_settings().default_commission_percent
        _require_non_negative("base_amount", base_amount)
        _require_non_negative("urgent_surcharge_percent", urgent_surcharge_percent)
        _require_non_negative("commission_percent", commission_percent)

        project = await self._get_project_or_raise(project_id)
        if await self._escrow_repo.get_by_project(project.id) is not None:
            raise EscrowAlreadyExistsError(str(project_id))

        calculation = calculate_escrow(
            base_amount,
            urgent_surcharge_percent,
            commission_percent,
            artisan_is_verified,
        )
        escrow = Escrow(
            project_id=project.id,
            transaction_number=generate_transaction_number(),
            advance_paid=0.0,
            is_advance_paid=False,
            artisan_is_verified=artisan_is_verified,
            status=EscrowStatus.PENDING.value,
            **calculation.to_dict(),
        )
        escrow = await self._escrow_repo.create(escrow)

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EventType.ESCROW_INITIATED,
            old_status=None,
            new_status=EscrowStatus.PENDING,
            actor=actor,
            metadata={"total_amount": calculation.total_amount, "verified": artisan_is_verified},
        )

        logger.info(
            "escrow.initiated",
            escrow_id=str(escrow.id),
            project_id=str(project_id),
            total_amount=calculation.total_amount,
        )
        return escrow

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def confirm_deposit(
        self,
        escrow_id: uuid.UUID,
        payment_method: str,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Record the client's deposit: pending -> held, project payment_received."""
        escrow = await self._load_for_update(escrow_id, expected_version)
        old_status, _ = self._fire_transition(escrow, EscrowOperation.CONFIRM_DEPOSIT)

        escrow.status = EscrowStatus.HELD.value
        escrow.payment_method = payment_method
        await self._escrow_repo.save(escrow)

        project = await self._project_repo.get_by_id(escrow.project_id)
        if project is not None:
            await self._project_repo.update_status(project, ProjectStatus.PAYMENT_RECEIVED)

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EventType.DEPOSIT_CONFIRMED,
            old_status=old_status,
            new_status=EscrowStatus.HELD,
            actor=actor,
            metadata={"payment_method": payment_method},
        )
        logger.info("escrow.deposit_confirmed", escrow_id=str(escrow_id), method=payment_method)

        if project is not None:
            await self._notifications.notify(
                project.artisan_id,
                NotificationType.PAYMENT_RECEIVED,
                "Payment received and secured",
                f"The client's payment of {escrow.total_amount:,.2f} is held in escrow. "
                f"Your payout after commission and tax: {escrow.artisan_payout:,.2f}.",
                {
                    "project_id": str(project.id),
                    "total_amount": escrow.total_amount,
                    "tax_amount": escrow.tax_amount,
                    "commission_amount": escrow.commission_amount,
                    "artisan_payout": escrow.artisan_payout,
                },
            )
        return escrow

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    async def release_advance(
        self,
        escrow_id: uuid.UUID,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Disburse the advance: held -> advance_paid."""
        escrow = await self._load_for_update(escrow_id, expected_version)
        old_status, _ = self._fire_transition(escrow, EscrowOperation.RELEASE_ADVANCE)

        escrow.status = EscrowStatus.ADVANCE_PAID.value
        escrow.is_advance_paid = True
        escrow.advance_paid = escrow.advance_amount
        await self._escrow_repo.save(escrow)

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EventType.ADVANCE_RELEASED,
            old_status=old_status,
            new_status=EscrowStatus.ADVANCE_PAID,
            actor=actor,
            metadata={"advance_paid": escrow.advance_paid},
        )
        logger.info("escrow.advance_released", escrow_id=str(escrow_id), amount=escrow.advance_paid)

        if escrow.advance_paid > 0:
            await self._notify_artisan_paid(escrow, escrow.advance_paid)
        return escrow

    async def release_full_payment(
        self,
        escrow_id: uuid.UUID,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Disburse the whole payout: held/advance_paid -> released (final)."""
        escrow = await self._load_for_update(escrow_id, expected_version)
        old_status, _ = self._fire_transition(escrow, EscrowOperation.RELEASE_FULL_PAYMENT)

        escrow.status = EscrowStatus.RELEASED.value
        await self._escrow_repo.save(escrow)

        outstanding = escrow.artisan_payout - escrow.advance_paid
        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EventType.PAYMENT_RELEASED,
            old_status=old_status,
            new_status=EscrowStatus.RELEASED,
            actor=actor,
            metadata={"released_amount": outstanding, "artisan_payout": escrow.artisan_payout},
        )
        logger.info("escrow.released", escrow_id=str(escrow_id), amount=outstanding)

        await self._notify_artisan_paid(escrow, outstanding)
        return escrow

    # ------------------------------------------------------------------
    # Suspension & cancellation
    # ------------------------------------------------------------------

    async def freeze(
        self,
        escrow_id: uuid.UUID,
        reason: str | None = None,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Suspend an active escrow. No funds move; unfreeze returns to the current status."""
        return await self._move_status(
            escrow_id,
            EscrowOperation.FREEZE,
            EventType.ESCROW_FROZEN,
            expected_version=expected_version,
            actor=actor,
            metadata={"reason": reason} if reason else None,
        )

    async def unfreeze(
        self,
        escrow_id: uuid.UUID,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Resume a frozen escrow in the status it was frozen from (pending or held)."""
        return await self._move_status(
            escrow_id,
            EscrowOperation.UNFREEZE,
            EventType.ESCROW_UNFROZEN,
            expected_version=expected_version,
            actor=actor,
        )

    async def refund(
        self,
        escrow_id: uuid.UUID,
        reason: str | None = None,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Return the held funds to the client (final)."""
        escrow = await self._move_status(
            escrow_id,
            EscrowOperation.REFUND,
            EventType.ESCROW_REFUNDED,
            expected_version=expected_version,
            actor=actor,
            metadata={"reason": reason} if reason else None,
        )

        project = await self._project_repo.get_by_id(escrow.project_id)
        if project is not None:
            await self._notifications.notify(
                project.client_id,
                NotificationType.PAYMENT_REFUNDED,
                "Payment refunded",
                f"Your payment of {escrow.total_amount:,.2f} has been refunded.",
                {"project_id": str(project.id), "total_amount": escrow.total_amount},
            )
        return escrow

    # ------------------------------------------------------------------
    # Renegotiation
    # ------------------------------------------------------------------

    async def update_escrow_for_new_amount(
        self,
        escrow_id: uuid.UUID,
        new_base_amount: float,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Recompute the breakdown for a revised quote. Only pending/held escrows.

        The surcharge is dropped (percent 0), the commission percent is kept,
        and the verification flag comes from the escrow record.
        """
        _require_non_negative("new_base_amount", new_base_amount)
        escrow = await self._load_for_update(escrow_id, expected_version)
        status = EscrowStatus(escrow.status)
        if not status.is_editable:
            raise EscrowNotEditableError(str(escrow_id), status.value)
        self._fire_transition(escrow, EscrowOperation.AMEND_AMOUNT)

        previous_total = escrow.total_amount
        calculation = calculate_escrow(
            new_base_amount,
            0,
            escrow.commission_percent,
            self._was_verified(escrow),
        )
        for field, value in calculation.to_dict().items():
            setattr(escrow, field, value)
        await self._escrow_repo.save(escrow)

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EventType.AMOUNT_AMENDED,
            old_status=status,
            new_status=status,
            actor=actor,
            metadata={"previous_total": previous_total, "new_total": calculation.total_amount},
        )
        logger.info(
            "escrow.amount_amended",
            escrow_id=str(escrow_id),
            previous_total=previous_total,
            new_total=calculation.total_amount,
        )
        return escrow

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(self, escrow_id: uuid.UUID) -> Escrow:
        """Get an escrow or raise."""
        return await self._get_escrow_or_raise(escrow_id)

    async def get_escrow_for_project(self, project_id: uuid.UUID) -> Escrow:
        escrow = await self._escrow_repo.get_by_project(project_id)
        if escrow is None:
            raise EscrowNotFoundError(f"project {project_id}")
        return escrow

    async def get_status(self, escrow_id: uuid.UUID) -> dict:
        """Get escrow status with the operations allowed from it."""
        escrow = await self._get_escrow_or_raise(escrow_id)
        sm = EscrowStateMachine(current_status=escrow.status)
        return {
            "escrow_id": str(escrow.id),
            "status": escrow.status,
            "version": escrow.version,
            "is_terminal": sm.is_terminal,
            "allowed_events": sm.get_allowed_events(),
        }

    async def get_events(self, escrow_id: uuid.UUID) -> list[EscrowEvent]:
        """Get audit trail."""
        await self._get_escrow_or_raise(escrow_id)
        return await self._event_repo.get_by_escrow(escrow_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_escrow_or_raise(self, escrow_id: uuid.UUID) -> Escrow:
        escrow = await self._escrow_repo.get_by_id(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(str(escrow_id))
        return escrow

    async def _get_project_or_raise(self, project_id: uuid.UUID) -> Project:
        project = await self._project_repo.get_by_id(project_id)
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project

    async def _load_for_update(
        self,
        escrow_id: uuid.UUID,
        expected_version: int | None,
    ) -> Escrow:
        escrow = await self._get_escrow_or_raise(escrow_id)
        if expected_version is not None and escrow.version != expected_version:
            raise ConcurrencyError(str(escrow_id), expected_version, escrow.version)
        return escrow

    async def _move_status(
        self,
        escrow_id: uuid.UUID,
        operation: EscrowOperation,
        event_type: EventType,
        expected_version: int | None = None,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> Escrow:
        """Status-only transition shared by freeze, unfreeze and refund."""
        escrow = await self._load_for_update(escrow_id, expected_version)
        old_status, new_status = self._fire_transition(escrow, operation)

        escrow.status = new_status.value
        escrow.frozen_from = old_status.value if new_status == EscrowStatus.FROZEN else None
        await self._escrow_repo.save(escrow)

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata=metadata,
        )
        logger.info(
            "escrow.status_changed",
            escrow_id=str(escrow_id),
            operation=operation.value,
            old=old_status.value,
            new=new_status.value,
        )
        return escrow

    def _fire_transition(
        self, escrow: Escrow, operation: EscrowOperation
    ) -> tuple[EscrowStatus, EscrowStatus]:
        """Validate a state machine transition; return the (old, new) status.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        sm = EscrowStateMachine(
            current_status=escrow.status,
            frozen_from=self._frozen_from(escrow),
        )
        try:
            getattr(sm, operation.value)()
        except TransitionNotAllowed as err:
            logger.warning(
                "escrow.transition_rejected",
                escrow_id=str(escrow.id),
                status=escrow.status,
                operation=operation.value,
            )
            raise InvalidStateTransitionError(escrow.status, operation.value) from err
        return EscrowStatus(escrow.status), EscrowStatus(sm.status)

    @staticmethod
    def _frozen_from(escrow: Escrow) -> str | None:
        if escrow.status != EscrowStatus.FROZEN.value:
            return None
        if escrow.frozen_from is not None:
            return escrow.frozen_from
        # Rows frozen before the origin was stored: only a deposit sets the payment method.
        return EscrowStatus.HELD.value if escrow.payment_method else EscrowStatus.PENDING.value

    @staticmethod
    def _was_verified(escrow: Escrow) -> bool:
        if escrow.artisan_is_verified is not None:
            return escrow.artisan_is_verified
        # Rows created before the flag was stored: infer from the advance rate.
        return (escrow.advance_percent or 0) > 0

    async def _notify_artisan_paid(self, escrow: Escrow, amount: float) -> None:
        project = await self._project_repo.get_by_id(escrow.project_id)
        if project is None:
            return
        await self._notifications.notify(
            project.artisan_id,
            NotificationType.PAYMENT_RECEIVED,
            "Payment received",
            f"You have received {amount:,.2f}.",
            {"project_id": str(project.id), "amount": amount},
        )


def _require_non_negative(field: str, value: float) -> None:
    if value < 0:
        raise InvalidAmountError(field, value)
