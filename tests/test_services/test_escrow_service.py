"""Tests for the EscrowService lifecycle against an in-memory database."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import update

from artisan_escrow.domain.enums import EscrowStatus, EventType, NotificationType, ProjectStatus
from artisan_escrow.domain.exceptions import (
    ConcurrencyError,
    EscrowAlreadyExistsError,
    EscrowNotEditableError,
    EscrowNotFoundError,
    InvalidAmountError,
    InvalidStateTransitionError,
    ProjectNotFoundError,
    ValidationError,
)
from artisan_escrow.infrastructure.database.orm_models import Escrow
from artisan_escrow.infrastructure.database.repositories import ProjectRepository
from artisan_escrow.services.escrow_service import (
    BREAKDOWN_FIELDS,
    EscrowService,
    calculation_from_escrow,
)
from artisan_escrow.services.notification_service import NotificationService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from artisan_escrow.infrastructure.database.orm_models import Project


@pytest.fixture
def service(session: AsyncSession) -> EscrowService:
    return EscrowService(session)


async def _initiate(
    service: EscrowService,
    project: Project,
    base_amount: float = 100000,
    verified: bool = True,
    surcharge: float = 0,
) -> Escrow:
    return await service.initiate_escrow(
        project_id=project.id,
        base_amount=base_amount,
        artisan_is_verified=verified,
        urgent_surcharge_percent=surcharge,
    )


def _snapshot(escrow: Escrow) -> dict:
    fields = (*BREAKDOWN_FIELDS, "status", "version", "advance_paid", "is_advance_paid", "payment_method")
    return {field: getattr(escrow, field) for field in fields}


async def _event_types(service: EscrowService, escrow_id: uuid.UUID) -> list[str]:
    return [e.event_type for e in await service.get_events(escrow_id)]


class TestInitiateEscrow:
    @pytest.mark.asyncio
    async def test_creates_pending_escrow_with_breakdown(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project, surcharge=20, verified=False)

        assert escrow.status == EscrowStatus.PENDING
        assert escrow.version == 1
        assert escrow.total_amount == pytest.approx(120000)
        assert escrow.commission_amount == pytest.approx(12000)
        assert escrow.tax_amount == pytest.approx(2160)
        assert escrow.artisan_payout == pytest.approx(105840)
        assert escrow.advance_amount == 0
        assert escrow.advance_paid == 0
        assert escrow.is_advance_paid is False
        assert escrow.artisan_is_verified is False
        assert re.fullmatch(r"ESC-\d{8}-[0-9A-F]{8}", escrow.transaction_number)

    @pytest.mark.asyncio
    async def test_records_initiation_event(self, service: EscrowService, project: Project) -> None:
        escrow = await _initiate(service, project)

        events = await service.get_events(escrow.id)
        assert len(events) == 1
        assert events[0].event_type == EventType.ESCROW_INITIATED
        assert events[0].old_status is None
        assert events[0].new_status == "pending"

    @pytest.mark.asyncio
    async def test_commission_defaults_to_configured_rate(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project)
        assert escrow.commission_percent == 10

    @pytest.mark.asyncio
    async def test_one_escrow_per_project(self, service: EscrowService, project: Project) -> None:
        await _initiate(service, project)
        with pytest.raises(EscrowAlreadyExistsError):
            await _initiate(service, project)

    @pytest.mark.asyncio
    async def test_unknown_project(self, service: EscrowService, missing_id: uuid.UUID) -> None:
        with pytest.raises(ProjectNotFoundError):
            await service.initiate_escrow(missing_id, 1000, artisan_is_verified=True)

    @pytest.mark.asyncio
    async def test_negative_amount_is_rejected(self, service: EscrowService, project: Project) -> None:
        with pytest.raises(InvalidAmountError) as exc_info:
            await _initiate(service, project, base_amount=-1)
        assert exc_info.value.field == "base_amount"
        with pytest.raises(EscrowNotFoundError):
            await service.get_escrow_for_project(project.id)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_deposit_advance_release(
        self, service: EscrowService, project: Project, session: AsyncSession
    ) -> None:
        escrow = await _initiate(service, project, verified=True)

        escrow = await service.confirm_deposit(escrow.id, payment_method="mobile_money")
        assert escrow.status == EscrowStatus.HELD
        assert escrow.payment_method == "mobile_money"
        assert escrow.version == 2
        refreshed = await ProjectRepository(session).get_by_id(project.id)
        assert refreshed.status == ProjectStatus.PAYMENT_RECEIVED

        escrow = await service.release_advance(escrow.id)
        assert escrow.status == EscrowStatus.ADVANCE_PAID
        assert escrow.is_advance_paid is True
        assert escrow.advance_paid == pytest.approx(44100)

        escrow = await service.release_full_payment(escrow.id)
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.version == 4

        assert await _event_types(service, escrow.id) == [
            EventType.ESCROW_INITIATED,
            EventType.DEPOSIT_CONFIRMED,
            EventType.ADVANCE_RELEASED,
            EventType.PAYMENT_RELEASED,
        ]

    @pytest.mark.asyncio
    async def test_artisan_is_notified_at_each_payout(
        self, service: EscrowService, project: Project, session: AsyncSession
    ) -> None:
        escrow = await _initiate(service, project, verified=True)
        await service.confirm_deposit(escrow.id, payment_method="card")
        await service.release_advance(escrow.id)
        await service.release_full_payment(escrow.id)

        notifications = await NotificationService(session).list_for_user(project.artisan_id)
        assert len(notifications) == 3
        assert {n.type for n in notifications} == {NotificationType.PAYMENT_RECEIVED}

        deposit = next(n for n in notifications if "total_amount" in n.data)
        assert deposit.data["artisan_payout"] == pytest.approx(88200)
        assert deposit.data["tax_amount"] == pytest.approx(1800)
        amounts = sorted(n.data["amount"] for n in notifications if "amount" in n.data)
        assert amounts == pytest.approx([44100, 44100])

    @pytest.mark.asyncio
    async def test_unverified_advance_moves_no_money(
        self, service: EscrowService, project: Project, session: AsyncSession
    ) -> None:
        escrow = await _initiate(service, project, verified=False)
        await service.confirm_deposit(escrow.id, payment_method="card")

        escrow = await service.release_advance(escrow.id)
        assert escrow.is_advance_paid is True
        assert escrow.advance_paid == 0

        notifications = await NotificationService(session).list_for_user(project.artisan_id)
        assert len(notifications) == 1

    @pytest.mark.asyncio
    async def test_full_release_straight_from_held(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project)
        await service.confirm_deposit(escrow.id, payment_method="card")

        escrow = await service.release_full_payment(escrow.id)
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.advance_paid == 0


class TestGuards:
    @pytest.mark.asyncio
    async def test_deposit_cannot_be_confirmed_twice(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project)
        await service.confirm_deposit(escrow.id, payment_method="card")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await service.confirm_deposit(escrow.id, payment_method="cash")
        assert exc_info.value.current_state == "held"
        assert escrow.payment_method == "card"

    @pytest.mark.asyncio
    async def test_advance_needs_held_funds(self, service: EscrowService, project: Project) -> None:
        escrow = await _initiate(service, project)
        with pytest.raises(InvalidStateTransitionError):
            await service.release_advance(escrow.id)
        assert escrow.is_advance_paid is False

    @pytest.mark.asyncio
    async def test_released_escrow_is_not_editable(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project)
        await service.confirm_deposit(escrow.id, payment_method="card")
        escrow = await service.release_full_payment(escrow.id)
        before = _snapshot(escrow)

        with pytest.raises(EscrowNotEditableError, match="no longer editable"):
            await service.update_escrow_for_new_amount(escrow.id, 500000)

        assert _snapshot(await service.get_escrow(escrow.id)) == before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", ["released", "refunded"])
    async def test_terminal_escrow_rejects_every_operation(
        self, service: EscrowService, project: Project, terminal: str
    ) -> None:
        escrow = await _initiate(service, project)
        await service.confirm_deposit(escrow.id, payment_method="card")
        if terminal == "released":
            await service.release_full_payment(escrow.id)
        else:
            await service.refund(escrow.id)
        before = _snapshot(escrow)
        events_before = await _event_types(service, escrow.id)

        operations = [
            service.confirm_deposit(escrow.id, payment_method="card"),
            service.release_advance(escrow.id),
            service.release_full_payment(escrow.id),
            service.freeze(escrow.id),
            service.unfreeze(escrow.id),
            service.refund(escrow.id),
            service.update_escrow_for_new_amount(escrow.id, 1),
        ]
        for operation in operations:
            with pytest.raises(ValidationError):
                await operation

        assert _snapshot(escrow) == before
        assert await _event_types(service, escrow.id) == events_before
        assert (await service.get_status(escrow.id))["is_terminal"] is True

    @pytest.mark.asyncio
    async def test_unknown_escrow(self, service: EscrowService, missing_id: uuid.UUID) -> None:
        with pytest.raises(EscrowNotFoundError):
            await service.freeze(missing_id)
        with pytest.raises(EscrowNotFoundError):
            await service.get_escrow_for_project(missing_id)


class TestSuspensionAndRefund:
    @pytest.mark.asyncio
    async def test_freeze_then_unfreeze(self, service: EscrowService, project: Project) -> None:
        escrow = await _initiate(service, project)
        await service.confirm_deposit(escrow.id, payment_method="card")

        escrow = await service.freeze(escrow.id, reason="client complaint")
        assert escrow.status == EscrowStatus.FROZEN
        assert escrow.frozen_from == EscrowStatus.HELD
        with pytest.raises(InvalidStateTransitionError):
            await service.release_full_payment(escrow.id)

        escrow = await service.unfreeze(escrow.id)
        assert escrow.status == EscrowStatus.HELD
        assert escrow.frozen_from is None

        events = await service.get_events(escrow.id)
        frozen = next(e for e in events if e.event_type == EventType.ESCROW_FROZEN)
        assert frozen.metadata_json == {"reason": "client complaint"}
        assert events[-1].event_type == EventType.ESCROW_UNFROZEN

    @pytest.mark.asyncio
    async def test_unfreeze_before_deposit_returns_to_pending(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project)

        escrow = await service.freeze(escrow.id)
        assert escrow.frozen_from == EscrowStatus.PENDING
        escrow = await service.unfreeze(escrow.id)

        assert escrow.status == EscrowStatus.PENDING
        assert escrow.payment_method is None
        for release in (service.release_advance, service.release_full_payment):
            with pytest.raises(InvalidStateTransitionError):
                await release(escrow.id)
        events = await service.get_events(escrow.id)
        assert (events[-1].old_status, events[-1].new_status) == ("frozen", "pending")

        escrow = await service.confirm_deposit(escrow.id, payment_method="card")
        assert escrow.status == EscrowStatus.HELD

    @pytest.mark.asyncio
    async def test_unfreeze_without_recorded_origin(
        self, service: EscrowService, project: Project
    ) -> None:
        undeposited = await _initiate(service, project)
        await service.freeze(undeposited.id)
        undeposited.frozen_from = None

        escrow = await service.unfreeze(undeposited.id)

        assert escrow.status == EscrowStatus.PENDING

    @pytest.mark.asyncio
    async def test_refund_notifies_client(
        self, service: EscrowService, project: Project, session: AsyncSession
    ) -> None:
        escrow = await _initiate(service, project)
        escrow = await service.refund(escrow.id, reason="project cancelled")

        assert escrow.status == EscrowStatus.REFUNDED
        notifications = await NotificationService(session).list_for_user(project.client_id)
        assert [n.type for n in notifications] == [NotificationType.PAYMENT_REFUNDED]


class TestAmountRenegotiation:
    @pytest.mark.asyncio
    async def test_recompute_on_held_escrow(self, service: EscrowService, project: Project) -> None:
        escrow = await _initiate(service, project, verified=True, surcharge=50)
        await service.confirm_deposit(escrow.id, payment_method="card")

        escrow = await service.update_escrow_for_new_amount(escrow.id, 200000)

        assert escrow.status == EscrowStatus.HELD
        assert escrow.urgent_surcharge_percent == 0
        assert escrow.urgent_surcharge == 0
        assert escrow.total_amount == pytest.approx(200000)
        assert escrow.commission_percent == 10
        assert escrow.artisan_payout == pytest.approx(176400)
        assert escrow.advance_amount == pytest.approx(88200)
        assert escrow.artisan_is_verified is True
        assert (await _event_types(service, escrow.id))[-1] == EventType.AMOUNT_AMENDED

    @pytest.mark.asyncio
    async def test_breakdown_is_recomputed_as_a_whole(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project, verified=False)
        escrow = await service.update_escrow_for_new_amount(escrow.id, 5000)

        calc = calculation_from_escrow(escrow)
        assert calc.artisan_payout + calc.commission_amount + calc.tax_amount == pytest.approx(
            calc.total_amount
        )
        assert calc.remaining_amount == pytest.approx(calc.artisan_payout)

    @pytest.mark.asyncio
    async def test_verification_inferred_for_rows_without_flag(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project, verified=True)
        escrow.artisan_is_verified = None

        escrow = await service.update_escrow_for_new_amount(escrow.id, 1000)
        assert escrow.advance_percent == 50

    @pytest.mark.asyncio
    async def test_negative_amount_is_rejected(self, service: EscrowService, project: Project) -> None:
        escrow = await _initiate(service, project)
        with pytest.raises(InvalidAmountError):
            await service.update_escrow_for_new_amount(escrow.id, -10)
        assert escrow.total_amount == pytest.approx(100000)


class TestOptimisticConcurrency:
    @pytest.mark.asyncio
    async def test_expected_version_mismatch(self, service: EscrowService, project: Project) -> None:
        escrow = await _initiate(service, project)
        await service.confirm_deposit(escrow.id, payment_method="card", expected_version=1)

        with pytest.raises(ConcurrencyError) as exc_info:
            await service.update_escrow_for_new_amount(escrow.id, 5000, expected_version=1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert escrow.total_amount == pytest.approx(100000)

    @pytest.mark.asyncio
    async def test_concurrent_writer_is_detected(
        self, service: EscrowService, project: Project, session: AsyncSession
    ) -> None:
        escrow = await _initiate(service, project)
        # Another writer bumps the row behind this session's back.
        await session.execute(
            update(Escrow)
            .where(Escrow.id == escrow.id)
            .values(version=Escrow.version + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConcurrencyError):
            await service.update_escrow_for_new_amount(escrow.id, 5000)


class TestReads:
    @pytest.mark.asyncio
    async def test_status_lists_allowed_operations(
        self, service: EscrowService, project: Project
    ) -> None:
        escrow = await _initiate(service, project)
        await service.confirm_deposit(escrow.id, payment_method="card")

        status = await service.get_status(escrow.id)
        assert status["status"] == "held"
        assert status["version"] == 2
        assert status["is_terminal"] is False
        assert set(status["allowed_events"]) == {
            "release_advance",
            "release_full_payment",
            "freeze",
            "refund",
            "amend_amount",
        }

    @pytest.mark.asyncio
    async def test_escrow_for_project(self, service: EscrowService, project: Project) -> None:
        escrow = await _initiate(service, project)
        assert (await service.get_escrow_for_project(project.id)).id == escrow.id
