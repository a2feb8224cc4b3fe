"""Tests for the fire-and-forget notification sink."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.exc import OperationalError

from artisan_escrow.domain.enums import EscrowStatus, NotificationType
from artisan_escrow.infrastructure.database.repositories import NotificationRepository
from artisan_escrow.services.escrow_service import EscrowService
from artisan_escrow.services.notification_service import NotificationService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from artisan_escrow.infrastructure.database.orm_models import Project


class TestNotify:
    @pytest.mark.asyncio
    async def test_stores_notification(self, session: AsyncSession) -> None:
        svc = NotificationService(session)

        notification = await svc.notify(
            "user-1",
            NotificationType.SYSTEM,
            "Welcome",
            "Your account is ready.",
            {"step": 1},
        )

        assert notification is not None
        assert notification.is_read is False
        stored = await svc.list_for_user("user-1")
        assert [n.title for n in stored] == ["Welcome"]
        assert stored[0].data == {"step": 1}

    @pytest.mark.asyncio
    async def test_no_recipient_is_skipped(self, session: AsyncSession) -> None:
        svc = NotificationService(session)
        assert await svc.notify(None, NotificationType.SYSTEM, "Nobody") is None
        assert await svc.notify("", NotificationType.SYSTEM, "Nobody") is None

    @pytest.mark.asyncio
    async def test_unread_filter(self, session: AsyncSession) -> None:
        svc = NotificationService(session)
        first = await svc.notify("user-2", NotificationType.SYSTEM, "First")
        await svc.notify("user-2", NotificationType.SYSTEM, "Second")
        first.is_read = True
        await session.flush()

        unread = await svc.list_for_user("user-2", unread_only=True)
        assert [n.title for n in unread] == ["Second"]


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_storage_failure_returns_none(
        self, session: AsyncSession, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def broken_create(self, notification):  # noqa: ANN001, ARG001
            raise OperationalError("INSERT INTO notifications", {}, Exception("disk I/O error"))

        monkeypatch.setattr(NotificationRepository, "create", broken_create)

        result = await NotificationService(session).notify("user-3", NotificationType.SYSTEM, "Lost")
        assert result is None

    @pytest.mark.asyncio
    async def test_failed_notification_does_not_undo_transition(
        self,
        session: AsyncSession,
        project: Project,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        service = EscrowService(session)
        escrow = await service.initiate_escrow(project.id, 1000, artisan_is_verified=False)

        async def broken_create(self, notification):  # noqa: ANN001, ARG001
            raise OperationalError("INSERT INTO notifications", {}, Exception("disk I/O error"))

        monkeypatch.setattr(NotificationRepository, "create", broken_create)

        escrow = await service.confirm_deposit(escrow.id, payment_method="cash")
        assert escrow.status == EscrowStatus.HELD
        assert (await service.get_escrow(escrow.id)).payment_method == "cash"
