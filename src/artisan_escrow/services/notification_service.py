"""Notification Service — fire-and-forget notification sink.

Escrow transitions chain a notification to the affected user (payment held,
advance paid, refund). A failed notification must never undo or block the
transition that triggered it, so each insert runs in its own savepoint and
failures are logged and dropped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from artisan_escrow.infrastructure.database.orm_models import Notification
from artisan_escrow.infrastructure.database.repositories import NotificationRepository
from artisan_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from artisan_escrow.domain.enums import NotificationType

logger = get_logger(__name__)


class NotificationService:
    """Writes notifications for users without failing the caller."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = NotificationRepository(session)

    async def notify(
        self,
        user_id: str | None,
        type: NotificationType,  # noqa: A002
        title: str,
        message: str | None = None,
        data: dict | None = None,
    ) -> Notification | None:
        """Record a notification. Returns None when it could not be stored."""
        if not user_id:
            logger.debug("notification.skipped_no_recipient", type=type.value, title=title)
            return None

        try:
            async with self._session.begin_nested():
                notification = await self._repo.create(
                    Notification(
                        user_id=user_id,
                        type=type.value,
                        title=title,
                        message=message,
                        data=data or {},
                    )
                )
        except SQLAlchemyError as exc:
            logger.warning(
                "notification.failed",
                user_id=user_id,
                type=type.value,
                error=str(exc),
            )
            return None

        logger.info("notification.sent", user_id=user_id, type=type.value)
        return notification

    async def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        return await self._repo.get_for_user(user_id, unread_only=unread_only)
