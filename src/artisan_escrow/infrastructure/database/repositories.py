"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from artisan_escrow.domain.exceptions import ConcurrencyError
from artisan_escrow.infrastructure.database.orm_models import (
    Escrow,
    EscrowEvent,
    Notification,
    Project,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from artisan_escrow.domain.enums import EscrowStatus, EventType, ProjectStatus


class ProjectRepository:
    """Data access for the projects an escrow belongs to."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, project: Project) -> Project:
        self._session.add(project)
        await self._session.flush()
        return project

    async def get_by_id(self, project_id: uuid.UUID) -> Project | None:
        result = await self._session.execute(select(Project).where(Project.id == project_id))
        return result.scalar_one_or_none()

    async def update_status(self, project: Project, new_status: ProjectStatus) -> Project:
        project.status = new_status.value
        project.updated_at = datetime.now(UTC)
        await self._session.flush()
        return project


class EscrowRepository:
    """Data access for escrows.

    Updates rely on the mapper's version column: a flush that matches no
    row at the version that was read raises StaleDataError, surfaced here
    as ConcurrencyError.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: Escrow) -> Escrow:
        """Insert a new escrow."""
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_id(self, escrow_id: uuid.UUID) -> Escrow | None:
        """Fetch an escrow by its UUID."""
        result = await self._session.execute(select(Escrow).where(Escrow.id == escrow_id))
        return result.scalar_one_or_none()

    async def get_by_project(self, project_id: uuid.UUID) -> Escrow | None:
        """Fetch the escrow owned by a project, if any."""
        result = await self._session.execute(
            select(Escrow).where(Escrow.project_id == project_id)
        )
        return result.scalar_one_or_none()

    async def save(self, escrow: Escrow) -> Escrow:
        """Flush pending changes on an escrow (call AFTER state machine validation)."""
        escrow.updated_at = datetime.now(UTC)
        try:
            await self._session.flush()
        except StaleDataError as err:
            raise ConcurrencyError(str(escrow.id)) from err
        return escrow


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        escrow_id: uuid.UUID,
        event_type: EventType,
        old_status: EscrowStatus | None,
        new_status: EscrowStatus,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            escrow_id=escrow_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_escrow(self, escrow_id: uuid.UUID) -> list[EscrowEvent]:
        """Fetch all events for an escrow in chronological order."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.escrow_id == escrow_id)
            .order_by(EscrowEvent.created_at.asc())
        )
        return list(result.scalars().all())


class NotificationRepository:
    """Data access for user notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def get_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """Fetch a user's notifications, newest first."""
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        result = await self._session.execute(stmt.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())
