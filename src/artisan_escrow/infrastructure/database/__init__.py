"""Database infrastructure — engine, ORM models, and repositories."""

from artisan_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from artisan_escrow.infrastructure.database.orm_models import (
    Base,
    Escrow,
    EscrowEvent,
    Notification,
    Project,
)
from artisan_escrow.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    NotificationRepository,
    ProjectRepository,
)

__all__ = [
    "Base",
    "Escrow",
    "EscrowEvent",
    "Notification",
    "Project",
    "EscrowRepository",
    "EventRepository",
    "NotificationRepository",
    "ProjectRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
