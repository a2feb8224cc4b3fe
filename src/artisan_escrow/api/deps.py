"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services and configuration.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from artisan_escrow.config import Settings, get_settings
from artisan_escrow.infrastructure.database.engine import get_async_session
from artisan_escrow.services.escrow_service import EscrowService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


async def get_escrow_service(
    session: AsyncSession = Depends(get_db_session),
) -> EscrowService:
    """Provide an EscrowService bound to the current session."""
    return EscrowService(session)


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
