"""Shared test fixtures for the artisan escrow test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - Async sessions bound to it
    - Factory fixtures for projects and escrows
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from artisan_escrow.domain.enums import ProjectStatus
from artisan_escrow.infrastructure.database.orm_models import Base, Project
from artisan_escrow.infrastructure.database.repositories import ProjectRepository

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

CLIENT_ID = "client-0001"
ARTISAN_ID = "artisan-0001"


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """A fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def project(session: AsyncSession) -> Project:
    """A project whose quote was accepted, ready for an escrow."""
    return await ProjectRepository(session).create(
        Project(
            client_id=CLIENT_ID,
            artisan_id=ARTISAN_ID,
            title="Retile the kitchen floor",
            status=ProjectStatus.QUOTE_ACCEPTED.value,
        )
    )


@pytest.fixture
def missing_id() -> uuid.UUID:
    """A deterministic UUID that no fixture ever inserts."""
    return uuid.UUID("12345678-1234-5678-1234-567812345678")
