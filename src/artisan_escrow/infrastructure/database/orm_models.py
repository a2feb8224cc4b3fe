"""SQLAlchemy 2.0 ORM models for the escrow core.

Four tables:
    1. projects       — The marketplace projects an escrow pays for (read + status).
    2. escrows        — One escrow per project with its persisted breakdown.
    3. escrow_events  — Append-only audit log of every lifecycle operation.
    4. notifications  — Notification sink rows emitted after transitions.

Design decisions:
    - UUIDs as primary keys, stored with the portable Uuid type.
    - Amounts are double precision floats: the breakdown is computed in float
      and persisted unrounded; rounding happens for display only.
    - JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite tests).
    - escrows.version is the mapper's version_id_col, so every UPDATE is
      conditional on the version that was read (optimistic concurrency).
    - No relationship() collections: services go through repositories, and
      lazy loads are not available under AsyncSession.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Double,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. projects
# ---------------------------------------------------------------------------
class Project(Base):
    """A client project. Owned by the marketplace; the escrow core only
    reads it and moves it to payment_received on deposit."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="User id of the client who pays into escrow",
    )
    artisan_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="User id of the artisan whose quote was accepted",
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_project_client", "client_id"),
        Index("idx_project_artisan", "artisan_id"),
    )

    def __repr__(self) -> str:
        return f"<Project id={self.id} status={self.status}>"


# ---------------------------------------------------------------------------
# 2. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """Platform-held funds for a project, with the breakdown snapshot."""

    __tablename__ = "escrows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Owning project (1:1)",
    )
    transaction_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human-readable reference shown to the client",
    )

    # --- Breakdown snapshot (see domain/calculator.py) ---
    base_amount: Mapped[float] = mapped_column(Double, nullable=False)
    urgent_surcharge_percent: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    urgent_surcharge: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    total_amount: Mapped[float] = mapped_column(Double, nullable=False)
    commission_percent: Mapped[float] = mapped_column(Double, nullable=False)
    commission_amount: Mapped[float] = mapped_column(Double, nullable=False)
    tax_amount: Mapped[float] = mapped_column(Double, nullable=False)
    artisan_payout: Mapped[float] = mapped_column(Double, nullable=False)
    advance_percent: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    advance_amount: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    remaining_amount: Mapped[float] = mapped_column(Double, nullable=False)

    # --- Disbursement ---
    advance_paid: Mapped[float] = mapped_column(
        Double,
        nullable=False,
        default=0.0,
        comment="Amount actually disbursed as advance",
    )
    is_advance_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    artisan_is_verified: Mapped[bool | None] = mapped_column(
        Boolean,
        nullable=True,
        default=None,
        comment="Verification flag at initiation; null on rows created before it was stored",
    )
    payment_method: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    frozen_from: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        default=None,
        comment="Status before the current freeze; unfreeze returns to it",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'held', 'advance_paid', 'released', 'frozen', 'refunded')",
            name="ck_escrow_valid_status",
        ),
        CheckConstraint("base_amount >= 0", name="ck_escrow_non_negative_base"),
        CheckConstraint("advance_paid >= 0", name="ck_escrow_non_negative_advance_paid"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Escrow id={self.id} status={self.status} "
            f"total={self.total_amount} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 3. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of every lifecycle operation on an escrow.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Escrow status before this event (null for initiation)",
    )
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default="SYSTEM")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Context: payment method, amounts before/after",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_escrow", "escrow_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 4. notifications
# ---------------------------------------------------------------------------
class Notification(Base):
    """A user notification emitted after an escrow transition."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_notification_user", "user_id"),
        Index("idx_notification_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


event.listen(Escrow, "before_update", _set_updated_at)
