"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API
and database layers.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class QuoteRequest(BaseModel):
    """Inputs of an escrow breakdown preview."""

    base_amount: float = Field(..., ge=0, description="Service cost before surcharge", examples=[100000])
    urgent_surcharge_percent: float = Field(
        default=0,
        ge=0,
        description="Urgency surcharge in percent of the base amount",
        examples=[20],
    )
    commission_percent: float | None = Field(
        default=None,
        ge=0,
        description="Platform commission percent (defaults to the configured rate)",
    )
    is_verified: bool = Field(
        default=False,
        description="Verified artisans receive a 50% advance",
    )


class InitiateEscrowRequest(BaseModel):
    """Request body for creating the escrow of a project."""

    project_id: uuid.UUID
    base_amount: float = Field(..., ge=0, examples=[100000])
    urgent_surcharge_percent: float = Field(default=0, ge=0)
    commission_percent: float | None = Field(default=None, ge=0)
    artisan_is_verified: bool = False
    actor: str = Field(default="SYSTEM", max_length=64)


class VersionedRequest(BaseModel):
    """Base body of lifecycle operations.

    ``expected_version`` is the escrow version the caller last read; the
    operation fails with 409 if the escrow changed since.
    """

    expected_version: int | None = Field(default=None, ge=1)
    actor: str = Field(default="SYSTEM", max_length=64)


class ConfirmDepositRequest(VersionedRequest):
    payment_method: str = Field(..., min_length=1, max_length=50, examples=["mobile_money"])


class ReasonRequest(VersionedRequest):
    """Body of freeze and refund."""

    reason: str | None = Field(default=None, max_length=2000)


class UpdateAmountRequest(VersionedRequest):
    new_base_amount: float = Field(..., ge=0, examples=[150000])


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EscrowCalculationResponse(BaseModel):
    """Full breakdown of an escrow amount."""

    model_config = ConfigDict(from_attributes=True)

    base_amount: float
    urgent_surcharge_percent: float
    urgent_surcharge: float
    total_amount: float
    commission_percent: float
    commission_amount: float
    tax_amount: float
    artisan_payout: float
    advance_percent: float
    advance_amount: float
    remaining_amount: float


class EscrowResponse(EscrowCalculationResponse):
    """Response schema for a persisted escrow."""

    id: uuid.UUID
    project_id: uuid.UUID
    transaction_number: str
    advance_paid: float
    is_advance_paid: bool
    artisan_is_verified: bool | None
    payment_method: str | None
    status: str
    frozen_from: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    escrow_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class EscrowStatusResponse(BaseModel):
    """Lightweight status check response."""

    escrow_id: uuid.UUID
    status: str
    version: int
    is_terminal: bool
    allowed_events: list[str] = Field(
        description="Lifecycle operations that can fire from the current status"
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
