"""Pydantic API schemas."""

from artisan_escrow.schemas.escrow import (
    ConfirmDepositRequest,
    EscrowCalculationResponse,
    EscrowEventResponse,
    EscrowResponse,
    EscrowStatusResponse,
    HealthResponse,
    InitiateEscrowRequest,
    QuoteRequest,
    ReasonRequest,
    UpdateAmountRequest,
    VersionedRequest,
)

__all__ = [
    "ConfirmDepositRequest",
    "EscrowCalculationResponse",
    "EscrowEventResponse",
    "EscrowResponse",
    "EscrowStatusResponse",
    "HealthResponse",
    "InitiateEscrowRequest",
    "QuoteRequest",
    "ReasonRequest",
    "UpdateAmountRequest",
    "VersionedRequest",
]
