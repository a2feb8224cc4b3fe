"""Escrow REST API routes.

Routes:
    POST   /api/v1/escrows/quote          — Preview a breakdown (no persistence)
    POST   /api/v1/escrows                — Initiate the escrow of a project
    GET    /api/v1/escrows/{id}           — Get escrow details
    GET    /api/v1/escrows/{id}/status    — Status, version and allowed operations
    GET    /api/v1/escrows/{id}/events    — Get audit trail
    POST   /api/v1/escrows/{id}/deposit   — Confirm the client's deposit
    POST   /api/v1/escrows/{id}/advance   — Release the advance
    POST   /api/v1/escrows/{id}/release   — Release the full payment
    POST   /api/v1/escrows/{id}/freeze    — Suspend the escrow
    POST   /api/v1/escrows/{id}/unfreeze  — Resume a frozen escrow
    POST   /api/v1/escrows/{id}/refund    — Refund the client
    PATCH  /api/v1/escrows/{id}/amount    — Recompute for a revised quote
    GET    /api/v1/projects/{id}/escrow   — Get the escrow of a project
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from artisan_escrow.api.deps import get_app_settings, get_escrow_service
from artisan_escrow.config import Settings
from artisan_escrow.domain.calculator import calculate_escrow
from artisan_escrow.logging_config import get_logger
from artisan_escrow.schemas.escrow import (
    ConfirmDepositRequest,
    EscrowCalculationResponse,
    EscrowEventResponse,
    EscrowResponse,
    EscrowStatusResponse,
    InitiateEscrowRequest,
    QuoteRequest,
    ReasonRequest,
    UpdateAmountRequest,
    VersionedRequest,
)
from artisan_escrow.services.escrow_service import EscrowService

router = APIRouter(prefix="/api/v1", tags=["Escrow"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Quote & initiate
# ---------------------------------------------------------------------------


@router.post(
    "/escrows/quote",
    response_model=EscrowCalculationResponse,
    summary="Preview an escrow breakdown",
)
async def quote_escrow(
    request: QuoteRequest,
    settings: Settings = Depends(get_app_settings),
) -> EscrowCalculationResponse:
    """Run the calculator without persisting anything."""
    commission = request.commission_percent
    if commission is None:
        commission = settings.default_commission_percent
    calculation = calculate_escrow(
        request.base_amount,
        request.urgent_surcharge_percent,
        commission,
        request.is_verified,
    )
    return EscrowCalculationResponse.model_validate(calculation)


@router.post(
    "/escrows",
    response_model=EscrowResponse,
    status_code=201,
    summary="Initiate the escrow of a project",
)
async def initiate_escrow(
    request: InitiateEscrowRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Create the escrow in pending state with its full breakdown."""
    escrow = await svc.initiate_escrow(
        project_id=request.project_id,
        base_amount=request.base_amount,
        artisan_is_verified=request.artisan_is_verified,
        urgent_surcharge_percent=request.urgent_surcharge_percent,
        commission_percent=request.commission_percent,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------


@router.post(
    "/escrows/{escrow_id}/deposit",
    response_model=EscrowResponse,
    summary="Confirm the client's deposit",
)
async def confirm_deposit(
    escrow_id: uuid.UUID,
    request: ConfirmDepositRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """pending -> held. The project moves to payment_received."""
    escrow = await svc.confirm_deposit(
        escrow_id,
        payment_method=request.payment_method,
        expected_version=request.expected_version,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


@router.post(
    "/escrows/{escrow_id}/advance",
    response_model=EscrowResponse,
    summary="Release the advance",
)
async def release_advance(
    escrow_id: uuid.UUID,
    request: VersionedRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """held -> advance_paid."""
    escrow = await svc.release_advance(
        escrow_id,
        expected_version=request.expected_version,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


@router.post(
    "/escrows/{escrow_id}/release",
    response_model=EscrowResponse,
    summary="Release the full payment",
)
async def release_full_payment(
    escrow_id: uuid.UUID,
    request: VersionedRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """held/advance_paid -> released."""
    escrow = await svc.release_full_payment(
        escrow_id,
        expected_version=request.expected_version,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


@router.post(
    "/escrows/{escrow_id}/freeze",
    response_model=EscrowResponse,
    summary="Suspend the escrow",
)
async def freeze_escrow(
    escrow_id: uuid.UUID,
    request: ReasonRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await svc.freeze(
        escrow_id,
        reason=request.reason,
        expected_version=request.expected_version,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


@router.post(
    "/escrows/{escrow_id}/unfreeze",
    response_model=EscrowResponse,
    summary="Resume a frozen escrow",
)
async def unfreeze_escrow(
    escrow_id: uuid.UUID,
    request: VersionedRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await svc.unfreeze(
        escrow_id,
        expected_version=request.expected_version,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


@router.post(
    "/escrows/{escrow_id}/refund",
    response_model=EscrowResponse,
    summary="Refund the client",
)
async def refund_escrow(
    escrow_id: uuid.UUID,
    request: ReasonRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await svc.refund(
        escrow_id,
        reason=request.reason,
        expected_version=request.expected_version,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


@router.patch(
    "/escrows/{escrow_id}/amount",
    response_model=EscrowResponse,
    summary="Recompute the escrow for a revised quote",
)
async def update_amount(
    escrow_id: uuid.UUID,
    request: UpdateAmountRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Only pending and held escrows can be amended; others answer 409."""
    escrow = await svc.update_escrow_for_new_amount(
        escrow_id,
        new_base_amount=request.new_base_amount,
        expected_version=request.expected_version,
        actor=request.actor,
    )
    return EscrowResponse.model_validate(escrow)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/escrows/{escrow_id}",
    response_model=EscrowResponse,
    summary="Get escrow details",
)
async def get_escrow(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await svc.get_escrow(escrow_id)
    return EscrowResponse.model_validate(escrow)


@router.get(
    "/escrows/{escrow_id}/status",
    response_model=EscrowStatusResponse,
    summary="Get lightweight status check",
)
async def get_status(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowStatusResponse:
    """Return the current status, version and allowed next operations."""
    status_data = await svc.get_status(escrow_id)
    return EscrowStatusResponse(**status_data)


@router.get(
    "/escrows/{escrow_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get audit trail",
)
async def get_events(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowEventResponse]:
    events = await svc.get_events(escrow_id)
    return [EscrowEventResponse.model_validate(e) for e in events]


@router.get(
    "/projects/{project_id}/escrow",
    response_model=EscrowResponse,
    summary="Get the escrow of a project",
)
async def get_project_escrow(
    project_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await svc.get_escrow_for_project(project_id)
    return EscrowResponse.model_validate(escrow)
