"""Rutas de validación y transferencia de tickets"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_purchase.models.order import (
    CheckInRequest,
    TicketInstanceResponse,
    TransferTicketRequest,
)
from services.ticket_validation.services.ticket_service import TicketService


router = APIRouter()


@router.post("/check-in", response_model=TicketInstanceResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def check_in(
    request: Request,
    check_in_request: CheckInRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Registrar entrada por código de ticket

    Requiere ser organizador del evento o admin
    """
    return await TicketService.check_in(
        db,
        check_in_request.code,
        current_user["user_id"],
        current_user["role"],
        notes=check_in_request.notes,
        location=check_in_request.location,
    )


@router.post("/{ticket_id}/transfer", response_model=TicketInstanceResponse)
@limiter.limit(RATE_LIMITS["refund"])
async def transfer_ticket(
    request: Request,
    ticket_id: str,
    transfer_request: TransferTicketRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    return await TicketService.transfer_ticket(
        db, ticket_id, current_user["user_id"], current_user["role"], transfer_request
    )
