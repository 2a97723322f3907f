"""Rutas de ciclo de vida de eventos"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.event_management.models.event import EventResponse
from services.event_management.services.event_service import EventService
from services.refunds.services.refund_service import RefundService


router = APIRouter()


@router.post("/{event_id}/publish", response_model=EventResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def publish_event(
    request: Request,
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    service = EventService()
    return await service.publish_event(db, event_id, current_user["user_id"], current_user["role"])


@router.post("/{event_id}/cancel", response_model=EventResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def cancel_event(
    request: Request,
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Cancelar evento. Se crean reembolsos EVENT_CANCELLED pendientes para
    cada orden pagada.
    """
    service = EventService(refund_issuer=RefundService())
    return await service.cancel_event(db, event_id, current_user["user_id"], current_user["role"])
