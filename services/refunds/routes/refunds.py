"""Rutas de reembolsos"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.refunds.models.refund import (
    ApproveRefundRequest,
    CreateRefundRequest,
    RefundResponse,
    RejectRefundRequest,
)
from services.refunds.services.refund_service import RefundService


router = APIRouter()


@router.post("", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["refund"])
async def create_refund(
    request: Request,
    refund_request: CreateRefundRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Solicitar reembolso de una orden completa o de un ticket.

    El tipo (CDC, evento cancelado, política del evento) se determina
    automáticamente.
    """
    service = RefundService()
    return await service.create_refund(
        db,
        refund_request.order_id,
        refund_request.reason,
        current_user["user_id"],
        current_user["role"],
        ticket_instance_id=refund_request.ticket_instance_id,
        payment_id=refund_request.payment_id,
        notes=refund_request.notes,
    )


@router.get("/order/{order_id}", response_model=List[RefundResponse])
@limiter.limit(RATE_LIMITS["public"])
async def list_order_refunds(
    request: Request,
    order_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    service = RefundService()
    return await service.list_refunds_for_order(db, order_id, current_user["user_id"], current_user["role"])


@router.get("/{refund_id}", response_model=RefundResponse)
@limiter.limit(RATE_LIMITS["public"])
async def get_refund(
    request: Request,
    refund_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    service = RefundService()
    return await service.get_refund(db, refund_id, current_user["user_id"], current_user["role"])


@router.post("/{refund_id}/approve", response_model=RefundResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def approve_refund(
    request: Request,
    refund_id: str,
    approve_request: ApproveRefundRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Organizador del evento o admin. Ejecuta el reembolso en ASAAS."""
    service = RefundService()
    return await service.approve_refund(
        db, refund_id, current_user["user_id"], current_user["role"], notes=approve_request.notes
    )


@router.post("/{refund_id}/reject", response_model=RefundResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def reject_refund(
    request: Request,
    refund_id: str,
    reject_request: RejectRefundRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    service = RefundService()
    return await service.reject_refund(
        db, refund_id, reject_request.reason, current_user["user_id"], current_user["role"]
    )


@router.post("/{refund_id}/cancel", response_model=RefundResponse)
@limiter.limit(RATE_LIMITS["refund"])
async def cancel_refund(
    request: Request,
    refund_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """El solicitante retira su pedido de reembolso pendiente"""
    service = RefundService()
    return await service.cancel_refund(db, refund_id, current_user["user_id"], current_user["role"])
