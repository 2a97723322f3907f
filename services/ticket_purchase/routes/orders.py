"""Rutas de órdenes de tickets"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List, Optional
from uuid import UUID
import math
import logging

from shared.database.connection import get_db
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_purchase.models.order import (
    CreateOrderRequest,
    OrderListResponse,
    OrderResponse,
    PromoCodeValidationResponse,
    TicketInstanceResponse,
    ValidatePromoCodeRequest,
)
from services.ticket_purchase.models.payment import RegisterPaymentRequest, PaymentResponse
from services.ticket_purchase.services.order_service import OrderService
from services.ticket_purchase.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["order"])
async def create_order(
    request: Request,  # Necesario para rate limiter
    order_request: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Crear orden reservando inventario.

    Si el total es cero la orden queda CONFIRMED con tickets emitidos;
    si no, queda PENDING hasta que el webhook de pago la confirme.
    """
    service = OrderService()
    return await service.create_order(db, current_user["user_id"], order_request)


@router.get("", response_model=OrderListResponse)
@limiter.limit(RATE_LIMITS["public"])
async def list_my_orders(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    event_id: Optional[UUID] = Query(None, description="Filtrar por evento"),
    order_status: Optional[str] = Query(None, alias="status", description="Filtrar por estado"),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Órdenes del usuario autenticado, más recientes primero"""
    service = OrderService()
    orders, total = await service.list_orders(
        db, current_user["user_id"], page=page, limit=limit, event_id=event_id, status=order_status
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


@router.post("/promo-codes/validate", response_model=PromoCodeValidationResponse)
@limiter.limit(RATE_LIMITS["public"])
async def validate_promo_code(
    request: Request,
    promo_request: ValidatePromoCodeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Validar un código promocional antes de comprar.

    Devuelve el descuento que se aplicaría al subtotal sin consumir un uso.
    """
    service = OrderService()
    return await service.preview_promo_code(
        db, current_user["user_id"], promo_request.event_id, promo_request.code, promo_request.subtotal
    )


@router.get("/{order_id}", response_model=OrderResponse)
@limiter.limit(RATE_LIMITS["public"])
async def get_order(
    request: Request,
    order_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    service = OrderService()
    return await service.get_order(db, order_id, current_user["user_id"], current_user["role"])


@router.get("/{order_id}/tickets", response_model=List[TicketInstanceResponse])
@limiter.limit(RATE_LIMITS["public"])
async def list_order_tickets(
    request: Request,
    order_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Tickets emitidos de la orden (vacío mientras no esté confirmada)"""
    service = OrderService()
    return await service.list_order_tickets(db, order_id, current_user["user_id"], current_user["role"])


@router.post("/{order_id}/cancel", response_model=OrderResponse)
@limiter.limit(RATE_LIMITS["refund"])
async def cancel_order(
    request: Request,
    order_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Cancelar orden pendiente (o confirmada gratuita) liberando inventario"""
    service = OrderService()
    return await service.cancel_order(db, order_id, current_user["user_id"], current_user["role"])


@router.post("/{order_id}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["order"])
async def register_payment(
    request: Request,
    order_id: str,
    payment_request: RegisterPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Asociar el cobro creado en ASAAS a la orden pendiente"""
    service = PaymentService()
    return await service.register_payment(
        db,
        order_id,
        current_user["user_id"],
        current_user["role"],
        payment_request.provider_transaction_id,
        method=payment_request.method,
    )
