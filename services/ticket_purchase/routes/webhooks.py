"""Webhooks del proveedor de pagos"""
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from shared.database.connection import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_purchase.models.order import AsaasWebhookPayload
from services.ticket_purchase.services.payment_service import PaymentService, verify_webhook_token

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/asaas")
@limiter.limit(RATE_LIMITS["webhook"])
async def asaas_webhook(
    request: Request,
    payload: AsaasWebhookPayload,
    asaas_access_token: Optional[str] = Header(default=None, alias="asaas-access-token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Recibir eventos de pago de ASAAS.

    Responde 200 también para eventos ignorados: ASAAS reintenta cualquier
    otra respuesta y pausa la cola de webhooks tras varios fallos.
    """
    if not verify_webhook_token(asaas_access_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token de webhook inválido"
        )

    logger.info(f"Webhook ASAAS recibido: {payload.event}")
    service = PaymentService()
    return await service.process_webhook(db, payload)
