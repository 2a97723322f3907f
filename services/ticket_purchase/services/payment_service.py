"""Registro de pagos y procesamiento de webhooks de ASAAS"""
from typing import Dict, Optional
import hmac
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from services.ticket_purchase.models.order import AsaasWebhookPayload
from services.ticket_purchase.services.order_service import OrderService
from shared.database.models import Order, OrderStatus, Payment, PaymentStatus, UserRole
from shared.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from shared.utils.clock import utcnow
from shared.utils.ids import as_uuid

logger = logging.getLogger(__name__)

CONFIRMATION_EVENTS = {"PAYMENT_RECEIVED", "PAYMENT_CONFIRMED"}
FAILURE_EVENTS = {"PAYMENT_OVERDUE", "PAYMENT_REPROVED_BY_RISK_ANALYSIS"}
RISK_ANALYSIS_EVENT = "PAYMENT_AWAITING_RISK_ANALYSIS"


def verify_webhook_token(token: Optional[str]) -> bool:
    """Sin token configurado se rechaza todo webhook"""
    if not settings.ASAAS_WEBHOOK_TOKEN:
        logger.error("ASAAS_WEBHOOK_TOKEN no configurado. Webhook rechazado.")
        return False
    if not token or not hmac.compare_digest(token, settings.ASAAS_WEBHOOK_TOKEN):
        logger.error("Token de webhook inválido")
        return False
    return True


class PaymentService:
    """Pagos de órdenes y señales asíncronas del proveedor"""

    def __init__(self, order_service: Optional[OrderService] = None):
        self.order_service = order_service or OrderService()

    async def register_payment(
        self,
        db: AsyncSession,
        order_id,
        caller_id,
        role: str,
        provider_transaction_id: str,
        method: Optional[str] = None,
    ) -> Payment:
        """
        Asociar a la orden el cobro creado en el proveedor.

        La creación del cobro en sí ocurre en el checkout del proveedor; acá
        solo se guarda la referencia para reconocer los webhooks.
        """
        order = await db.get(Order, as_uuid(order_id))
        if not order:
            raise NotFoundError(f"Orden {order_id} no encontrada")
        if order.buyer_id != as_uuid(caller_id) and role != UserRole.ADMIN:
            raise AuthorizationError(f"Usuario {caller_id} no puede pagar la orden {order_id}")
        if order.status != OrderStatus.PENDING:
            raise ConflictError(f"La orden {order.order_number} no está pendiente de pago")

        existing = await db.scalar(select(Payment).where(Payment.order_id == order.id))
        if existing:
            raise ConflictError(f"La orden {order.order_number} ya tiene un pago registrado")

        payment = Payment(
            id=uuid.uuid4(),
            order_id=order.id,
            amount=order.total,
            status=PaymentStatus.PENDING,
            method=method,
            provider_transaction_id=provider_transaction_id,
        )
        db.add(payment)
        await db.commit()
        logger.info(f"Pago {provider_transaction_id} registrado para orden {order.order_number}")
        return payment

    async def _find_payment(self, db: AsyncSession, payload: AsaasWebhookPayload) -> Optional[Payment]:
        data = payload.payment
        if data.installment and data.externalReference:
            # Cada cuota llega con su propio id; la orden es la referencia externa
            try:
                order_id = as_uuid(data.externalReference)
            except ValidationError:
                return None
            return await db.scalar(select(Payment).where(Payment.order_id == order_id))
        return await db.scalar(
            select(Payment).where(Payment.provider_transaction_id == data.id)
        )

    async def process_webhook(self, db: AsyncSession, payload: AsaasWebhookPayload) -> Dict:
        """
        Mapear eventos de ASAAS a transiciones de pago y orden.

        Confirmación: solo la primera cuota confirma la orden.
        """
        if payload.payment is None:
            logger.info(f"Webhook {payload.event} sin pago, ignorado")
            return {"status": "ignored"}

        payment = await self._find_payment(db, payload)
        if payment is None:
            logger.warning(f"Pago no encontrado para webhook {payload.event}: {payload.payment.id}")
            return {"status": "ignored"}

        event = payload.event
        data = payload.payment
        order_id = payment.order_id
        logger.info(f"Procesando webhook {event} para pago {payment.id}")

        if event in CONFIRMATION_EVENTS:
            if data.installment and data.installmentNumber and data.installmentNumber != 1:
                logger.info(f"Cuota {data.installmentNumber} confirmada, tickets ya emitidos")
                return {"status": "ok", "event": event}

            if payment.status != PaymentStatus.COMPLETED:
                payment.status = PaymentStatus.COMPLETED
                payment.processed_at = utcnow()
                payment.provider_response = data.model_dump(mode="json")
                await db.commit()
            await self.order_service.confirm_order_payment(db, order_id)

        elif event == RISK_ANALYSIS_EVENT:
            payment.status = PaymentStatus.PROCESSING
            payment.provider_response = data.model_dump(mode="json")
            await db.commit()
            await self.order_service.start_risk_analysis(db, order_id)

        elif event in FAILURE_EVENTS:
            if payment.status == PaymentStatus.FAILED:
                return {"status": "ok", "event": event}
            payment.status = PaymentStatus.FAILED
            payment.provider_response = data.model_dump(mode="json")
            await db.commit()
            await self.order_service.fail_order_payment(db, order_id)

        else:
            logger.info(f"Evento de webhook no manejado: {event}")
            return {"status": "ignored", "event": event}

        return {"status": "ok", "event": event}
