"""Tareas asíncronas para envío de emails de órdenes"""
from typing import Dict, List, Optional
import logging
import asyncio

from shared.cache.celery_app import celery_app

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Resend rechazó el envío; Celery reintenta"""


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _deliver(send_coro, email: str, kind: str, order_number: str) -> Dict:
    if not run_async(send_coro):
        logger.error(f"[CELERY] Error enviando {kind} a {email}")
        raise EmailDeliveryError(f"Error enviando {kind} a {email}")
    logger.info(f"[CELERY] {kind} enviado a {email} (orden {order_number})")
    return {"status": "sent", "email": email, "order_number": order_number}


@celery_app.task(
    name="send_order_confirmation",
    bind=True,
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": 3},
)
def send_order_confirmation_task(self, email: str, buyer_name: str, order_number: str,
                                 event_title: str, total: str):
    from services.notifications.services.email_service import EmailService

    service = EmailService()
    return _deliver(
        service.send_order_confirmation_email(
            to_email=email,
            buyer_name=buyer_name,
            order_number=order_number,
            event_title=event_title,
            total=total,
        ),
        email, "order_confirmation", order_number,
    )


@celery_app.task(
    name="send_payment_waiting",
    bind=True,
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": 3},
)
def send_payment_waiting_task(self, email: str, buyer_name: str, order_number: str,
                              event_title: str, total: str, expires_at: Optional[str] = None):
    from services.notifications.services.email_service import EmailService

    service = EmailService()
    return _deliver(
        service.send_payment_waiting_email(
            to_email=email,
            buyer_name=buyer_name,
            order_number=order_number,
            event_title=event_title,
            total=total,
            expires_at=expires_at,
        ),
        email, "payment_waiting", order_number,
    )


@celery_app.task(
    name="send_tickets_ready",
    bind=True,
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 2},
)
def send_tickets_ready_task(self, email: str, buyer_name: str, order_number: str,
                            event_title: str, tickets: List[Dict]):
    """
    Enviar los códigos de todos los tickets de una orden

    Args:
        tickets: Lista de dicts con attendee_name, attendee_email y code
    """
    from services.notifications.services.email_service import EmailService

    logger.info(f"[CELERY] Enviando {len(tickets)} tickets de la orden {order_number}")
    service = EmailService()
    return _deliver(
        service.send_tickets_ready_email(
            to_email=email,
            buyer_name=buyer_name,
            order_number=order_number,
            event_title=event_title,
            tickets=tickets,
        ),
        email, "tickets_ready", order_number,
    )
