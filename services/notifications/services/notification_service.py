"""Notificaciones de órdenes encoladas en Celery (best-effort)"""
from typing import List
import logging

from shared.database.models import Order, TicketInstance
from shared.errors import NotificationError

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Encola los emails de la orden. Un fallo al encolar se registra y nunca
    se propaga: la operación que lo disparó ya está confirmada.
    """

    def _enqueue(self, task, order: Order, **kwargs):
        try:
            task.delay(
                email=order.buyer_email,
                buyer_name=order.buyer_name or order.buyer_email,
                order_number=order.order_number,
                **kwargs,
            )
        except Exception as e:
            error = NotificationError(f"No se pudo encolar {task.name} para la orden {order.order_number}: {e}")
            logger.error(str(error), exc_info=True)

    def send_order_confirmation(self, order: Order, event_title: str):
        from services.ticket_purchase.tasks.email_tasks import send_order_confirmation_task

        self._enqueue(
            send_order_confirmation_task, order,
            event_title=event_title, total=str(order.total),
        )

    def send_payment_waiting(self, order: Order, event_title: str):
        from services.ticket_purchase.tasks.email_tasks import send_payment_waiting_task

        self._enqueue(
            send_payment_waiting_task, order,
            event_title=event_title,
            total=str(order.total),
            expires_at=order.expires_at.isoformat() if order.expires_at else None,
        )

    def send_tickets_ready(self, order: Order, event_title: str, tickets: List[TicketInstance]):
        from services.ticket_purchase.tasks.email_tasks import send_tickets_ready_task

        if not tickets:
            return
        self._enqueue(
            send_tickets_ready_task, order,
            event_title=event_title,
            tickets=[
                {
                    "attendee_name": ticket.attendee_name,
                    "attendee_email": ticket.attendee_email,
                    "code": ticket.code,
                }
                for ticket in tickets
            ],
        )
