"""Servicio de envío de emails usando Resend"""
import asyncio
import logging
from typing import Optional, List, Union, Dict

import resend

from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Servicio para enviar emails usando Resend"""

    def __init__(self):
        self.from_email = settings.RESEND_FROM_EMAIL

        if not settings.RESEND_API_KEY:
            logger.warning("RESEND_API_KEY no configurado. Los emails no se enviarán.")
            self.resend_configured = False
        else:
            resend.api_key = settings.RESEND_API_KEY
            self.resend_configured = True
            logger.info(f"EmailService (Resend) inicializado con from: {self.from_email}")

    async def send_email(
        self,
        to_email: Union[str, List[str]],
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """
        Enviar email usando Resend

        Returns:
            True si se envió correctamente, False en caso contrario
        """
        if not self.resend_configured:
            logger.warning(f"Resend no configurado. Email simulado a {to_email}: {subject}")
            return True

        to_emails = [to_email] if isinstance(to_email, str) else to_email
        params = {
            "from": self.from_email,
            "to": to_emails,
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            params["text"] = text_content

        # El SDK de Resend es síncrono
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, resend.Emails.send, params)
        except Exception as e:
            logger.error(f"Error enviando email a {to_emails}: {e}", exc_info=True)
            return False

        logger.info(f"Email enviado exitosamente a {to_emails}: {subject} (ID: {result.get('id', 'N/A')})")
        return True

    async def send_order_confirmation_email(
        self,
        to_email: str,
        buyer_name: str,
        order_number: str,
        event_title: str,
        total: str,
    ) -> bool:
        """Confirmación de orden pagada (o gratuita)"""
        html = f"""
        <h2>¡Gracias por tu compra, {buyer_name}!</h2>
        <p>Tu orden <strong>{order_number}</strong> para <strong>{event_title}</strong> fue confirmada.</p>
        <p>Total: R$ {total}</p>
        """
        return await self.send_email(
            to_email,
            f"Orden {order_number} confirmada",
            html,
            text_content=f"Tu orden {order_number} para {event_title} fue confirmada. Total: R$ {total}",
        )

    async def send_payment_waiting_email(
        self,
        to_email: str,
        buyer_name: str,
        order_number: str,
        event_title: str,
        total: str,
        expires_at: Optional[str],
    ) -> bool:
        """Aviso de orden creada esperando el pago"""
        deadline = f"<p>Tu reserva vence el {expires_at} (UTC).</p>" if expires_at else ""
        html = f"""
        <h2>Hola {buyer_name}</h2>
        <p>Reservamos tus entradas para <strong>{event_title}</strong> (orden {order_number}).</p>
        <p>Completa el pago de R$ {total} para confirmarlas.</p>
        {deadline}
        """
        return await self.send_email(to_email, f"Esperando pago de la orden {order_number}", html)

    async def send_tickets_ready_email(
        self,
        to_email: str,
        buyer_name: str,
        order_number: str,
        event_title: str,
        tickets: List[Dict],
    ) -> bool:
        """Listado de tickets emitidos con sus códigos"""
        rows = "".join(
            f"<li>{ticket['attendee_name']}: <code>{ticket['code']}</code></li>"
            for ticket in tickets
        )
        html = f"""
        <h2>Tus tickets para {event_title}</h2>
        <p>Hola {buyer_name}, estos son los tickets de la orden {order_number}:</p>
        <ul>{rows}</ul>
        """
        return await self.send_email(to_email, f"Tus tickets para {event_title}", html)
