"""Tests de notificaciones: encolado best-effort y envío con Resend"""
from types import SimpleNamespace

import pytest
import resend

from app.core.config import settings
from services.notifications.services.email_service import EmailService
from services.notifications.services.notification_service import NotificationService
from services.ticket_purchase.tasks.email_tasks import (
    EmailDeliveryError,
    send_order_confirmation_task,
    send_tickets_ready_task,
)

# El fixture autouse no_celery reemplaza _enqueue; se conserva el original
ENQUEUE = NotificationService._enqueue

ORDER = SimpleNamespace(buyer_email="buyer@example.com", buyer_name=None, order_number="ORD-TEST-1-ABCD")


class BrokerDown:
    name = "send_order_confirmation"

    def delay(self, **kwargs):
        raise ConnectionError("broker no disponible")


class RecordingTask:
    name = "send_payment_waiting"

    def __init__(self):
        self.kwargs = None

    def delay(self, **kwargs):
        self.kwargs = kwargs


class TestNotificationService:
    def test_enqueue_failure_is_swallowed(self, caplog):
        ENQUEUE(NotificationService(), BrokerDown(), ORDER, event_title="Tech Conf")

        assert "No se pudo encolar send_order_confirmation" in caplog.text

    def test_enqueue_uses_email_when_name_missing(self):
        task = RecordingTask()

        ENQUEUE(NotificationService(), task, ORDER, total="103.00")

        assert task.kwargs == {
            "email": "buyer@example.com",
            "buyer_name": "buyer@example.com",
            "order_number": "ORD-TEST-1-ABCD",
            "total": "103.00",
        }


class TestEmailService:
    async def test_unconfigured_is_simulated(self, monkeypatch):
        monkeypatch.setattr(settings, "RESEND_API_KEY", "")
        assert await EmailService().send_email("a@example.com", "Asunto", "<p>hola</p>") is True

    async def test_sends_through_resend(self, monkeypatch):
        sent = []
        monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
        monkeypatch.setattr(resend.Emails, "send", lambda params: sent.append(params) or {"id": "email_1"})

        ok = await EmailService().send_email("a@example.com", "Asunto", "<p>hola</p>", text_content="hola")

        assert ok is True
        assert sent[0]["to"] == ["a@example.com"]
        assert sent[0]["text"] == "hola"

    async def test_resend_error_returns_false(self, monkeypatch):
        def fail(params):
            raise RuntimeError("rate limited")

        monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
        monkeypatch.setattr(resend.Emails, "send", fail)

        assert await EmailService().send_email("a@example.com", "Asunto", "<p>hola</p>") is False


class TestEmailTasks:
    def test_confirmation_task(self, monkeypatch):
        monkeypatch.setattr(settings, "RESEND_API_KEY", "")

        result = send_order_confirmation_task(
            email="buyer@example.com", buyer_name="Comprador",
            order_number="ORD-1", event_title="Tech Conf", total="103.00",
        )

        assert result == {"status": "sent", "email": "buyer@example.com", "order_number": "ORD-1"}

    def test_failed_delivery_raises_for_retry(self, monkeypatch):
        async def refuse(self, **kwargs):
            return False

        monkeypatch.setattr(EmailService, "send_tickets_ready_email", refuse)

        with pytest.raises(EmailDeliveryError):
            send_tickets_ready_task(
                email="buyer@example.com", buyer_name="Comprador", order_number="ORD-1",
                event_title="Tech Conf", tickets=[{"attendee_name": "A", "attendee_email": "a@example.com", "code": "X"}],
            )
