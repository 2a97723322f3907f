"""Dobles en memoria de los colaboradores externos"""
from typing import Dict, List

from shared.errors import GatewayError
from services.notifications.services.notification_service import NotificationService


class RecordingNotifier(NotificationService):
    """Registra las notificaciones en lugar de encolarlas en Celery"""

    def __init__(self):
        self.sent: List[tuple] = []

    def _enqueue(self, task, order, **kwargs):
        self.sent.append((task.name, order.order_number))

    def kinds(self) -> List[str]:
        return [name for name, _ in self.sent]


class FakeGateway:
    """Gateway de pagos en memoria; fail=True simula un rechazo del proveedor"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Dict] = []

    async def refund(self, transaction_id, amount, description):
        self.calls.append({"transaction_id": transaction_id, "amount": amount, "description": description})
        if self.fail:
            raise GatewayError("El gateway rechazó el reembolso (HTTP 400)")
        return {"id": transaction_id, "status": "REFUNDED"}
