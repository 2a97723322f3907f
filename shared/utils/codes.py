"""Generación de códigos de tickets y números de orden"""
import hashlib
import hmac
import itertools
import secrets
import string
import time
import uuid
from typing import Optional

from app.core.config import settings

_BASE36 = string.digits + string.ascii_uppercase

# Secuencia monotónica del proceso para números de orden
_order_sequence = itertools.count(1)


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    """
    Generar número de orden legible.

    Formato: ORD-{timestamp ms}-{secuencia}-{sufijo aleatorio}, todo en base36.
    La secuencia del proceso evita colisiones dentro de un mismo worker y el
    sufijo aleatorio entre workers distintos.
    """
    timestamp = to_base36(int(time.time() * 1000))
    sequence = to_base36(next(_order_sequence))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"ORD-{timestamp}-{sequence}-{suffix}"


def generate_ticket_signature(ticket_id: str, secret: Optional[str] = None) -> str:
    """
    Firma HMAC-SHA256 del ticket.

    Returns:
        Primeros 8 caracteres del id (sin guiones) + firma hexadecimal
    """
    if secret is None:
        secret = settings.QR_SECRET

    message = f"ticket:{ticket_id}"
    signature = hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()

    return f"{ticket_id.replace('-', '')[:8]}{signature}"


class TicketCodeGenerator:
    """Genera códigos opacos y únicos para tickets escaneables"""

    def __init__(self, secret: Optional[str] = None):
        self.secret = secret

    def new_code(self) -> str:
        return generate_ticket_signature(str(uuid.uuid4()), self.secret)
