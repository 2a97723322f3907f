"""Errores de dominio del motor de órdenes y reembolsos.

Cada familia corresponde a una respuesta HTTP distinta (ver main.py). Los
mensajes son seguros para mostrar al cliente.
"""
from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Códigos de error de dominio"""

    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    SOLD_OUT = "SOLD_OUT"
    HALF_PRICE_SOLD_OUT = "HALF_PRICE_SOLD_OUT"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    SALES_CLOSED = "SALES_CLOSED"
    CONFLICT = "CONFLICT"
    PROMO_USAGE_LIMIT = "PROMO_USAGE_LIMIT"
    DUPLICATE_REFUND = "DUPLICATE_REFUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    REFUND_NOT_ALLOWED = "REFUND_NOT_ALLOWED"
    FORBIDDEN = "FORBIDDEN"
    GATEWAY = "GATEWAY_ERROR"
    NOTIFICATION = "NOTIFICATION_ERROR"


class DomainError(Exception):
    """Error base con código y mensaje apto para el usuario"""

    code = ErrorCode.CONFLICT

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(DomainError):
    """Entrada mal formada o datos de asistentes inválidos"""

    code = ErrorCode.VALIDATION


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND


class AvailabilityError(DomainError):
    """No hay inventario o capacidad para la solicitud"""

    code = ErrorCode.SOLD_OUT

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource_id = resource_id


class SoldOutError(AvailabilityError):
    code = ErrorCode.SOLD_OUT


class HalfPriceSoldOutError(AvailabilityError):
    code = ErrorCode.HALF_PRICE_SOLD_OUT


class CapacityExceededError(AvailabilityError):
    code = ErrorCode.CAPACITY_EXCEEDED


class SalesClosedError(AvailabilityError):
    code = ErrorCode.SALES_CLOSED


class ConflictError(DomainError):
    code = ErrorCode.CONFLICT


class PromoCodeUsageLimitError(ConflictError):
    code = ErrorCode.PROMO_USAGE_LIMIT


class DuplicateRefundError(ConflictError):
    code = ErrorCode.DUPLICATE_REFUND


class InvalidTransitionError(ConflictError):
    code = ErrorCode.INVALID_TRANSITION


class RefundNotAllowedError(ConflictError):
    code = ErrorCode.REFUND_NOT_ALLOWED


class AuthorizationError(DomainError):
    """Acción privilegiada sin permisos. Nunca expone detalles."""

    code = ErrorCode.FORBIDDEN

    def __init__(self, message: str = "forbidden"):
        super().__init__("forbidden")
        # El motivo real queda solo para logs
        self.detail = message


class GatewayError(DomainError):
    """Fallo del proveedor de pagos al procesar un reembolso"""

    code = ErrorCode.GATEWAY


class NotificationError(DomainError):
    """Solo se registra en logs, nunca se propaga al llamador"""

    code = ErrorCode.NOTIFICATION
