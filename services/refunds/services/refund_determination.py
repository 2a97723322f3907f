"""Clasificación de solicitudes de reembolso y cálculo de montos"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from app.core.config import settings
from services.ticket_purchase.services.pricing_service import round2
from shared.database.models import Event, EventStatus, RefundType
from shared.errors import RefundNotAllowedError
from shared.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RefundCalculation:
    refund_type: RefundType
    ticket_amount: Decimal
    platform_fee_amount: Decimal
    platform_fee_refunded: bool
    total_refund_amount: Decimal


def _whole_days(delta) -> int:
    return int(delta.total_seconds() // 86400)


def is_cdc_eligible(order_created_at: datetime, event: Event, now: Optional[datetime] = None) -> bool:
    """Derecho de arrepentimiento: hasta N días desde la compra y el evento sin comenzar"""
    now = now or utcnow()
    return (
        _whole_days(now - order_created_at) <= settings.CDC_REFUND_DAYS
        and event.starts_at > now
    )


def check_event_policy(event: Event, now: Optional[datetime] = None):
    """Política del organizador; lanza RefundNotAllowedError si no permite reembolso"""
    now = now or utcnow()
    if not event.refund_allowed:
        raise RefundNotAllowedError("El evento no admite reembolsos")

    if event.starts_at <= now:
        raise RefundNotAllowedError("El evento ya comenzó")

    if event.refund_deadline_days is not None:
        days_until_event = _whole_days(event.starts_at - now)
        if days_until_event < event.refund_deadline_days:
            raise RefundNotAllowedError(
                f"Los reembolsos cierran {event.refund_deadline_days} días antes del evento"
            )


def determine_refund(
    order_created_at: datetime,
    event: Event,
    ticket_amount: Decimal,
    service_fee: Decimal,
    now: Optional[datetime] = None,
) -> RefundCalculation:
    """
    Clasificar el reembolso con prioridad CDC > evento cancelado > política.

    En los tres casos se devuelve el 100% del monto de tickets más la tasa de
    servicio; event.refund_percentage se conserva pero no se aplica.
    """
    now = now or utcnow()

    if is_cdc_eligible(order_created_at, event, now):
        refund_type = RefundType.CDC_7_DAYS
    elif event.status == EventStatus.CANCELLED:
        refund_type = RefundType.EVENT_CANCELLED
    else:
        check_event_policy(event, now)
        refund_type = RefundType.EVENT_POLICY

    ticket_amount = round2(ticket_amount)
    fee = round2(service_fee)
    logger.debug(f"Reembolso clasificado como {refund_type.value}: tickets={ticket_amount}, tasa={fee}")

    return RefundCalculation(
        refund_type=refund_type,
        ticket_amount=ticket_amount,
        platform_fee_amount=fee,
        platform_fee_refunded=True,
        total_refund_amount=round2(ticket_amount + fee),
    )
