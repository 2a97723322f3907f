"""Máquina de estados de órdenes.

Tabla única de transiciones legales. Los servicios no comparan estados por su
cuenta: piden la transición aquí y la aplican con un UPDATE condicionado al
estado de origen, de modo que si dos procesos compiten por la misma orden solo
uno gana y el otro queda como no-op.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from shared.database.models import Order, OrderStatus
from shared.errors import InvalidTransitionError
from shared.utils.clock import utcnow

logger = logging.getLogger(__name__)


class OrderEvent(str, Enum):
    CONFIRM = "CONFIRM"
    START_RISK_ANALYSIS = "START_RISK_ANALYSIS"
    CANCEL = "CANCEL"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    EXPIRE = "EXPIRE"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    FULL_REFUND = "FULL_REFUND"


TERMINAL_STATES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.CANCELLED,
    OrderStatus.EXPIRED,
    OrderStatus.REFUNDED,
})

_REFUNDABLE = (OrderStatus.CONFIRMED, OrderStatus.COMPLETED, OrderStatus.PARTIAL_REFUND)

# (estado actual, evento) -> nuevo estado
TRANSITIONS: Dict[Tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.PENDING, OrderEvent.CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.PROCESSING, OrderEvent.CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.PENDING, OrderEvent.START_RISK_ANALYSIS): OrderStatus.PROCESSING,
    (OrderStatus.PENDING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    # Solo órdenes gratuitas, ver guard_cancel
    (OrderStatus.CONFIRMED, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PENDING, OrderEvent.PAYMENT_FAILED): OrderStatus.CANCELLED,
    (OrderStatus.PROCESSING, OrderEvent.PAYMENT_FAILED): OrderStatus.CANCELLED,
    (OrderStatus.PENDING, OrderEvent.EXPIRE): OrderStatus.EXPIRED,
}
for _status in _REFUNDABLE:
    TRANSITIONS[(_status, OrderEvent.PARTIAL_REFUND)] = OrderStatus.PARTIAL_REFUND
    TRANSITIONS[(_status, OrderEvent.FULL_REFUND)] = OrderStatus.REFUNDED


def next_state(current: OrderStatus, event: OrderEvent) -> Optional[OrderStatus]:
    return TRANSITIONS.get((current, event))


def sources_for(event: OrderEvent) -> Tuple[OrderStatus, ...]:
    """Estados desde los que el evento es legal"""
    return tuple(status for (status, ev) in TRANSITIONS if ev == event)


def guard_cancel(order: Order):
    """Cancelar una orden confirmada solo es posible si fue gratuita"""
    if order.status == OrderStatus.CONFIRMED and order.total != 0:
        raise InvalidTransitionError(
            "Solo se pueden cancelar órdenes pendientes o confirmadas gratuitas"
        )


def ensure_transition(order: Order, event: OrderEvent) -> OrderStatus:
    """Validar la transición contra la tabla; lanza InvalidTransitionError"""
    target = next_state(order.status, event)
    if target is None:
        raise InvalidTransitionError(
            f"La orden {order.order_number} en estado {order.status.value} no admite {event.value}"
        )
    if event == OrderEvent.CANCEL:
        guard_cancel(order)
    return target


async def apply_transition(
    db: AsyncSession,
    order: Order,
    event: OrderEvent,
    extra_conditions=(),
    **values,
) -> bool:
    """
    Aplicar la transición con un UPDATE condicionado al estado leído.

    Returns:
        True si la fila cambió; False si otro proceso ya la movió (no-op).
    """
    target = ensure_transition(order, event)
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.status == order.status, *extra_conditions)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        logger.info(
            f"Transición {event.value} de la orden {order.order_number} descartada: "
            f"el estado cambió concurrentemente"
        )
        return False

    logger.info(f"Orden {order.order_number}: {order.status.value} -> {target.value}")
    # Reflejar en memoria sin volver a marcar la instancia como modificada
    set_committed_value(order, "status", target)
    for key, value in values.items():
        set_committed_value(order, key, value)
    return True
