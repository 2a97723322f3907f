"""Cálculo de precios, tasas de servicio y descuentos por código promocional"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple
import logging

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import PromoCode, DiscountType, Order, OrderStatus, TicketType
from shared.errors import ValidationError, NotFoundError, PromoCodeUsageLimitError
from shared.utils.clock import utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Órdenes que ya no consumen un uso del código
RELEASED_PROMO_STATUSES = (OrderStatus.CANCELLED, OrderStatus.EXPIRED)


def round2(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PricedLine:
    ticket_type: TicketType
    quantity: int
    is_half_price: bool
    unit_price: Decimal
    total_price: Decimal


@dataclass
class OrderTotals:
    subtotal: Decimal
    service_fee: Decimal
    platform_fee: Decimal
    discount: Decimal
    total: Decimal

    @property
    def is_free(self) -> bool:
        return self.total == ZERO


def price_item(ticket_type: TicketType, quantity: int, is_half_price: bool) -> PricedLine:
    """Precio unitario (entero o media entrada) por cantidad"""
    if is_half_price:
        if not ticket_type.has_half_price or ticket_type.half_price is None:
            raise ValidationError(f"El ticket {ticket_type.title} no admite media entrada")
        unit_price = round2(ticket_type.half_price)
    else:
        unit_price = round2(ticket_type.price)

    return PricedLine(
        ticket_type=ticket_type,
        quantity=quantity,
        is_half_price=is_half_price,
        unit_price=unit_price,
        total_price=round2(unit_price * quantity),
    )


def compute_service_fee(lines: Iterable[PricedLine]) -> Decimal:
    """Suma de tasas de servicio de los ítems cuyo tipo no absorbe la tasa"""
    fee = ZERO
    for line in lines:
        if line.ticket_type.absorb_service_fee:
            continue
        percentage = Decimal(line.ticket_type.service_fee_percentage or 0)
        fee += round2(line.unit_price * line.quantity * percentage / 100)
    return round2(fee)


def compute_discount(promo: Optional[PromoCode], subtotal: Decimal) -> Decimal:
    if promo is None:
        return ZERO

    value = Decimal(promo.discount_value)
    if promo.discount_type == DiscountType.PERCENTAGE:
        discount = round2(subtotal * value / 100)
        if promo.max_discount_amount is not None:
            discount = min(discount, round2(promo.max_discount_amount))
        return discount

    # FIXED: no se limita al subtotal, el total se valida después
    return round2(value)


def preview_discount(promo: PromoCode, subtotal: Decimal) -> Tuple[Decimal, Decimal]:
    """Descuento y total resultante para mostrar antes de comprar; nunca por debajo de cero"""
    subtotal = round2(subtotal)
    discount = min(compute_discount(promo, subtotal), subtotal)
    return discount, round2(subtotal - discount)


def compute_totals(
    lines: Iterable[PricedLine],
    promo: Optional[PromoCode] = None,
    platform_fee: Decimal = ZERO,
) -> OrderTotals:
    lines = list(lines)
    subtotal = round2(sum((line.total_price for line in lines), ZERO))
    service_fee = compute_service_fee(lines)
    discount = compute_discount(promo, subtotal)
    total = round2(subtotal + service_fee + platform_fee - discount)

    if total < ZERO:
        raise ValidationError("El descuento supera el valor de la orden")

    return OrderTotals(
        subtotal=subtotal,
        service_fee=service_fee,
        platform_fee=round2(platform_fee),
        discount=discount,
        total=total,
    )


async def validate_promo(
    db: AsyncSession,
    event_id,
    code: str,
    subtotal: Decimal,
    user_id=None,
) -> PromoCode:
    """
    Validar un código promocional para un evento y subtotal.

    Raises:
        NotFoundError: el código no existe para el evento
        ValidationError: inactivo, fuera de vigencia o bajo el mínimo
        PromoCodeUsageLimitError: sin usos disponibles (global o por usuario)
    """
    result = await db.execute(
        select(PromoCode)
        .where(PromoCode.event_id == event_id, PromoCode.code == code.strip().upper())
        .execution_options(populate_existing=True)
    )
    promo = result.scalar_one_or_none()
    if promo is None:
        raise NotFoundError(f"Código promocional {code} no encontrado")

    if not promo.is_active:
        raise ValidationError(f"El código {promo.code} no está activo")

    now = utcnow()
    if now < promo.valid_from:
        raise ValidationError(f"El código {promo.code} aún no es válido")
    if promo.valid_until is not None and now > promo.valid_until:
        raise ValidationError(f"El código {promo.code} expiró")

    if promo.min_order_value is not None and subtotal < Decimal(promo.min_order_value):
        raise ValidationError(
            f"El código {promo.code} requiere un pedido mínimo de {round2(promo.min_order_value)}"
        )

    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        raise PromoCodeUsageLimitError(f"El código {promo.code} alcanzó su límite de usos")

    if promo.uses_per_user is not None and user_id is not None:
        used = await db.scalar(
            select(func.count(Order.id)).where(
                Order.buyer_id == user_id,
                Order.promo_code_id == promo.id,
                Order.status.notin_(RELEASED_PROMO_STATUSES),
            )
        )
        if used >= promo.uses_per_user:
            raise PromoCodeUsageLimitError(
                f"Ya utilizaste el código {promo.code} el máximo de veces permitido"
            )

    return promo


async def claim_promo_use(db: AsyncSession, promo: PromoCode):
    """Incrementar usos solo si quedan disponibles"""
    stmt = update(PromoCode).where(PromoCode.id == promo.id)
    if promo.max_uses is not None:
        stmt = stmt.where(PromoCode.current_uses < PromoCode.max_uses)
    result = await db.execute(
        stmt.values(current_uses=PromoCode.current_uses + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise PromoCodeUsageLimitError(f"El código {promo.code} alcanzó su límite de usos")


async def release_promo_use(db: AsyncSession, promo_code_id):
    """Devolver un uso del código (orden cancelada o expirada)"""
    if promo_code_id is None:
        return
    result = await db.execute(
        update(PromoCode)
        .where(PromoCode.id == promo_code_id, PromoCode.current_uses > 0)
        .values(current_uses=PromoCode.current_uses - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning(f"Código promocional {promo_code_id} sin usos para liberar")
