"""Ciclo de vida de órdenes: creación, confirmación, cancelación y expiración"""
from datetime import timedelta
from typing import List, Optional, Tuple
import logging
import uuid

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from services.notifications.services.notification_service import NotificationService
from services.ticket_purchase.models.order import CreateOrderRequest, PromoCodeValidationResponse
from services.ticket_purchase.services.form_validation import FormSchemaProvider, validate_attendees
from services.ticket_purchase.services.inventory_service import InventoryService
from services.ticket_purchase.services.order_state_machine import (
    OrderEvent, apply_transition, ensure_transition, next_state,
)
from services.ticket_purchase.services.pricing_service import (
    price_item, compute_totals, validate_promo, claim_promo_use, release_promo_use,
    preview_discount,
)
from services.ticket_purchase.services.ticket_issuance_service import TicketIssuanceService
from shared.database.models import (
    Event, EventStatus, Order, OrderItem, OrderStatus, TicketInstance, TicketType, User, UserRole,
)
from shared.errors import (
    AuthorizationError, ConflictError, InvalidTransitionError, NotFoundError, SalesClosedError,
    ValidationError,
)
from shared.utils.clock import utcnow
from shared.utils.codes import generate_order_number
from shared.utils.ids import as_uuid

logger = logging.getLogger(__name__)


class OrderService:
    """Orquesta inventario, precios y emisión de tickets sobre la máquina de estados"""

    def __init__(
        self,
        issuance: Optional[TicketIssuanceService] = None,
        notifier: Optional[NotificationService] = None,
        forms: Optional[FormSchemaProvider] = None,
    ):
        self.inventory = InventoryService
        self.issuance = issuance or TicketIssuanceService()
        self.notifier = notifier or NotificationService()
        self.forms = forms or FormSchemaProvider()

    async def _load_order(self, db: AsyncSession, order_id) -> Order:
        result = await db.execute(
            select(Order)
            .where(Order.id == as_uuid(order_id))
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError(f"Orden {order_id} no encontrada")
        return order

    async def _event_title(self, db: AsyncSession, event_id) -> str:
        return await db.scalar(select(Event.title).where(Event.id == event_id)) or ""

    async def create_order(self, db: AsyncSession, buyer_id, request: CreateOrderRequest) -> Order:
        """
        Crear una orden reservando inventario.

        Las órdenes con total cero se confirman inmediatamente: el inventario se
        vende directo y los tickets se emiten en la misma transacción.
        """
        buyer_id = as_uuid(buyer_id)

        event = await db.get(Event, request.event_id)
        if not event:
            raise NotFoundError(f"Evento {request.event_id} no encontrado")
        if event.status != EventStatus.ACTIVE:
            raise SalesClosedError("El evento no está disponible para compra", resource_id=str(event.id))

        # Validar asistentes antes de cualquier cambio de estado
        fields = await self.forms.fields_for(db, event.id)
        validate_attendees(request.items, fields)

        buyer = await db.get(User, buyer_id)
        if not buyer:
            raise NotFoundError("Usuario no encontrado")

        ticket_type_ids = {item.ticket_type_id for item in request.items}
        result = await db.execute(
            select(TicketType).where(
                TicketType.id.in_(ticket_type_ids),
                TicketType.event_id == event.id,
            )
        )
        ticket_types = {tt.id: tt for tt in result.scalars().all()}
        if len(ticket_types) != len(ticket_type_ids):
            raise NotFoundError("Uno o más tipos de ticket no existen para este evento")

        lines = [
            price_item(ticket_types[item.ticket_type_id], item.quantity, item.is_half_price)
            for item in request.items
        ]
        subtotal = sum((line.total_price for line in lines))

        promo = None
        if request.promo_code:
            promo = await validate_promo(db, event.id, request.promo_code, subtotal, buyer_id)

        totals = compute_totals(lines, promo)
        is_free = totals.is_free

        order_number = generate_order_number()
        exists = await db.scalar(select(Order.id).where(Order.order_number == order_number))
        if exists:
            raise ConflictError("Número de orden duplicado, intenta nuevamente")

        now = utcnow()
        try:
            event = await self.inventory.lock_event(db, event.id)
            for line in lines:
                if is_free:
                    await self.inventory.sell_direct(db, event, line.ticket_type, line.quantity, line.is_half_price)
                else:
                    await self.inventory.reserve(db, event, line.ticket_type, line.quantity, line.is_half_price)

            if promo is not None:
                await claim_promo_use(db, promo)

            order = Order(
                id=uuid.uuid4(),
                order_number=order_number,
                event_id=event.id,
                buyer_id=buyer_id,
                status=OrderStatus.CONFIRMED if is_free else OrderStatus.PENDING,
                subtotal=totals.subtotal,
                discount=totals.discount,
                service_fee=totals.service_fee,
                platform_fee=totals.platform_fee,
                total=totals.total,
                promo_code_id=promo.id if promo else None,
                buyer_name=request.buyer_name or buyer.name,
                buyer_email=request.buyer_email or buyer.email,
                buyer_phone=request.buyer_phone or buyer.phone,
                buyer_cpf=request.buyer_cpf or buyer.cpf,
                notes=request.notes,
                expires_at=None if is_free else now + timedelta(minutes=settings.ORDER_EXPIRATION_MINUTES),
                paid_at=now if is_free else None,
                created_at=now,
                updated_at=now,
            )
            db.add(order)

            for item, line in zip(request.items, lines):
                db.add(OrderItem(
                    id=uuid.uuid4(),
                    order_id=order.id,
                    ticket_type_id=line.ticket_type.id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                    is_half_price=line.is_half_price,
                    attendees_data=[attendee.model_dump(mode="json") for attendee in item.attendees],
                    created_at=now,
                ))
            await db.flush()

            tickets: List[TicketInstance] = []
            if is_free:
                tickets = await self.issuance.issue_for_order(db, order.id)

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"Orden {order_number} creada ({'gratuita' if is_free else 'pendiente'}) "
            f"para evento {event.id}: total={totals.total}"
        )

        order = await self._load_order(db, order.id)
        if is_free:
            self.notifier.send_order_confirmation(order, event.title)
            self.notifier.send_tickets_ready(order, event.title, tickets)
        else:
            self.notifier.send_payment_waiting(order, event.title)
        return order

    async def confirm_order_payment(self, db: AsyncSession, order_id) -> Order:
        """
        Confirmar la orden tras el pago: reservados pasan a vendidos y se emiten
        los tickets. Si la orden ya no está pendiente (expirada, cancelada o ya
        confirmada) no hace nada.
        """
        order = await self._load_order(db, order_id)
        if next_state(order.status, OrderEvent.CONFIRM) is None:
            logger.warning(
                f"Confirmación ignorada para orden {order.order_number} en estado {order.status.value}"
            )
            return order

        # rollback expira las instancias de la sesión
        order_pk = order.id
        try:
            changed = await apply_transition(db, order, OrderEvent.CONFIRM, paid_at=utcnow())
            if not changed:
                await db.rollback()
                return await self._load_order(db, order_pk)

            for item in order.items:
                await self.inventory.commit(db, item.ticket_type_id, item.quantity)
            tickets = await self.issuance.issue_for_order(db, order.id)

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Orden {order.order_number} confirmada, {len(tickets)} tickets emitidos")
        event_title = await self._event_title(db, order.event_id)
        order = await self._load_order(db, order.id)
        self.notifier.send_order_confirmation(order, event_title)
        self.notifier.send_tickets_ready(order, event_title, tickets)
        return order

    async def start_risk_analysis(self, db: AsyncSession, order_id) -> Order:
        """PENDING -> PROCESSING mientras el proveedor analiza el pago"""
        order = await self._load_order(db, order_id)
        if next_state(order.status, OrderEvent.START_RISK_ANALYSIS) is None:
            logger.info(f"Orden {order.order_number} en {order.status.value}, análisis de riesgo ignorado")
            return order

        await apply_transition(db, order, OrderEvent.START_RISK_ANALYSIS)
        await db.commit()
        return order

    async def _release_order(self, db: AsyncSession, order: Order, from_sold: bool):
        for item in order.items:
            await self.inventory.release(
                db, item.ticket_type_id, item.quantity,
                from_sold=from_sold, is_half_price=item.is_half_price,
            )
        await release_promo_use(db, order.promo_code_id)

    async def cancel_order(self, db: AsyncSession, order_id, caller_id, role: str) -> Order:
        """
        Cancelar una orden pendiente, o una confirmada gratuita.

        Solo el comprador o un admin.
        """
        order = await self._load_order(db, order_id)
        if order.buyer_id != as_uuid(caller_id) and role != UserRole.ADMIN:
            raise AuthorizationError(f"Usuario {caller_id} no puede cancelar la orden {order.id}")

        ensure_transition(order, OrderEvent.CANCEL)
        was_free_confirmed = order.status == OrderStatus.CONFIRMED

        try:
            if not await apply_transition(db, order, OrderEvent.CANCEL):
                raise InvalidTransitionError("La orden cambió de estado, intenta nuevamente")

            await self._release_order(db, order, from_sold=was_free_confirmed)

            if was_free_confirmed:
                item_ids = [item.id for item in order.items]
                await db.execute(
                    delete(TicketInstance)
                    .where(TicketInstance.order_item_id.in_(item_ids))
                    .execution_options(synchronize_session=False)
                )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Orden {order.order_number} cancelada por {caller_id}")
        return await self._load_order(db, order.id)

    async def fail_order_payment(self, db: AsyncSession, order_id) -> Order:
        """Pago rechazado o vencido: PENDING|PROCESSING -> CANCELLED liberando la reserva"""
        order = await self._load_order(db, order_id)
        if next_state(order.status, OrderEvent.PAYMENT_FAILED) is None:
            logger.info(f"Fallo de pago ignorado para orden {order.order_number} en {order.status.value}")
            return order

        try:
            if await apply_transition(db, order, OrderEvent.PAYMENT_FAILED):
                await self._release_order(db, order, from_sold=False)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.warning(f"Orden {order.order_number} cancelada por fallo de pago")
        return order

    async def expire_order(self, db: AsyncSession, order: Order) -> bool:
        """
        PENDING vencida -> EXPIRED, liberando reserva y uso del código.

        Returns:
            False si la orden ya no estaba pendiente y vencida (p. ej. el
            webhook la confirmó antes).
        """
        now = utcnow()
        try:
            changed = await apply_transition(
                db, order, OrderEvent.EXPIRE,
                extra_conditions=(Order.expires_at.is_not(None), Order.expires_at <= now),
            )
            if not changed:
                await db.rollback()
                return False

            await self._release_order(db, order, from_sold=False)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Orden {order.order_number} expirada, reserva liberada")
        return True

    async def get_order(self, db: AsyncSession, order_id, caller_id, role: str) -> Order:
        """Comprador, organizador del evento o admin"""
        order = await self._load_order(db, order_id)
        await self._ensure_can_view(db, order, caller_id, role)
        return order

    async def list_orders(
        self,
        db: AsyncSession,
        buyer_id,
        page: int = 1,
        limit: int = 10,
        event_id=None,
        status: Optional[str] = None,
    ) -> Tuple[List[Order], int]:
        """Órdenes propias del comprador, más recientes primero, con el total para paginar"""
        conditions = [Order.buyer_id == as_uuid(buyer_id)]
        if event_id is not None:
            conditions.append(Order.event_id == as_uuid(event_id))
        if status:
            try:
                conditions.append(Order.status == OrderStatus(status.upper()))
            except ValueError:
                raise ValidationError(f"Estado de orden desconocido: {status}")

        total = await db.scalar(select(func.count(Order.id)).where(*conditions))
        result = await db.execute(
            select(Order)
            .where(*conditions)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.order_number.desc())
            .limit(limit)
            .offset((page - 1) * limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total

    async def preview_promo_code(self, db: AsyncSession, buyer_id, event_id, code: str,
                                 subtotal) -> PromoCodeValidationResponse:
        """Validar el código con las mismas reglas de la compra sin consumir un uso"""
        promo = await validate_promo(db, as_uuid(event_id), code, subtotal, as_uuid(buyer_id))
        discount, total_after_discount = preview_discount(promo, subtotal)
        return PromoCodeValidationResponse(
            promo_code_id=promo.id,
            code=promo.code,
            discount_type=promo.discount_type.value,
            discount_value=promo.discount_value,
            discount=discount,
            total_after_discount=total_after_discount,
        )

    async def list_order_tickets(self, db: AsyncSession, order_id, caller_id, role: str) -> List[TicketInstance]:
        order = await self.get_order(db, order_id, caller_id, role)
        result = await db.execute(
            select(TicketInstance)
            .join(OrderItem, TicketInstance.order_item_id == OrderItem.id)
            .where(OrderItem.order_id == order.id)
            .order_by(TicketInstance.created_at)
        )
        return list(result.scalars().all())

    async def _ensure_can_view(self, db: AsyncSession, order: Order, caller_id, role: str):
        if role == UserRole.ADMIN or order.buyer_id == as_uuid(caller_id):
            return
        organizer_id = await db.scalar(select(Event.organizer_id).where(Event.id == order.event_id))
        if organizer_id != as_uuid(caller_id):
            raise AuthorizationError(f"Usuario {caller_id} sin acceso a la orden {order.id}")
