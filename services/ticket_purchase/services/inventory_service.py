"""Servicio de gestión de inventario y capacidad"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
import logging

from shared.database.models import Event, TicketType
from shared.errors import (
    ValidationError, NotFoundError, ConflictError, SoldOutError,
    HalfPriceSoldOutError, CapacityExceededError, SalesClosedError,
)
from shared.utils.clock import utcnow

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Contadores de inventario por tipo de ticket y capacidad del evento.

    Todas las operaciones son UPDATE condicionales sobre la fila del tipo de
    ticket y deben ejecutarse dentro de la transacción de la orden que las
    provoca: el llamador hace commit o rollback.
    """

    @staticmethod
    async def _load_ticket_type(db: AsyncSession, ticket_type_id) -> TicketType:
        result = await db.execute(
            select(TicketType)
            .where(TicketType.id == ticket_type_id)
            .execution_options(populate_existing=True)
        )
        ticket_type = result.scalar_one_or_none()
        if not ticket_type:
            raise NotFoundError(f"Tipo de ticket {ticket_type_id} no encontrado")
        return ticket_type

    @staticmethod
    def _check_sale_rules(ticket_type: TicketType, quantity: int, is_half_price: bool):
        now = utcnow()
        if not ticket_type.is_visible or not (ticket_type.sales_starts_at <= now <= ticket_type.sales_ends_at):
            raise SalesClosedError(
                f"Las ventas de {ticket_type.title} no están abiertas",
                resource_id=str(ticket_type.id),
            )

        if quantity < ticket_type.min_quantity or quantity > ticket_type.max_quantity:
            raise ValidationError(
                f"La cantidad para {ticket_type.title} debe estar entre "
                f"{ticket_type.min_quantity} y {ticket_type.max_quantity}"
            )

        if is_half_price and not ticket_type.has_half_price:
            raise ValidationError(f"El ticket {ticket_type.title} no admite media entrada")

    @staticmethod
    async def _take_stock(
        db: AsyncSession,
        ticket_type: TicketType,
        quantity: int,
        is_half_price: bool,
        sell: bool,
    ):
        """UPDATE condicional: reserva (o vende directo) solo si hay stock"""
        values = {}
        if sell:
            values["quantity_sold"] = TicketType.quantity_sold + quantity
        else:
            values["quantity_reserved"] = TicketType.quantity_reserved + quantity

        stmt = update(TicketType).where(
            TicketType.id == ticket_type.id,
            TicketType.quantity - TicketType.quantity_sold - TicketType.quantity_reserved >= quantity,
        )
        if is_half_price:
            stmt = stmt.where(
                TicketType.half_price_quantity.is_not(None),
                TicketType.half_price_sold + quantity <= TicketType.half_price_quantity,
            )
            values["half_price_sold"] = TicketType.half_price_sold + quantity

        result = await db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        # Ver qué condición falló para informar el recurso limitante
        current = await InventoryService._load_ticket_type(db, ticket_type.id)
        available = current.quantity - current.quantity_sold - current.quantity_reserved
        if available < quantity:
            raise SoldOutError(
                f"{current.title} agotado: disponibles {max(available, 0)}, solicitados {quantity}",
                resource_id=str(current.id),
            )
        raise HalfPriceSoldOutError(
            f"Cupo de media entrada de {current.title} agotado",
            resource_id=str(current.id),
        )

    @staticmethod
    async def _check_event_capacity(db: AsyncSession, event: Event):
        """
        Capacidad global del evento: suma de vendidos + reservados de todos sus
        tipos de ticket, incluida la solicitud en curso ya aplicada.
        """
        if event.total_capacity is None:
            return

        # Los reembolsos no decrementan quantity_sold: un asiento reembolsado sigue ocupando capacidad
        occupied = await db.scalar(
            select(
                func.coalesce(func.sum(TicketType.quantity_sold + TicketType.quantity_reserved), 0)
            ).where(TicketType.event_id == event.id)
        )
        if occupied > event.total_capacity:
            raise CapacityExceededError(
                f"Capacidad del evento excedida: {occupied} de {event.total_capacity}",
                resource_id=str(event.id),
            )

    @staticmethod
    async def lock_event(db: AsyncSession, event_id) -> Event:
        """
        Bloquear la fila del evento (SELECT ... FOR UPDATE en PostgreSQL) para
        serializar los chequeos de capacidad entre tipos de ticket.
        """
        result = await db.execute(
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if not event:
            raise NotFoundError(f"Evento {event_id} no encontrado")
        return event

    @staticmethod
    async def reserve(
        db: AsyncSession,
        event: Event,
        ticket_type: TicketType,
        quantity: int,
        is_half_price: bool = False,
    ):
        """
        Reservar inventario para una orden pendiente de pago.

        Orden de chequeos: ventana de venta y visibilidad, límites por orden,
        stock del tipo (o cupo de media entrada) y capacidad del evento.
        """
        InventoryService._check_sale_rules(ticket_type, quantity, is_half_price)
        await InventoryService._take_stock(db, ticket_type, quantity, is_half_price, sell=False)
        await InventoryService._check_event_capacity(db, event)

    @staticmethod
    async def sell_direct(
        db: AsyncSession,
        event: Event,
        ticket_type: TicketType,
        quantity: int,
        is_half_price: bool = False,
    ):
        """Venta directa sin reserva (órdenes gratuitas)"""
        InventoryService._check_sale_rules(ticket_type, quantity, is_half_price)
        await InventoryService._take_stock(db, ticket_type, quantity, is_half_price, sell=True)
        await InventoryService._check_event_capacity(db, event)

    @staticmethod
    async def commit(db: AsyncSession, ticket_type_id, quantity: int):
        """Mover unidades de reservadas a vendidas"""
        result = await db.execute(
            update(TicketType)
            .where(TicketType.id == ticket_type_id, TicketType.quantity_reserved >= quantity)
            .values(
                quantity_reserved=TicketType.quantity_reserved - quantity,
                quantity_sold=TicketType.quantity_sold + quantity,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.error(f"Reserva inconsistente en tipo de ticket {ticket_type_id}: no hay {quantity} reservados")
            raise ConflictError(f"No hay {quantity} unidades reservadas para confirmar")

    @staticmethod
    async def release(
        db: AsyncSession,
        ticket_type_id,
        quantity: int,
        from_sold: bool = False,
        is_half_price: bool = False,
    ):
        """Liberar unidades reservadas (o vendidas si from_sold)"""
        counter = TicketType.quantity_sold if from_sold else TicketType.quantity_reserved
        values = {counter.key: counter - quantity}
        stmt = update(TicketType).where(TicketType.id == ticket_type_id, counter >= quantity)
        if is_half_price:
            stmt = stmt.where(TicketType.half_price_sold >= quantity)
            values["half_price_sold"] = TicketType.half_price_sold - quantity

        result = await db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.error(
                f"No se pudieron liberar {quantity} unidades de {ticket_type_id} "
                f"({'vendidas' if from_sold else 'reservadas'})"
            )
            raise ConflictError("Contadores de inventario inconsistentes")
