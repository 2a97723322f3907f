"""Servicio de check-in y transferencia de tickets"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import Optional, Tuple
import logging

from services.ticket_purchase.models.order import TransferTicketRequest
from shared.database.models import Event, Order, OrderItem, TicketInstance, TicketInstanceStatus, UserRole
from shared.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from shared.utils.clock import utcnow
from shared.utils.ids import as_uuid

logger = logging.getLogger(__name__)

NON_TRANSFERABLE = (
    TicketInstanceStatus.CHECKED_IN,
    TicketInstanceStatus.CANCELLED,
    TicketInstanceStatus.REFUNDED,
    TicketInstanceStatus.EXPIRED,
)


class TicketService:
    """Check-in en puerta y transferencia entre asistentes"""

    @staticmethod
    async def _load(db: AsyncSession, condition) -> Tuple[TicketInstance, Order, Event]:
        result = await db.execute(
            select(TicketInstance, Order, Event)
            .join(OrderItem, TicketInstance.order_item_id == OrderItem.id)
            .join(Order, OrderItem.order_id == Order.id)
            .join(Event, Order.event_id == Event.id)
            .where(condition)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if not row:
            raise NotFoundError("Ticket no encontrado")
        return row[0], row[1], row[2]

    @staticmethod
    async def check_in(
        db: AsyncSession,
        code: str,
        caller_id,
        role: str,
        notes: Optional[str] = None,
        location: Optional[str] = None,
    ) -> TicketInstance:
        """
        Registrar el ingreso de un ticket por su código.

        Solo el organizador del evento o un admin.
        """
        ticket, _, event = await TicketService._load(db, TicketInstance.code == code)

        if role != UserRole.ADMIN and event.organizer_id != as_uuid(caller_id):
            raise AuthorizationError(f"Usuario {caller_id} no puede hacer check-in en el evento {event.id}")

        if ticket.status == TicketInstanceStatus.CHECKED_IN:
            raise ConflictError("El ticket ya registró su ingreso")
        if ticket.status != TicketInstanceStatus.ACTIVE:
            raise ValidationError(f"Ticket en estado inválido: {ticket.status.value}")

        if ticket.is_half_price and not ticket.attendee_cpf:
            raise ValidationError("La media entrada requiere CPF del asistente")

        now = utcnow()
        if now > event.ends_at:
            raise ValidationError("El evento ya finalizó")

        ticket_pk = ticket.id
        result = await db.execute(
            update(TicketInstance)
            .where(TicketInstance.id == ticket_pk, TicketInstance.status == TicketInstanceStatus.ACTIVE)
            .values(
                status=TicketInstanceStatus.CHECKED_IN,
                checked_in_at=now,
                checked_in_by=as_uuid(caller_id),
                check_in_notes=notes,
                check_in_location=location,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise ConflictError("El ticket ya registró su ingreso")
        await db.commit()

        logger.info(f"Check-in del ticket {ticket_pk} por {caller_id}")
        ticket, _, _ = await TicketService._load(db, TicketInstance.id == ticket_pk)
        return ticket

    @staticmethod
    async def transfer_ticket(
        db: AsyncSession,
        ticket_id,
        caller_id,
        role: str,
        new_attendee: TransferTicketRequest,
    ) -> TicketInstance:
        """Transferir a otro asistente; el ticket sigue ACTIVE. Comprador o admin."""
        ticket, order, _ = await TicketService._load(db, TicketInstance.id == as_uuid(ticket_id))

        if role != UserRole.ADMIN and order.buyer_id != as_uuid(caller_id):
            raise AuthorizationError(f"Usuario {caller_id} no puede transferir el ticket {ticket.id}")

        if ticket.status in NON_TRANSFERABLE:
            raise ValidationError(f"No se puede transferir un ticket en estado {ticket.status.value}")

        previous_email = ticket.attendee_email or order.buyer_email
        ticket_pk = ticket.id
        result = await db.execute(
            update(TicketInstance)
            .where(TicketInstance.id == ticket_pk, TicketInstance.status.notin_(NON_TRANSFERABLE))
            .values(
                attendee_name=new_attendee.name,
                attendee_email=str(new_attendee.email).strip().lower(),
                attendee_cpf=new_attendee.cpf,
                attendee_phone=new_attendee.phone,
                transferred_at=utcnow(),
                transferred_from=previous_email,
                status=TicketInstanceStatus.ACTIVE,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise ConflictError("El ticket cambió de estado, intenta nuevamente")
        await db.commit()

        logger.info(f"Ticket {ticket_pk} transferido de {previous_email} a {new_attendee.email}")
        ticket, _, _ = await TicketService._load(db, TicketInstance.id == ticket_pk)
        return ticket
