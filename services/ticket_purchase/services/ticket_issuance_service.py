"""Emisión de tickets a partir de los datos de asistentes de cada ítem"""
from typing import List, Optional
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import OrderItem, TicketInstance, TicketInstanceStatus
from shared.utils.clock import utcnow
from shared.utils.codes import TicketCodeGenerator

logger = logging.getLogger(__name__)


class TicketIssuanceService:
    """Crea un TicketInstance por asistente pendiente, dentro de la transacción del llamador"""

    def __init__(self, code_generator: Optional[TicketCodeGenerator] = None):
        self.code_generator = code_generator or TicketCodeGenerator()

    async def issue_for_order(self, db: AsyncSession, order_id) -> List[TicketInstance]:
        """
        Emitir tickets para todos los ítems de la orden aún no emitidos.

        El contador half_price_sold ya se incrementó al reservar, acá no se toca.
        """
        result = await db.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        items = result.scalars().all()

        tickets: List[TicketInstance] = []
        now = utcnow()
        for item in items:
            if item.tickets_issued_at is not None:
                continue

            for attendee in item.attendees_data or []:
                ticket = TicketInstance(
                    id=uuid.uuid4(),
                    order_item_id=item.id,
                    ticket_type_id=item.ticket_type_id,
                    code=self.code_generator.new_code(),
                    status=TicketInstanceStatus.ACTIVE,
                    attendee_name=attendee.get("name"),
                    attendee_email=(attendee.get("email") or "").strip().lower() or None,
                    attendee_cpf=attendee.get("cpf"),
                    attendee_phone=attendee.get("phone"),
                    form_responses=attendee.get("form_responses") or {},
                    is_half_price=item.is_half_price,
                    created_at=now,
                )
                db.add(ticket)
                tickets.append(ticket)

            # Los datos pendientes se consumen al materializar los tickets
            item.attendees_data = None
            item.tickets_issued_at = now

        await db.flush()
        logger.info(f"Emitidos {len(tickets)} tickets para la orden {order_id}")
        return tickets
