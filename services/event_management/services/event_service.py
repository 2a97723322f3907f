"""Servicio de gestión de eventos: publicación, cancelación y cierre"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import Optional, Protocol
import logging

from shared.database.models import Event, EventStatus, UserRole
from shared.errors import AuthorizationError, InvalidTransitionError, NotFoundError
from shared.utils.clock import utcnow
from shared.utils.ids import as_uuid

logger = logging.getLogger(__name__)


class RefundIssuer(Protocol):
    """Capacidad de crear reembolsos automáticos al cancelar un evento"""

    async def create_event_cancellation_refunds(self, db: AsyncSession, event_id) -> int:
        ...


class EventService:
    """Servicio para gestionar el ciclo de vida de eventos"""

    def __init__(self, refund_issuer: Optional[RefundIssuer] = None):
        self.refund_issuer = refund_issuer

    @staticmethod
    async def get_event_by_id(db: AsyncSession, event_id) -> Event:
        result = await db.execute(
            select(Event)
            .where(Event.id == as_uuid(event_id))
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if not event:
            raise NotFoundError(f"Evento {event_id} no encontrado")
        return event

    @staticmethod
    def _ensure_owner(event: Event, caller_id, role: str):
        if role == UserRole.ADMIN:
            return
        if event.organizer_id != as_uuid(caller_id):
            raise AuthorizationError(f"Usuario {caller_id} no organiza el evento {event.id}")

    @staticmethod
    async def _move(db: AsyncSession, event: Event, source: EventStatus, target: EventStatus) -> bool:
        result = await db.execute(
            update(Event)
            .where(Event.id == event.id, Event.status == source)
            .values(status=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def publish_event(self, db: AsyncSession, event_id, caller_id, role: str) -> Event:
        """DRAFT -> ACTIVE"""
        event = await self.get_event_by_id(db, event_id)
        self._ensure_owner(event, caller_id, role)
        if event.status != EventStatus.DRAFT:
            raise InvalidTransitionError(f"Solo se publican eventos en borrador (estado: {event.status.value})")

        event_pk = event.id
        if not await self._move(db, event, EventStatus.DRAFT, EventStatus.ACTIVE):
            await db.rollback()
            raise InvalidTransitionError("El evento cambió de estado, intenta nuevamente")
        await db.commit()
        logger.info(f"Evento {event_pk} publicado")
        return await self.get_event_by_id(db, event_pk)

    async def cancel_event(self, db: AsyncSession, event_id, caller_id, role: str) -> Event:
        """
        Cancelar un evento y generar los reembolsos automáticos.

        La cancelación se confirma antes de crear los reembolsos: si el emisor
        de reembolsos falla, el evento queda cancelado y el error se registra.
        """
        event = await self.get_event_by_id(db, event_id)
        self._ensure_owner(event, caller_id, role)
        if event.status in (EventStatus.CANCELLED, EventStatus.ENDED):
            raise InvalidTransitionError(f"El evento ya está {event.status.value}")

        event_pk = event.id
        if not await self._move(db, event, event.status, EventStatus.CANCELLED):
            await db.rollback()
            raise InvalidTransitionError("El evento cambió de estado, intenta nuevamente")
        await db.commit()
        logger.info(f"Evento {event_pk} cancelado por {caller_id}")

        if self.refund_issuer is not None:
            try:
                created = await self.refund_issuer.create_event_cancellation_refunds(db, event_pk)
                logger.info(f"Evento {event_pk}: {created} reembolsos automáticos creados")
            except Exception as e:
                await db.rollback()
                logger.error(f"Error creando reembolsos automáticos del evento {event_pk}: {e}", exc_info=True)

        return await self.get_event_by_id(db, event_pk)

    @staticmethod
    async def end_finished_events(db: AsyncSession) -> int:
        """ACTIVE con ends_at vencido -> ENDED"""
        result = await db.execute(
            update(Event)
            .where(Event.status == EventStatus.ACTIVE, Event.ends_at <= utcnow())
            .values(status=EventStatus.ENDED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount:
            logger.info(f"{result.rowcount} eventos finalizados")
        return result.rowcount
