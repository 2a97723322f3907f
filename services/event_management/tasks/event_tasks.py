"""Tareas periódicas de eventos"""
import logging

from services.event_management.services.event_service import EventService
from services.ticket_purchase.tasks.email_tasks import run_async
from shared.cache.celery_app import celery_app
from shared.database.connection import task_session_maker

logger = logging.getLogger(__name__)


@celery_app.task(name="end_finished_events", bind=True)
def end_finished_events_task(self):
    """ACTIVE -> ENDED para eventos cuya fecha de término pasó"""
    async def run():
        async with task_session_maker() as session_maker:
            async with session_maker() as db:
                return await EventService.end_finished_events(db)

    ended = run_async(run())
    logger.info(f"[CELERY] Eventos finalizados: {ended}")
    return {"ended": ended}
