"""Tareas periódicas de órdenes"""
from typing import Callable, Optional
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from services.ticket_purchase.services.expiration_sweeper import ExpirationSweeper
from services.ticket_purchase.tasks.email_tasks import run_async
from shared.cache.celery_app import celery_app
from shared.cache.redis_client import DistributedLock, LockNotAcquired, close_redis
from shared.database.connection import task_session_maker

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "orders:expiration-sweep"


async def sweep_expired_orders_job(
    session_maker: async_sessionmaker,
    lock_factory: Optional[Callable[[], DistributedLock]] = None,
) -> int:
    """
    Ejecutar el barrido; con lock_factory solo un worker barre a la vez y los
    demás salen sin esperar.
    """
    sweeper = ExpirationSweeper(session_maker)
    if lock_factory is None:
        return await sweeper.sweep()

    try:
        async with lock_factory():
            return await sweeper.sweep()
    except LockNotAcquired:
        logger.info("[CELERY] Otro worker está barriendo órdenes vencidas, se omite")
        return 0


def _sweep_lock() -> DistributedLock:
    return DistributedLock(SWEEP_LOCK_KEY, timeout=0, expire=240)


@celery_app.task(name="sweep_expired_orders", bind=True)
def sweep_expired_orders_task(self):
    """Expirar órdenes pendientes vencidas y liberar su inventario"""
    async def run():
        try:
            async with task_session_maker() as session_maker:
                return await sweep_expired_orders_job(session_maker, _sweep_lock)
        finally:
            await close_redis()

    expired = run_async(run())
    logger.info(f"[CELERY] Barrido de órdenes vencidas: {expired} expiradas")
    return {"expired": expired}
