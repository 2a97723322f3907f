"""Barrido periódico de órdenes pendientes vencidas"""
from typing import Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from services.ticket_purchase.services.order_service import OrderService
from shared.database.models import Order, OrderStatus
from shared.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """
    Expira las órdenes PENDING con expires_at vencido.

    Cada orden se procesa en su propia sesión y transacción: un error en una
    orden se registra y el barrido continúa con las siguientes.
    """

    def __init__(self, session_maker: async_sessionmaker, order_service: Optional[OrderService] = None):
        self.session_maker = session_maker
        self.order_service = order_service or OrderService()

    async def _candidates(self, db: AsyncSession):
        result = await db.execute(
            select(Order.id, Order.order_number).where(
                Order.status == OrderStatus.PENDING,
                Order.expires_at.is_not(None),
                Order.expires_at <= utcnow(),
            )
        )
        return result.all()

    async def sweep(self) -> int:
        """
        Returns:
            Cantidad de órdenes efectivamente expiradas
        """
        async with self.session_maker() as db:
            candidates = await self._candidates(db)

        if not candidates:
            return 0

        logger.info(f"Encontradas {len(candidates)} órdenes pendientes vencidas")
        expired = 0
        for order_id, order_number in candidates:
            try:
                async with self.session_maker() as db:
                    result = await db.execute(
                        select(Order).where(Order.id == order_id).options(selectinload(Order.items))
                    )
                    order = result.scalar_one_or_none()
                    if order is None or order.status != OrderStatus.PENDING:
                        continue
                    if await self.order_service.expire_order(db, order):
                        expired += 1
            except Exception as e:
                logger.error(f"Error expirando orden {order_number}: {e}", exc_info=True)

        logger.info(f"Barrido finalizado: {expired} órdenes expiradas")
        return expired
