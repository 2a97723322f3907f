"""Rutas de operación manual para administradores"""
from fastapi import APIRouter, Depends, Request
from typing import Dict
import logging

from shared.auth.dependencies import get_current_admin
from shared.database.connection import get_session_maker
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_purchase.tasks.order_tasks import sweep_expired_orders_job

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/orders/sweep-expired")
@limiter.limit(RATE_LIMITS["admin"])
async def sweep_expired_orders(
    request: Request,
    current_user: Dict = Depends(get_current_admin)
):
    """Ejecutar el barrido de órdenes vencidas sin esperar al scheduler"""
    expired = await sweep_expired_orders_job(get_session_maker())
    logger.info(f"Barrido manual por {current_user['user_id']}: {expired} órdenes expiradas")
    return {"expired": expired}
