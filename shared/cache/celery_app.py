"""
Configuración de Celery para tareas asíncronas
Emails de órdenes y barridos periódicos (órdenes vencidas, eventos finalizados)
"""
from celery import Celery
from kombu import Queue, Exchange
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

CELERY_REDIS_MAX_CONNECTIONS = 50

celery_app = Celery(
    "ticketeria",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "services.ticket_purchase.tasks.email_tasks",
        "services.ticket_purchase.tasks.order_tasks",
        "services.event_management.tasks.event_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

celery_app.conf.task_queues = (
    # Liberación de inventario: no debe esperar detrás de emails
    Queue("high_priority", priority_exchange, routing_key="high"),
    Queue("default", default_exchange, routing_key="default"),
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "sweep_expired_orders": {"queue": "high_priority"},
    "send_order_confirmation": {"queue": "default"},
    "send_payment_waiting": {"queue": "default"},
    "send_tickets_ready": {"queue": "default"},
    "end_finished_events": {"queue": "low_priority"},
}

celery_app.conf.beat_schedule = {
    "sweep-expired-orders": {
        "task": "sweep_expired_orders",
        "schedule": float(settings.EXPIRED_ORDERS_SWEEP_SECONDS),
    },
    "end-finished-events": {
        "task": "end_finished_events",
        "schedule": float(settings.EVENT_STATUS_SWEEP_SECONDS),
    },
}

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    # Bajo prefetch = mejor distribución de carga entre workers
    worker_prefetch_multiplier=1,

    broker_pool_limit=CELERY_REDIS_MAX_CONNECTIONS,
    redis_max_connections=CELERY_REDIS_MAX_CONNECTIONS,

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    broker_heartbeat=30,

    # ACK late: confirmar tarea solo cuando termina
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    worker_concurrency=4,
    worker_max_tasks_per_child=1000,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    task_annotations={
        "send_order_confirmation": {"rate_limit": "30/m"},
        "send_payment_waiting": {"rate_limit": "30/m"},
        "send_tickets_ready": {"rate_limit": "30/m"},
    },
)

logger.info(
    "Celery configurado - Broker: %s, Concurrency: %d",
    settings.REDIS_URL.split("@")[-1] if "@" in settings.REDIS_URL else settings.REDIS_URL,
    celery_app.conf.worker_concurrency
)
