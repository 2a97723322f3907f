"""
Fixtures compartidas de los tests.

La base de datos es un archivo SQLite temporal por test (aiosqlite), creado
con init_db para que rutas y servicios usen la misma session factory. Celery,
Redis y ASAAS se reemplazan por dobles en memoria (tests.fixtures).
"""
import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ASAAS_WEBHOOK_TOKEN", "test-webhook-token")
os.environ.setdefault("ASAAS_API_KEY", "test-api-key")

import pytest
import pytest_asyncio

from shared.database import connection
from shared.database.models import UserRole
from shared.utils.rate_limiter import limiter
from services.notifications.services.notification_service import NotificationService
from services.refunds.services.refund_service import RefundService
from services.ticket_purchase.services.order_service import OrderService
from tests.fixtures import FakeGateway, RecordingNotifier, make_event, make_ticket_type, make_user

limiter.enabled = False


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    await connection.init_db(f"sqlite:///{tmp_path / 'test.db'}", create_tables=True)
    try:
        yield connection.get_session_maker()
    finally:
        await connection.close_db()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def no_celery(monkeypatch):
    """Ningún test debe intentar conectarse al broker"""
    monkeypatch.setattr(NotificationService, "_enqueue", lambda self, task, order, **kwargs: None)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def order_service(notifier):
    return OrderService(notifier=notifier)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def refund_service(gateway):
    return RefundService(gateway=gateway)


@pytest_asyncio.fixture
async def organizer(db):
    return await make_user(db, UserRole.ORGANIZER)


@pytest_asyncio.fixture
async def buyer(db):
    return await make_user(db, UserRole.ATTENDEE)


@pytest_asyncio.fixture
async def admin(db):
    return await make_user(db, UserRole.ADMIN)


@pytest_asyncio.fixture
async def event(db, organizer):
    return await make_event(db, organizer)


@pytest_asyncio.fixture
async def ticket_type(db, event):
    return await make_ticket_type(db, event)
