"""Tests de inventario: reservas, capacidad del evento y concurrencia"""
import asyncio
from datetime import timedelta

import pytest

from shared.database.models import TicketType
from shared.errors import (
    CapacityExceededError,
    ConflictError,
    HalfPriceSoldOutError,
    SalesClosedError,
    SoldOutError,
    ValidationError,
)
from shared.utils.clock import utcnow
from services.ticket_purchase.services.inventory_service import InventoryService
from tests.fixtures import make_event, make_ticket_type, order_request, reload


async def _reserve(db, event, ticket_type, quantity, half=False):
    try:
        locked = await InventoryService.lock_event(db, event.id)
        await InventoryService.reserve(db, locked, ticket_type, quantity, half)
        await db.commit()
    except Exception:
        await db.rollback()
        raise


class TestReserve:
    async def test_reserve_increments_reserved(self, db, event, ticket_type):
        await _reserve(db, event, ticket_type, 3)

        tt = await reload(db, TicketType, ticket_type.id)
        assert tt.quantity_reserved == 3
        assert tt.quantity_sold == 0

    async def test_sold_out(self, db, event):
        tt = await make_ticket_type(db, event, quantity=5)
        await _reserve(db, event, tt, 4)

        with pytest.raises(SoldOutError) as exc:
            await _reserve(db, event, tt, 2)
        assert exc.value.resource_id == str(tt.id)

        assert (await reload(db, TicketType, tt.id)).quantity_reserved == 4

    async def test_sales_window_closed(self, db, event):
        tt = await make_ticket_type(db, event, sales_starts_at=utcnow() + timedelta(days=1))
        with pytest.raises(SalesClosedError):
            await _reserve(db, event, tt, 1)

    async def test_hidden_ticket_type(self, db, event):
        tt = await make_ticket_type(db, event, is_visible=False)
        with pytest.raises(SalesClosedError):
            await _reserve(db, event, tt, 1)

    async def test_quantity_bounds_per_order(self, db, event):
        tt = await make_ticket_type(db, event, min_quantity=2, max_quantity=4)
        with pytest.raises(ValidationError):
            await _reserve(db, event, tt, 1)
        with pytest.raises(ValidationError):
            await _reserve(db, event, tt, 5)

    async def test_half_price_quota(self, db, event):
        tt = await make_ticket_type(db, event, has_half_price=True, half_price=50, half_price_quantity=2)
        await _reserve(db, event, tt, 2, half=True)

        with pytest.raises(HalfPriceSoldOutError):
            await _reserve(db, event, tt, 1, half=True)

        refreshed = await reload(db, TicketType, tt.id)
        assert refreshed.half_price_sold == 2
        assert refreshed.half_price_sold <= refreshed.half_price_quantity
        # Entrada completa sigue disponible
        await _reserve(db, event, tt, 1)

    async def test_stale_in_memory_counters_do_not_oversell(self, db, event):
        tt = await make_ticket_type(db, event, quantity=3)
        stale = await reload(db, TicketType, tt.id)
        await _reserve(db, event, tt, 3)

        # stale.quantity_reserved sigue en 0 en memoria, el UPDATE condicional manda
        with pytest.raises(SoldOutError):
            await InventoryService._take_stock(db, stale, 1, False, sell=False)


class TestCommitAndRelease:
    async def test_commit_moves_reserved_to_sold(self, db, event, ticket_type):
        await _reserve(db, event, ticket_type, 2)

        await InventoryService.commit(db, ticket_type.id, 2)
        await db.commit()

        tt = await reload(db, TicketType, ticket_type.id)
        assert (tt.quantity_reserved, tt.quantity_sold) == (0, 2)

    async def test_commit_without_reservation(self, db, ticket_type):
        with pytest.raises(ConflictError):
            await InventoryService.commit(db, ticket_type.id, 1)

    async def test_release_from_sold(self, db, event, ticket_type):
        await _reserve(db, event, ticket_type, 2)
        await InventoryService.commit(db, ticket_type.id, 2)
        await InventoryService.release(db, ticket_type.id, 2, from_sold=True)
        await db.commit()

        tt = await reload(db, TicketType, ticket_type.id)
        assert (tt.quantity_reserved, tt.quantity_sold) == (0, 0)

    async def test_release_more_than_reserved(self, db, event, ticket_type):
        await _reserve(db, event, ticket_type, 1)
        with pytest.raises(ConflictError):
            await InventoryService.release(db, ticket_type.id, 2)


class TestEventCapacity:
    async def test_capacity_scenario(self, db, organizer, buyer, order_service):
        event = await make_event(db, organizer, total_capacity=10)
        ticket_a = await make_ticket_type(db, event, title="A", quantity=6)
        ticket_b = await make_ticket_type(db, event, title="B", quantity=5)

        await order_service.create_order(db, buyer.id, order_request(event, (ticket_a, 6)))

        with pytest.raises(CapacityExceededError):
            await order_service.create_order(db, buyer.id, order_request(event, (ticket_b, 5)))

        await order_service.create_order(db, buyer.id, order_request(event, (ticket_b, 4)))

        with pytest.raises((SoldOutError, CapacityExceededError)):
            await order_service.create_order(db, buyer.id, order_request(event, (ticket_a, 1)))

        a = await reload(db, TicketType, ticket_a.id)
        b = await reload(db, TicketType, ticket_b.id)
        assert (a.quantity_reserved, b.quantity_reserved) == (6, 4)
        assert a.quantity_sold + a.quantity_reserved + b.quantity_sold + b.quantity_reserved <= 10

    async def test_failed_capacity_check_leaves_counters_untouched(self, db, organizer, buyer, order_service):
        event = await make_event(db, organizer, total_capacity=3)
        ticket_a = await make_ticket_type(db, event, title="A", quantity=5)
        ticket_b = await make_ticket_type(db, event, title="B", quantity=5)

        with pytest.raises(CapacityExceededError):
            await order_service.create_order(db, buyer.id, order_request(event, (ticket_a, 2), (ticket_b, 2)))

        assert (await reload(db, TicketType, ticket_a.id)).quantity_reserved == 0
        assert (await reload(db, TicketType, ticket_b.id)).quantity_reserved == 0


class TestConcurrentReservations:
    async def test_only_one_of_two_large_orders_wins(self, session_maker, db, event, buyer, order_service):
        tt = await make_ticket_type(db, event, quantity=10, max_quantity=10)

        async def attempt():
            async with session_maker() as session:
                return await order_service.create_order(session, buyer.id, order_request(event, (tt, 6)))

        results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], SoldOutError)

        refreshed = await reload(db, TicketType, tt.id)
        assert refreshed.quantity_reserved == 6
        assert refreshed.quantity_reserved <= refreshed.quantity - refreshed.quantity_sold
