"""Tests de ciclo de vida de eventos y reembolsos automáticos por cancelación"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from shared.database.models import (
    Event,
    EventStatus,
    Order,
    Refund,
    RefundStatus,
    RefundType,
    UserRole,
)
from shared.errors import AuthorizationError, InvalidTransitionError, SalesClosedError
from shared.utils.clock import utcnow
from services.event_management.services.event_service import EventService
from tests.fixtures import make_event, make_payment, make_ticket_type, make_user, order_request, reload

ORGANIZER = UserRole.ORGANIZER.value


class BrokenIssuer:
    async def create_event_cancellation_refunds(self, db, event_id):
        raise RuntimeError("emisor caído")


async def _refunds_of_event(db, event_id):
    result = await db.execute(
        select(Refund).join(Order, Refund.order_id == Order.id).where(Order.event_id == event_id)
    )
    return result.scalars().all()


class TestPublish:
    async def test_draft_to_active(self, db, organizer):
        event = await make_event(db, organizer, status=EventStatus.DRAFT)

        published = await EventService().publish_event(db, event.id, organizer.id, ORGANIZER)

        assert published.status == EventStatus.ACTIVE

    async def test_only_drafts(self, db, organizer, event):
        with pytest.raises(InvalidTransitionError):
            await EventService().publish_event(db, event.id, organizer.id, ORGANIZER)

    async def test_other_organizer_forbidden(self, db, organizer):
        event = await make_event(db, organizer, status=EventStatus.DRAFT)
        other = await make_user(db, UserRole.ORGANIZER)

        with pytest.raises(AuthorizationError):
            await EventService().publish_event(db, event.id, other.id, ORGANIZER)


class TestCancelEvent:
    async def test_cancellation_creates_pending_refunds(self, db, event, organizer, buyer,
                                                        order_service, refund_service):
        tt = await make_ticket_type(db, event, service_fee_percentage=Decimal("3"))
        paid = await order_service.create_order(db, buyer.id, order_request(event, (tt, 2)))
        paid = await order_service.confirm_order_payment(db, paid.id)
        await make_payment(db, paid)
        pending = await order_service.create_order(db, buyer.id, order_request(event, (tt, 1)))

        cancelled = await EventService(refund_issuer=refund_service).cancel_event(
            db, event.id, organizer.id, ORGANIZER
        )

        assert cancelled.status == EventStatus.CANCELLED
        refunds = await _refunds_of_event(db, event.id)
        assert len(refunds) == 1
        refund = refunds[0]
        assert refund.order_id == paid.id
        assert refund.order_id != pending.id
        assert refund.refund_type == RefundType.EVENT_CANCELLED
        assert refund.status == RefundStatus.PENDING
        assert refund.amount == Decimal("200.00")
        assert refund.platform_fee_amount == Decimal("6.00")
        assert refund.platform_fee_refunded is True
        assert refund.requested_by == buyer.id
        assert refund.payment_id is not None

    async def test_cancellation_skips_orders_with_open_full_refund(self, db, event, organizer, buyer,
                                                                   order_service, refund_service):
        tt = await make_ticket_type(db, event)
        order = await order_service.create_order(db, buyer.id, order_request(event, (tt, 1)))
        await order_service.confirm_order_payment(db, order.id)
        await refund_service.create_refund(db, order.id, "Motivo", buyer.id, UserRole.ATTENDEE.value)

        created = await refund_service.create_event_cancellation_refunds(db, event.id)

        assert created == 0

    async def test_issuer_failure_keeps_event_cancelled(self, db, event, organizer):
        cancelled = await EventService(refund_issuer=BrokenIssuer()).cancel_event(
            db, event.id, organizer.id, ORGANIZER
        )

        assert cancelled.status == EventStatus.CANCELLED

    async def test_cannot_cancel_twice(self, db, event, organizer):
        await EventService().cancel_event(db, event.id, organizer.id, ORGANIZER)
        with pytest.raises(InvalidTransitionError):
            await EventService().cancel_event(db, event.id, organizer.id, ORGANIZER)

    async def test_sales_closed_after_cancellation(self, db, event, organizer, buyer, ticket_type, order_service):
        await EventService().cancel_event(db, event.id, organizer.id, ORGANIZER)
        with pytest.raises(SalesClosedError):
            await order_service.create_order(db, buyer.id, order_request(event, (ticket_type, 1)))


class TestEndFinishedEvents:
    async def test_only_active_past_events(self, db, organizer):
        now = utcnow()
        finished = await make_event(db, organizer, starts_at=now - timedelta(days=1), ends_at=now - timedelta(hours=1))
        running = await make_event(db, organizer)
        cancelled = await make_event(
            db, organizer, status=EventStatus.CANCELLED,
            starts_at=now - timedelta(days=1), ends_at=now - timedelta(hours=1),
        )

        assert await EventService.end_finished_events(db) == 1

        assert (await reload(db, Event, finished.id)).status == EventStatus.ENDED
        assert (await reload(db, Event, running.id)).status == EventStatus.ACTIVE
        assert (await reload(db, Event, cancelled.id)).status == EventStatus.CANCELLED
