"""Tests de la API HTTP: autenticación, códigos de error y flujo completo"""
from decimal import Decimal
import uuid

import httpx
import pytest
import pytest_asyncio

from main import app
from shared.auth.jwt_handler import create_access_token
from shared.database.models import DiscountType, EventStatus, Order, OrderStatus, UserRole
from tests.fixtures import make_event, make_promo, make_ticket_type, reload


def _auth(user):
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def _order_body(event, ticket_type, quantity=1):
    return {
        "event_id": str(event.id),
        "items": [{
            "ticket_type_id": str(ticket_type.id),
            "quantity": quantity,
            "attendees": [
                {"name": f"Asistente {i}", "email": f"asistente{i}@example.com"}
                for i in range(quantity)
            ],
        }],
    }


@pytest_asyncio.fixture
async def client(session_maker):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestOrdersApi:
    async def test_create_and_read(self, client, event, buyer, ticket_type):
        response = await client.post("/api/v1/orders", json=_order_body(event, ticket_type, 2), headers=_auth(buyer))

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == OrderStatus.PENDING.value
        assert Decimal(body["total"]) == Decimal("200")
        assert body["order_number"].startswith("ORD-")

        response = await client.get(f"/api/v1/orders/{body['id']}", headers=_auth(buyer))
        assert response.status_code == 200
        assert response.json()["id"] == body["id"]

    async def test_invalid_token(self, client, event, ticket_type):
        response = await client.post(
            "/api/v1/orders",
            json=_order_body(event, ticket_type),
            headers={"Authorization": "Bearer no-es-un-jwt"},
        )
        assert response.status_code == 401

    async def test_sold_out_is_conflict(self, client, db, event, buyer):
        scarce = await make_ticket_type(db, event, quantity=1)

        response = await client.post("/api/v1/orders", json=_order_body(event, scarce, 2), headers=_auth(buyer))

        assert response.status_code == 409
        assert response.json()["error"] == "SOLD_OUT"

    async def test_foreign_order_is_forbidden(self, client, event, buyer, organizer, ticket_type):
        created = await client.post("/api/v1/orders", json=_order_body(event, ticket_type), headers=_auth(buyer))
        order_id = created.json()["id"]

        response = await client.post(f"/api/v1/orders/{order_id}/cancel", headers=_auth(organizer))

        assert response.status_code == 403
        assert response.json() == {"error": "FORBIDDEN", "detail": "forbidden"}

    async def test_unknown_order(self, client, buyer):
        response = await client.get("/api/v1/orders/00000000-0000-0000-0000-000000000000", headers=_auth(buyer))
        assert response.status_code == 404

    async def test_malformed_id(self, client, buyer):
        response = await client.get("/api/v1/orders/no-es-uuid", headers=_auth(buyer))
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    async def test_list_my_orders(self, client, event, buyer, organizer, ticket_type):
        for _ in range(3):
            await client.post("/api/v1/orders", json=_order_body(event, ticket_type), headers=_auth(buyer))
        await client.post("/api/v1/orders", json=_order_body(event, ticket_type), headers=_auth(organizer))

        response = await client.get("/api/v1/orders", params={"page": 2, "limit": 2}, headers=_auth(buyer))

        assert response.status_code == 200
        body = response.json()
        assert (body["total"], body["page"], body["limit"], body["total_pages"]) == (3, 2, 2, 2)
        assert len(body["items"]) == 1
        assert body["items"][0]["buyer_id"] == str(buyer.id)

        response = await client.get("/api/v1/orders", params={"status": "CANCELLED"}, headers=_auth(buyer))
        assert response.json()["total"] == 0

        response = await client.get("/api/v1/orders", params={"limit": 500}, headers=_auth(buyer))
        assert response.status_code == 422

    async def test_validate_promo_code(self, client, db, event, buyer):
        await make_promo(db, event, code="MENOS50", discount_type=DiscountType.FIXED, discount_value=Decimal("50"))
        body = {"event_id": str(event.id), "code": "menos50", "subtotal": "30.00"}

        response = await client.post("/api/v1/orders/promo-codes/validate", json=body, headers=_auth(buyer))

        assert response.status_code == 200
        preview = response.json()
        assert preview["valid"] is True
        assert preview["code"] == "MENOS50"
        assert preview["discount_type"] == DiscountType.FIXED.value
        assert Decimal(preview["discount"]) == Decimal("30.00")
        assert Decimal(preview["total_after_discount"]) == Decimal("0")

        body["code"] = "NOEXISTE"
        response = await client.post("/api/v1/orders/promo-codes/validate", json=body, headers=_auth(buyer))
        assert response.status_code == 404


class TestPaymentFlowApi:
    async def test_pay_through_webhook_then_refund(self, client, db, event, buyer, organizer, ticket_type):
        created = await client.post("/api/v1/orders", json=_order_body(event, ticket_type), headers=_auth(buyer))
        order_id = created.json()["id"]

        response = await client.post(
            f"/api/v1/orders/{order_id}/payments",
            json={"provider_transaction_id": "pay_api_1", "method": "PIX"},
            headers=_auth(buyer),
        )
        assert response.status_code == 201

        webhook = {"event": "PAYMENT_RECEIVED", "payment": {"id": "pay_api_1", "status": "RECEIVED"}}
        response = await client.post("/api/v1/webhooks/asaas", json=webhook)
        assert response.status_code == 401

        response = await client.post(
            "/api/v1/webhooks/asaas", json=webhook, headers={"asaas-access-token": "test-webhook-token"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

        tickets = await client.get(f"/api/v1/orders/{order_id}/tickets", headers=_auth(buyer))
        assert len(tickets.json()) == 1

        response = await client.post(
            "/api/v1/refunds", json={"order_id": order_id, "reason": "No puedo asistir"}, headers=_auth(buyer)
        )
        assert response.status_code == 201
        refund = response.json()
        assert refund["refund_type"] == "CDC_7_DAYS"
        assert refund["status"] == "PENDING"

        response = await client.post(f"/api/v1/refunds/{refund['id']}/approve", json={}, headers=_auth(buyer))
        assert response.status_code == 403

        response = await client.post(
            f"/api/v1/refunds/{refund['id']}/reject", json={"reason": "Fuera de política"}, headers=_auth(organizer)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"

        order = await reload(db, Order, uuid.UUID(order_id))
        assert order.status == OrderStatus.CONFIRMED


class TestAdminApi:
    async def test_sweep_requires_admin(self, client, buyer):
        response = await client.post("/api/v1/admin/orders/sweep-expired", headers=_auth(buyer))
        assert response.status_code == 403

    async def test_sweep(self, client, admin):
        response = await client.post("/api/v1/admin/orders/sweep-expired", headers=_auth(admin))
        assert response.status_code == 200
        assert response.json() == {"expired": 0}


async def test_health(client):
    response = await client.get("/health")
    assert response.json()["status"] == "ok"


@pytest.mark.parametrize("role", [UserRole.ORGANIZER, UserRole.ADMIN])
async def test_event_publish_roles(client, db, organizer, admin, role):
    event = await make_event(db, organizer, status=EventStatus.DRAFT)
    caller = organizer if role == UserRole.ORGANIZER else admin

    response = await client.post(f"/api/v1/events/{event.id}/publish", headers=_auth(caller))

    assert response.status_code == 200
    assert response.json()["status"] == EventStatus.ACTIVE.value
