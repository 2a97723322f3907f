"""Constructores de datos de ejemplo para los tests"""
from datetime import timedelta
from decimal import Decimal
from typing import List
import uuid

from shared.database.models import (
    CustomFormField,
    DiscountType,
    Event,
    EventStatus,
    FormFieldType,
    Payment,
    PaymentStatus,
    PromoCode,
    TicketType,
    User,
    UserRole,
)
from shared.utils.clock import utcnow
from services.ticket_purchase.models.order import AttendeeData, CreateOrderRequest, OrderItemRequest


async def _persist(db, instance):
    """Guardar y desligar de la sesión: un rollback posterior no lo expira"""
    db.add(instance)
    await db.commit()
    db.expunge(instance)
    return instance


async def make_user(db, role: UserRole = UserRole.ATTENDEE, email: str = None) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"{uuid.uuid4().hex[:8]}@example.com",
        name="Usuario Test",
        role=role,
    )
    return await _persist(db, user)


async def make_event(db, organizer: User, **overrides) -> Event:
    now = utcnow()
    values = dict(
        id=uuid.uuid4(),
        organizer_id=organizer.id,
        title="Tech Conf",
        status=EventStatus.ACTIVE,
        starts_at=now + timedelta(days=30),
        ends_at=now + timedelta(days=30, hours=8),
        total_capacity=None,
        refund_allowed=True,
        refund_deadline_days=None,
    )
    values.update(overrides)
    event = Event(**values)
    return await _persist(db, event)


async def make_ticket_type(db, event: Event, **overrides) -> TicketType:
    now = utcnow()
    values = dict(
        id=uuid.uuid4(),
        event_id=event.id,
        title="General",
        price=Decimal("100.00"),
        quantity=100,
        sales_starts_at=now - timedelta(days=1),
        sales_ends_at=now + timedelta(days=29),
        min_quantity=1,
        max_quantity=10,
        service_fee_percentage=Decimal("0"),
        absorb_service_fee=False,
    )
    values.update(overrides)
    ticket_type = TicketType(**values)
    return await _persist(db, ticket_type)


async def make_promo(db, event: Event, code: str = "TECH20", **overrides) -> PromoCode:
    values = dict(
        id=uuid.uuid4(),
        event_id=event.id,
        code=code,
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("20"),
        valid_from=utcnow() - timedelta(days=1),
    )
    values.update(overrides)
    promo = PromoCode(**values)
    return await _persist(db, promo)


async def make_form_field(db, event: Event, name: str, field_type: FormFieldType,
                          required: bool = True, configuration=None) -> CustomFormField:
    field = CustomFormField(
        id=uuid.uuid4(),
        event_id=event.id,
        field_name=name,
        field_label=name.capitalize(),
        field_type=field_type,
        is_required=required,
        configuration=configuration,
    )
    return await _persist(db, field)


async def make_payment(db, order, transaction_id: str = None,
                       status: PaymentStatus = PaymentStatus.COMPLETED) -> Payment:
    payment = Payment(
        id=uuid.uuid4(),
        order_id=order.id,
        amount=order.total,
        status=status,
        method="PIX",
        provider_transaction_id=transaction_id or f"pay_{uuid.uuid4().hex[:12]}",
    )
    return await _persist(db, payment)


def attendees(count: int, **extra) -> List[AttendeeData]:
    return [
        AttendeeData(name=f"Asistente {i}", email=f"Asistente{i}@Example.com", **extra)
        for i in range(1, count + 1)
    ]


def order_request(event: Event, *lines, promo_code: str = None) -> CreateOrderRequest:
    """lines: tuplas (ticket_type, cantidad) o (ticket_type, cantidad, media_entrada)"""
    items = []
    for line in lines:
        ticket_type, quantity = line[0], line[1]
        is_half_price = line[2] if len(line) > 2 else False
        items.append(OrderItemRequest(
            ticket_type_id=ticket_type.id,
            quantity=quantity,
            is_half_price=is_half_price,
            attendees=attendees(quantity, cpf="12345678900"),
        ))
    return CreateOrderRequest(
        event_id=event.id,
        items=items,
        promo_code=promo_code,
        buyer_name="Comprador",
        buyer_email="buyer@example.com",
    )


async def reload(db, model, pk):
    return await db.get(model, pk, populate_existing=True)


