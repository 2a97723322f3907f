"""Modelos SQLAlchemy del motor de órdenes y reembolsos"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, JSON,
    CheckConstraint, UniqueConstraint, Index, Uuid, Enum as SAEnum, text,
)
from sqlalchemy.orm import relationship
from enum import Enum
import uuid

from shared.database.connection import Base
from shared.utils.clock import utcnow


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    ATTENDEE = "ATTENDEE"


class EventStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    PARTIAL_REFUND = "PARTIAL_REFUND"


class TicketInstanceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CHECKED_IN = "CHECKED_IN"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    EXPIRED = "EXPIRED"
    TRANSFERRED = "TRANSFERRED"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class RefundType(str, Enum):
    CDC_7_DAYS = "CDC_7_DAYS"
    EVENT_CANCELLED = "EVENT_CANCELLED"
    EVENT_POLICY = "EVENT_POLICY"


class FormFieldType(str, Enum):
    TEXT = "TEXT"
    TEXTAREA = "TEXTAREA"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    NUMBER = "NUMBER"
    DATE = "DATE"
    CHECKBOX = "CHECKBOX"
    SELECT = "SELECT"


def _enum(enum_cls):
    # VARCHAR en lugar de tipo nativo para que las migraciones sean triviales
    return SAEnum(enum_cls, native_enum=False, length=32, validate_strings=True)


_COMMITTED_REFUND = "status IN ('PENDING', 'PROCESSING', 'COMPLETED')"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    cpf = Column(String, nullable=True)
    role = Column(_enum(UserRole), nullable=False, default=UserRole.ATTENDEE)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relaciones
    orders = relationship("Order", back_populates="buyer")
    events = relationship("Event", back_populates="organizer")


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organizer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=False)
    status = Column(_enum(EventStatus), nullable=False, default=EventStatus.DRAFT)
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    total_capacity = Column(Integer, nullable=True)  # None = sin límite global
    # Política de reembolso del organizador
    refund_allowed = Column(Boolean, nullable=False, default=True)
    refund_deadline_days = Column(Integer, nullable=True)
    refund_percentage = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relaciones
    organizer = relationship("User", back_populates="events")
    ticket_types = relationship("TicketType", back_populates="event", cascade="all, delete-orphan")
    form_fields = relationship("CustomFormField", back_populates="event", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="event")


class TicketType(Base):
    __tablename__ = "ticket_types"
    __table_args__ = (
        CheckConstraint("quantity_sold + quantity_reserved <= quantity", name="ck_ticket_types_stock"),
        CheckConstraint("quantity_sold >= 0 AND quantity_reserved >= 0", name="ck_ticket_types_non_negative"),
        CheckConstraint("half_price_sold <= COALESCE(half_price_quantity, 0)", name="ck_ticket_types_half_price"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    has_half_price = Column(Boolean, nullable=False, default=False)
    half_price = Column(Numeric(12, 2), nullable=True)
    half_price_quantity = Column(Integer, nullable=True)
    half_price_sold = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    quantity_reserved = Column(Integer, nullable=False, default=0)
    quantity_sold = Column(Integer, nullable=False, default=0)
    sales_starts_at = Column(DateTime, nullable=False)
    sales_ends_at = Column(DateTime, nullable=False)
    min_quantity = Column(Integer, nullable=False, default=1)
    max_quantity = Column(Integer, nullable=False, default=10)
    is_visible = Column(Boolean, nullable=False, default=True)
    service_fee_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    absorb_service_fee = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="ticket_types")
    order_items = relationship("OrderItem", back_populates="ticket_type")


class CustomFormField(Base):
    """Campo de formulario personalizado que cada asistente debe completar"""
    __tablename__ = "custom_form_fields"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    field_name = Column(String, nullable=False)
    field_label = Column(String, nullable=False)
    field_type = Column(_enum(FormFieldType), nullable=False, default=FormFieldType.TEXT)
    is_required = Column(Boolean, nullable=False, default=False)
    configuration = Column(JSON, nullable=True)  # {"min": .., "max": ..} para NUMBER
    display_order = Column(Integer, nullable=False, default=0)

    event = relationship("Event", back_populates="form_fields")


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        UniqueConstraint("event_id", "code", name="uq_promo_codes_event_code"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    code = Column(String, nullable=False)
    discount_type = Column(_enum(DiscountType), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)
    min_order_value = Column(Numeric(12, 2), nullable=True)
    max_uses = Column(Integer, nullable=True)
    uses_per_user = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number = Column(String, unique=True, nullable=False)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    buyer_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(_enum(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    service_fee = Column(Numeric(12, 2), nullable=False, default=0)
    platform_fee = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    promo_code_id = Column(Uuid, ForeignKey("promo_codes.id"), nullable=True)
    buyer_name = Column(String, nullable=True)
    buyer_email = Column(String, nullable=True)
    buyer_phone = Column(String, nullable=True)
    buyer_cpf = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)  # None para órdenes gratuitas
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relaciones
    buyer = relationship("User", back_populates="orders")
    event = relationship("Event", back_populates="orders")
    promo_code = relationship("PromoCode")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payment = relationship("Payment", back_populates="order", uselist=False)
    refunds = relationship("Refund", back_populates="order")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, index=True)
    ticket_type_id = Column(Uuid, ForeignKey("ticket_types.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    is_half_price = Column(Boolean, nullable=False, default=False)
    # Datos de asistentes pendientes hasta emitir los tickets
    attendees_data = Column(JSON(none_as_null=True), nullable=True)
    tickets_issued_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relaciones
    order = relationship("Order", back_populates="items")
    ticket_type = relationship("TicketType", back_populates="order_items")
    ticket_instances = relationship("TicketInstance", back_populates="order_item", cascade="all, delete-orphan")


class TicketInstance(Base):
    __tablename__ = "ticket_instances"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_item_id = Column(Uuid, ForeignKey("order_items.id"), nullable=False, index=True)
    ticket_type_id = Column(Uuid, ForeignKey("ticket_types.id"), nullable=False)
    code = Column(String, unique=True, index=True, nullable=False)
    status = Column(_enum(TicketInstanceStatus), nullable=False, default=TicketInstanceStatus.ACTIVE)
    attendee_name = Column(String, nullable=True)
    attendee_email = Column(String, nullable=True, index=True)
    attendee_cpf = Column(String, nullable=True)
    attendee_phone = Column(String, nullable=True)
    form_responses = Column(JSON, nullable=True)
    is_half_price = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(DateTime, nullable=True)
    checked_in_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    check_in_notes = Column(Text, nullable=True)
    check_in_location = Column(String, nullable=True)
    transferred_at = Column(DateTime, nullable=True)
    transferred_from = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relaciones
    order_item = relationship("OrderItem", back_populates="ticket_instances")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, unique=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    method = Column(String, nullable=True)  # PIX, CREDIT_CARD, BOLETO
    provider_transaction_id = Column(String, unique=True, nullable=True)
    provider_response = Column(JSON, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relaciones
    order = relationship("Order", back_populates="payment")
    refunds = relationship("Refund", back_populates="payment")


class Refund(Base):
    __tablename__ = "refunds"
    __table_args__ = (
        # Una sola solicitud vigente por orden completa y por ticket
        Index(
            "uq_refunds_full_order", "order_id", unique=True,
            postgresql_where=text(f"ticket_instance_id IS NULL AND {_COMMITTED_REFUND}"),
            sqlite_where=text(f"ticket_instance_id IS NULL AND {_COMMITTED_REFUND}"),
        ),
        Index(
            "uq_refunds_ticket", "ticket_instance_id", unique=True,
            postgresql_where=text(f"ticket_instance_id IS NOT NULL AND {_COMMITTED_REFUND}"),
            sqlite_where=text(f"ticket_instance_id IS NOT NULL AND {_COMMITTED_REFUND}"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, index=True)
    payment_id = Column(Uuid, ForeignKey("payments.id"), nullable=True)
    ticket_instance_id = Column(Uuid, ForeignKey("ticket_instances.id"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)  # monto de tickets, sin tasa
    platform_fee_amount = Column(Numeric(12, 2), nullable=True)
    platform_fee_refunded = Column(Boolean, nullable=False, default=False)
    refund_type = Column(_enum(RefundType), nullable=False)
    status = Column(_enum(RefundStatus), nullable=False, default=RefundStatus.PENDING)
    reason = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    requested_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    approved_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relaciones
    order = relationship("Order", back_populates="refunds")
    payment = relationship("Payment", back_populates="refunds")
