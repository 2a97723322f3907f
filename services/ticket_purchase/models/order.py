"""Modelos Pydantic para órdenes de tickets"""
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from decimal import Decimal


class AttendeeData(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    cpf: Optional[str] = None  # Requerido para media entrada al hacer check-in
    phone: Optional[str] = None
    form_responses: Dict[str, Any] = Field(default_factory=dict)


class OrderItemRequest(BaseModel):
    ticket_type_id: UUID
    quantity: int = Field(gt=0)
    is_half_price: bool = False
    attendees: List[AttendeeData]


class CreateOrderRequest(BaseModel):
    event_id: UUID
    items: List[OrderItemRequest] = Field(min_length=1)
    promo_code: Optional[str] = None
    buyer_name: Optional[str] = None
    buyer_email: Optional[EmailStr] = None
    buyer_phone: Optional[str] = None
    buyer_cpf: Optional[str] = None
    notes: Optional[str] = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_type_id: UUID
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    is_half_price: bool
    tickets_issued_at: Optional[datetime] = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    event_id: UUID
    buyer_id: UUID
    status: str
    subtotal: Decimal
    discount: Decimal
    service_fee: Decimal
    platform_fee: Decimal
    total: Decimal
    promo_code_id: Optional[UUID] = None
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    items: List[OrderItemResponse] = []


class TicketInstanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    status: str
    ticket_type_id: UUID
    attendee_name: Optional[str] = None
    attendee_email: Optional[str] = None
    is_half_price: bool
    checked_in_at: Optional[datetime] = None
    transferred_at: Optional[datetime] = None
    transferred_from: Optional[str] = None


class CheckInRequest(BaseModel):
    code: str
    notes: Optional[str] = None
    location: Optional[str] = None


class TransferTicketRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    cpf: Optional[str] = None
    phone: Optional[str] = None


class AsaasWebhookPayment(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: Optional[str] = None
    value: Optional[Decimal] = None
    billingType: Optional[str] = None
    installment: Optional[str] = None
    installmentNumber: Optional[int] = None
    externalReference: Optional[str] = None


class AsaasWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payment: Optional[AsaasWebhookPayment] = None


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class ValidatePromoCodeRequest(BaseModel):
    event_id: UUID
    code: str = Field(min_length=1)
    subtotal: Decimal = Field(ge=0)


class PromoCodeValidationResponse(BaseModel):
    valid: bool = True
    promo_code_id: UUID
    code: str
    discount_type: str
    discount_value: Decimal
    discount: Decimal
    total_after_discount: Decimal
