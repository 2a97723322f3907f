"""Modelos Pydantic para reembolsos"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal


class CreateRefundRequest(BaseModel):
    order_id: UUID
    reason: str = Field(min_length=1)
    ticket_instance_id: Optional[UUID] = None  # None = orden completa
    payment_id: Optional[UUID] = None
    notes: Optional[str] = None


class ApproveRefundRequest(BaseModel):
    notes: Optional[str] = None


class RejectRefundRequest(BaseModel):
    reason: str = Field(min_length=1)


class RefundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    payment_id: Optional[UUID] = None
    ticket_instance_id: Optional[UUID] = None
    amount: Decimal
    platform_fee_amount: Optional[Decimal] = None
    platform_fee_refunded: bool
    refund_type: str
    status: str
    reason: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    requested_by: UUID
    approved_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
