"""Modelos Pydantic para pagos"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal


class RegisterPaymentRequest(BaseModel):
    provider_transaction_id: str = Field(min_length=1)
    method: Optional[str] = None  # PIX, CREDIT_CARD, BOLETO


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    amount: Decimal
    status: str
    method: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None
