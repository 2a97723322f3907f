"""Modelos Pydantic para eventos"""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from uuid import UUID
from datetime import datetime


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organizer_id: UUID
    title: str
    status: str
    starts_at: datetime
    ends_at: datetime
    total_capacity: Optional[int] = None
    refund_allowed: bool
    refund_deadline_days: Optional[int] = None
