"""Schemas for standing donation pledges."""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import Field

from gradvillage.schemas.common import CamelModel

Frequency = Literal["weekly", "monthly", "quarterly", "yearly"]


class RecurringDonationCreate(CamelModel):
    student_id: int
    amount: float = Field(gt=0)
    frequency: Frequency


class RecurringDonationRead(CamelModel):
    id: int
    donor_id: int
    student_id: int
    amount: float
    frequency: str
    active: bool
    next_payment_date: date
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class RecurringDonationUpdate(CamelModel):
    active: Optional[bool] = None
    amount: Optional[float] = Field(default=None, gt=0)
    frequency: Optional[Frequency] = None
