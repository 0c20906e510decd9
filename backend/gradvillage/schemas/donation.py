"""Schemas for donations, receipts, refunds and donor history."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field, model_validator

from gradvillage.schemas.common import CamelModel, Pagination
from gradvillage.schemas.student import StudentSummary

PaymentMethod = Literal["stripe", "paypal", "zelle"]
DonationType = Literal["general", "item", "emergency", "registration_fee"]


class DonationCreate(CamelModel):
    student_id: int
    amount: float = Field(ge=1)
    payment_method: PaymentMethod = "stripe"
    donation_type: DonationType = "general"
    target_registry_id: Optional[int] = None
    is_anonymous: bool = False
    allow_public_display: bool = True
    donor_message: Optional[str] = Field(default=None, max_length=500)
    donor_email: Optional[EmailStr] = None
    donor_first_name: Optional[str] = None
    donor_last_name: Optional[str] = None

    @model_validator(mode="after")
    def item_needs_target(self):
        if self.donation_type == "item" and self.target_registry_id is None:
            raise ValueError("targetRegistryId is required for item donations")
        return self


class ProcessPayment(CamelModel):
    payment_reference: Optional[str] = None


class SponsorRequest(CamelModel):
    amount: float = Field(gt=0)
    message: Optional[str] = Field(default=None, max_length=500)
    payment_method: PaymentMethod = "stripe"


class RefundRequest(CamelModel):
    amount: Optional[float] = None
    reason: Optional[str] = None


class ZelleVerification(CamelModel):
    verified: bool
    notes: Optional[str] = None


class DonationRead(CamelModel):
    id: int
    student_id: int
    donor_id: Optional[int] = None
    donor_email: Optional[str] = None
    donor_first_name: Optional[str] = None
    donor_last_name: Optional[str] = None
    amount: float
    transaction_fee: float
    net_amount: float
    payment_method: str
    status: str
    donation_type: str
    target_registry_id: Optional[int] = None
    is_anonymous: bool
    is_recurring: bool
    allow_public_display: bool
    donor_message: Optional[str] = None
    payment_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    receipt_number: Optional[str] = None
    receipt_url: Optional[str] = None

    @classmethod
    def from_donation(cls, donation, receipt=None) -> "DonationRead":
        read = cls.model_validate(donation)
        if receipt is not None:
            read.receipt_number = receipt.receipt_number
            read.receipt_url = receipt.receipt_url
        return read


class DonationHistoryItem(DonationRead):
    student: Optional[StudentSummary] = None
    item_name: Optional[str] = None


class HistorySummary(CamelModel):
    total_amount: float
    total_donations: int
    active_recurring: int


class DonationHistory(CamelModel):
    donations: List[DonationHistoryItem]
    pagination: Pagination
    summary: HistorySummary


class AdminDonationList(CamelModel):
    donations: List[DonationHistoryItem]
    total: int
    limit: int
    offset: int


class ReceiptRead(CamelModel):
    receipt_number: str
    receipt_url: Optional[str] = None
    issued: bool
    issued_at: datetime
    donation_id: int
    amount: float
    donor_name: str
    student_name: str
    donation_date: datetime
