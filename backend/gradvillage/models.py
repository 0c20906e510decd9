"""Database models used by GradVillage.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and represent the three principal kinds (students, donors, admins), the
donation ledger and the school verification workflow.  Comments are kept
concise to avoid distracting from the field definitions.
"""

from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON, UniqueConstraint


class School(SQLModel, table=True):
    """School a student can prove enrollment at."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    domain: Optional[str] = None
    verification_methods: List[str] = Field(
        sa_column=Column(JSON), default_factory=list
    )


class Student(SQLModel, table=True):
    """Student fundraising profile."""

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    first_name: str
    last_name: str
    school_name: str = ""
    major: Optional[str] = None
    graduation_year: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    urgency: str = "medium"  # high, medium, low
    tags: List[str] = Field(sa_column=Column(JSON), default_factory=list)
    profile_photo: Optional[str] = None
    profile_url: Optional[str] = Field(default=None, unique=True, index=True)
    funding_goal: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    # Only the ledger writes the two counters below.
    amount_raised: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_donations: int = 0
    registration_status: str = "pending"  # pending, completed (set when the fee is paid)
    verified: bool = False
    is_active: bool = True
    public_profile: bool = True
    last_active: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    registries: List["Registry"] = Relationship(back_populates="student")


class Donor(SQLModel, table=True):
    """Donor account with denormalized giving totals."""

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    address: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    preferences: dict = Field(sa_column=Column(JSON), default_factory=dict)
    verified: bool = False
    is_active: bool = True
    member_since: datetime = Field(default_factory=datetime.utcnow)
    total_donated: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    students_supported: int = 0
    impact_score: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=2)
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Admin(SQLModel, table=True):
    """Administrator of the platform (``admin`` or ``super_admin``)."""

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    first_name: str
    last_name: str
    role: str = "admin"
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Registry(SQLModel, table=True):
    """Item on a student's wish list that donors can fund."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    item_name: str
    item_description: Optional[str] = None
    category: str
    priority: str = "medium"  # high, medium, low
    price: Decimal = Field(max_digits=12, decimal_places=2)
    amount_funded: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    funded_status: str = "needed"  # needed, partial, funded
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    student: Student = Relationship(back_populates="registries")


class Donation(SQLModel, table=True):
    """Single gift from a donor (or a guest) to a student."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    donor_id: Optional[int] = Field(default=None, foreign_key="donor.id", index=True)
    donor_email: Optional[str] = None
    donor_first_name: Optional[str] = None
    donor_last_name: Optional[str] = None
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    transaction_fee: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    net_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    payment_method: str = "stripe"  # stripe, paypal, zelle
    status: str = "pending"  # pending, completed, failed, refunded
    donation_type: str = "general"  # general, item, emergency, registration_fee
    target_registry_id: Optional[int] = Field(default=None, foreign_key="registry.id")
    is_anonymous: bool = False
    is_recurring: bool = False
    allow_public_display: bool = True
    donor_message: Optional[str] = None
    payment_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    student: Student = Relationship()
    target_registry: Optional[Registry] = Relationship()
    tax_receipt: Optional["TaxReceipt"] = Relationship(
        back_populates="donation",
        sa_relationship_kwargs={"uselist": False},
    )


class TaxReceipt(SQLModel, table=True):
    """Receipt issued when a donation completes."""

    id: Optional[int] = Field(default=None, primary_key=True)
    donation_id: int = Field(foreign_key="donation.id", unique=True)
    receipt_number: str = Field(unique=True, index=True)
    receipt_url: Optional[str] = None
    issued: bool = True
    issued_at: datetime = Field(default_factory=datetime.utcnow)

    donation: Donation = Relationship(back_populates="tax_receipt")


class RecurringDonation(SQLModel, table=True):
    """Standing pledge; stored only, nothing charges it automatically."""

    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="donor.id", index=True)
    student_id: int = Field(foreign_key="student.id")
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    frequency: str  # weekly, monthly, quarterly, yearly
    active: bool = True
    next_payment_date: date
    cancelled_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DonorBookmark(SQLModel, table=True):
    """Student saved by a donor for later."""

    __table_args__ = (UniqueConstraint("donor_id", "student_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="donor.id", index=True)
    student_id: int = Field(foreign_key="student.id")
    notes: Optional[str] = None
    bookmarked_at: datetime = Field(default_factory=datetime.utcnow)

    student: Student = Relationship()


class SchoolVerification(SQLModel, table=True):
    """Enrollment proof submitted by a student; one row per student."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="student.id", unique=True)
    school_id: int = Field(foreign_key="school.id")
    status: str = "pending"  # pending, approved, rejected
    verification_method: str
    verification_email: Optional[str] = None
    verification_document: Optional[str] = None
    rejection_reason: Optional[str] = None
    verified_at: Optional[datetime] = None
    reviewed_by: Optional[int] = Field(default=None, foreign_key="admin.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    student: Student = Relationship()
    school: School = Relationship()


class AdminAction(SQLModel, table=True):
    """Audit trail entry for an administrative mutation."""

    id: Optional[int] = Field(default=None, primary_key=True)
    admin_id: int = Field(foreign_key="admin.id")
    action: str
    target_type: str
    target_id: str
    details: dict = Field(sa_column=Column(JSON), default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Settings(SQLModel, table=True):
    """Singleton table storing site‑wide configuration values."""

    id: Optional[int] = Field(default=1, primary_key=True)
    site_name: str = "GradVillage"
    currency_symbol: str = "$"
    processing_fee_percentage: float = 0.0
    receipt_base_url: str = "https://receipts.gradvillage.org"
    public_registration_disabled: bool = False
