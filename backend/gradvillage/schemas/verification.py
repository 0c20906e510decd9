"""Schemas for the school enrollment verification workflow."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field, model_validator

from gradvillage.schemas.common import CamelModel, Pagination
from gradvillage.schemas.student import StudentSummary

VerificationMethod = Literal["email", "id_card", "transcript", "document"]


class SchoolRead(CamelModel):
    id: int
    name: str
    domain: Optional[str] = None
    verification_methods: List[str] = []


class VerificationSubmit(CamelModel):
    school_id: int
    verification_method: VerificationMethod
    verification_email: Optional[EmailStr] = None
    verification_document: Optional[str] = None

    @model_validator(mode="after")
    def proof_matches_method(self):
        if self.verification_method == "email" and not self.verification_email:
            raise ValueError("verificationEmail is required for email verification")
        if self.verification_method != "email" and not self.verification_document:
            raise ValueError("verificationDocument is required for this method")
        return self


class VerificationRead(CamelModel):
    id: int
    student_id: int
    school_id: int
    school_name: Optional[str] = None
    status: str
    verification_method: str
    verification_email: Optional[str] = None
    verification_document: Optional[str] = None
    rejection_reason: Optional[str] = None
    verified_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    student: Optional[StudentSummary] = None

    @classmethod
    def from_verification(cls, verification, student=None, school=None):
        read = cls.model_validate(verification)
        if school is not None:
            read.school_name = school.name
        if student is not None:
            read.student = StudentSummary.model_validate(student)
        return read


class VerificationStatus(CamelModel):
    status: str  # not_submitted, pending, approved, rejected
    verified: bool
    verification: Optional[VerificationRead] = None


class VerificationList(CamelModel):
    verifications: List[VerificationRead]
    pagination: Pagination


class VerificationStats(CamelModel):
    total: int
    today: int
    pending: int
    approved: int
    rejected: int


class RejectRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=500)
