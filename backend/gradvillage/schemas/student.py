"""Schemas describing students, both as profiles and discovery cards."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field

from gradvillage.ledger import compute_progress_percentage
from gradvillage.schemas.common import CamelModel, Pagination

Urgency = Literal["high", "medium", "low"]
PROFILE_URL_PATTERN = r"^[a-z0-9-]+$"


class StudentCreate(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    school_name: str = Field(min_length=1)
    major: Optional[str] = None
    graduation_year: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    funding_goal: float = Field(default=0, ge=0)


class StudentUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    school_name: Optional[str] = None
    major: Optional[str] = None
    graduation_year: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = None
    urgency: Optional[Urgency] = None
    tags: Optional[List[str]] = None
    profile_photo: Optional[str] = None
    profile_url: Optional[str] = Field(
        default=None, min_length=1, max_length=100, pattern=PROFILE_URL_PATTERN
    )
    funding_goal: Optional[float] = Field(default=None, ge=0)
    public_profile: Optional[bool] = None


class StudentSummary(CamelModel):
    id: int
    first_name: str
    last_name: str
    school_name: str


class StudentCard(StudentSummary):
    """Student as shown to donors while browsing."""

    major: Optional[str] = None
    graduation_year: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    urgency: str
    tags: List[str] = []
    profile_photo: Optional[str] = None
    profile_url: Optional[str] = None
    funding_goal: float
    amount_raised: float
    total_donations: int
    verified: bool
    last_active: datetime
    created_at: datetime
    progress_percentage: int = 0

    @classmethod
    def from_student(cls, student) -> "StudentCard":
        card = cls.model_validate(student)
        card.progress_percentage = compute_progress_percentage(
            student.amount_raised, student.funding_goal
        )
        return card


class StudentRead(StudentCard):
    """Full profile, visible to the student and admins."""

    email: str
    registration_status: str
    is_active: bool
    public_profile: bool


class Facets(CamelModel):
    schools: List[str]
    majors: List[str]
    locations: List[str]


class StudentSearchResult(CamelModel):
    students: List[StudentCard]
    pagination: Pagination
    filters: Facets


class Suggestions(CamelModel):
    schools: List[str]
    majors: List[str]
    locations: List[str]
