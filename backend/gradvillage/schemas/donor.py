from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field

from gradvillage.schemas.common import CamelModel
from gradvillage.schemas.registry import RegistryRead
from gradvillage.schemas.student import StudentCard


class DonorCreate(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = None


class DonorUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    phone: Optional[str] = None
    address: Optional[dict] = None
    # Merged into the stored preferences rather than replacing them.
    preferences: Optional[dict] = None


class DonorRead(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    address: Optional[dict] = None
    preferences: dict = {}
    verified: bool
    is_active: bool
    member_since: datetime
    total_donated: float
    students_supported: int
    impact_score: float
    last_login: Optional[datetime] = None


class BookmarkCreate(CamelModel):
    student_id: int
    notes: Optional[str] = Field(default=None, max_length=500)


class BookmarkUpdate(CamelModel):
    notes: Optional[str] = Field(default=None, max_length=500)


class BookmarkRead(CamelModel):
    id: int
    student_id: int
    notes: Optional[str] = None
    bookmarked_at: datetime
    student: StudentCard

    @classmethod
    def from_bookmark(cls, bookmark) -> "BookmarkRead":
        return cls(
            id=bookmark.id,
            student_id=bookmark.student_id,
            notes=bookmark.notes,
            bookmarked_at=bookmark.bookmarked_at,
            student=StudentCard.from_student(bookmark.student),
        )


class BookmarkStatus(CamelModel):
    is_bookmarked: bool
    bookmark_id: Optional[int] = None


class PublicDonation(CamelModel):
    id: int
    amount: float
    donor_name: str
    message: Optional[str] = None
    created_at: datetime


class StudentDetailStats(CamelModel):
    donor_count: int
    average_donation: float
    goal_progress: int
    items_funded: int


class StudentDetail(CamelModel):
    student: StudentCard
    registry_items: List[RegistryRead]
    recent_donations: List[PublicDonation]
    stats: StudentDetailStats
    is_bookmarked: bool = False


class DashboardOverview(CamelModel):
    total_donated: float
    students_supported: int
    recurring_donations: int
    impact_score: float


class MonthlyStats(CamelModel):
    this_month: float
    last_month: float
    percent_change: float


class ImpactMetrics(CamelModel):
    students_helped: int
    students_graduated: int
    items_funded: int
    community_rank: str


class RecentActivity(CamelModel):
    id: int
    amount: float
    student_name: str
    student_photo: Optional[str] = None
    date: datetime
    message: Optional[str] = None


class DonorDashboard(CamelModel):
    overview: DashboardOverview
    monthly_stats: MonthlyStats
    impact_metrics: ImpactMetrics
    recent_activity: List[RecentActivity]
