"""Schemas for public profile pages and a student's own statistics."""

from datetime import datetime
from typing import Dict, List

from gradvillage.schemas.common import CamelModel
from gradvillage.schemas.registry import RegistryRead
from gradvillage.schemas.student import StudentCard


class PublicProfileStats(CamelModel):
    total_donations: int
    total_registry_items: int
    funding_progress: int


class PublicProfile(CamelModel):
    """What anyone can see at ``/students/public/{profile_url}``."""

    student: StudentCard
    registry_items: List[RegistryRead]
    stats: PublicProfileStats
    profile_completion: int


class UrlAvailability(CamelModel):
    url: str
    available: bool
    message: str


class ProfileOverview(CamelModel):
    funding_goal: float
    amount_raised: float
    funding_progress: int
    member_since: datetime


class ProfileDonationStats(CamelModel):
    total: float
    count: int
    average: float
    pending: int


class ProfileRegistryStats(CamelModel):
    total_items: int
    total_value: float
    total_funded: float
    fully_funded_items: int
    funding_progress: int
    by_category: Dict[str, int]


class MonthlyPoint(CamelModel):
    month: str
    amount: float
    count: int


class ProfileTrends(CamelModel):
    monthly: List[MonthlyPoint]


class StudentProfileStats(CamelModel):
    overview: ProfileOverview
    donations: ProfileDonationStats
    registry: ProfileRegistryStats
    trends: ProfileTrends
