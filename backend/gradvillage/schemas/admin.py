from datetime import datetime
from typing import List, Literal, Optional

from gradvillage.schemas.common import CamelModel, Pagination


class UserStatusUpdate(CamelModel):
    status: Literal["active", "inactive", "suspended"]
    user_type: Literal["student", "donor", "admin"]
    reason: Optional[str] = None


class UserListEntry(CamelModel):
    id: int
    user_type: str
    email: str
    first_name: str
    last_name: str
    is_active: bool
    verified: Optional[bool] = None
    role: Optional[str] = None
    created_at: datetime


class UserList(CamelModel):
    users: List[UserListEntry]
    pagination: Pagination


class PlatformStats(CamelModel):
    total_students: int
    total_donors: int
    total_admins: int
    total_users: int
    verified_students: int
    active_students: int
    pending_verifications: int
    total_donations: int
    total_revenue: float
    total_net_revenue: float
    total_amount_raised: float
    total_funding_goals: float


class ReconcileReport(CamelModel):
    applied: bool
    checked: dict
    drift_count: int
    drift: List[dict]
