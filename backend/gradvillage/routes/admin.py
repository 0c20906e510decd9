"""Admin console: platform stats, user management and maintenance."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.acl import ROLE_ADMIN
from gradvillage.analytics import platform_stats
from gradvillage.auth import Identity, require_role
from gradvillage.crud import (
    StudentFilter,
    list_users,
    search_students,
    set_user_status,
    student_facets,
)
from gradvillage.database import get_session
from gradvillage.ledger import reconcile_counters
from gradvillage.routes.filters import student_filter_params
from gradvillage.schemas import (
    Envelope,
    Facets,
    Pagination,
    PlatformStats,
    ReconcileReport,
    StudentCard,
    StudentSearchResult,
    UserList,
    UserListEntry,
    UserStatusUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

require_admin = require_role(ROLE_ADMIN)


def user_entry(kind: str, user) -> UserListEntry:
    return UserListEntry(
        id=user.id,
        user_type=kind,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        is_active=user.is_active,
        verified=getattr(user, "verified", None),
        role=getattr(user, "role", None),
        created_at=user.created_at,
    )


@router.get("/stats", response_model=Envelope[PlatformStats])
async def read_stats(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    return Envelope(data=PlatformStats(**await platform_stats(db)))


@router.get("/users", response_model=Envelope[UserList])
async def read_users(
    user_type: Literal["all", "student", "donor", "admin"] = Query(
        "all", alias="userType"
    ),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    rows, total = await list_users(db, user_type, page, limit)
    return Envelope(
        data=UserList(
            users=[user_entry(kind, user) for kind, user in rows],
            pagination=Pagination.build(total, page, limit),
        )
    )


@router.put("/users/{user_id}/status", response_model=Envelope[UserListEntry])
async def update_user_status(
    user_id: int,
    data: UserStatusUpdate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    user = await set_user_status(
        db, identity.id, user_id, data.user_type, data.status, data.reason
    )
    return Envelope(
        message=f"User status updated to {data.status}",
        data=user_entry(data.user_type, user),
    )


@router.get("/students", response_model=Envelope[StudentSearchResult])
async def read_students(
    filters: StudentFilter = Depends(student_filter_params),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    """Student discovery without the public-visibility restrictions."""
    students, total = await search_students(db, filters, admin=True)
    return Envelope(
        data=StudentSearchResult(
            students=[StudentCard.from_student(s) for s in students],
            pagination=Pagination.build(total, filters.page, filters.limit),
            filters=Facets(**await student_facets(db)),
        )
    )


@router.post("/reconcile", response_model=Envelope[ReconcileReport])
async def reconcile(
    apply: bool = True,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    report = await reconcile_counters(db, apply=apply, admin_id=identity.id)
    logger.info(
        "Admin %s ran reconciliation (apply=%s): %d drifted values",
        identity.id,
        apply,
        report["driftCount"],
    )
    return Envelope(
        message="Counters reconciled" if apply else "Drift report",
        data=ReconcileReport(
            applied=report["applied"],
            checked=report["checked"],
            drift_count=report["driftCount"],
            drift=report["drift"],
        ),
    )
