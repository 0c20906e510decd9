"""Admin review of student school-enrollment verifications."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.acl import ROLE_ADMIN
from gradvillage.auth import Identity, require_role
from gradvillage.database import get_session
from gradvillage.schemas import (
    Envelope,
    Pagination,
    RejectRequest,
    VerificationList,
    VerificationRead,
    VerificationStats,
)
from gradvillage.verification import (
    approve_verification,
    delete_verification,
    get_verification,
    list_verifications,
    reject_verification,
    verification_stats,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/verification", tags=["admin-verification"])

require_admin = require_role(ROLE_ADMIN)


class ApproveRequest(BaseModel):
    notes: Optional[str] = None


def _read(verification) -> VerificationRead:
    return VerificationRead.from_verification(
        verification, student=verification.student, school=verification.school
    )


@router.get("/verifications", response_model=Envelope[VerificationList])
async def read_verifications(
    status: Optional[Literal["pending", "approved", "rejected"]] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    rows, total = await list_verifications(db, status, page, limit)
    return Envelope(
        data=VerificationList(
            verifications=[_read(v) for v in rows],
            pagination=Pagination.build(total, page, limit),
        )
    )


@router.get("/verifications/stats", response_model=Envelope[VerificationStats])
async def read_verification_stats(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    return Envelope(data=VerificationStats(**await verification_stats(db)))


@router.get("/verifications/{verification_id}", response_model=Envelope[VerificationRead])
async def read_verification(
    verification_id: int,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    return Envelope(data=_read(await get_verification(db, verification_id)))


@router.post(
    "/verifications/{verification_id}/approve",
    response_model=Envelope[VerificationRead],
)
async def approve(
    verification_id: int,
    data: Optional[ApproveRequest] = None,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    verification = await approve_verification(
        db, verification_id, identity.id, notes=data.notes if data else None
    )
    return Envelope(message="Verification approved", data=_read(verification))


@router.post(
    "/verifications/{verification_id}/reject",
    response_model=Envelope[VerificationRead],
)
async def reject(
    verification_id: int,
    data: RejectRequest,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    verification = await reject_verification(db, verification_id, identity.id, data.reason)
    return Envelope(message="Verification rejected", data=_read(verification))


@router.delete("/verifications/{verification_id}", response_model=Envelope[dict])
async def remove_verification(
    verification_id: int,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    await delete_verification(db, verification_id, identity.id)
    return Envelope(message="Verification deleted", data={"id": verification_id})
