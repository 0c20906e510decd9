"""Student-facing endpoints: profile, wish-list registry and verification."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.acl import ROLE_STUDENT
from gradvillage.analytics import student_profile_stats
from gradvillage.auth import Identity, require_role
from gradvillage.crud import (
    StudentFilter,
    create_registry,
    delete_registry,
    get_owned_registry,
    get_public_profile,
    list_schools,
    list_student_registry,
    profile_url_taken,
    search_students,
    student_facets,
    update_registry,
    update_student_profile,
)
from gradvillage.database import get_session
from gradvillage.ledger import compute_progress_percentage
from gradvillage.models import Student
from gradvillage.routes.filters import student_filter_params
from gradvillage.schemas import (
    Envelope,
    Facets,
    Pagination,
    PublicProfile,
    PublicProfileStats,
    RegistryCreate,
    RegistryRead,
    RegistryUpdate,
    SchoolRead,
    StudentCard,
    StudentProfileStats,
    StudentRead,
    StudentSearchResult,
    StudentUpdate,
    UrlAvailability,
    VerificationRead,
    VerificationStatus,
    VerificationSubmit,
)
from gradvillage.schemas.student import PROFILE_URL_PATTERN
from gradvillage.verification import (
    NOT_SUBMITTED,
    get_student_verification,
    submit_verification,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/students", tags=["students"])

require_student = require_role(ROLE_STUDENT)


@router.get("/public", response_model=Envelope[StudentSearchResult])
async def public_students(
    filters: StudentFilter = Depends(student_filter_params),
    db: AsyncSession = Depends(get_session),
):
    """Anonymous browse over the same students donors can discover."""
    students, total = await search_students(db, filters)
    return Envelope(
        data=StudentSearchResult(
            students=[StudentCard.from_student(s) for s in students],
            pagination=Pagination.build(total, filters.page, filters.limit),
            filters=Facets(**await student_facets(db)),
        )
    )


@router.get("/public/{profile_url}", response_model=Envelope[PublicProfile])
async def public_profile(profile_url: str, db: AsyncSession = Depends(get_session)):
    """Vanity-URL page; only verified, active, public students resolve."""
    profile = await get_public_profile(db, profile_url)
    student = profile["student"]
    return Envelope(
        data=PublicProfile(
            student=StudentCard.from_student(student),
            registry_items=[RegistryRead.model_validate(i) for i in profile["items"]],
            stats=PublicProfileStats(
                total_donations=profile["donation_count"],
                total_registry_items=len(profile["items"]),
                funding_progress=compute_progress_percentage(
                    student.amount_raised, student.funding_goal
                ),
            ),
            profile_completion=profile["profile_completion"],
        )
    )


@router.get("/check-url/{url}", response_model=Envelope[UrlAvailability])
async def check_profile_url(
    url: str = Path(..., max_length=100, pattern=PROFILE_URL_PATTERN),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    taken = await profile_url_taken(db, url, exclude_student_id=identity.id)
    return Envelope(
        data=UrlAvailability(
            url=url,
            available=not taken,
            message="URL is already taken" if taken else "URL is available",
        )
    )


@router.get("/profile", response_model=Envelope[StudentRead])
async def read_profile(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    student = await db.get(Student, identity.id)
    return Envelope(data=StudentRead.from_student(student))


@router.put("/profile", response_model=Envelope[StudentRead])
async def update_profile(
    data: StudentUpdate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    # StudentUpdate has no money fields; amount_raised only moves via the ledger.
    student = await db.get(Student, identity.id)
    student = await update_student_profile(
        db, student, data.model_dump(exclude_unset=True)
    )
    logger.info("Student %s updated profile", identity.id)
    return Envelope(message="Profile updated", data=StudentRead.from_student(student))


@router.get("/profile/stats", response_model=Envelope[StudentProfileStats])
async def read_profile_stats(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    stats = await student_profile_stats(db, identity.id)
    return Envelope(data=StudentProfileStats.model_validate(stats))


@router.get("/registry", response_model=Envelope[List[RegistryRead]])
async def read_registry(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    items = await list_student_registry(db, identity.id)
    return Envelope(data=[RegistryRead.model_validate(i) for i in items])


@router.post(
    "/registry",
    response_model=Envelope[RegistryRead],
    status_code=status.HTTP_201_CREATED,
)
async def add_registry_item(
    data: RegistryCreate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    registry = await create_registry(db, identity.id, data.model_dump())
    logger.info("Student %s added registry item %s", identity.id, registry.id)
    return Envelope(message="Item added", data=RegistryRead.model_validate(registry))


@router.put("/registry/{registry_id}", response_model=Envelope[RegistryRead])
async def edit_registry_item(
    registry_id: int,
    data: RegistryUpdate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    registry = await get_owned_registry(db, identity.id, registry_id)
    registry = await update_registry(db, registry, data.model_dump(exclude_unset=True))
    return Envelope(message="Item updated", data=RegistryRead.model_validate(registry))


@router.delete("/registry/{registry_id}", response_model=Envelope[dict])
async def remove_registry_item(
    registry_id: int,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    registry = await get_owned_registry(db, identity.id, registry_id)
    await delete_registry(db, registry)
    logger.info("Student %s deleted registry item %s", identity.id, registry_id)
    return Envelope(message="Item deleted", data={"id": registry_id})


# ---------------------------------------------------------------------------
# School verification


@router.get("/verification/schools", response_model=Envelope[List[SchoolRead]])
async def verification_schools(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    schools = await list_schools(db)
    return Envelope(data=[SchoolRead.model_validate(s) for s in schools])


@router.get("/verification/status", response_model=Envelope[VerificationStatus])
async def verification_status(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    student = await db.get(Student, identity.id)
    verification = await get_student_verification(db, identity.id)
    if verification is None:
        return Envelope(
            data=VerificationStatus(status=NOT_SUBMITTED, verified=student.verified)
        )
    return Envelope(
        data=VerificationStatus(
            status=verification.status,
            verified=student.verified,
            verification=VerificationRead.from_verification(
                verification, school=verification.school
            ),
        )
    )


@router.post(
    "/verification",
    response_model=Envelope[VerificationRead],
    status_code=status.HTTP_201_CREATED,
)
async def submit_school_verification(
    data: VerificationSubmit,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_student),
):
    verification = await submit_verification(
        db,
        identity.id,
        data.school_id,
        data.verification_method,
        email=data.verification_email,
        document=data.verification_document,
    )
    return Envelope(
        message="Verification submitted",
        data=VerificationRead.from_verification(verification, school=verification.school),
    )
