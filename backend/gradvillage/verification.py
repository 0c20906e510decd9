"""School enrollment verification workflow.

Per student: ``not_submitted -> pending -> approved | rejected`` and
``rejected -> pending`` on resubmission.  Approval flips
``Student.verified`` in the same commit as the verification row, so a
verification can never read as approved while its student is unverified.
"""

import logging
from datetime import datetime, time

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from gradvillage.models import AdminAction, School, SchoolVerification, Student
from gradvillage.acl import (
    ACTION_APPROVE_VERIFICATION,
    ACTION_DELETE_VERIFICATION,
    ACTION_REJECT_VERIFICATION,
    VERIFICATION_APPROVED,
    VERIFICATION_PENDING,
    VERIFICATION_REJECTED,
)
from gradvillage.errors import (
    ConflictError,
    InvalidState,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

NOT_SUBMITTED = "not_submitted"


async def get_student_verification(
    db: AsyncSession, student_id: int
) -> SchoolVerification | None:
    result = await db.execute(
        select(SchoolVerification)
        .where(SchoolVerification.student_id == student_id)
        .options(selectinload(SchoolVerification.school))
    )
    return result.scalar_one_or_none()


async def submit_verification(
    db: AsyncSession,
    student_id: int,
    school_id: int,
    method: str,
    email: str | None = None,
    document: str | None = None,
) -> SchoolVerification:
    school = await db.get(School, school_id)
    if school is None:
        raise NotFoundError("School not found")
    if method not in (school.verification_methods or []):
        raise ValidationError(
            f"{school.name} does not support {method} verification",
            errors=[{"field": "verificationMethod", "message": "Unsupported method"}],
        )
    if method == "email" and school.domain and email:
        if not email.lower().endswith("@" + school.domain.lower()):
            raise ValidationError(
                f"Verification email must belong to {school.domain}",
                errors=[{"field": "verificationEmail", "message": "Wrong domain"}],
            )

    verification = await get_student_verification(db, student_id)
    now = datetime.utcnow()
    if verification is not None:
        if verification.status == VERIFICATION_PENDING:
            raise ConflictError("A verification is already pending review")
        if verification.status == VERIFICATION_APPROVED:
            raise ConflictError("Student is already verified")
        # Resubmission after a rejection reuses the row.
        verification.school_id = school_id
        verification.status = VERIFICATION_PENDING
        verification.rejection_reason = None
        verification.reviewed_by = None
        verification.verified_at = None
        verification.updated_at = now
    else:
        verification = SchoolVerification(student_id=student_id, school_id=school_id)
    verification.verification_method = method
    verification.verification_email = email
    verification.verification_document = document
    db.add(verification)
    await db.commit()
    logger.info("Student %s submitted %s verification", student_id, method)
    return await get_student_verification(db, student_id)


async def get_verification(db: AsyncSession, verification_id: int) -> SchoolVerification:
    result = await db.execute(
        select(SchoolVerification)
        .where(SchoolVerification.id == verification_id)
        .options(
            selectinload(SchoolVerification.student),
            selectinload(SchoolVerification.school),
        )
        .execution_options(populate_existing=True)
    )
    verification = result.scalar_one_or_none()
    if verification is None:
        raise NotFoundError("Verification not found")
    return verification


async def list_verifications(
    db: AsyncSession, status: str | None = None, page: int = 1, limit: int = 20
) -> tuple[list[SchoolVerification], int]:
    predicates = [SchoolVerification.status == status] if status else []
    total = (
        await db.execute(select(func.count(SchoolVerification.id)).where(*predicates))
    ).scalar_one()
    result = await db.execute(
        select(SchoolVerification)
        .where(*predicates)
        .options(
            selectinload(SchoolVerification.student),
            selectinload(SchoolVerification.school),
        )
        .order_by(SchoolVerification.created_at.desc(), SchoolVerification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return result.scalars().all(), total


async def verification_stats(db: AsyncSession) -> dict:
    result = await db.execute(
        select(SchoolVerification.status, func.count(SchoolVerification.id)).group_by(
            SchoolVerification.status
        )
    )
    counts = dict(result.all())
    start_of_day = datetime.combine(datetime.utcnow().date(), time.min)
    today = (
        await db.execute(
            select(func.count(SchoolVerification.id)).where(
                SchoolVerification.created_at >= start_of_day
            )
        )
    ).scalar_one()
    return {
        "total": sum(counts.values()),
        "today": today,
        "pending": counts.get(VERIFICATION_PENDING, 0),
        "approved": counts.get(VERIFICATION_APPROVED, 0),
        "rejected": counts.get(VERIFICATION_REJECTED, 0),
    }


def _audit(admin_id: int, action: str, verification: SchoolVerification, **details):
    return AdminAction(
        admin_id=admin_id,
        action=action,
        target_type="school_verification",
        target_id=str(verification.id),
        details={"studentId": verification.student_id, **details},
    )


async def approve_verification(
    db: AsyncSession, verification_id: int, admin_id: int, notes: str | None = None
) -> SchoolVerification:
    """Approve a pending verification and mark its student verified, atomically."""
    verification = await get_verification(db, verification_id)
    if verification.status != VERIFICATION_PENDING:
        raise InvalidState("Can only approve pending verifications")
    now = datetime.utcnow()
    try:
        verification.status = VERIFICATION_APPROVED
        verification.verified_at = now
        verification.rejection_reason = None
        verification.reviewed_by = admin_id
        verification.updated_at = now
        db.add(verification)
        result = await db.execute(
            update(Student)
            .where(Student.id == verification.student_id)
            .values(verified=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Student for this verification no longer exists")
        db.add(_audit(admin_id, ACTION_APPROVE_VERIFICATION, verification, notes=notes))
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Admin %s approved verification %s", admin_id, verification_id)
    return await get_verification(db, verification_id)


async def reject_verification(
    db: AsyncSession, verification_id: int, admin_id: int, reason: str
) -> SchoolVerification:
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required")
    verification = await get_verification(db, verification_id)
    if verification.status != VERIFICATION_PENDING:
        raise InvalidState("Can only reject pending verifications")
    verification.status = VERIFICATION_REJECTED
    verification.rejection_reason = reason.strip()
    verification.reviewed_by = admin_id
    verification.updated_at = datetime.utcnow()
    db.add(verification)
    db.add(_audit(admin_id, ACTION_REJECT_VERIFICATION, verification, reason=reason))
    await db.commit()
    logger.info("Admin %s rejected verification %s", admin_id, verification_id)
    return await get_verification(db, verification_id)


async def delete_verification(
    db: AsyncSession, verification_id: int, admin_id: int
) -> None:
    verification = await get_verification(db, verification_id)
    try:
        if verification.status == VERIFICATION_APPROVED:
            await db.execute(
                update(Student)
                .where(Student.id == verification.student_id)
                .values(verified=False)
                .execution_options(synchronize_session=False)
            )
        db.add(
            _audit(
                admin_id,
                ACTION_DELETE_VERIFICATION,
                verification,
                status=verification.status,
            )
        )
        await db.delete(verification)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Admin %s deleted verification %s", admin_id, verification_id)
