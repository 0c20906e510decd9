"""Database access helpers used by the routers.

Every function takes an ``AsyncSession`` first.  Reads return model
instances; writes commit before returning.  Nothing in here touches the
money counters (``amount_raised``, ``amount_funded``, donor totals); those
belong to :mod:`gradvillage.ledger`.

Query filters are plain dataclasses.  Each optional field maps to a
predicate function in a lookup table and the predicates that apply are
AND-ed onto the base query.
"""

import logging
from dataclasses import dataclass, fields
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import case, distinct, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from gradvillage.models import (
    Admin,
    Donation,
    Donor,
    DonorBookmark,
    RecurringDonation,
    Registry,
    School,
    Settings,
    Student,
    TaxReceipt,
    AdminAction,
)
from gradvillage.acl import (
    ACTION_UPDATE_USER_STATUS,
    DONATION_COMPLETED,
    DONATION_PENDING,
    DONATION_REGISTRATION_FEE,
    FUNDED_FUNDED,
    FUNDED_NEEDED,
    FUNDED_PARTIAL,
)
from gradvillage.errors import ConflictError, InvalidState, NotFoundError
from gradvillage.ledger import compute_fee, compute_funded_status, to_decimal

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Settings


async def get_settings(db: AsyncSession) -> Settings:
    """Return the singleton settings row, creating it on first use."""
    settings = await db.get(Settings, 1)
    if settings is None:
        settings = Settings(id=1)
        db.add(settings)
        await db.commit()
        await db.refresh(settings)
    return settings


async def save_settings(db: AsyncSession, settings: Settings) -> Settings:
    db.add(settings)
    await db.commit()
    await db.refresh(settings)
    return settings


# ---------------------------------------------------------------------------
# Accounts


async def get_by_email(db: AsyncSession, model, email: str):
    result = await db.execute(select(model).where(model.email == email.lower()))
    return result.scalar_one_or_none()


async def create_account(db: AsyncSession, account):
    """Insert a student, donor or admin; duplicate e-mails raise 409."""
    account.email = account.email.lower()
    if await get_by_email(db, type(account), account.email):
        raise ConflictError("An account with this email already exists")
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("An account with this email already exists")
    await db.refresh(account)
    return account


async def save(db: AsyncSession, obj):
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


async def count_admins(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(Admin.id)))
    return result.scalar_one()


async def touch_login(db: AsyncSession, principal) -> None:
    if isinstance(principal, Student):
        principal.last_active = datetime.utcnow()
    else:
        principal.last_login = datetime.utcnow()
    await save(db, principal)


async def get_active_student(db: AsyncSession, student_id: int) -> Student:
    student = await db.get(Student, student_id)
    if student is None or not student.is_active:
        raise NotFoundError("Student not found")
    return student


USER_MODELS = {"student": Student, "donor": Donor, "admin": Admin}


async def list_users(
    db: AsyncSession, user_type: str = "all", page: int = 1, limit: int = 20
) -> tuple[list[tuple[str, object]], int]:
    """Return ``([(user_type, row), ...], total)`` newest first."""
    offset = (page - 1) * limit
    if user_type in USER_MODELS:
        model = USER_MODELS[user_type]
        total = (await db.execute(select(func.count(model.id)))).scalar_one()
        result = await db.execute(
            select(model).order_by(model.created_at.desc()).offset(offset).limit(limit)
        )
        return [(user_type, row) for row in result.scalars().all()], total
    rows: list[tuple[str, object]] = []
    for kind, model in USER_MODELS.items():
        result = await db.execute(select(model))
        rows.extend((kind, row) for row in result.scalars().all())
    rows.sort(key=lambda pair: pair[1].created_at, reverse=True)
    return rows[offset : offset + limit], len(rows)


async def set_user_status(
    db: AsyncSession,
    admin_id: int,
    user_id: int,
    user_type: str,
    status: str,
    reason: str | None = None,
):
    model = USER_MODELS[user_type]
    user = await db.get(model, user_id)
    if user is None:
        raise NotFoundError("User not found")
    user.is_active = status == "active"
    db.add(user)
    db.add(
        AdminAction(
            admin_id=admin_id,
            action=ACTION_UPDATE_USER_STATUS,
            target_type=user_type,
            target_id=str(user_id),
            details={"status": status, "reason": reason},
        )
    )
    await db.commit()
    await db.refresh(user)
    logger.info("Admin %s set %s %s to %s", admin_id, user_type, user_id, status)
    return user


# ---------------------------------------------------------------------------
# Schools

DEFAULT_METHODS = ["email", "id_card", "transcript"]

DEFAULT_SCHOOLS = [
    ("Harvard University", "harvard.edu", DEFAULT_METHODS),
    ("Stanford University", "stanford.edu", DEFAULT_METHODS),
    ("Massachusetts Institute of Technology", "mit.edu", DEFAULT_METHODS),
    ("University of California, Berkeley", "berkeley.edu", DEFAULT_METHODS),
    ("Yale University", "yale.edu", DEFAULT_METHODS),
    ("Princeton University", "princeton.edu", DEFAULT_METHODS),
    ("Columbia University", "columbia.edu", DEFAULT_METHODS),
    ("University of Chicago", "uchicago.edu", DEFAULT_METHODS),
    ("University of Pennsylvania", "upenn.edu", DEFAULT_METHODS),
    ("New York University", "nyu.edu", DEFAULT_METHODS + ["document"]),
]


async def ensure_schools_exist(db: AsyncSession, schools=DEFAULT_SCHOOLS) -> int:
    """Insert any catalogue school that is missing; return how many were added."""
    result = await db.execute(select(School.name))
    existing = set(result.scalars().all())
    added = 0
    for name, domain, methods in schools:
        if name in existing:
            continue
        db.add(School(name=name, domain=domain, verification_methods=list(methods)))
        added += 1
    if added:
        await db.commit()
    return added


async def list_schools(db: AsyncSession) -> list[School]:
    result = await db.execute(select(School).order_by(School.name))
    return result.scalars().all()


# ---------------------------------------------------------------------------
# Student discovery


@dataclass
class StudentFilter:
    page: int = 1
    limit: int = 12
    search: Optional[str] = None
    school: Optional[str] = None
    major: Optional[str] = None
    location: Optional[str] = None
    graduation_year: Optional[str] = None
    urgency: Optional[str] = None
    funding_goal_min: Optional[float] = None
    funding_goal_max: Optional[float] = None
    verified: Optional[bool] = None
    sort_by: str = "recent"


def _contains(column, value: str):
    return column.ilike(f"%{value.strip()}%")


def _search_students(term: str):
    return or_(
        _contains(Student.first_name, term),
        _contains(Student.last_name, term),
        _contains(Student.school_name, term),
        _contains(Student.major, term),
        _contains(Student.bio, term),
    )


STUDENT_PREDICATES: dict[str, Callable] = {
    "search": _search_students,
    "school": lambda v: _contains(Student.school_name, v),
    "major": lambda v: _contains(Student.major, v),
    "location": lambda v: _contains(Student.location, v),
    "graduation_year": lambda v: Student.graduation_year == v,
    "urgency": lambda v: Student.urgency == v,
    "funding_goal_min": lambda v: Student.funding_goal >= v,
    "funding_goal_max": lambda v: Student.funding_goal <= v,
    "verified": lambda v: Student.verified == v,
}

STUDENT_SORTS = {
    "recent": [Student.last_active.desc()],
    "name": [Student.first_name.asc(), Student.last_name.asc()],
    "goal-asc": [Student.funding_goal.asc()],
    "goal-desc": [Student.funding_goal.desc()],
    "progress": [Student.amount_raised.desc(), Student.funding_goal.asc()],
}


def student_base_predicates(admin: bool = False) -> list:
    """Donors only see verified students; admins see unverified ones too."""
    predicates = [Student.is_active == True, Student.public_profile == True]  # noqa: E712
    if not admin:
        predicates.append(Student.verified == True)  # noqa: E712
    return predicates


def build_predicates(filters, table: dict[str, Callable]) -> list:
    predicates = []
    for field in fields(filters):
        value = getattr(filters, field.name)
        if field.name in table and value not in (None, ""):
            predicates.append(table[field.name](value))
    return predicates


async def search_students(
    db: AsyncSession, filters: StudentFilter, admin: bool = False
) -> tuple[list[Student], int]:
    predicates = student_base_predicates(admin) + build_predicates(
        filters, STUDENT_PREDICATES
    )
    total = (
        await db.execute(select(func.count(Student.id)).where(*predicates))
    ).scalar_one()
    order = STUDENT_SORTS.get(filters.sort_by, STUDENT_SORTS["recent"])
    result = await db.execute(
        select(Student)
        .where(*predicates)
        .order_by(*order, Student.id)
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    )
    return result.scalars().all(), total


async def _distinct_values(db: AsyncSession, column, predicates, limit=None) -> list[str]:
    stmt = select(distinct(column)).where(*predicates).order_by(column)
    if limit:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return [value for value in result.scalars().all() if value and value.strip()]


async def student_facets(db: AsyncSession) -> dict[str, list[str]]:
    base = [Student.is_active == True, Student.public_profile == True]  # noqa: E712
    return {
        "schools": await _distinct_values(db, Student.school_name, base),
        "majors": await _distinct_values(db, Student.major, base),
        "locations": await _distinct_values(db, Student.location, base),
    }


async def search_suggestions(db: AsyncSession, query: str) -> dict[str, list[str]]:
    base = student_base_predicates()
    return {
        "schools": await _distinct_values(
            db, Student.school_name, base + [_contains(Student.school_name, query)], 10
        ),
        "majors": await _distinct_values(
            db, Student.major, base + [_contains(Student.major, query)], 10
        ),
        "locations": await _distinct_values(
            db, Student.location, base + [_contains(Student.location, query)], 10
        ),
    }


async def get_discoverable_student(db: AsyncSession, student_id: int) -> Student:
    result = await db.execute(
        select(Student).where(Student.id == student_id, *student_base_predicates())
    )
    student = result.scalar_one_or_none()
    if student is None:
        raise NotFoundError("Student not found")
    return student


PRIORITY_ORDER = case(
    (Registry.priority == "high", 0),
    (Registry.priority == "medium", 1),
    else_=2,
)


async def student_detail(db: AsyncSession, student_id: int) -> dict:
    """Gather what a donor sees on a student's page."""
    student = await get_discoverable_student(db, student_id)
    items = (
        await db.execute(
            select(Registry)
            .where(
                Registry.student_id == student_id,
                Registry.funded_status.in_([FUNDED_NEEDED, FUNDED_PARTIAL]),
            )
            .order_by(PRIORITY_ORDER, Registry.created_at.desc())
            .limit(5)
        )
    ).scalars().all()
    recent = (
        await db.execute(
            select(Donation)
            .where(
                Donation.student_id == student_id,
                Donation.status == DONATION_COMPLETED,
                Donation.allow_public_display == True,  # noqa: E712
            )
            .order_by(Donation.created_at.desc())
            .limit(3)
        )
    ).scalars().all()
    completed = [
        Donation.student_id == student_id,
        Donation.status == DONATION_COMPLETED,
    ]
    donor_count, average = (
        await db.execute(
            select(
                func.count(distinct(Donation.donor_email)),
                func.coalesce(func.avg(Donation.amount), 0),
            ).where(*completed)
        )
    ).one()
    items_funded = (
        await db.execute(
            select(func.count(Registry.id)).where(
                Registry.student_id == student_id,
                Registry.funded_status == FUNDED_FUNDED,
            )
        )
    ).scalar_one()
    return {
        "student": student,
        "items": items,
        "recent": recent,
        "donor_count": donor_count,
        "average_donation": float(to_decimal(average)),
        "items_funded": items_funded,
    }


def public_donor_name(donation: Donation) -> str:
    if donation.is_anonymous:
        return "Anonymous"
    name = " ".join(
        part for part in (donation.donor_first_name, donation.donor_last_name) if part
    )
    return name or "Anonymous"


# ---------------------------------------------------------------------------
# Public profiles

PROFILE_COMPLETION_FIELDS = ("first_name", "last_name", "school_name", "major", "bio")


async def profile_url_taken(
    db: AsyncSession, profile_url: str, exclude_student_id: int | None = None
) -> bool:
    predicates = [Student.profile_url == profile_url]
    if exclude_student_id is not None:
        predicates.append(Student.id != exclude_student_id)
    result = await db.execute(select(func.count(Student.id)).where(*predicates))
    return result.scalar_one() > 0


def profile_completion(student: Student) -> int:
    filled = sum(
        1 for field in PROFILE_COMPLETION_FIELDS if getattr(student, field) not in (None, "")
    )
    return round(filled / len(PROFILE_COMPLETION_FIELDS) * 100)


async def update_student_profile(db: AsyncSession, student: Student, changes: dict) -> Student:
    """Apply profile edits; a profile URL may belong to one student only."""
    url = changes.get("profile_url")
    if url and await profile_url_taken(db, url, exclude_student_id=student.id):
        raise ConflictError("Profile URL is already taken")
    for field, value in changes.items():
        setattr(student, field, value)
    db.add(student)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Profile URL is already taken")
    await db.refresh(student)
    return student


async def get_public_profile(db: AsyncSession, profile_url: str) -> dict:
    """Look up a discoverable student by vanity URL with their items and counts."""
    student = (
        await db.execute(
            select(Student).where(
                Student.profile_url == profile_url, *student_base_predicates()
            )
        )
    ).scalar_one_or_none()
    if student is None:
        raise NotFoundError("Profile not found")
    items = await list_student_registry(db, student.id)
    # Registration fees are paid by the student, not given to them.
    donation_count = (
        await db.execute(
            select(func.count(Donation.id)).where(
                Donation.student_id == student.id,
                Donation.status == DONATION_COMPLETED,
                Donation.donation_type != DONATION_REGISTRATION_FEE,
            )
        )
    ).scalar_one()
    return {
        "student": student,
        "items": items,
        "donation_count": donation_count,
        "profile_completion": profile_completion(student),
    }


# ---------------------------------------------------------------------------
# Registry


async def list_student_registry(db: AsyncSession, student_id: int) -> list[Registry]:
    result = await db.execute(
        select(Registry)
        .where(Registry.student_id == student_id)
        .order_by(PRIORITY_ORDER, Registry.created_at.desc())
    )
    return result.scalars().all()


async def get_owned_registry(
    db: AsyncSession, student_id: int, registry_id: int
) -> Registry:
    registry = await db.get(Registry, registry_id)
    if registry is None or registry.student_id != student_id:
        raise NotFoundError("Registry item not found")
    return registry


async def create_registry(db: AsyncSession, student_id: int, data: dict) -> Registry:
    registry = Registry(student_id=student_id, **data)
    registry.price = to_decimal(registry.price)
    return await save(db, registry)


async def update_registry(db: AsyncSession, registry: Registry, data: dict) -> Registry:
    for field, value in data.items():
        setattr(registry, field, value)
    if "price" in data:
        registry.price = to_decimal(data["price"])
        registry.funded_status = compute_funded_status(
            registry.amount_funded, registry.price
        )
    registry.updated_at = datetime.utcnow()
    return await save(db, registry)


async def delete_registry(db: AsyncSession, registry: Registry) -> None:
    if registry.funded_status == FUNDED_FUNDED:
        raise InvalidState("Funded items cannot be deleted")
    await db.delete(registry)
    await db.commit()


@dataclass
class AvailableItemsFilter:
    page: int = 1
    limit: int = 12
    student_id: Optional[int] = None
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sort_by: str = "priority"


ITEM_PREDICATES: dict[str, Callable] = {
    "student_id": lambda v: Registry.student_id == v,
    "category": lambda v: Registry.category == v,
    "min_price": lambda v: Registry.price >= v,
    "max_price": lambda v: Registry.price <= v,
}

ITEM_SORTS = {
    "priority": [PRIORITY_ORDER, Registry.created_at.desc()],
    "price-asc": [Registry.price.asc()],
    "price-desc": [Registry.price.desc()],
    "recent": [Registry.created_at.desc()],
}


async def list_available_items(
    db: AsyncSession, filters: AvailableItemsFilter
) -> tuple[list[tuple[Registry, Student]], int]:
    predicates = [
        Registry.funded_status.in_([FUNDED_NEEDED, FUNDED_PARTIAL]),
        *student_base_predicates(),
        *build_predicates(filters, ITEM_PREDICATES),
    ]
    joined = select(Registry, Student).join(Student, Student.id == Registry.student_id)
    total = (
        await db.execute(
            select(func.count(Registry.id))
            .join(Student, Student.id == Registry.student_id)
            .where(*predicates)
        )
    ).scalar_one()
    order = ITEM_SORTS.get(filters.sort_by, ITEM_SORTS["priority"])
    result = await db.execute(
        joined.where(*predicates)
        .order_by(*order, Registry.id)
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    )
    return result.all(), total


async def list_sponsored_items(db: AsyncSession, donor_id: int) -> list[dict]:
    """Registry items the donor has funded, grouped with their contributions."""
    result = await db.execute(
        select(Donation, Registry, Student)
        .join(Registry, Registry.id == Donation.target_registry_id)
        .join(Student, Student.id == Donation.student_id)
        .where(
            Donation.donor_id == donor_id,
            Donation.donation_type == "item",
            Donation.status == DONATION_COMPLETED,
        )
        .order_by(Donation.created_at.desc())
    )
    grouped: dict[int, dict] = {}
    for donation, registry, student in result.all():
        entry = grouped.setdefault(
            registry.id,
            {"item": registry, "student": student, "total": 0, "contributions": []},
        )
        entry["total"] += to_decimal(donation.amount)
        entry["contributions"].append(donation)
    return list(grouped.values())


# ---------------------------------------------------------------------------
# Bookmarks


async def list_bookmarks(db: AsyncSession, donor_id: int) -> list[DonorBookmark]:
    result = await db.execute(
        select(DonorBookmark)
        .join(Student, Student.id == DonorBookmark.student_id)
        .where(
            DonorBookmark.donor_id == donor_id,
            Student.is_active == True,  # noqa: E712
            Student.public_profile == True,  # noqa: E712
        )
        .options(selectinload(DonorBookmark.student))
        .order_by(DonorBookmark.bookmarked_at.desc())
    )
    return result.scalars().all()


async def get_bookmark(db: AsyncSession, donor_id: int, bookmark_id: int) -> DonorBookmark:
    result = await db.execute(
        select(DonorBookmark)
        .where(DonorBookmark.id == bookmark_id, DonorBookmark.donor_id == donor_id)
        .options(selectinload(DonorBookmark.student))
    )
    bookmark = result.scalar_one_or_none()
    if bookmark is None:
        raise NotFoundError("Bookmark not found")
    return bookmark


async def find_bookmark(
    db: AsyncSession, donor_id: int, student_id: int
) -> DonorBookmark | None:
    result = await db.execute(
        select(DonorBookmark).where(
            DonorBookmark.donor_id == donor_id,
            DonorBookmark.student_id == student_id,
        )
    )
    return result.scalar_one_or_none()


async def create_bookmark(
    db: AsyncSession, donor_id: int, student_id: int, notes: str | None = None
) -> DonorBookmark:
    student = await db.get(Student, student_id)
    if student is None or not student.is_active or not student.public_profile:
        raise NotFoundError("Student not found or not available")
    if await find_bookmark(db, donor_id, student_id):
        raise ConflictError("Student is already bookmarked")
    bookmark = DonorBookmark(donor_id=donor_id, student_id=student_id, notes=notes)
    db.add(bookmark)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Student is already bookmarked")
    return await get_bookmark(db, donor_id, bookmark.id)


async def delete_bookmark(db: AsyncSession, bookmark: DonorBookmark) -> None:
    await db.delete(bookmark)
    await db.commit()


# ---------------------------------------------------------------------------
# Donations


async def create_donation(db: AsyncSession, donation: Donation) -> Donation:
    """Validate and insert a pending donation."""
    await get_active_student(db, donation.student_id)
    if donation.target_registry_id is not None:
        registry = await db.get(Registry, donation.target_registry_id)
        if registry is None or registry.student_id != donation.student_id:
            raise NotFoundError("Registry item not found")
        if registry.funded_status == FUNDED_FUNDED:
            raise ConflictError("Item is already fully funded")
    settings = await get_settings(db)
    donation.amount = to_decimal(donation.amount)
    donation.transaction_fee, donation.net_amount = compute_fee(
        donation.amount, settings.processing_fee_percentage
    )
    donation.status = DONATION_PENDING
    return await save(db, donation)


async def get_donation(db: AsyncSession, donation_id: int) -> Donation:
    result = await db.execute(
        select(Donation)
        .where(Donation.id == donation_id)
        .options(
            selectinload(Donation.tax_receipt),
            selectinload(Donation.student),
            selectinload(Donation.target_registry),
        )
        .execution_options(populate_existing=True)
    )
    donation = result.scalar_one_or_none()
    if donation is None:
        raise NotFoundError("Donation not found")
    return donation


async def get_receipt(db: AsyncSession, receipt_number: str) -> TaxReceipt:
    result = await db.execute(
        select(TaxReceipt)
        .where(TaxReceipt.receipt_number == receipt_number)
        .options(
            selectinload(TaxReceipt.donation).selectinload(Donation.student)
        )
    )
    receipt = result.scalar_one_or_none()
    if receipt is None:
        raise NotFoundError("Receipt not found")
    return receipt


DONATION_LOAD = (
    selectinload(Donation.tax_receipt),
    selectinload(Donation.student),
    selectinload(Donation.target_registry),
)


@dataclass
class DonationHistoryFilter:
    page: int = 1
    limit: int = 20
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    student_id: Optional[int] = None
    donation_type: Optional[str] = None
    status: Optional[str] = None
    recurring: Optional[bool] = None
    sort_by: str = "date"
    sort_order: str = "desc"


DONATION_PREDICATES: dict[str, Callable] = {
    "start_date": lambda v: Donation.created_at >= v,
    "end_date": lambda v: Donation.created_at <= v,
    "student_id": lambda v: Donation.student_id == v,
    "donation_type": lambda v: Donation.donation_type == v,
    "status": lambda v: Donation.status == v,
    "recurring": lambda v: Donation.is_recurring == v,
}

HISTORY_SORTS = {
    "date": Donation.created_at,
    "amount": Donation.amount,
    "student": Student.first_name,
}


async def donation_history(
    db: AsyncSession, donor_id: int, filters: DonationHistoryFilter
) -> tuple[list[Donation], int]:
    predicates = [Donation.donor_id == donor_id] + build_predicates(
        filters, DONATION_PREDICATES
    )
    total = (
        await db.execute(select(func.count(Donation.id)).where(*predicates))
    ).scalar_one()
    column = HISTORY_SORTS.get(filters.sort_by, Donation.created_at)
    order = column.asc() if filters.sort_order == "asc" else column.desc()
    result = await db.execute(
        select(Donation)
        .join(Student, Student.id == Donation.student_id)
        .where(*predicates)
        .options(*DONATION_LOAD)
        .order_by(order, Donation.id.desc())
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    )
    return result.scalars().all(), total


async def donation_summary(db: AsyncSession, donor_id: int) -> dict:
    total, count = (
        await db.execute(
            select(
                func.coalesce(func.sum(Donation.amount), 0), func.count(Donation.id)
            ).where(
                Donation.donor_id == donor_id,
                Donation.status == DONATION_COMPLETED,
            )
        )
    ).one()
    active = (
        await db.execute(
            select(func.count(RecurringDonation.id)).where(
                RecurringDonation.donor_id == donor_id,
                RecurringDonation.active == True,  # noqa: E712
            )
        )
    ).scalar_one()
    return {
        "total_amount": float(to_decimal(total)),
        "total_donations": count,
        "active_recurring": active,
    }


async def donations_for_export(
    db: AsyncSession,
    donor_id: int,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[Donation]:
    """Completed donations of a donor, newest first, fully loaded."""
    predicates = [
        Donation.donor_id == donor_id,
        Donation.status == DONATION_COMPLETED,
    ]
    if start_date:
        predicates.append(Donation.created_at >= start_date)
    if end_date:
        predicates.append(Donation.created_at <= end_date)
    result = await db.execute(
        select(Donation)
        .where(*predicates)
        .options(*DONATION_LOAD)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
    )
    return result.scalars().all()


@dataclass
class DonationAdminFilter:
    status: Optional[str] = None
    payment_method: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    search: Optional[str] = None
    limit: int = 50
    offset: int = 0


def _search_donations(term: str):
    return or_(
        _contains(Donation.donor_email, term),
        _contains(Donation.donor_first_name, term),
        _contains(Donation.donor_last_name, term),
        _contains(TaxReceipt.receipt_number, term),
    )


ADMIN_DONATION_PREDICATES: dict[str, Callable] = {
    "status": lambda v: Donation.status == v,
    "payment_method": lambda v: Donation.payment_method == v,
    "start_date": lambda v: Donation.created_at >= v,
    "end_date": lambda v: Donation.created_at <= v,
    "min_amount": lambda v: Donation.amount >= v,
    "max_amount": lambda v: Donation.amount <= v,
    "search": _search_donations,
}


async def admin_list_donations(
    db: AsyncSession, filters: DonationAdminFilter
) -> tuple[list[Donation], int]:
    predicates = build_predicates(filters, ADMIN_DONATION_PREDICATES)
    total = (
        await db.execute(
            select(func.count(Donation.id))
            .outerjoin(TaxReceipt, TaxReceipt.donation_id == Donation.id)
            .where(*predicates)
        )
    ).scalar_one()
    result = await db.execute(
        select(Donation)
        .outerjoin(TaxReceipt, TaxReceipt.donation_id == Donation.id)
        .where(*predicates)
        .options(*DONATION_LOAD)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
        .offset(filters.offset)
        .limit(filters.limit)
    )
    return result.scalars().all(), total


async def admin_export_donations(
    db: AsyncSession,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    status: str | None = None,
) -> list[Donation]:
    filters = DonationAdminFilter(start_date=start_date, end_date=end_date, status=status)
    result = await db.execute(
        select(Donation)
        .where(*build_predicates(filters, ADMIN_DONATION_PREDICATES))
        .options(*DONATION_LOAD)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
    )
    return result.scalars().all()


# ---------------------------------------------------------------------------
# Recurring donations

FREQUENCY_DAYS = {"weekly": 7, "monthly": 30, "quarterly": 90, "yearly": 365}


def next_payment_after(start: date, frequency: str) -> date:
    return start + timedelta(days=FREQUENCY_DAYS[frequency])


async def create_recurring(
    db: AsyncSession, donor_id: int, student_id: int, amount, frequency: str
) -> RecurringDonation:
    await get_active_student(db, student_id)
    recurring = RecurringDonation(
        donor_id=donor_id,
        student_id=student_id,
        amount=to_decimal(amount),
        frequency=frequency,
        next_payment_date=next_payment_after(date.today(), frequency),
    )
    return await save(db, recurring)


async def list_recurring(db: AsyncSession, donor_id: int) -> list[RecurringDonation]:
    result = await db.execute(
        select(RecurringDonation)
        .where(RecurringDonation.donor_id == donor_id)
        .order_by(RecurringDonation.created_at.desc(), RecurringDonation.id.desc())
    )
    return result.scalars().all()


async def get_recurring(
    db: AsyncSession, donor_id: int, recurring_id: int
) -> RecurringDonation:
    recurring = await db.get(RecurringDonation, recurring_id)
    if recurring is None or recurring.donor_id != donor_id:
        raise NotFoundError("Recurring donation not found")
    return recurring


async def update_recurring(
    db: AsyncSession, recurring: RecurringDonation, data: dict
) -> RecurringDonation:
    if "amount" in data and data["amount"] is not None:
        recurring.amount = to_decimal(data["amount"])
    if data.get("frequency"):
        recurring.frequency = data["frequency"]
        recurring.next_payment_date = next_payment_after(date.today(), data["frequency"])
    if data.get("active") is not None:
        if recurring.active and not data["active"]:
            recurring.cancelled_at = datetime.utcnow()
        elif not recurring.active and data["active"]:
            recurring.cancelled_at = None
        recurring.active = data["active"]
    return await save(db, recurring)
