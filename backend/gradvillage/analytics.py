"""Aggregate queries behind the dashboards and the admin console.

Everything is computed fresh per request.  Only completed donations count
toward revenue figures.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import distinct, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from gradvillage.models import (
    Admin,
    Donation,
    Donor,
    RecurringDonation,
    Registry,
    SchoolVerification,
    Student,
)
from gradvillage.acl import (
    DONATION_COMPLETED,
    DONATION_FAILED,
    DONATION_PENDING,
    DONATION_REGISTRATION_FEE,
    FUNDED_FUNDED,
    REGISTRATION_COMPLETED,
    VERIFICATION_PENDING,
)
from gradvillage.errors import NotFoundError, ValidationError
from gradvillage.ledger import (
    community_rank,
    compute_progress_percentage,
    percent_change,
    to_decimal,
)

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30, "quarter": 90, "year": 365}


def _money(value) -> float:
    return float(to_decimal(value))


def _month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def donor_dashboard(db: AsyncSession, donor_id: int, now: datetime | None = None) -> dict:
    """Overview, month-over-month giving and impact figures for one donor."""
    donor = await db.get(Donor, donor_id)
    if donor is None:
        raise NotFoundError("Donor not found")
    now = now or datetime.utcnow()
    this_month = _month_start(now)
    last_month = _month_start(this_month - timedelta(days=1))
    giving = [
        Donation.donor_id == donor_id,
        Donation.status == DONATION_COMPLETED,
        Donation.donation_type != DONATION_REGISTRATION_FEE,
    ]

    async def month_total(start, end):
        result = await db.execute(
            select(func.coalesce(func.sum(Donation.amount), 0)).where(
                *giving, Donation.created_at >= start, Donation.created_at < end
            )
        )
        return _money(result.scalar_one())

    this_month_amount = await month_total(this_month, now + timedelta(seconds=1))
    last_month_amount = await month_total(last_month, this_month)

    recurring = (
        await db.execute(
            select(func.count(RecurringDonation.id)).where(
                RecurringDonation.donor_id == donor_id,
                RecurringDonation.active == True,  # noqa: E712
            )
        )
    ).scalar_one()

    recent = (
        await db.execute(
            select(Donation)
            .where(*giving)
            .options(selectinload(Donation.student))
            .order_by(Donation.created_at.desc())
            .limit(5)
        )
    ).scalars().all()

    supported = (
        await db.execute(
            select(Student)
            .where(
                Student.id.in_(select(distinct(Donation.student_id)).where(*giving))
            )
        )
    ).scalars().all()
    current_year = now.year
    graduated = sum(
        1
        for student in supported
        if (student.graduation_year or "0").isdigit()
        and int(student.graduation_year) <= current_year
        and student.registration_status == REGISTRATION_COMPLETED
    )

    items_funded = (
        await db.execute(
            select(func.count(distinct(Donation.target_registry_id))).where(
                *giving, Donation.target_registry_id.is_not(None)
            )
        )
    ).scalar_one()

    all_totals = (await db.execute(select(Donor.total_donated))).scalars().all()

    return {
        "overview": {
            "total_donated": _money(donor.total_donated),
            "students_supported": donor.students_supported,
            "recurring_donations": recurring,
            "impact_score": _money(donor.impact_score),
        },
        "monthly_stats": {
            "this_month": this_month_amount,
            "last_month": last_month_amount,
            "percent_change": percent_change(this_month_amount, last_month_amount),
        },
        "impact_metrics": {
            "students_helped": donor.students_supported,
            "students_graduated": graduated,
            "items_funded": items_funded,
            "community_rank": community_rank(donor.total_donated, all_totals),
        },
        "recent_activity": [
            {
                "id": donation.id,
                "amount": _money(donation.amount),
                "student_name": f"{donation.student.first_name} {donation.student.last_name}",
                "student_photo": donation.student.profile_photo,
                "date": donation.created_at,
                "message": donation.donor_message,
            }
            for donation in recent
        ],
    }


def _months_back(moment: datetime, count: int) -> list[datetime]:
    """First day of the ``count`` months ending with ``moment``'s, oldest first."""
    starts = [_month_start(moment)]
    while len(starts) < count:
        starts.append(_month_start(starts[-1] - timedelta(days=1)))
    return list(reversed(starts))


async def student_profile_stats(
    db: AsyncSession, student_id: int, now: datetime | None = None
) -> dict:
    """Funding overview, giving totals, registry roll-up and a 12 month trend."""
    student = await db.get(Student, student_id)
    if student is None:
        raise NotFoundError("Student not found")
    now = now or datetime.utcnow()
    completed = [
        Donation.student_id == student_id,
        Donation.status == DONATION_COMPLETED,
    ]

    count, total = (
        await db.execute(
            select(
                func.count(Donation.id), func.coalesce(func.sum(Donation.amount), 0)
            ).where(*completed)
        )
    ).one()
    pending = (
        await db.execute(
            select(func.count(Donation.id)).where(
                Donation.student_id == student_id,
                Donation.status == DONATION_PENDING,
            )
        )
    ).scalar_one()

    items = (
        await db.execute(select(Registry).where(Registry.student_id == student_id))
    ).scalars().all()
    total_value = sum((to_decimal(i.price) for i in items), to_decimal(0))
    total_funded = sum((to_decimal(i.amount_funded) for i in items), to_decimal(0))
    by_category: dict[str, int] = {}
    for item in items:
        by_category[item.category] = by_category.get(item.category, 0) + 1

    months = _months_back(now, 12)
    buckets = {start: [0, to_decimal(0)] for start in months}
    rows = (
        await db.execute(
            select(Donation.created_at, Donation.amount).where(
                *completed, Donation.created_at >= months[0]
            )
        )
    ).all()
    for created_at, amount in rows:
        bucket = buckets.get(_month_start(created_at))
        if bucket is not None:
            bucket[0] += 1
            bucket[1] += to_decimal(amount)

    total = to_decimal(total)
    return {
        "overview": {
            "funding_goal": _money(student.funding_goal),
            "amount_raised": _money(student.amount_raised),
            "funding_progress": compute_progress_percentage(
                student.amount_raised, student.funding_goal
            ),
            "member_since": student.created_at,
        },
        "donations": {
            "total": _money(total),
            "count": count,
            "average": _money(total / count) if count else 0.0,
            "pending": pending,
        },
        "registry": {
            "total_items": len(items),
            "total_value": _money(total_value),
            "total_funded": _money(total_funded),
            "fully_funded_items": sum(1 for i in items if i.funded_status == FUNDED_FUNDED),
            "funding_progress": compute_progress_percentage(total_funded, total_value),
            "by_category": by_category,
        },
        "trends": {
            "monthly": [
                {
                    "month": start.strftime("%Y-%m"),
                    "count": buckets[start][0],
                    "amount": _money(buckets[start][1]),
                }
                for start in months
            ]
        },
    }


def analytics_window(
    period: str = "month",
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    now: datetime | None = None,
) -> list:
    """Translate the requested period into ``created_at`` predicates.

    Explicit dates win over ``period``; either bound may be given alone.
    """
    if start_date and end_date and start_date > end_date:
        raise ValidationError("startDate must be before endDate")
    if start_date or end_date:
        window = []
        if start_date:
            window.append(Donation.created_at >= start_date)
        if end_date:
            window.append(Donation.created_at <= end_date)
        return window
    if period not in PERIOD_DAYS:
        raise ValidationError(f"Unknown period {period}")
    now = now or datetime.utcnow()
    return [Donation.created_at >= now - timedelta(days=PERIOD_DAYS[period])]


async def donation_analytics(db: AsyncSession, window: list) -> dict:
    completed = [*window, Donation.status == DONATION_COMPLETED]

    total_count = (
        await db.execute(
            select(func.count(Donation.id)).where(
                *window, Donation.status != DONATION_FAILED
            )
        )
    ).scalar_one()
    completed_count, total_amount, avg_amount = (
        await db.execute(
            select(
                func.count(Donation.id),
                func.coalesce(func.sum(Donation.amount), 0),
                func.coalesce(func.avg(Donation.amount), 0),
            ).where(*completed)
        )
    ).one()

    async def breakdown(column):
        result = await db.execute(
            select(column, func.count(Donation.id), func.sum(Donation.amount))
            .where(*completed)
            .group_by(column)
            .order_by(column)
        )
        return [
            {"key": key, "count": count, "amount": _money(amount)}
            for key, count, amount in result.all()
        ]

    recent = (
        await db.execute(
            select(Donation)
            .where(*completed)
            .options(selectinload(Donation.student))
            .order_by(Donation.created_at.desc())
            .limit(10)
        )
    ).scalars().all()

    amount_sum = func.sum(Donation.amount)
    top_students = (
        await db.execute(
            select(
                Student.id,
                Student.first_name,
                Student.last_name,
                Student.school_name,
                func.count(Donation.id),
                amount_sum,
            )
            .select_from(Donation)
            .join(Student, Student.id == Donation.student_id)
            .where(*completed)
            .group_by(Student.id, Student.first_name, Student.last_name, Student.school_name)
            .order_by(amount_sum.desc())
            .limit(10)
        )
    ).all()

    day = func.date(Donation.created_at)
    trend = (
        await db.execute(
            select(day, func.count(Donation.id), amount_sum)
            .where(*completed)
            .group_by(day)
            .order_by(day.desc())
            .limit(30)
        )
    ).all()

    top_donors = (
        await db.execute(
            select(Donation.donor_email, func.count(Donation.id), amount_sum)
            .where(*completed, Donation.donor_email.is_not(None))
            .group_by(Donation.donor_email)
            .order_by(amount_sum.desc())
            .limit(10)
        )
    ).all()

    return {
        "summary": {
            "totalDonations": total_count,
            "completedDonations": completed_count,
            "totalAmount": _money(total_amount),
            "avgDonation": _money(avg_amount),
            "successRate": round(completed_count / total_count * 100, 2)
            if total_count
            else 0,
        },
        "breakdowns": {
            "byPaymentMethod": await breakdown(Donation.payment_method),
            "byDonationType": await breakdown(Donation.donation_type),
        },
        "insights": {
            "recentDonations": [
                {
                    "id": d.id,
                    "amount": _money(d.amount),
                    "studentName": f"{d.student.first_name} {d.student.last_name}",
                    "donorName": "Anonymous"
                    if d.is_anonymous
                    else (d.donor_email or "Guest"),
                    "donationType": d.donation_type,
                    "createdAt": d.created_at.isoformat(),
                }
                for d in recent
            ],
            "topStudents": [
                {
                    "studentId": sid,
                    "studentName": f"{first} {last}",
                    "school": school or "Unknown",
                    "donationCount": count,
                    "totalAmount": _money(amount),
                }
                for sid, first, last, school, count, amount in top_students
            ],
            "dailyTrend": [
                {"date": str(date), "count": count, "total": _money(amount)}
                for date, count, amount in trend
            ],
            "topDonors": [
                {"email": email, "donationCount": count, "totalAmount": _money(amount)}
                for email, count, amount in top_donors
            ],
        },
    }


async def platform_stats(db: AsyncSession) -> dict:
    async def count(model, *predicates):
        result = await db.execute(select(func.count(model.id)).where(*predicates))
        return result.scalar_one()

    students = await count(Student)
    donors = await count(Donor)
    admins = await count(Admin)
    revenue, net_revenue = (
        await db.execute(
            select(
                func.coalesce(func.sum(Donation.amount), 0),
                func.coalesce(func.sum(Donation.net_amount), 0),
            ).where(Donation.status == DONATION_COMPLETED)
        )
    ).one()
    raised, goals = (
        await db.execute(
            select(
                func.coalesce(func.sum(Student.amount_raised), 0),
                func.coalesce(func.sum(Student.funding_goal), 0),
            )
        )
    ).one()
    return {
        "total_students": students,
        "total_donors": donors,
        "total_admins": admins,
        "total_users": students + donors + admins,
        "verified_students": await count(Student, Student.verified == True),  # noqa: E712
        "active_students": await count(
            Student,
            Student.is_active == True,  # noqa: E712
            Student.public_profile == True,  # noqa: E712
        ),
        "pending_verifications": await count(
            SchoolVerification, SchoolVerification.status == VERIFICATION_PENDING
        ),
        "total_donations": await count(Donation),
        "total_revenue": _money(revenue),
        "total_net_revenue": _money(net_revenue),
        "total_amount_raised": _money(raised),
        "total_funding_goals": _money(goals),
    }
