"""Query-string parsing shared by the discovery and history endpoints.

Each dependency turns camelCase query parameters into one of the typed
filter dataclasses defined in :mod:`gradvillage.crud`.
"""

from datetime import date, datetime, time
from typing import Annotated, Literal, Optional

from fastapi import Query
from pydantic import BeforeValidator

from gradvillage.crud import (
    AvailableItemsFilter,
    DonationAdminFilter,
    DonationHistoryFilter,
    StudentFilter,
)

StudentSort = Literal["recent", "name", "goal-asc", "goal-desc", "progress"]
ItemSort = Literal["priority", "price-asc", "price-desc", "recent"]


def _end_of_day(value):
    if isinstance(value, str) and len(value) == 10:
        try:
            return datetime.combine(date.fromisoformat(value), time.max)
        except ValueError:
            return value
    return value


# A bare date as an upper bound covers that whole day.
EndOfDay = Annotated[datetime, BeforeValidator(_end_of_day)]


def student_filter_params(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    search: Optional[str] = Query(None, max_length=100),
    school: Optional[str] = None,
    major: Optional[str] = None,
    location: Optional[str] = None,
    graduation_year: Optional[str] = Query(None, alias="graduationYear"),
    urgency: Optional[Literal["high", "medium", "low"]] = None,
    funding_goal_min: Optional[float] = Query(None, alias="fundingGoalMin", ge=0),
    funding_goal_max: Optional[float] = Query(None, alias="fundingGoalMax", ge=0),
    verified: Optional[bool] = None,
    sort_by: StudentSort = Query("recent", alias="sortBy"),
) -> StudentFilter:
    return StudentFilter(
        page=page,
        limit=limit,
        search=search,
        school=school,
        major=major,
        location=location,
        graduation_year=graduation_year,
        urgency=urgency,
        funding_goal_min=funding_goal_min,
        funding_goal_max=funding_goal_max,
        verified=verified,
        sort_by=sort_by,
    )


def history_filter_params(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[EndOfDay] = Query(None, alias="endDate"),
    student_id: Optional[int] = Query(None, alias="studentId"),
    donation_type: Optional[
        Literal["general", "item", "emergency", "registration_fee"]
    ] = Query(None, alias="donationType"),
    status: Optional[Literal["pending", "completed", "failed", "refunded"]] = None,
    recurring: Optional[bool] = None,
    sort_by: Literal["date", "amount", "student"] = Query("date", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
) -> DonationHistoryFilter:
    return DonationHistoryFilter(
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        student_id=student_id,
        donation_type=donation_type,
        status=status,
        recurring=recurring,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def item_filter_params(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    student_id: Optional[int] = Query(None, alias="studentId"),
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort_by: ItemSort = Query("priority", alias="sortBy"),
) -> AvailableItemsFilter:
    return AvailableItemsFilter(
        page=page,
        limit=limit,
        student_id=student_id,
        category=category,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by,
    )


def admin_donation_params(
    status: Optional[Literal["pending", "completed", "failed", "refunded"]] = None,
    payment_method: Optional[Literal["stripe", "paypal", "zelle"]] = Query(
        None, alias="paymentMethod"
    ),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[EndOfDay] = Query(None, alias="endDate"),
    min_amount: Optional[float] = Query(None, alias="minAmount", ge=0),
    max_amount: Optional[float] = Query(None, alias="maxAmount", ge=0),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> DonationAdminFilter:
    return DonationAdminFilter(
        status=status,
        payment_method=payment_method,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        limit=limit,
        offset=offset,
    )
