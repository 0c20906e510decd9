"""Donor self-service: profile, discovery, bookmarks, history and giving."""

import logging
from datetime import date, datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.acl import ROLE_DONOR
from gradvillage.analytics import donor_dashboard
from gradvillage.auth import Identity, require_role
from gradvillage.crud import (
    AvailableItemsFilter,
    DonationHistoryFilter,
    StudentFilter,
    create_bookmark,
    create_recurring,
    delete_bookmark,
    donation_history,
    donation_summary,
    donations_for_export,
    find_bookmark,
    get_bookmark,
    get_donation,
    get_recurring,
    list_available_items,
    list_bookmarks,
    list_recurring,
    list_sponsored_items,
    public_donor_name,
    save,
    search_students,
    search_suggestions,
    student_detail,
    student_facets,
    update_recurring,
)
from gradvillage.database import get_session
from gradvillage.exports import donor_history_csv, donor_history_json, export_filename
from gradvillage.ledger import compute_progress_percentage, sponsor_item
from gradvillage.models import Donor
from gradvillage.routes.filters import (
    EndOfDay,
    history_filter_params,
    item_filter_params,
    student_filter_params,
)
from gradvillage.schemas import (
    AvailableItem,
    AvailableItemsResult,
    BookmarkCreate,
    BookmarkRead,
    BookmarkStatus,
    BookmarkUpdate,
    DonationHistory,
    DonationHistoryItem,
    DonationRead,
    DonorDashboard,
    DonorRead,
    DonorUpdate,
    Envelope,
    Facets,
    HistorySummary,
    Pagination,
    PublicDonation,
    RecurringDonationCreate,
    RecurringDonationRead,
    RecurringDonationUpdate,
    RegistryRead,
    SponsoredContribution,
    SponsoredItem,
    SponsorRequest,
    StudentCard,
    StudentDetail,
    StudentDetailStats,
    StudentSearchResult,
    StudentSummary,
    Suggestions,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/donors", tags=["donors"])

require_donor = require_role(ROLE_DONOR)


def history_item(donation) -> DonationHistoryItem:
    item = DonationHistoryItem.model_validate(
        DonationRead.from_donation(donation, donation.tax_receipt).model_dump()
    )
    if donation.student is not None:
        item.student = StudentSummary.model_validate(donation.student)
    if donation.target_registry is not None:
        item.item_name = donation.target_registry.item_name
    return item


# ---------------------------------------------------------------------------
# Profile and dashboard


@router.get("/profile", response_model=Envelope[DonorRead])
async def read_profile(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    donor = await db.get(Donor, identity.id)
    return Envelope(data=DonorRead.model_validate(donor))


@router.put("/profile", response_model=Envelope[DonorRead])
async def update_profile(
    data: DonorUpdate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    donor = await db.get(Donor, identity.id)
    updates = data.model_dump(exclude_unset=True)
    preferences = updates.pop("preferences", None)
    for field, value in updates.items():
        setattr(donor, field, value)
    if preferences:
        donor.preferences = {**(donor.preferences or {}), **preferences}
    donor = await save(db, donor)
    logger.info("Donor %s updated profile", identity.id)
    return Envelope(message="Profile updated", data=DonorRead.model_validate(donor))


@router.get("/dashboard/stats", response_model=Envelope[DonorDashboard])
async def dashboard_stats(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    stats = await donor_dashboard(db, identity.id)
    return Envelope(data=DonorDashboard.model_validate(stats))


# ---------------------------------------------------------------------------
# Discovery


@router.get("/students", response_model=Envelope[StudentSearchResult])
async def discover_students(
    filters: StudentFilter = Depends(student_filter_params),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    students, total = await search_students(db, filters)
    facets = await student_facets(db)
    return Envelope(
        data=StudentSearchResult(
            students=[StudentCard.from_student(s) for s in students],
            pagination=Pagination.build(total, filters.page, filters.limit),
            filters=Facets(**facets),
        )
    )


@router.get("/students/{student_id}", response_model=Envelope[StudentDetail])
async def student_details(
    student_id: int,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    detail = await student_detail(db, student_id)
    student = detail["student"]
    return Envelope(
        data=StudentDetail(
            student=StudentCard.from_student(student),
            registry_items=[RegistryRead.model_validate(i) for i in detail["items"]],
            recent_donations=[
                PublicDonation(
                    id=d.id,
                    amount=d.amount,
                    donor_name=public_donor_name(d),
                    message=d.donor_message,
                    created_at=d.created_at,
                )
                for d in detail["recent"]
            ],
            stats=StudentDetailStats(
                donor_count=detail["donor_count"],
                average_donation=detail["average_donation"],
                goal_progress=compute_progress_percentage(
                    student.amount_raised, student.funding_goal
                ),
                items_funded=detail["items_funded"],
            ),
            is_bookmarked=await find_bookmark(db, identity.id, student_id) is not None,
        )
    )


@router.get("/search/suggestions", response_model=Envelope[Suggestions])
async def suggestions(
    q: str = Query("", max_length=100),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    if len(q.strip()) < 2:
        return Envelope(data=Suggestions(schools=[], majors=[], locations=[]))
    return Envelope(data=Suggestions(**await search_suggestions(db, q.strip())))


# ---------------------------------------------------------------------------
# Bookmarks


@router.get("/bookmarks", response_model=Envelope[List[BookmarkRead]])
async def read_bookmarks(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    bookmarks = await list_bookmarks(db, identity.id)
    return Envelope(data=[BookmarkRead.from_bookmark(b) for b in bookmarks])


@router.post(
    "/bookmarks",
    response_model=Envelope[BookmarkRead],
    status_code=status.HTTP_201_CREATED,
)
async def add_bookmark(
    data: BookmarkCreate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    bookmark = await create_bookmark(db, identity.id, data.student_id, data.notes)
    logger.info("Donor %s bookmarked student %s", identity.id, data.student_id)
    return Envelope(message="Student bookmarked", data=BookmarkRead.from_bookmark(bookmark))


@router.patch("/bookmarks/{bookmark_id}", response_model=Envelope[BookmarkRead])
async def edit_bookmark(
    bookmark_id: int,
    data: BookmarkUpdate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    bookmark = await get_bookmark(db, identity.id, bookmark_id)
    bookmark.notes = data.notes
    await save(db, bookmark)
    bookmark = await get_bookmark(db, identity.id, bookmark_id)
    return Envelope(message="Bookmark updated", data=BookmarkRead.from_bookmark(bookmark))


@router.delete("/bookmarks/{bookmark_id}", response_model=Envelope[dict])
async def remove_bookmark(
    bookmark_id: int,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    bookmark = await get_bookmark(db, identity.id, bookmark_id)
    await delete_bookmark(db, bookmark)
    logger.info("Donor %s removed bookmark %s", identity.id, bookmark_id)
    return Envelope(message="Bookmark removed", data={"id": bookmark_id})


@router.get("/bookmarks/check/{student_id}", response_model=Envelope[BookmarkStatus])
async def check_bookmark(
    student_id: int,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    bookmark = await find_bookmark(db, identity.id, student_id)
    return Envelope(
        data=BookmarkStatus(
            is_bookmarked=bookmark is not None,
            bookmark_id=bookmark.id if bookmark else None,
        )
    )


# ---------------------------------------------------------------------------
# Donation history and export


@router.get("/donations", response_model=Envelope[DonationHistory])
async def read_donation_history(
    filters: DonationHistoryFilter = Depends(history_filter_params),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    donations, total = await donation_history(db, identity.id, filters)
    summary = await donation_summary(db, identity.id)
    return Envelope(
        data=DonationHistory(
            donations=[history_item(d) for d in donations],
            pagination=Pagination.build(total, filters.page, filters.limit),
            summary=HistorySummary(**summary),
        )
    )


@router.get("/donations/export")
async def export_donation_history(
    format: Literal["csv", "json"] = "csv",
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[EndOfDay] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    """Download completed donations as CSV, or as JSON inside the envelope."""
    donations = await donations_for_export(db, identity.id, start_date, end_date)
    logger.info(
        "Donor %s exported %d donations as %s", identity.id, len(donations), format
    )
    if format == "json":
        return Envelope(data=donor_history_json(donations))
    filename = export_filename("donation-history", "csv", date.today())
    return Response(
        content=donor_history_csv(donations),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Recurring donations


@router.post(
    "/recurring-donations",
    response_model=Envelope[RecurringDonationRead],
    status_code=status.HTTP_201_CREATED,
)
async def add_recurring_donation(
    data: RecurringDonationCreate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    recurring = await create_recurring(
        db, identity.id, data.student_id, data.amount, data.frequency
    )
    logger.info(
        "Recurring donation %s created by donor %s", recurring.id, identity.id
    )
    return Envelope(
        message="Recurring donation created",
        data=RecurringDonationRead.model_validate(recurring),
    )


@router.get(
    "/recurring-donations", response_model=Envelope[List[RecurringDonationRead]]
)
async def read_recurring_donations(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    rows = await list_recurring(db, identity.id)
    return Envelope(data=[RecurringDonationRead.model_validate(r) for r in rows])


@router.patch(
    "/recurring-donations/{recurring_id}",
    response_model=Envelope[RecurringDonationRead],
)
async def edit_recurring_donation(
    recurring_id: int,
    data: RecurringDonationUpdate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    recurring = await get_recurring(db, identity.id, recurring_id)
    recurring = await update_recurring(db, recurring, data.model_dump(exclude_unset=True))
    logger.info("Recurring donation %s updated by donor %s", recurring_id, identity.id)
    return Envelope(
        message="Recurring donation updated",
        data=RecurringDonationRead.model_validate(recurring),
    )


# ---------------------------------------------------------------------------
# Items


@router.get("/items/available", response_model=Envelope[AvailableItemsResult])
async def available_items(
    filters: AvailableItemsFilter = Depends(item_filter_params),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    rows, total = await list_available_items(db, filters)
    return Envelope(
        data=AvailableItemsResult(
            items=[AvailableItem.from_registry(r, s) for r, s in rows],
            pagination=Pagination.build(total, filters.page, filters.limit),
        )
    )


@router.get("/items/sponsored", response_model=Envelope[List[SponsoredItem]])
async def sponsored_items(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    groups = await list_sponsored_items(db, identity.id)
    return Envelope(
        data=[
            SponsoredItem(
                item=RegistryRead.model_validate(g["item"]),
                student=StudentSummary.model_validate(g["student"]),
                total_contributed=g["total"],
                contributions=[
                    SponsoredContribution(
                        donation_id=d.id,
                        amount=d.amount,
                        date=d.created_at,
                        message=d.donor_message,
                    )
                    for d in g["contributions"]
                ],
            )
            for g in groups
        ]
    )


@router.post(
    "/items/{item_id}/sponsor",
    response_model=Envelope[DonationRead],
    status_code=status.HTTP_201_CREATED,
)
async def sponsor(
    item_id: int,
    data: SponsorRequest,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_donor),
):
    donation = await sponsor_item(
        db, identity, item_id, data.amount, data.message, data.payment_method
    )
    donation = await get_donation(db, donation.id)
    return Envelope(
        message="Item sponsored successfully",
        data=DonationRead.from_donation(donation, donation.tax_receipt),
    )

