"""Donation operations for admins: listing, analytics, refunds and exports."""

import logging
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.acl import ROLE_ADMIN
from gradvillage.analytics import analytics_window, donation_analytics
from gradvillage.auth import Identity, require_role
from gradvillage.crud import (
    DonationAdminFilter,
    admin_export_donations,
    admin_list_donations,
    get_donation,
)
from gradvillage.database import get_session
from gradvillage.exports import admin_donations_csv, export_filename
from gradvillage.ledger import apply_refund, verify_zelle_payment
from gradvillage.routes.donors import history_item
from gradvillage.routes.filters import EndOfDay, admin_donation_params
from gradvillage.schemas import (
    AdminDonationList,
    DonationRead,
    Envelope,
    RefundRequest,
    ZelleVerification,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/donation-admin", tags=["donation-admin"])

require_admin = require_role(ROLE_ADMIN)


@router.get("/donations", response_model=Envelope[AdminDonationList])
async def read_donations(
    filters: DonationAdminFilter = Depends(admin_donation_params),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    donations, total = await admin_list_donations(db, filters)
    return Envelope(
        data=AdminDonationList(
            donations=[history_item(d) for d in donations],
            total=total,
            limit=filters.limit,
            offset=filters.offset,
        )
    )


@router.get("/analytics", response_model=Envelope[dict])
async def read_analytics(
    period: Literal["day", "week", "month", "quarter", "year"] = "month",
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[EndOfDay] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    window = analytics_window(period, start_date, end_date)
    return Envelope(data=await donation_analytics(db, window))


@router.post("/refund/{donation_id}", response_model=Envelope[DonationRead])
async def refund_donation(
    donation_id: int,
    data: RefundRequest,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    await apply_refund(db, donation_id, data.amount, data.reason, admin_id=identity.id)
    donation = await get_donation(db, donation_id)
    return Envelope(
        message="Donation refunded",
        data=DonationRead.from_donation(donation, donation.tax_receipt),
    )


@router.post("/verify-zelle/{donation_id}", response_model=Envelope[DonationRead])
async def verify_zelle(
    donation_id: int,
    data: ZelleVerification,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    await verify_zelle_payment(db, donation_id, identity.id, data.verified, data.notes)
    donation = await get_donation(db, donation_id)
    return Envelope(
        message="Payment verified" if data.verified else "Payment marked as failed",
        data=DonationRead.from_donation(donation, donation.tax_receipt),
    )


@router.get("/export")
async def export_donations(
    format: Literal["csv"] = "csv",
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[EndOfDay] = Query(None, alias="endDate"),
    status: Optional[Literal["pending", "completed", "failed", "refunded"]] = None,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
):
    donations = await admin_export_donations(db, start_date, end_date, status)
    logger.info("Admin %s exported %d donations", identity.id, len(donations))
    filename = export_filename("donations", format, date.today())
    return Response(
        content=admin_donations_csv(donations),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
