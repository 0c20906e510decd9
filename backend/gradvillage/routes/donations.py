"""Donation intake, payment confirmation and public receipt lookup."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.acl import KIND_DONOR
from gradvillage.auth import Identity, get_optional_identity, require_payment_confirmer
from gradvillage.crud import create_donation, get_donation, get_receipt
from gradvillage.database import get_session
from gradvillage.errors import InvalidState, ValidationError
from gradvillage.ledger import complete_donation
from gradvillage.models import Donation, Donor
from gradvillage.schemas import (
    DonationCreate,
    DonationRead,
    Envelope,
    ProcessPayment,
    ReceiptRead,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/donations", tags=["donations"])


@router.post(
    "",
    response_model=Envelope[DonationRead],
    status_code=status.HTTP_201_CREATED,
)
async def start_donation(
    data: DonationCreate,
    db: AsyncSession = Depends(get_session),
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    """Record a pending donation from a signed-in donor or a guest."""
    donation = Donation(**data.model_dump())
    if identity is not None and identity.kind == KIND_DONOR:
        donor = await db.get(Donor, identity.id)
        donation.donor_id = donor.id
        donation.donor_email = donor.email
        donation.donor_first_name = donation.donor_first_name or donor.first_name
        donation.donor_last_name = donation.donor_last_name or donor.last_name
    elif not data.donor_email:
        raise ValidationError(
            "donorEmail is required for guest donations",
            errors=[{"field": "donorEmail", "message": "Required"}],
        )
    donation = await create_donation(db, donation)
    logger.info(
        "Donation %s created for student %s (%s)",
        donation.id,
        donation.student_id,
        donation.payment_method,
    )
    return Envelope(message="Donation created", data=DonationRead.from_donation(donation))


@router.post("/{donation_id}/process", response_model=Envelope[DonationRead])
async def process_donation(
    donation_id: int,
    data: ProcessPayment,
    db: AsyncSession = Depends(get_session),
    confirmer: str = Depends(require_payment_confirmer),
):
    """Complete a pending donation once the gateway has taken the payment."""
    donation = await get_donation(db, donation_id)
    if donation.payment_method == "zelle":
        raise InvalidState("Zelle donations are completed by manual verification")
    donation = await complete_donation(db, donation, data.payment_reference)
    logger.info("Donation %s confirmed by %s", donation_id, confirmer)
    donation = await get_donation(db, donation_id)
    return Envelope(
        message="Donation completed",
        data=DonationRead.from_donation(donation, donation.tax_receipt),
    )


@router.get("/receipts/{receipt_number}", response_model=Envelope[ReceiptRead])
async def read_receipt(receipt_number: str, db: AsyncSession = Depends(get_session)):
    receipt = await get_receipt(db, receipt_number)
    donation = receipt.donation
    student = donation.student
    if donation.is_anonymous:
        donor_name = "Anonymous"
    else:
        donor_name = " ".join(
            p for p in (donation.donor_first_name, donation.donor_last_name) if p
        ) or (donation.donor_email or "")
    return Envelope(
        data=ReceiptRead(
            receipt_number=receipt.receipt_number,
            receipt_url=receipt.receipt_url,
            issued=receipt.issued,
            issued_at=receipt.issued_at,
            donation_id=donation.id,
            amount=donation.amount,
            donor_name=donor_name,
            student_name=f"{student.first_name} {student.last_name}" if student else "",
            donation_date=donation.created_at,
        )
    )
