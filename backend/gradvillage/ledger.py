"""Funding ledger: the only code allowed to move money counters.

``Student.amount_raised``/``total_donations``, ``Registry.amount_funded``/
``funded_status`` and the donor totals are denormalized views of the
Donation table.  They change here, inside the same transaction that
finalizes the donation or refund row, and nowhere else.  ``reconcile_counters``
recomputes all of them from scratch and reports any drift.

Counter writes are issued as SQL expressions (``col = col + :amount``) so two
requests never overwrite each other's increments.  Registry funding uses a
guarded UPDATE; when the guard matches no row the item was funded by someone
else first and the caller gets a ``ConflictError``.
"""

import logging
import secrets
import string
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import update, case, func, and_, distinct
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from gradvillage.models import (
    Student,
    Donor,
    Registry,
    Donation,
    TaxReceipt,
    AdminAction,
)
from gradvillage.acl import (
    DONATION_PENDING,
    DONATION_COMPLETED,
    DONATION_REFUNDED,
    DONATION_FAILED,
    DONATION_REGISTRATION_FEE,
    REGISTRATION_COMPLETED,
    FUNDED_NEEDED,
    FUNDED_PARTIAL,
    FUNDED_FUNDED,
    ACTION_REFUND_DONATION,
    ACTION_RECONCILE,
    ACTION_VERIFY_ZELLE,
    ACTION_REJECT_ZELLE,
)
from gradvillage.errors import (
    AmountInvalid,
    AmountExceeds,
    ConflictError,
    InvalidState,
    NotFoundError,
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
RECEIPT_ALPHABET = string.ascii_uppercase + string.digits


def to_decimal(value) -> Decimal:
    """Coerce floats, ints, strings and ``None`` to a 2-place Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_progress_percentage(amount_raised, funding_goal) -> int:
    """Whole percent of the goal reached, rounded half up.

    A zero or missing goal yields 0.  The result is not clamped at 100.
    """
    goal = to_decimal(funding_goal)
    if goal <= 0:
        return 0
    raised = to_decimal(amount_raised)
    percent = (raised / goal * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(int(percent), 0)


def compute_funded_status(amount_funded, price) -> str:
    funded = to_decimal(amount_funded)
    if funded >= to_decimal(price):
        return FUNDED_FUNDED
    if funded > 0:
        return FUNDED_PARTIAL
    return FUNDED_NEEDED


def compute_impact_score(students_supported: int, total_donated) -> Decimal:
    score = Decimal(students_supported or 0) * 10 + to_decimal(total_donated) / 100
    return min(Decimal("100"), score).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_fee(amount, percentage) -> tuple[Decimal, Decimal]:
    """Return ``(transaction_fee, net_amount)`` for a gross ``amount``."""
    gross = to_decimal(amount)
    fee = (gross * Decimal(str(percentage or 0)) / 100).quantize(
        TWO_PLACES, rounding=ROUND_HALF_UP
    )
    return fee, gross - fee


def percent_change(this_month, last_month) -> float:
    this_month = float(this_month or 0)
    last_month = float(last_month or 0)
    if last_month > 0:
        change = (this_month - last_month) / last_month * 100
    else:
        change = 100.0 if this_month > 0 else 0.0
    return round(change, 2)


def community_rank(total, all_totals) -> str:
    """Bucket a donor by where ``total`` sits among every donor's total."""
    total = to_decimal(total)
    if total <= 0 or not all_totals:
        return "New Donor"
    ordered = sorted((to_decimal(t) for t in all_totals), reverse=True)
    rank = next(
        (index + 1 for index, value in enumerate(ordered) if value <= total),
        len(ordered),
    )
    percentile = (len(ordered) - rank + 1) / len(ordered) * 100
    if percentile >= 90:
        return "Top 10%"
    if percentile >= 75:
        return "Top 25%"
    if percentile >= 50:
        return "Top 50%"
    return "New Donor"


def generate_receipt_number(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    stamp = str(int(time.time() * 1000))[-6:]
    suffix = "".join(secrets.choice(RECEIPT_ALPHABET) for _ in range(4))
    return f"GV{now.year}-{stamp}-{suffix}"


async def apply_completed_donation(
    db: AsyncSession,
    student_id: int,
    amount,
    target_registry_id: int | None = None,
    cap_to_price: bool = False,
) -> None:
    """Credit ``amount`` to a student and, optionally, one of their items.

    Does not commit.  With ``cap_to_price`` the registry guard also refuses
    any contribution that would push the item past its price.
    """
    amount = to_decimal(amount)
    if amount <= 0:
        raise AmountInvalid("Donation amount must be greater than zero")

    result = await db.execute(
        update(Student)
        .where(Student.id == student_id)
        .values(
            amount_raised=Student.amount_raised + amount,
            total_donations=Student.total_donations + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Student not found")

    if target_registry_id is not None:
        guard = [
            Registry.id == target_registry_id,
            Registry.student_id == student_id,
            Registry.funded_status != FUNDED_FUNDED,
            Registry.amount_funded < Registry.price,
        ]
        if cap_to_price:
            guard.append(Registry.amount_funded + amount <= Registry.price)
        result = await db.execute(
            update(Registry)
            .where(and_(*guard))
            .values(
                amount_funded=Registry.amount_funded + amount,
                funded_status=case(
                    (Registry.amount_funded + amount >= Registry.price, FUNDED_FUNDED),
                    else_=FUNDED_PARTIAL,
                ),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("Item is already funded or cannot accept this amount")

    logger.info(
        "Applied %s to student %s (registry %s)", amount, student_id, target_registry_id
    )


def _credited():
    """Amount a settled donation still contributes after any refund."""
    return case(
        (Donation.status == DONATION_COMPLETED, Donation.amount),
        (
            Donation.status == DONATION_REFUNDED,
            Donation.amount - func.coalesce(Donation.refund_amount, 0),
        ),
        else_=0,
    )


async def donor_totals(db: AsyncSession, donor_id: int) -> tuple[Decimal, int]:
    """Return ``(total_donated, students_supported)`` from the donation rows."""
    result = await db.execute(
        select(
            func.coalesce(func.sum(_credited()), 0),
            func.count(distinct(Donation.student_id)),
        ).where(
            Donation.donor_id == donor_id,
            Donation.status.in_([DONATION_COMPLETED, DONATION_REFUNDED]),
        )
    )
    total, supported = result.one()
    return to_decimal(total), int(supported or 0)


async def _refresh_donor_counters(db: AsyncSession, donor_id: int) -> None:
    await db.flush()
    total, supported = await donor_totals(db, donor_id)
    await db.execute(
        update(Donor)
        .where(Donor.id == donor_id)
        .values(
            total_donated=total,
            students_supported=supported,
            impact_score=compute_impact_score(supported, total),
        )
        .execution_options(synchronize_session=False)
    )


async def complete_donation(
    db: AsyncSession,
    donation: Donation,
    payment_reference: str | None = None,
    cap_to_price: bool = False,
) -> Donation:
    """Move a pending donation to completed and issue its receipt."""
    from gradvillage.crud import get_settings

    if donation.status != DONATION_PENDING:
        raise InvalidState(
            f"Donation {donation.id} is {donation.status}, expected pending"
        )
    # Read before any write: creating the settings row commits.
    settings = await get_settings(db)
    try:
        await apply_completed_donation(
            db,
            donation.student_id,
            donation.amount,
            donation.target_registry_id,
            cap_to_price=cap_to_price,
        )
        if donation.donation_type == DONATION_REGISTRATION_FEE:
            await db.execute(
                update(Student)
                .where(Student.id == donation.student_id)
                .values(registration_status=REGISTRATION_COMPLETED)
                .execution_options(synchronize_session=False)
            )
        now = datetime.utcnow()
        donation.status = DONATION_COMPLETED
        donation.processed_at = now
        if payment_reference:
            donation.payment_reference = payment_reference
        db.add(donation)
        receipt_number = generate_receipt_number(now)
        db.add(
            TaxReceipt(
                donation_id=donation.id,
                receipt_number=receipt_number,
                receipt_url=f"{settings.receipt_base_url.rstrip('/')}/{receipt_number}.pdf",
                issued_at=now,
            )
        )
        if donation.donor_id is not None:
            await _refresh_donor_counters(db, donation.donor_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(donation)
    logger.info("Donation %s completed", donation.id)
    return donation


async def apply_refund(
    db: AsyncSession,
    donation_id: int,
    refund_amount=None,
    reason: str | None = None,
    admin_id: int | None = None,
) -> Donation:
    """Refund a completed donation once, fully or partially.

    Registry funding is left as is; ``reconcile_counters`` corrects it.
    """
    donation = await db.get(Donation, donation_id)
    if donation is None:
        raise NotFoundError("Donation not found")
    if donation.status != DONATION_COMPLETED:
        raise InvalidState("Only completed donations can be refunded")
    amount = to_decimal(donation.amount if refund_amount is None else refund_amount)
    if amount <= 0:
        raise AmountInvalid("Refund amount must be greater than zero")
    if amount > to_decimal(donation.amount):
        raise AmountExceeds("Refund amount cannot exceed the donation amount")

    now = datetime.utcnow()
    reason = reason or "Admin refund"
    try:
        # Compare-and-set on the status so a donation is refunded exactly once.
        result = await db.execute(
            update(Donation)
            .where(Donation.id == donation_id, Donation.status == DONATION_COMPLETED)
            .values(
                status=DONATION_REFUNDED,
                refund_amount=amount,
                refund_reason=reason,
                refunded_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidState("Only completed donations can be refunded")
        remaining = Student.amount_raised - amount
        await db.execute(
            update(Student)
            .where(Student.id == donation.student_id)
            .values(amount_raised=case((remaining < 0, 0), else_=remaining))
            .execution_options(synchronize_session=False)
        )
        if donation.donor_id is not None:
            await _refresh_donor_counters(db, donation.donor_id)
        if admin_id is not None:
            db.add(
                AdminAction(
                    admin_id=admin_id,
                    action=ACTION_REFUND_DONATION,
                    target_type="donation",
                    target_id=str(donation_id),
                    details={
                        "refundAmount": float(amount),
                        "originalAmount": float(donation.amount),
                        "reason": reason,
                    },
                )
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(donation)
    logger.info("Donation %s refunded %s by admin %s", donation_id, amount, admin_id)
    return donation


async def verify_zelle_payment(
    db: AsyncSession,
    donation_id: int,
    admin_id: int,
    verified: bool,
    notes: str | None = None,
) -> Donation:
    """Settle a pending Zelle donation after an admin checked the transfer.

    A confirmed transfer completes the donation like any gateway payment;
    otherwise it is marked failed.  Either way the decision is audited in the
    same commit.
    """
    donation = await db.get(Donation, donation_id)
    if donation is None:
        raise NotFoundError("Donation not found")
    if donation.payment_method != "zelle":
        raise InvalidState("Only Zelle donations need manual verification")
    if donation.status != DONATION_PENDING:
        raise InvalidState("Only pending Zelle donations can be verified")

    audit = AdminAction(
        admin_id=admin_id,
        action=ACTION_VERIFY_ZELLE if verified else ACTION_REJECT_ZELLE,
        target_type="donation",
        target_id=str(donation_id),
        details={"amount": float(donation.amount), "notes": notes},
    )
    if verified:
        db.add(audit)
        donation = await complete_donation(db, donation)
        logger.info("Admin %s verified Zelle donation %s", admin_id, donation_id)
        return donation

    donation.status = DONATION_FAILED
    donation.failure_reason = "Manual verification failed"
    donation.processed_at = datetime.utcnow()
    db.add(donation)
    db.add(audit)
    await db.commit()
    await db.refresh(donation)
    logger.info("Admin %s rejected Zelle donation %s", admin_id, donation_id)
    return donation


async def sponsor_item(
    db: AsyncSession,
    identity,
    registry_id: int,
    amount,
    message: str | None = None,
    payment_method: str = "stripe",
) -> Donation:
    """Fund a registry item directly from a signed-in donor."""
    from gradvillage.crud import get_settings

    amount = to_decimal(amount)
    if amount <= 0:
        raise AmountInvalid("Sponsorship amount must be greater than zero")
    registry = await db.get(Registry, registry_id)
    if registry is None:
        raise NotFoundError("Item not found")
    student = await db.get(Student, registry.student_id)
    if student is None or not student.is_active:
        raise NotFoundError("Item not found")
    if registry.funded_status == FUNDED_FUNDED:
        raise ConflictError("Item is already fully funded")
    remaining = to_decimal(registry.price) - to_decimal(registry.amount_funded)
    if amount > remaining:
        raise AmountInvalid(
            f"Amount exceeds remaining needed amount of {remaining:.2f}"
        )

    donor = await db.get(Donor, identity.id)
    settings = await get_settings(db)
    fee, net = compute_fee(amount, settings.processing_fee_percentage)
    donation = Donation(
        student_id=registry.student_id,
        donor_id=identity.id,
        donor_email=donor.email if donor else identity.email,
        donor_first_name=donor.first_name if donor else None,
        donor_last_name=donor.last_name if donor else None,
        amount=amount,
        transaction_fee=fee,
        net_amount=net,
        payment_method=payment_method,
        donation_type="item",
        target_registry_id=registry_id,
        donor_message=message,
    )
    db.add(donation)
    try:
        await db.flush()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Donor %s sponsoring item %s with %s", identity.id, registry_id, amount
    )
    return await complete_donation(db, donation, cap_to_price=True)


def _drift(report: list, kind: str, row_id: int, field: str, expected, actual):
    report.append(
        {
            "type": kind,
            "id": row_id,
            "field": field,
            "expected": expected,
            "actual": actual,
        }
    )


async def _shift(db: AsyncSession, model, row_id: int, **values) -> None:
    await db.execute(
        update(model)
        .where(model.id == row_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def _funded_status_expr(amount_funded):
    return case(
        (amount_funded >= Registry.price, FUNDED_FUNDED),
        (amount_funded > 0, FUNDED_PARTIAL),
        else_=FUNDED_NEEDED,
    )


async def reconcile_counters(
    db: AsyncSession, apply: bool = True, admin_id: int | None = None
) -> dict:
    """Recompute every denormalized counter from the Donation table.

    Each table is read in a single statement that returns the stored counters
    next to the sums recomputed from the donation rows, so both sides come
    from the same snapshot.  Corrections are applied as deltas relative to
    that snapshot (``col = col + :fix``), which keeps any increment a ledger
    operation commits in the meantime.  Returns a drift report; corrections
    are written only when ``apply``.
    """
    drift: list[dict] = []
    settled = Donation.status.in_([DONATION_COMPLETED, DONATION_REFUNDED])

    raised = (
        select(func.coalesce(func.sum(_credited()), 0))
        .where(Donation.student_id == Student.id, settled)
        .correlate(Student)
        .scalar_subquery()
    )
    counted = (
        select(func.count(Donation.id))
        .where(Donation.student_id == Student.id, settled)
        .correlate(Student)
        .scalar_subquery()
    )
    students = (
        await db.execute(
            select(
                Student.id, Student.amount_raised, Student.total_donations, raised, counted
            )
        )
    ).all()
    for student_id, actual_raised, actual_count, expected_raised, expected_count in students:
        raised_fix = to_decimal(expected_raised) - to_decimal(actual_raised)
        count_fix = int(expected_count) - int(actual_count or 0)
        if raised_fix:
            _drift(drift, "student", student_id, "amountRaised",
                   float(to_decimal(expected_raised)), float(to_decimal(actual_raised)))
        if count_fix:
            _drift(drift, "student", student_id, "totalDonations",
                   int(expected_count), actual_count)
        if apply and (raised_fix or count_fix):
            await _shift(
                db,
                Student,
                student_id,
                amount_raised=Student.amount_raised + raised_fix,
                total_donations=Student.total_donations + count_fix,
            )

    funded = (
        select(func.coalesce(func.sum(Donation.amount), 0))
        .where(
            Donation.target_registry_id == Registry.id,
            Donation.status == DONATION_COMPLETED,
        )
        .correlate(Registry)
        .scalar_subquery()
    )
    registries = (
        await db.execute(
            select(
                Registry.id,
                Registry.price,
                Registry.amount_funded,
                Registry.funded_status,
                funded,
            )
        )
    ).all()
    for registry_id, price, actual_funded, actual_status, expected_funded in registries:
        expected_funded = to_decimal(expected_funded)
        expected_status = compute_funded_status(expected_funded, price)
        funded_fix = expected_funded - to_decimal(actual_funded)
        if funded_fix:
            _drift(drift, "registry", registry_id, "amountFunded",
                   float(expected_funded), float(to_decimal(actual_funded)))
        if actual_status != expected_status:
            _drift(drift, "registry", registry_id, "fundedStatus",
                   expected_status, actual_status)
        if apply and (funded_fix or actual_status != expected_status):
            new_funded = Registry.amount_funded + funded_fix
            await _shift(
                db,
                Registry,
                registry_id,
                amount_funded=new_funded,
                funded_status=_funded_status_expr(new_funded),
                updated_at=datetime.utcnow(),
            )

    given = (
        select(func.coalesce(func.sum(_credited()), 0))
        .where(Donation.donor_id == Donor.id, settled)
        .correlate(Donor)
        .scalar_subquery()
    )
    reached = (
        select(func.count(distinct(Donation.student_id)))
        .where(Donation.donor_id == Donor.id, settled)
        .correlate(Donor)
        .scalar_subquery()
    )
    donors = (
        await db.execute(
            select(
                Donor.id,
                Donor.total_donated,
                Donor.students_supported,
                Donor.impact_score,
                given,
                reached,
            )
        )
    ).all()
    for donor_id, actual_total, actual_supported, actual_impact, total, supported in donors:
        total = to_decimal(total)
        supported = int(supported or 0)
        impact = compute_impact_score(supported, total)
        total_fix = total - to_decimal(actual_total)
        supported_fix = supported - int(actual_supported or 0)
        impact_off = to_decimal(actual_impact) != impact
        if total_fix:
            _drift(drift, "donor", donor_id, "totalDonated",
                   float(total), float(to_decimal(actual_total)))
        if supported_fix:
            _drift(drift, "donor", donor_id, "studentsSupported",
                   supported, actual_supported)
        if impact_off:
            _drift(drift, "donor", donor_id, "impactScore",
                   float(impact), float(to_decimal(actual_impact)))
        if apply and (total_fix or supported_fix or impact_off):
            new_total = Donor.total_donated + total_fix
            new_supported = Donor.students_supported + supported_fix
            score = new_supported * 10 + new_total / 100.0
            await _shift(
                db,
                Donor,
                donor_id,
                total_donated=new_total,
                students_supported=new_supported,
                impact_score=case((score > 100, 100), else_=func.round(score, 2)),
            )

    if apply:
        if drift and admin_id is not None:
            db.add(
                AdminAction(
                    admin_id=admin_id,
                    action=ACTION_RECONCILE,
                    target_type="ledger",
                    target_id="all",
                    details={"corrections": len(drift)},
                )
            )
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    if drift:
        logger.warning("Reconciliation found %d drifted counters", len(drift))
    else:
        logger.info("Reconciliation found no drift")
    return {
        "applied": apply,
        "checked": {
            "students": len(students),
            "registries": len(registries),
            "donors": len(donors),
        },
        "driftCount": len(drift),
        "drift": drift,
    }
