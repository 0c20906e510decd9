"""Tests for the funding ledger: counters, receipts, refunds and reconciliation."""

import asyncio
import pathlib
import sys
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel, select

# Allow importing the gradvillage package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from gradvillage import models  # noqa: F401
from gradvillage.errors import (
    AmountExceeds,
    AmountInvalid,
    ConflictError,
    InvalidState,
)
from gradvillage.analytics import donor_dashboard
from gradvillage.auth import Identity
from gradvillage.crud import get_settings
from gradvillage.ledger import (
    apply_refund,
    community_rank,
    complete_donation,
    compute_fee,
    compute_funded_status,
    compute_impact_score,
    compute_progress_percentage,
    generate_receipt_number,
    percent_change,
    reconcile_counters,
    sponsor_item,
    to_decimal,
)
from gradvillage.models import AdminAction, Donation, Donor, Registry, Student, TaxReceipt


async def _setup_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


async def _setup_file_db(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def _seed(TestSession, price="100.00", funded="0.00"):
    async with TestSession() as session:
        student = Student(
            email="stu@example.edu",
            password_hash="x",
            first_name="Sam",
            last_name="Student",
            school_name="Stanford University",
            funding_goal=Decimal("1000.00"),
            verified=True,
        )
        donor = Donor(
            email="don@example.com", password_hash="x", first_name="Dana", last_name="Donor"
        )
        session.add(student)
        session.add(donor)
        await session.commit()
        registry = Registry(
            student_id=student.id,
            item_name="Laptop",
            category="electronics",
            price=Decimal(price),
            amount_funded=Decimal(funded),
            funded_status=compute_funded_status(funded, price),
        )
        session.add(registry)
        await session.commit()
        await get_settings(session)
        return student.id, donor.id, registry.id


async def _pending(TestSession, student_id, donor_id, amount, registry_id=None, **extra):
    extra.setdefault("donation_type", "item" if registry_id else "general")
    async with TestSession() as session:
        donation = Donation(
            student_id=student_id,
            donor_id=donor_id,
            donor_email="don@example.com",
            amount=Decimal(amount),
            net_amount=Decimal(amount),
            target_registry_id=registry_id,
            **extra,
        )
        session.add(donation)
        await session.commit()
        return donation.id


def test_money_helpers():
    assert to_decimal(None) == Decimal("0.00")
    assert to_decimal(10.005) == Decimal("10.01")
    assert compute_progress_percentage(250, 1000) == 25
    assert compute_progress_percentage(1, 0) == 0
    assert compute_progress_percentage(1500, 1000) == 150
    assert compute_funded_status(0, 100) == "needed"
    assert compute_funded_status(50, 100) == "partial"
    assert compute_funded_status(110, 100) == "funded"
    assert compute_impact_score(2, 500) == Decimal("25.00")
    assert compute_impact_score(20, 0) == Decimal("100.00")
    assert compute_fee(100, 2.9) == (Decimal("2.90"), Decimal("97.10"))
    assert compute_fee(50, 0) == (Decimal("0.00"), Decimal("50.00"))


def test_percent_change_and_rank():
    assert percent_change(150, 100) == 50.0
    assert percent_change(50, 0) == 100.0
    assert percent_change(0, 0) == 0.0
    assert percent_change(0, 80) == -100.0

    totals = [Decimal(v) for v in range(10, 110, 10)]  # 10..100
    assert community_rank(100, totals) == "Top 10%"
    assert community_rank(80, totals) == "Top 25%"
    assert community_rank(50, totals) == "Top 50%"
    assert community_rank(10, totals) == "New Donor"
    assert community_rank(0, totals) == "New Donor"


def test_receipt_number_format():
    number = generate_receipt_number()
    prefix, stamp, suffix = number.split("-")
    assert prefix.startswith("GV") and len(prefix) == 6
    assert len(stamp) == 6 and stamp.isdigit()
    assert len(suffix) == 4 and suffix.isalnum() and suffix.upper() == suffix


def test_complete_donation_updates_counters_and_issues_receipt():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, registry_id = await _seed(TestSession)
        donation_id = await _pending(TestSession, student_id, donor_id, "40.00", registry_id)

        async with TestSession() as session:
            donation = await session.get(Donation, donation_id)
            donation = await complete_donation(session, donation, "ch_123")
            assert donation.status == "completed"
            assert donation.processed_at is not None
            assert donation.payment_reference == "ch_123"

        async with TestSession() as session:
            student = await session.get(Student, student_id)
            registry = await session.get(Registry, registry_id)
            donor = await session.get(Donor, donor_id)
            receipt = (
                await session.execute(
                    select(TaxReceipt).where(TaxReceipt.donation_id == donation_id)
                )
            ).scalar_one()
            assert student.amount_raised == Decimal("40.00")
            assert student.total_donations == 1
            assert registry.amount_funded == Decimal("40.00")
            assert registry.funded_status == "partial"
            assert donor.total_donated == Decimal("40.00")
            assert donor.students_supported == 1
            assert donor.impact_score == Decimal("10.40")
            assert receipt.receipt_url.endswith(f"/{receipt.receipt_number}.pdf")

            donation = await session.get(Donation, donation_id)
            with pytest.raises(InvalidState):
                await complete_donation(session, donation)

    asyncio.run(run())


def test_concurrent_contributions_fund_item_once(tmp_path):
    async def run():
        engine, TestSession = await _setup_file_db(tmp_path)
        student_id, donor_id, registry_id = await _seed(TestSession, funded="90.00")
        first = await _pending(TestSession, student_id, donor_id, "20.00", registry_id)
        second = await _pending(TestSession, student_id, donor_id, "20.00", registry_id)

        async def settle(donation_id):
            async with TestSession() as session:
                donation = await session.get(Donation, donation_id)
                return await complete_donation(session, donation)

        results = await asyncio.gather(
            settle(first), settle(second), return_exceptions=True
        )
        settled = [r for r in results if isinstance(r, Donation)]
        refused = [r for r in results if isinstance(r, ConflictError)]
        assert len(settled) == 1
        assert len(refused) == 1

        async with TestSession() as session:
            registry = await session.get(Registry, registry_id)
            student = await session.get(Student, student_id)
            assert registry.amount_funded == Decimal("110.00")
            assert registry.funded_status == "funded"
            assert student.amount_raised == Decimal("20.00")
            assert student.total_donations == 1
            receipts = (await session.execute(select(TaxReceipt))).scalars().all()
            assert len(receipts) == 1
            statuses = sorted(
                (await session.execute(select(Donation.status))).scalars().all()
            )
            assert statuses == ["completed", "pending"]
        await engine.dispose()

    asyncio.run(run())


def test_reconcile_alongside_completions_sees_no_drift(tmp_path):
    async def run():
        engine, TestSession = await _setup_file_db(tmp_path)
        student_id, donor_id, _ = await _seed(TestSession)
        pending = [
            await _pending(TestSession, student_id, donor_id, f"{n}.00")
            for n in range(1, 11)
        ]

        async def settle(donation_id):
            async with TestSession() as session:
                donation = await session.get(Donation, donation_id)
                await complete_donation(session, donation)

        async def reconcile():
            async with TestSession() as session:
                return await reconcile_counters(session, apply=True)

        jobs = [settle(donation_id) for donation_id in pending]
        for slot in (2, 5, 8, 11):
            jobs.insert(slot, reconcile())
        results = await asyncio.gather(*jobs)
        reports = [r for r in results if r is not None]
        assert len(reports) == 4
        assert [r["driftCount"] for r in reports] == [0, 0, 0, 0]

        async with TestSession() as session:
            student = await session.get(Student, student_id)
            donor = await session.get(Donor, donor_id)
            assert student.amount_raised == Decimal("55.00")
            assert student.total_donations == 10
            assert donor.total_donated == Decimal("55.00")
            assert donor.students_supported == 1
            report = await reconcile_counters(session, apply=False)
            assert report["driftCount"] == 0
        await engine.dispose()

    asyncio.run(run())


def test_failed_registry_guard_rolls_back_donation():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, registry_id = await _seed(TestSession, funded="100.00")
        donation_id = await _pending(TestSession, student_id, donor_id, "10.00", registry_id)

        async with TestSession() as session:
            donation = await session.get(Donation, donation_id)
            with pytest.raises(ConflictError):
                await complete_donation(session, donation)

        async with TestSession() as session:
            donation = await session.get(Donation, donation_id)
            student = await session.get(Student, student_id)
            assert donation.status == "pending"
            assert student.amount_raised == Decimal("0.00")
            receipts = (await session.execute(select(TaxReceipt))).scalars().all()
            assert receipts == []

    asyncio.run(run())


def test_sponsor_item_never_overfunds():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, registry_id = await _seed(TestSession, funded="70.00")
        identity = Identity(kind="donor", id=donor_id, role="donor", email="don@example.com")

        async with TestSession() as session:
            with pytest.raises(AmountInvalid):
                await sponsor_item(session, identity, registry_id, 31)
            with pytest.raises(AmountInvalid):
                await sponsor_item(session, identity, registry_id, 0)
            donation = await sponsor_item(session, identity, registry_id, 30, "Good luck")
            assert donation.status == "completed"
            assert donation.donation_type == "item"
            with pytest.raises(ConflictError):
                await sponsor_item(session, identity, registry_id, 5)

        async with TestSession() as session:
            registry = await session.get(Registry, registry_id)
            assert registry.amount_funded == Decimal("100.00")
            assert registry.funded_status == "funded"

    asyncio.run(run())


def test_refund_rules():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, _ = await _seed(TestSession)
        donation_id = await _pending(TestSession, student_id, donor_id, "50.00")
        async with TestSession() as session:
            donation = await session.get(Donation, donation_id)
            await complete_donation(session, donation)

        async with TestSession() as session:
            with pytest.raises(AmountExceeds):
                await apply_refund(session, donation_id, 60)
            with pytest.raises(AmountInvalid):
                await apply_refund(session, donation_id, 0)
            donation = await apply_refund(session, donation_id, 20, admin_id=1)
            assert donation.status == "refunded"
            assert donation.refund_amount == Decimal("20.00")
            assert donation.refund_reason == "Admin refund"
            with pytest.raises(InvalidState):
                await apply_refund(session, donation_id, 10)

        async with TestSession() as session:
            student = await session.get(Student, student_id)
            donor = await session.get(Donor, donor_id)
            assert student.amount_raised == Decimal("30.00")
            assert student.total_donations == 1
            assert donor.total_donated == Decimal("30.00")
            actions = (await session.execute(select(AdminAction))).scalars().all()
            assert [a.action for a in actions] == ["REFUND_DONATION"]
            assert actions[0].details["refundAmount"] == 20.0

    asyncio.run(run())


def test_refund_never_drives_amount_raised_negative():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, _ = await _seed(TestSession)
        donation_id = await _pending(TestSession, student_id, donor_id, "50.00")
        async with TestSession() as session:
            donation = await session.get(Donation, donation_id)
            await complete_donation(session, donation)
            student = await session.get(Student, student_id)
            student.amount_raised = Decimal("10.00")
            await session.commit()

        async with TestSession() as session:
            await apply_refund(session, donation_id)

        async with TestSession() as session:
            student = await session.get(Student, student_id)
            assert student.amount_raised == Decimal("0.00")

    asyncio.run(run())


def test_reconcile_reports_and_fixes_drift():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, registry_id = await _seed(TestSession)
        donation_id = await _pending(TestSession, student_id, donor_id, "25.00", registry_id)
        async with TestSession() as session:
            donation = await session.get(Donation, donation_id)
            await complete_donation(session, donation)

        async with TestSession() as session:
            report = await reconcile_counters(session, apply=False)
            assert report["driftCount"] == 0
            assert report["checked"] == {"students": 1, "registries": 1, "donors": 1}

            student = await session.get(Student, student_id)
            student.amount_raised = Decimal("999.00")
            registry = await session.get(Registry, registry_id)
            registry.funded_status = "funded"
            await session.commit()

            report = await reconcile_counters(session, apply=False)
            fields = {(d["type"], d["field"]) for d in report["drift"]}
            assert ("student", "amountRaised") in fields
            assert ("registry", "fundedStatus") in fields
            assert report["applied"] is False

            report = await reconcile_counters(session, apply=True, admin_id=1)
            assert report["driftCount"] == 2

        async with TestSession() as session:
            student = await session.get(Student, student_id)
            registry = await session.get(Registry, registry_id)
            assert student.amount_raised == Decimal("25.00")
            assert registry.funded_status == "partial"
            report = await reconcile_counters(session, apply=False)
            assert report["driftCount"] == 0
            actions = (await session.execute(select(AdminAction))).scalars().all()
            assert [a.action for a in actions] == ["RECONCILE_COUNTERS"]

    asyncio.run(run())


def test_registration_fee_completes_registration():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, _ = await _seed(TestSession)
        gift_id = await _pending(TestSession, student_id, donor_id, "20.00")
        fee_id = await _pending(
            TestSession, student_id, donor_id, "25.00", donation_type="registration_fee"
        )

        async with TestSession() as session:
            await complete_donation(session, await session.get(Donation, gift_id))
        async with TestSession() as session:
            student = await session.get(Student, student_id)
            assert student.registration_status == "pending"

        async with TestSession() as session:
            await complete_donation(session, await session.get(Donation, fee_id))
        async with TestSession() as session:
            student = await session.get(Student, student_id)
            assert student.registration_status == "completed"
            assert student.amount_raised == Decimal("45.00")
            student.graduation_year = "2020"
            await session.commit()

        async with TestSession() as session:
            stats = await donor_dashboard(session, donor_id)
            assert stats["impact_metrics"]["students_graduated"] == 1

    asyncio.run(run())


def test_item_refund_leaves_registry_funding_for_reconcile():
    async def run():
        TestSession = await _setup_db()
        student_id, donor_id, registry_id = await _seed(TestSession)
        donation_id = await _pending(TestSession, student_id, donor_id, "50.00", registry_id)
        async with TestSession() as session:
            await complete_donation(session, await session.get(Donation, donation_id))

        async with TestSession() as session:
            await apply_refund(session, donation_id)

        async with TestSession() as session:
            student = await session.get(Student, student_id)
            registry = await session.get(Registry, registry_id)
            assert student.amount_raised == Decimal("0.00")
            assert compute_progress_percentage(student.amount_raised, student.funding_goal) == 0
            assert registry.amount_funded == Decimal("50.00")
            assert registry.funded_status == "partial"

            report = await reconcile_counters(session, apply=False)
            registry_drift = {
                d["field"]: (d["expected"], d["actual"])
                for d in report["drift"]
                if d["type"] == "registry"
            }
            assert registry_drift == {
                "amountFunded": (0.0, 50.0),
                "fundedStatus": ("needed", "partial"),
            }
            assert all(d["type"] == "registry" for d in report["drift"])

            await reconcile_counters(session, apply=True)

        async with TestSession() as session:
            registry = await session.get(Registry, registry_id)
            assert registry.amount_funded == Decimal("0.00")
            assert registry.funded_status == "needed"

    asyncio.run(run())
