"""Tests for student profiles and wish-list registry management."""

import asyncio
import pathlib
import sys
from datetime import datetime, timedelta
from decimal import Decimal

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

# Allow importing the gradvillage package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from gradvillage.main import app
from gradvillage.database import get_session
from gradvillage.models import Donation, Registry, Student


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_session():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    return TestSession


async def _student(client, email="sam@stanford.edu"):
    resp = await client.post(
        "/auth/register/student",
        json={
            "email": email,
            "password": "studentpass",
            "firstName": "Sam",
            "lastName": "Student",
            "schoolName": "Stanford University",
            "fundingGoal": 4000,
        },
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    return data["user"]["id"], {"Authorization": f"Bearer {data['token']}"}


def test_profile_update_cannot_touch_counters():
    async def run():
        TestSession = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            student_id, headers = await _student(client)

            resp = await client.put(
                "/students/profile",
                headers=headers,
                json={
                    "bio": "First-generation engineering student",
                    "urgency": "high",
                    "tags": ["engineering", "first-gen"],
                    "amountRaised": 99999,
                },
            )
            assert resp.status_code == 200
            profile = resp.json()["data"]
            assert profile["urgency"] == "high"
            assert profile["tags"] == ["engineering", "first-gen"]
            assert profile["amountRaised"] == 0

            resp = await client.put(
                "/students/profile", headers=headers, json={"urgency": "critical"}
            )
            assert resp.status_code == 400

            async with TestSession() as session:
                student = await session.get(Student, student_id)
                assert student.amount_raised == Decimal("0")

    asyncio.run(run())


def test_registry_crud():
    async def run():
        TestSession = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            student_id, headers = await _student(client)

            resp = await client.post(
                "/students/registry",
                headers=headers,
                json={"itemName": "Laptop", "category": "electronics", "price": 0},
            )
            assert resp.status_code == 400

            resp = await client.post(
                "/students/registry",
                headers=headers,
                json={
                    "itemName": "Laptop",
                    "category": "electronics",
                    "priority": "high",
                    "price": 800,
                },
            )
            assert resp.status_code == 201
            item = resp.json()["data"]
            assert item["fundedStatus"] == "needed"

            async with TestSession() as session:
                registry = await session.get(Registry, item["id"])
                registry.amount_funded = Decimal("500")
                registry.funded_status = "partial"
                await session.commit()

            # Lowering the price below what was raised marks the item funded
            resp = await client.put(
                f"/students/registry/{item['id']}", headers=headers, json={"price": 450}
            )
            assert resp.status_code == 200
            assert resp.json()["data"]["fundedStatus"] == "funded"

            resp = await client.delete(f"/students/registry/{item['id']}", headers=headers)
            assert resp.status_code == 400
            assert resp.json()["code"] == "invalid_state"

            resp = await client.put(
                f"/students/registry/{item['id']}", headers=headers, json={"price": 1000}
            )
            assert resp.json()["data"]["fundedStatus"] == "partial"

            resp = await client.get("/students/registry", headers=headers)
            assert [i["itemName"] for i in resp.json()["data"]] == ["Laptop"]

            # Another student cannot edit the item
            resp = await client.post(
                "/auth/register/student",
                json={
                    "email": "other@mit.edu",
                    "password": "studentpass",
                    "firstName": "Other",
                    "lastName": "Student",
                    "schoolName": "MIT",
                },
            )
            other = {"Authorization": f"Bearer {resp.json()['data']['token']}"}
            resp = await client.put(
                f"/students/registry/{item['id']}", headers=other, json={"price": 10}
            )
            assert resp.status_code == 404

            async with TestSession() as session:
                registry = await session.get(Registry, item["id"])
                registry.amount_funded = Decimal("0")
                registry.funded_status = "needed"
                await session.commit()
            resp = await client.delete(f"/students/registry/{item['id']}", headers=headers)
            assert resp.status_code == 200
            resp = await client.get("/students/registry", headers=headers)
            assert resp.json()["data"] == []

    asyncio.run(run())


def _donation(student_id, amount, status="completed", **extra):
    return Donation(
        student_id=student_id,
        donor_email="fan@example.com",
        amount=Decimal(amount),
        net_amount=Decimal(amount),
        status=status,
        **extra,
    )


def test_public_profile_by_url():
    async def run():
        TestSession = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            student_id, headers = await _student(client)
            resp = await client.put(
                "/students/profile",
                headers=headers,
                json={"profileUrl": "sam-student", "bio": "Aspiring chemist"},
            )
            assert resp.status_code == 200
            assert resp.json()["data"]["profileUrl"] == "sam-student"
            await client.post(
                "/students/registry",
                headers=headers,
                json={"itemName": "Lab coat", "category": "supplies", "price": 60},
            )

            # Unverified students have no public page yet
            resp = await client.get("/students/public/sam-student")
            assert resp.status_code == 404
            assert resp.json()["message"] == "Profile not found"

            async with TestSession() as session:
                student = await session.get(Student, student_id)
                student.verified = True
                student.amount_raised = Decimal("400")
                session.add_all(
                    [
                        _donation(student_id, "400"),
                        _donation(student_id, "25", donation_type="registration_fee"),
                        _donation(student_id, "80", status="pending"),
                    ]
                )
                await session.commit()

            resp = await client.get("/students/public/sam-student")
            assert resp.status_code == 200
            profile = resp.json()["data"]
            assert profile["student"]["firstName"] == "Sam"
            assert "email" not in profile["student"]
            assert [i["itemName"] for i in profile["registryItems"]] == ["Lab coat"]
            assert profile["stats"] == {
                "totalDonations": 1,
                "totalRegistryItems": 1,
                "fundingProgress": 10,
            }
            # major is still missing
            assert profile["profileCompletion"] == 80

            resp = await client.get("/students/public/nobody-here")
            assert resp.status_code == 404

            await client.put(
                "/students/profile", headers=headers, json={"publicProfile": False}
            )
            resp = await client.get("/students/public/sam-student")
            assert resp.status_code == 404

    asyncio.run(run())


def test_profile_url_availability_and_uniqueness():
    async def run():
        await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            _, sam = await _student(client)
            _, kim = await _student(client, email="kim@mit.edu")

            resp = await client.put(
                "/students/profile", headers=sam, json={"profileUrl": "sam-s"}
            )
            assert resp.status_code == 200

            resp = await client.get("/students/check-url/sam-s", headers=kim)
            assert resp.status_code == 200
            assert resp.json()["data"] == {
                "url": "sam-s",
                "available": False,
                "message": "URL is already taken",
            }

            # A student's own URL counts as available to them
            resp = await client.get("/students/check-url/sam-s", headers=sam)
            assert resp.json()["data"]["available"] is True

            resp = await client.get("/students/check-url/kim-2026", headers=kim)
            assert resp.json()["data"]["message"] == "URL is available"

            resp = await client.get("/students/check-url/Kim_S", headers=kim)
            assert resp.status_code == 400
            assert resp.json()["code"] == "validation_error"

            resp = await client.get("/students/check-url/kim-s")
            assert resp.status_code == 401

            resp = await client.put(
                "/students/profile", headers=kim, json={"profileUrl": "sam-s"}
            )
            assert resp.status_code == 409

            resp = await client.put(
                "/students/profile", headers=kim, json={"profileUrl": "Kim S"}
            )
            assert resp.status_code == 400

    asyncio.run(run())


def test_profile_stats():
    async def run():
        TestSession = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            student_id, headers = await _student(client)
            for name, category, price in (
                ("Textbooks", "books", 100),
                ("Laptop", "electronics", 300),
            ):
                resp = await client.post(
                    "/students/registry",
                    headers=headers,
                    json={"itemName": name, "category": category, "price": price},
                )
                assert resp.status_code == 201
            resp = await client.get("/students/registry", headers=headers)
            items = resp.json()["data"]

            now = datetime.utcnow()
            async with TestSession() as session:
                student = await session.get(Student, student_id)
                student.amount_raised = Decimal("150")
                for item in items:
                    if item["itemName"] == "Textbooks":
                        registry = await session.get(Registry, item["id"])
                        registry.amount_funded = Decimal("100")
                        registry.funded_status = "funded"
                session.add_all(
                    [
                        _donation(student_id, "100", created_at=now),
                        _donation(student_id, "50", created_at=now - timedelta(days=62)),
                        _donation(student_id, "70", status="pending"),
                        _donation(student_id, "30", status="failed"),
                    ]
                )
                await session.commit()

            resp = await client.get("/students/profile/stats", headers=headers)
            assert resp.status_code == 200
            stats = resp.json()["data"]
            assert stats["overview"]["fundingGoal"] == 4000
            assert stats["overview"]["amountRaised"] == 150
            assert stats["overview"]["fundingProgress"] == 4
            assert stats["donations"] == {
                "total": 150,
                "count": 2,
                "average": 75,
                "pending": 1,
            }
            assert stats["registry"] == {
                "totalItems": 2,
                "totalValue": 400,
                "totalFunded": 100,
                "fullyFundedItems": 1,
                "fundingProgress": 25,
                "byCategory": {"books": 1, "electronics": 1},
            }
            monthly = stats["trends"]["monthly"]
            assert len(monthly) == 12
            assert monthly[-1] == {
                "month": now.strftime("%Y-%m"),
                "amount": 100,
                "count": 1,
            }
            assert sum(m["count"] for m in monthly) == 2
            assert sum(m["amount"] for m in monthly) == 150

            resp = await client.get("/students/profile/stats")
            assert resp.status_code == 401

    asyncio.run(run())
