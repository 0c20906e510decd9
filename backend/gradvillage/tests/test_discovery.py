"""Tests for donor discovery, student detail pages, bookmarks and items."""

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
from gradvillage.models import Registry, Student


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_session():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    now = datetime.utcnow()
    async with TestSession() as session:
        rows = [
            Student(
                email="alice@stanford.edu",
                password_hash="x",
                first_name="Alice",
                last_name="Anders",
                school_name="Stanford University",
                major="Computer Science",
                location="Palo Alto, CA",
                graduation_year="2026",
                urgency="high",
                funding_goal=Decimal("5000"),
                amount_raised=Decimal("2500"),
                verified=True,
                last_active=now,
            ),
            Student(
                email="ben@mit.edu",
                password_hash="x",
                first_name="Ben",
                last_name="Brooks",
                school_name="Massachusetts Institute of Technology",
                major="Physics",
                location="Boston, MA",
                graduation_year="2027",
                funding_goal=Decimal("2000"),
                verified=True,
                last_active=now - timedelta(days=1),
            ),
            Student(
                email="cara@nyu.edu",
                password_hash="x",
                first_name="Cara",
                last_name="Cole",
                school_name="New York University",
                major="Computer Science",
                funding_goal=Decimal("3000"),
                verified=False,
            ),
            Student(
                email="dan@upenn.edu",
                password_hash="x",
                first_name="Dan",
                last_name="Dunn",
                school_name="University of Pennsylvania",
                funding_goal=Decimal("1000"),
                verified=True,
                is_active=False,
            ),
        ]
        session.add_all(rows)
        await session.commit()
        ids = {s.first_name: s.id for s in rows}
        session.add_all(
            [
                Registry(
                    student_id=ids["Alice"],
                    item_name="Textbooks",
                    category="books",
                    priority="low",
                    price=Decimal("120"),
                ),
                Registry(
                    student_id=ids["Alice"],
                    item_name="Laptop",
                    category="electronics",
                    priority="high",
                    price=Decimal("900"),
                    amount_funded=Decimal("300"),
                    funded_status="partial",
                ),
                Registry(
                    student_id=ids["Ben"],
                    item_name="Calculator",
                    category="electronics",
                    price=Decimal("80"),
                    amount_funded=Decimal("80"),
                    funded_status="funded",
                ),
                Registry(
                    student_id=ids["Cara"],
                    item_name="Desk",
                    category="furniture",
                    price=Decimal("150"),
                ),
            ]
        )
        await session.commit()
    return TestSession, ids


async def _donor_headers(client):
    resp = await client.post(
        "/auth/register/donor",
        json={
            "email": "dana@example.com",
            "password": "donorpass",
            "firstName": "Dana",
            "lastName": "Donor",
        },
    )
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['data']['token']}"}


def test_discovery_shows_only_verified_active_students():
    async def run():
        _, ids = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _donor_headers(client)

            resp = await client.get("/donors/students", headers=headers)
            assert resp.status_code == 200
            data = resp.json()["data"]
            names = [s["firstName"] for s in data["students"]]
            assert names == ["Alice", "Ben"]
            assert data["pagination"]["total"] == 2
            assert data["students"][0]["progressPercentage"] == 50
            # Facets cover active public students, verified or not
            assert "New York University" in data["filters"]["schools"]
            assert "University of Pennsylvania" not in data["filters"]["schools"]

            resp = await client.get(
                "/donors/students", headers=headers, params={"search": "physics"}
            )
            assert [s["firstName"] for s in resp.json()["data"]["students"]] == ["Ben"]

            resp = await client.get(
                "/donors/students",
                headers=headers,
                params={"fundingGoalMin": 3000, "urgency": "high"},
            )
            assert [s["firstName"] for s in resp.json()["data"]["students"]] == ["Alice"]

            resp = await client.get(
                "/donors/students",
                headers=headers,
                params={"sortBy": "goal-asc", "limit": 1, "page": 2},
            )
            data = resp.json()["data"]
            assert [s["firstName"] for s in data["students"]] == ["Alice"]
            assert data["pagination"]["hasPrev"] is True
            assert data["pagination"]["hasNext"] is False
            assert data["pagination"]["totalPages"] == 2

            resp = await client.get(
                "/donors/students", headers=headers, params={"limit": 500}
            )
            assert resp.status_code == 400

            resp = await client.get(
                "/donors/students", headers=headers, params={"sortBy": "random"}
            )
            assert resp.status_code == 400

            # Public browse uses the same visibility rules without a token
            resp = await client.get("/students/public")
            assert resp.status_code == 200
            assert resp.json()["data"]["pagination"]["total"] == 2

            resp = await client.get("/donors/students")
            assert resp.status_code == 401

    asyncio.run(run())


def test_discovery_sort_orders():
    async def run():
        TestSession, _ = await _setup_test_db()
        async with TestSession() as session:
            session.add(
                Student(
                    email="abby@ucla.edu",
                    password_hash="x",
                    first_name="Abby",
                    last_name="Zane",
                    school_name="University of California, Los Angeles",
                    funding_goal=Decimal("1500"),
                    verified=True,
                    last_active=datetime.utcnow() - timedelta(days=2),
                )
            )
            await session.commit()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _donor_headers(client)

            async def order(sort_by):
                resp = await client.get(
                    "/donors/students", headers=headers, params={"sortBy": sort_by}
                )
                assert resp.status_code == 200
                return [s["firstName"] for s in resp.json()["data"]["students"]]

            assert await order("recent") == ["Alice", "Ben", "Abby"]
            assert await order("name") == ["Abby", "Alice", "Ben"]
            assert await order("goal-desc") == ["Alice", "Ben", "Abby"]
            # Ben and Abby have raised nothing; the smaller goal goes first
            assert await order("progress") == ["Alice", "Abby", "Ben"]

    asyncio.run(run())


def test_student_detail_and_suggestions():
    async def run():
        _, ids = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _donor_headers(client)

            resp = await client.get(f"/donors/students/{ids['Alice']}", headers=headers)
            assert resp.status_code == 200
            detail = resp.json()["data"]
            assert [i["itemName"] for i in detail["registryItems"]] == [
                "Laptop",
                "Textbooks",
            ]
            assert detail["stats"]["goalProgress"] == 50
            assert detail["isBookmarked"] is False

            resp = await client.get(f"/donors/students/{ids['Cara']}", headers=headers)
            assert resp.status_code == 404
            assert resp.json()["code"] == "not_found"

            resp = await client.get(
                "/donors/search/suggestions", headers=headers, params={"q": "comp"}
            )
            assert resp.json()["data"]["majors"] == ["Computer Science"]

            resp = await client.get(
                "/donors/search/suggestions", headers=headers, params={"q": "c"}
            )
            assert resp.json()["data"] == {"schools": [], "majors": [], "locations": []}

    asyncio.run(run())


def test_bookmarks_lifecycle():
    async def run():
        _, ids = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _donor_headers(client)

            resp = await client.post(
                "/donors/bookmarks",
                headers=headers,
                json={"studentId": ids["Alice"], "notes": "Follow up in May"},
            )
            assert resp.status_code == 201
            bookmark_id = resp.json()["data"]["id"]

            resp = await client.post(
                "/donors/bookmarks", headers=headers, json={"studentId": ids["Alice"]}
            )
            assert resp.status_code == 409

            resp = await client.post(
                "/donors/bookmarks", headers=headers, json={"studentId": ids["Dan"]}
            )
            assert resp.status_code == 404

            resp = await client.get(
                f"/donors/bookmarks/check/{ids['Alice']}", headers=headers
            )
            assert resp.json()["data"] == {"isBookmarked": True, "bookmarkId": bookmark_id}

            resp = await client.patch(
                f"/donors/bookmarks/{bookmark_id}",
                headers=headers,
                json={"notes": "Donated already"},
            )
            assert resp.json()["data"]["notes"] == "Donated already"

            resp = await client.get("/donors/bookmarks", headers=headers)
            bookmarks = resp.json()["data"]
            assert len(bookmarks) == 1
            assert bookmarks[0]["student"]["firstName"] == "Alice"

            resp = await client.delete(f"/donors/bookmarks/{bookmark_id}", headers=headers)
            assert resp.status_code == 200
            resp = await client.get("/donors/bookmarks", headers=headers)
            assert resp.json()["data"] == []

    asyncio.run(run())


def test_available_and_sponsored_items():
    async def run():
        _, ids = await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            headers = await _donor_headers(client)

            resp = await client.get("/donors/items/available", headers=headers)
            items = resp.json()["data"]["items"]
            # Funded items and items of unverified students are hidden
            assert [i["itemName"] for i in items] == ["Laptop", "Textbooks"]
            laptop = items[0]
            assert laptop["fundingProgress"] == 33
            assert laptop["student"]["firstName"] == "Alice"

            resp = await client.get(
                "/donors/items/available",
                headers=headers,
                params={"sortBy": "price-asc", "category": "books"},
            )
            assert [i["itemName"] for i in resp.json()["data"]["items"]] == ["Textbooks"]

            resp = await client.post(
                f"/donors/items/{laptop['id']}/sponsor",
                headers=headers,
                json={"amount": 700},
            )
            assert resp.status_code == 400
            assert resp.json()["code"] == "amount_invalid"

            resp = await client.post(
                f"/donors/items/{laptop['id']}/sponsor",
                headers=headers,
                json={"amount": 600, "message": "Happy studying"},
            )
            assert resp.status_code == 201
            donation = resp.json()["data"]
            assert donation["status"] == "completed"
            assert donation["receiptNumber"].startswith("GV")

            resp = await client.get("/donors/items/sponsored", headers=headers)
            sponsored = resp.json()["data"]
            assert len(sponsored) == 1
            assert sponsored[0]["item"]["fundedStatus"] == "funded"
            assert sponsored[0]["totalContributed"] == 600
            assert sponsored[0]["contributions"][0]["message"] == "Happy studying"

            resp = await client.get("/donors/items/available", headers=headers)
            assert [i["itemName"] for i in resp.json()["data"]["items"]] == ["Textbooks"]

    asyncio.run(run())
