"""Tests for viewing and updating application settings."""

import asyncio
import pathlib
import sys

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

# Allow importing the gradvillage package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from gradvillage.main import app
from gradvillage.database import get_session
from gradvillage.models import Admin, Donor
from gradvillage.auth import get_password_hash


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_session():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    async with TestSession() as session:
        session.add(
            Admin(
                email="admin@example.com",
                password_hash=get_password_hash("adminpass"),
                first_name="Ada",
                last_name="Admin",
            )
        )
        session.add(
            Donor(
                email="donor@example.com",
                password_hash=get_password_hash("donorpass"),
                first_name="Dana",
                last_name="Donor",
            )
        )
        await session.commit()

    return TestSession


def test_settings_endpoints():
    async def run():
        await _setup_test_db()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            # Initial settings read
            resp = await client.get("/settings/")
            assert resp.status_code == 200
            data = resp.json()["data"]
            assert data["siteName"] == "GradVillage"
            assert data["currencySymbol"] == "$"
            assert data["processingFeePercentage"] == 0
            assert data["publicRegistrationDisabled"] is False

            # Non-admin attempt to update settings
            resp = await client.post(
                "/auth/login", json={"email": "donor@example.com", "password": "donorpass"}
            )
            assert resp.status_code == 200
            donor_headers = {"Authorization": f"Bearer {resp.json()['data']['token']}"}
            resp = await client.put(
                "/settings/",
                headers=donor_headers,
                json={"siteName": "Hacked"},
            )
            assert resp.status_code == 403

            # Admin updates settings
            resp = await client.post(
                "/auth/login/admin",
                json={"email": "admin@example.com", "password": "adminpass"},
            )
            assert resp.status_code == 200
            admin_headers = {"Authorization": f"Bearer {resp.json()['data']['token']}"}
            resp = await client.put(
                "/settings/",
                headers=admin_headers,
                json={"siteName": "GradVillage Beta", "processingFeePercentage": 3.5},
            )
            assert resp.status_code == 200
            data = resp.json()["data"]
            assert data["siteName"] == "GradVillage Beta"
            assert data["processingFeePercentage"] == 3.5

            resp = await client.put(
                "/settings/",
                headers=admin_headers,
                json={"processingFeePercentage": 150},
            )
            assert resp.status_code == 400

            # Updated values persist on subsequent read
            resp = await client.get("/settings/")
            assert resp.status_code == 200
            data = resp.json()["data"]
            assert data["siteName"] == "GradVillage Beta"
            assert data["currencySymbol"] == "$"

    asyncio.run(run())
