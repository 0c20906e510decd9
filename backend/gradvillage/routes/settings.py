"""Endpoints for viewing and updating site-wide settings."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.acl import ROLE_ADMIN
from gradvillage.auth import Identity, require_role
from gradvillage.crud import get_settings, save_settings
from gradvillage.database import get_session
from gradvillage.schemas import Envelope, SettingsRead, SettingsUpdate

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/", response_model=Envelope[SettingsRead])
async def read_settings(db: AsyncSession = Depends(get_session)):
    """Retrieve the current configuration values."""
    settings = await get_settings(db)
    return Envelope(data=SettingsRead.model_validate(settings))


@router.put("/", response_model=Envelope[SettingsRead])
async def update_settings(
    data: SettingsUpdate,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_role(ROLE_ADMIN)),
):
    """Update settings; only admins may change configuration."""
    settings = await get_settings(db)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(settings, field, value)
    updated = await save_settings(db, settings)
    return Envelope(message="Settings updated", data=SettingsRead.model_validate(updated))
