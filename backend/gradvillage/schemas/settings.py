"""Pydantic models for site-wide configuration settings."""

from typing import Optional

from pydantic import Field

from gradvillage.schemas.common import CamelModel


class SettingsRead(CamelModel):
    site_name: str
    currency_symbol: str
    processing_fee_percentage: float
    receipt_base_url: str
    public_registration_disabled: bool


class SettingsUpdate(CamelModel):
    site_name: Optional[str] = None
    currency_symbol: Optional[str] = None
    processing_fee_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    receipt_base_url: Optional[str] = None
    public_registration_disabled: Optional[bool] = None
