"""Aggregate import for all API route modules."""

from . import (
    auth,
    donors,
    students,
    donations,
    admin,
    admin_verification,
    donation_admin,
    settings,
)

__all__ = [
    "auth",
    "donors",
    "students",
    "donations",
    "admin",
    "admin_verification",
    "donation_admin",
    "settings",
]
