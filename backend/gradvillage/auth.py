# gradvillage/auth.py
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from gradvillage.database import get_session
from gradvillage.models import Student, Donor, Admin
from gradvillage.acl import (
    KIND_STUDENT,
    KIND_DONOR,
    KIND_ADMIN,
    ADMIN_KINDS,
    role_satisfies,
)

import os

SECRET_KEY = os.getenv("SECRET_KEY", "gradvillage-dev-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
# Shared with the payment gateway; unset disables webhook confirmation.
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# auto_error is off so guests can reach endpoints that accept an optional token.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

MODELS_BY_KIND = {
    KIND_STUDENT: Student,
    KIND_DONOR: Donor,
    KIND_ADMIN: Admin,
}


@dataclass(frozen=True)
class Identity:
    """Claims of the authenticated principal, passed explicitly to handlers."""

    kind: str
    id: int
    role: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.kind in ADMIN_KINDS


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def role_for(kind: str, principal) -> str:
    if kind == KIND_ADMIN:
        return principal.role
    return kind


async def authenticate(db: AsyncSession, kind: str, email: str, password: str):
    model = MODELS_BY_KIND[kind]
    result = await db.execute(select(model).where(model.email == email.lower()))
    principal = result.scalar_one_or_none()
    if not principal or not verify_password(password, principal.password_hash):
        return None
    return principal


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for(kind: str, principal) -> str:
    return create_access_token(
        data={"sub": f"{kind}:{principal.id}", "role": role_for(kind, principal)}
    )


async def _resolve_identity(db: AsyncSession, token: str) -> Identity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        sub: str = payload.get("sub")
        if not sub or ":" not in sub:
            raise credentials_exception
        kind, raw_id = sub.split(":", 1)
        principal_id = int(raw_id)
    except (JWTError, ValueError):
        raise credentials_exception
    model = MODELS_BY_KIND.get(kind)
    if model is None:
        raise credentials_exception
    principal = await db.get(model, principal_id)
    if principal is None:
        raise credentials_exception
    if not principal.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )
    return Identity(
        kind=kind,
        id=principal.id,
        role=role_for(kind, principal),
        email=principal.email,
    )


async def get_current_identity(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> Identity:
    """Return the caller's claims or reject the request with 401."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await _resolve_identity(db, token)


async def get_optional_identity(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> Identity | None:
    """Like ``get_current_identity`` but lets anonymous callers through."""
    if not token:
        return None
    return await _resolve_identity(db, token)


def require_role(*roles: str):
    """Dependency factory to require one of the given roles."""

    async def role_dependency(
        identity: Identity = Depends(get_current_identity),
    ) -> Identity:
        if not role_satisfies(identity.role, roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return identity

    return role_dependency


async def require_payment_confirmer(
    x_payment_secret: str | None = Header(None),
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> str:
    """Allow the payment gateway (shared secret header) or an admin.

    Returns a label for the confirming party, used in the logs.
    """
    if x_payment_secret is not None:
        if PAYMENT_WEBHOOK_SECRET and secrets.compare_digest(
            x_payment_secret, PAYMENT_WEBHOOK_SECRET
        ):
            return "gateway"
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid payment secret",
        )
    identity = await get_current_identity(token, db)
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return f"admin:{identity.id}"
