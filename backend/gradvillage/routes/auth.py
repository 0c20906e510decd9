# gradvillage/routes/auth.py
"""Authentication endpoints: registration, login and token issuance."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from gradvillage.auth import (
    Identity,
    authenticate,
    get_current_identity,
    get_optional_identity,
    get_password_hash,
    token_for,
)
from gradvillage.acl import (
    KIND_ADMIN,
    KIND_DONOR,
    KIND_STUDENT,
    ROLE_SUPER_ADMIN,
)
from gradvillage.database import get_session
from gradvillage.models import Admin, Donor, Student
from gradvillage.crud import count_admins, create_account, get_settings, touch_login
from gradvillage.schemas import (
    AdminCreate,
    AdminLoginRequest,
    AdminRead,
    AuthResult,
    DonorCreate,
    DonorRead,
    Envelope,
    LoginRequest,
    Me,
    NeedsAdmin,
    StudentCreate,
    StudentRead,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _read(kind: str, principal):
    if kind == KIND_STUDENT:
        return StudentRead.from_student(principal)
    if kind == KIND_DONOR:
        return DonorRead.model_validate(principal)
    return AdminRead.model_validate(principal)


def _auth_result(kind: str, principal) -> AuthResult:
    return AuthResult(
        token=token_for(kind, principal),
        user_type=kind,
        user=_read(kind, principal),
    )


def _invalid_credentials():
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "code": "auth_invalid_credentials",
            "message": "Invalid email or password",
        },
    )


def _check_active(principal):
    if not principal.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Account is deactivated"},
        )


async def _ensure_registration_open(db: AsyncSession):
    settings = await get_settings(db)
    if settings.public_registration_disabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Registration is currently closed"},
        )


@router.post(
    "/register/donor",
    response_model=Envelope[AuthResult],
    status_code=status.HTTP_201_CREATED,
)
async def register_donor(data: DonorCreate, db: AsyncSession = Depends(get_session)):
    await _ensure_registration_open(db)
    donor = Donor(
        email=data.email,
        password_hash=get_password_hash(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        preferences={
            "emailNotifications": True,
            "publicProfile": False,
            "preferredDonationAmount": None,
        },
    )
    donor = await create_account(db, donor)
    logger.info("Donor %s registered", donor.id)
    return Envelope(
        message="Donor registered successfully", data=_auth_result(KIND_DONOR, donor)
    )


@router.post(
    "/register/student",
    response_model=Envelope[AuthResult],
    status_code=status.HTTP_201_CREATED,
)
async def register_student(
    data: StudentCreate, db: AsyncSession = Depends(get_session)
):
    await _ensure_registration_open(db)
    student = Student(
        email=data.email,
        password_hash=get_password_hash(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        school_name=data.school_name,
        major=data.major,
        graduation_year=data.graduation_year,
        bio=data.bio,
        location=data.location,
        funding_goal=data.funding_goal,
    )
    student = await create_account(db, student)
    logger.info("Student %s registered", student.id)
    return Envelope(
        message="Student registered successfully",
        data=_auth_result(KIND_STUDENT, student),
    )


@router.post("/login", response_model=Envelope[AuthResult])
async def login(data: LoginRequest, db: AsyncSession = Depends(get_session)):
    """JSON login for donors and students."""
    kinds = [data.user_type] if data.user_type else [KIND_DONOR, KIND_STUDENT]
    for kind in kinds:
        principal = await authenticate(db, kind, data.email, data.password)
        if principal is not None:
            _check_active(principal)
            await touch_login(db, principal)
            logger.info("%s %s logged in", kind, principal.id)
            return Envelope(message="Login successful", data=_auth_result(kind, principal))
    logger.warning("Failed login for %s", data.email)
    raise _invalid_credentials()


@router.post("/login/admin", response_model=Envelope[AuthResult])
async def login_admin(data: AdminLoginRequest, db: AsyncSession = Depends(get_session)):
    admin = await authenticate(db, KIND_ADMIN, data.email, data.password)
    if admin is None:
        logger.warning("Failed admin login for %s", data.email)
        raise _invalid_credentials()
    _check_active(admin)
    await touch_login(db, admin)
    logger.info("Admin %s logged in", admin.id)
    return Envelope(message="Login successful", data=_auth_result(KIND_ADMIN, admin))


@router.post("/token")
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_session),
):
    """OAuth2 password flow used by the interactive docs."""
    for kind in (KIND_ADMIN, KIND_DONOR, KIND_STUDENT):
        principal = await authenticate(db, kind, form_data.username, form_data.password)
        if principal is not None:
            _check_active(principal)
            return {"access_token": token_for(kind, principal), "token_type": "bearer"}
    logger.warning("Failed OAuth login for %s", form_data.username)
    raise _invalid_credentials()


@router.get("/needs-admin", response_model=Envelope[NeedsAdmin])
async def needs_admin(db: AsyncSession = Depends(get_session)):
    """Tell the admin console whether the first-run setup screen is needed."""
    return Envelope(data=NeedsAdmin(needs_admin=await count_admins(db) == 0))


@router.post(
    "/register/admin",
    response_model=Envelope[AuthResult],
    status_code=status.HTTP_201_CREATED,
)
async def register_admin(
    data: AdminCreate,
    db: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_optional_identity),
):
    """Create an admin.

    While no admin exists anyone may call this and becomes ``super_admin``.
    Afterwards only a ``super_admin`` may add admins.
    """
    first_admin = await count_admins(db) == 0
    if not first_admin and (identity is None or identity.role != ROLE_SUPER_ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "forbidden",
                "message": "Only a super admin can create admin accounts",
            },
        )
    admin = Admin(
        email=data.email,
        password_hash=get_password_hash(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        role=ROLE_SUPER_ADMIN if first_admin else data.role,
    )
    admin = await create_account(db, admin)
    logger.info("Admin %s created with role %s", admin.id, admin.role)
    return Envelope(message="Admin created", data=_auth_result(KIND_ADMIN, admin))


@router.get("/me", response_model=Envelope[Me])
async def read_me(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_session),
):
    model = {KIND_STUDENT: Student, KIND_DONOR: Donor, KIND_ADMIN: Admin}[identity.kind]
    principal = await db.get(model, identity.id)
    return Envelope(
        data=Me(kind=identity.kind, role=identity.role, user=_read(identity.kind, principal))
    )
