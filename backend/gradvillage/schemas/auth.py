from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import EmailStr, Field

from gradvillage.schemas.common import CamelModel
from gradvillage.schemas.donor import DonorRead
from gradvillage.schemas.student import StudentRead


class LoginRequest(CamelModel):
    email: EmailStr
    password: str
    user_type: Optional[Literal["donor", "student"]] = None


class AdminLoginRequest(CamelModel):
    email: EmailStr
    password: str


class AdminCreate(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    role: Literal["admin", "super_admin"] = "admin"


class AdminRead(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class AuthResult(CamelModel):
    token: str
    token_type: str = "bearer"
    user_type: str
    user: Union[StudentRead, DonorRead, AdminRead]


class NeedsAdmin(CamelModel):
    needs_admin: bool


class Me(CamelModel):
    kind: str
    role: str
    user: Union[StudentRead, DonorRead, AdminRead]
