"""
Account and token schemas.

Registration rules:
    username  3-30 of [A-Za-z0-9_], stored lower-case
    password  6-128 characters with an upper-case letter, a lower-case
              letter and a digit
    names     1-50 characters after trimming

No response model exposes the password hash.
"""

import re
from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"\d"), "one number"),
)


def _normalize_username(v: str) -> str:
    if not USERNAME_PATTERN.match(v):
        raise ValueError("Username can only contain letters, numbers, and underscores")
    return v.lower()


def _strip_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Name cannot be empty or whitespace")
    return v


def _check_password(v: str) -> str:
    for pattern, requirement in PASSWORD_RULES:
        if not pattern.search(v):
            raise ValueError(f"Password must contain at least {requirement}")
    return v


Username = Annotated[
    str,
    Field(min_length=3, max_length=30, examples=["booklover"]),
    AfterValidator(_normalize_username),
]
PersonName = Annotated[str, Field(min_length=1, max_length=50), AfterValidator(_strip_name)]
Password = Annotated[
    str,
    Field(min_length=6, max_length=128, examples=["Secret123"]),
    AfterValidator(_check_password),
]


class UserCreate(BaseModel):
    """Body of POST /auth/register."""

    email: EmailStr
    username: Username
    password: Password
    first_name: PersonName
    last_name: PersonName


class UserPublicResponse(BaseModel):
    """Author details shown next to books and reviews."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    first_name: str
    last_name: str


class UserResponse(UserPublicResponse):
    """The caller's own profile."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "email": "jane@example.com",
                "username": "booklover",
                "first_name": "Jane",
                "last_name": "Doe",
                "is_active": True,
                "created_at": "2024-01-15T10:30:00Z",
            }
        },
    )

    email: EmailStr
    is_active: bool
    created_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class RefreshTokenRequest(BaseModel):
    """Optional body for /auth/refresh when the cookie is not sent."""

    refresh_token: str | None = None
