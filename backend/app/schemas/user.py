"""
Account schemas: traveler registration, staff onboarding, login and profile.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

PHONE_PATTERN = r"^\+?\d{7,15}$"


class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_]+$")
    password: str = Field(..., min_length=8, max_length=128)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class StaffCreate(UserCreate):
    """Admins onboard drivers (who scan tickets) and other admins."""

    role: Literal["admin", "driver"]


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    username: str
    phone: Optional[str]
    role: str
    is_active: bool
    loyalty_points: int
    created_at: datetime

    model_config = {"from_attributes": True}


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
