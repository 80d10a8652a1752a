"""
Career Sewa API — User Request/Response Schemas
=================================================

What:  Pydantic models defining the user API contract.
Why:   Input validation with field-level messages that the 422 translator
       surfaces verbatim, and response models that cannot leak secrets.

Design Decision:
    Schemas are separate from the SQLAlchemy model so that password_hash and
    the token columns can never be serialized by accident: UserResponse
    simply does not declare them.
"""

import re
import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

# Same shape the account model has always accepted: word characters with
# optional single dots/dashes, a domain, and a 2-3 letter suffix.
_EMAIL_PATTERN = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")


class UserCreate(BaseModel):
    """Body of POST /api/users."""

    # Absent fields default to "" so the validators below report them by name
    fullname: str = Field(default="", validate_default=True, description="Full name, 2-100 characters")
    email: str = Field(default="", validate_default=True, description="Unique email address")
    password: str = Field(
        default="", validate_default=True, description="Plain-text password, hashed before storage"
    )
    role: Literal["job_seeker", "employer", "admin"] = Field(default="job_seeker")

    @field_validator("fullname")
    @classmethod
    def validate_fullname(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Full name is required")
        if len(v) < 2:
            raise ValueError("Full name must be at least 2 characters long")
        if len(v) > 100:
            raise ValueError("Full name cannot exceed 100 characters")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("Email is required")
        if not _EMAIL_PATTERN.match(v):
            raise ValueError(f"{v} is not a valid email address!")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters long")
        return v


class UserResponse(BaseModel):
    """Public representation of a user. No secret fields by construction."""

    id: uuid.UUID
    fullname: str
    email: str
    display_name: str
    role: str
    is_active: bool
    email_verified: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total_count: int
