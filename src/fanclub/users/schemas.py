"""Request/response schemas for user endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class RegisterRequest(BaseModel):
    """Registration request."""

    username: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    name: str | None = Field(None, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class ProfileUpdateRequest(BaseModel):
    """Admin profile update. Only the fields that are sent are changed."""

    username: str | None = Field(None, min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr | None = None
    name: str | None = Field(None, max_length=128)
    avatar: str | None = None
    cover: str | None = None

    @field_validator("username", "email")
    @classmethod
    def reject_null(cls, v: str | None) -> str:
        """Username and email can be changed but never cleared."""
        if v is None:
            msg = "may not be null"
            raise ValueError(msg)
        return v


class UserResponse(BaseModel):
    """Full user profile response."""

    id: int
    username: str
    email: str
    name: str | None = None
    avatar: str | None = None
    cover: str | None = None
    referral_code: str | None = None
    role_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
