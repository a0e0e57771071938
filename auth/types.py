"""Pydantic models for auth domain."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class Session(BaseModel):
    """Provider-issued proof that someone is signed in."""

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID = Field(..., description="Provider-assigned identity id")
    email: EmailStr
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime


class UserRecord(BaseModel):
    """Application-level profile of a user. Soft-deleted records are kept."""

    id: UUID
    email: EmailStr
    name: str
    created_at: datetime
    last_login_at: datetime
    login_count: int = 0
    deleted: bool = False
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class PendingSignIn(BaseModel):
    """Email awaiting link confirmation, plus the name typed at request time."""

    email: EmailStr
    name: str | None = None


class SignInLinkRequest(BaseModel):
    """Validated input for issuing a sign-in link."""

    email: EmailStr
    continue_url: str = Field(..., min_length=1)


class SignInLinkRecord(BaseModel):
    """A sign-in link token awaiting verification."""

    token: str = Field(..., description="URL-safe token")
    email: EmailStr
    continue_url: str
    created_at: datetime
    expires_at: datetime
    used: bool  # Required - fail closed, no default


class AuthState(BaseModel):
    """Observable auth state. Snapshots are immutable; the workflow swaps them."""

    current_user: UserRecord | None = None
    loading: bool = True
    error: str | None = None
    pending_email: str | None = None

    model_config = {"frozen": True}

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None
