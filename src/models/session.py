"""Login session and refresh token models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class SessionStatus(str, Enum):
    """Lifecycle state of a login session."""

    ACTIVE = "active"
    LOGGED_OUT = "logged_out"
    EXPIRED = "expired"
    REVOKED = "revoked"


class TokenFailure(str, Enum):
    """Why a refresh token was rejected."""

    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"
    SESSION_INACTIVE = "session_inactive"


class ClientMetadata(BaseModel):
    """Client details captured at login."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    browser: str = "Unknown"
    browser_version: str = "Unknown"
    operating_system: str = "Unknown"
    device: str = "Unknown"
    device_type: str = "Unknown"


class LoginSession(BaseModel):
    """A tracked login. Sessions are never deleted, only closed."""

    id: UUID
    user_id: int
    branch_id: int
    login_at: datetime
    last_activity_at: datetime
    logout_at: Optional[datetime] = None
    client: ClientMetadata = ClientMetadata()
    status: SessionStatus = SessionStatus.ACTIVE
    logout_reason: Optional[str] = None


class RefreshTokenRecord(BaseModel):
    """A stored refresh token joined with its owning session's status."""

    id: UUID
    user_id: int
    session_id: UUID
    token_hash: str
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    created_at: datetime
    session_status: SessionStatus


class TokenValidation(BaseModel):
    """Outcome of validating (or rotating) a refresh token."""

    valid: bool
    reason: Optional[TokenFailure] = None
    session_id: Optional[UUID] = None
    user_id: Optional[int] = None
    refresh_token: Optional[str] = None

    @classmethod
    def failure(cls, reason: TokenFailure) -> "TokenValidation":
        return cls(valid=False, reason=reason)
