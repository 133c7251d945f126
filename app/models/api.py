"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.

Request fields are optional at the schema level on purpose: a missing field
reaches the service layer and comes back as a 400 MissingFieldError with a
readable message instead of a schema 422.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.models.domain import Account, Resource, SweepResult

# ============================================================================
# Auth Models
# ============================================================================


class SignupRequest(BaseModel):
    """POST /api/auth/signup request body."""

    username: str | None = Field(None, max_length=255)
    email: str | None = Field(None, max_length=255)
    password: str | None = Field(None, max_length=1024)


class LoginRequest(BaseModel):
    """POST /api/auth/login request body."""

    email: str | None = Field(None, max_length=255)
    password: str | None = Field(None, max_length=1024)


class VerifyRequest(BaseModel):
    """POST /api/auth/verify request body. The cookie takes precedence."""

    token: str | None = Field(None, max_length=512)


class UserInfo(BaseModel):
    """Public view of an account. Never carries the credential digest."""

    id: str
    username: str
    email: str
    created_at: datetime
    last_login_at: datetime | None = None

    @classmethod
    def from_account(cls, account: Account) -> "UserInfo":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class AuthResponse(BaseModel):
    """Signup/login response: the session token is also set as a cookie."""

    token: str
    expires_at: datetime
    user: UserInfo


class VerifyResponse(BaseModel):
    """POST /api/auth/verify response."""

    authenticated: bool
    user: UserInfo | None = None


class LogoutResponse(BaseModel):
    """POST /api/auth/logout response."""

    success: bool = True


# ============================================================================
# Resource Models
# ============================================================================


class ResourceResponse(BaseModel):
    """Resource descriptor returned by upload and describe."""

    name: str
    url: str
    content_type: str
    size: int
    created_at: datetime
    owner_id: str | None = None
    is_ephemeral: bool
    expires_at: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceResponse":
        return cls(
            name=resource.name,
            url=f"/i/{resource.name}",
            content_type=resource.content_type,
            size=resource.size,
            created_at=resource.created_at,
            owner_id=resource.owner_id,
            is_ephemeral=resource.is_ephemeral,
            expires_at=resource.expires_at,
            metadata=dict(resource.metadata),
        )


class DeleteResourceResponse(BaseModel):
    """DELETE /api/resources/{name} response."""

    name: str
    deleted: bool = True


class SweepResponse(BaseModel):
    """POST /internal/sweep response."""

    scanned: int
    purged: int
    orphans_removed: int
    failed: int

    @classmethod
    def from_result(cls, result: SweepResult) -> "SweepResponse":
        return cls(
            scanned=result.scanned,
            purged=result.purged,
            orphans_removed=result.orphans_removed,
            failed=result.failed,
        )


# ============================================================================
# Health Check Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    store: Literal["connected", "disconnected"]
    store_backend: str
    timestamp: str
