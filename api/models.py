"""
API request and response models for Storekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

No response model has a field for a password, digest, salt, ciphertext or
signing material -- a route cannot leak one by accident.
"""

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Account

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_MAX_LENGTH = 100
PASSWORD_MAX_LENGTH = 255
RESET_TOKEN_MAX_LENGTH = 64

# Emails are stripped; passwords are not -- surrounding spaces are part of the secret.
_Email = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=EMAIL_MAX_LENGTH)]
_Password = Annotated[str, StringConstraints(min_length=1, max_length=PASSWORD_MAX_LENGTH)]
_ResetToken = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=RESET_TOKEN_MAX_LENGTH)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CredentialModeEnum(str, Enum):
    hashed = "hashed"
    encrypted = "encrypted"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Request body for registration, credential checks and login."""

    email: _Email
    password: _Password


class LoginRequest(CredentialsRequest):
    """Request body for POST /api/v1/auth/login."""


class ResetLinkRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-link."""

    email: _Email


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    email: _Email
    token: _ResetToken
    password: _Password


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Created-account summary. Never includes the credential."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    credential_mode: CredentialModeEnum
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Factory Method -- the mapping lives next to the output model."""
        return cls(
            id=account.id or 0,
            email=account.email,
            credential_mode=CredentialModeEnum(account.mode.value),
            created_at=account.created_at or "",
        )


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    email: str


class ResetLinkResponse(BaseModel):
    """Response for POST /api/v1/auth/reset-link.

    link is the URL the caller delivers out of band (e-mail, SMS).
    """

    model_config = ConfigDict(frozen=True)

    link: str


class LinkStatusResponse(BaseModel):
    """Response for GET /api/v1/auth/change-password/{token}."""

    model_config = ConfigDict(frozen=True)

    valid: bool


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the verified claims of the caller's token."""

    model_config = ConfigDict(frozen=True)

    email: str
    expires_at: int
    claims: dict[str, Any] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
