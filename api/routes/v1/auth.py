"""
api/routes/v1/auth.py -- Account, login and password-reset REST endpoints.

Routes:
  POST /api/v1/accounts/{mode}                  -- register (mode: hashed | encrypted)
  POST /api/v1/accounts/{mode}/check            -- verify email/password, no token
  POST /api/v1/auth/login                       -- password login; returns bearer JWT
  GET  /api/v1/auth/me                          -- claims of the caller's token (requires auth)
  POST /api/v1/auth/reset-link                  -- issue a single-use reset link
  GET  /api/v1/auth/change-password/{token}     -- is this reset link still valid?
  POST /api/v1/auth/change-password             -- consume the link, set a new password

Security:
  [H2] POST /login and POST /reset-link are rate-limited per IP.
  [C1] AuthService.login() equalizes timing for unknown emails -- use it,
       never inline a store lookup + hash compare here.
  [C2] Unknown email on reset-link is rendered exactly like a bad login
       (401, generic message); see UnknownAccount.
  [M5] Cache-Control: no-store on responses that carry a token or link.

Route handlers are plain `def`: AuthService blocks on storage I/O, so
FastAPI runs them in its thread pool.

AuthError subclasses raised by the service propagate to the handler in
api/main.py, which renders the shared error envelope.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import (
    AccountResponse,
    ChangePasswordRequest,
    CredentialModeEnum,
    CredentialsRequest,
    LinkStatusResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    ResetLinkRequest,
    ResetLinkResponse,
)
from auth.dependencies import get_current_claims
from auth.models import CredentialMode
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/accounts/{mode}:                public -- self-registration
# - POST /api/v1/accounts/{mode}/check:          public -- credential check
# - POST /api/v1/auth/login:                     public -- login endpoint must be unauthenticated
# - GET  /api/v1/auth/me:                        requires auth (get_current_claims)
# - POST /api/v1/auth/reset-link:                public -- the user has lost their password
# - GET  /api/v1/auth/change-password/{token}:   public -- the token is the authorization
# - POST /api/v1/auth/change-password:           public -- the token is the authorization
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.post("/accounts/{mode}", response_model=AccountResponse, status_code=201)
def register(request: Request, mode: CredentialModeEnum, body: CredentialsRequest) -> AccountResponse:
    """Create an account storing the password in the given mode.

    hashed is the preferred mode. encrypted keeps the server able to recover
    the password and exists for compatibility with older clients.
    """
    account = _service(request).register(body.email, body.password, CredentialMode(mode.value))
    return AccountResponse.from_account(account)


@router.post("/accounts/{mode}/check", response_model=MessageResponse)
def check_credentials(request: Request, mode: CredentialModeEnum, body: CredentialsRequest) -> MessageResponse:
    """Verify email/password without issuing a token.

    The path mode must match the account's stored mode; a mismatch is
    rejected with the same 401 as a wrong password.
    """
    _service(request).verify_only(body.email, body.password, CredentialMode(mode.value))
    return MessageResponse(message="Credentials valid.")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)  # [H2] below @router, so FastAPI registers the rate-limited wrapper
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password; return a bearer token.

    Wrong email and wrong password produce the same 401 so the response does
    not reveal which accounts exist.
    """
    result = _service(request).login(body.email, body.password)
    response.headers.update(_NO_STORE)  # [M5]
    return LoginResponse(
        access_token=result.token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=result.expires_in,
        email=result.email,
    )


@router.get("/auth/me", response_model=MeResponse)
async def me(claims: dict = Depends(get_current_claims)) -> MeResponse:
    """Return the verified claims of the caller's bearer token."""
    return MeResponse(
        email=claims["email"],
        expires_at=int(claims["exp"]),
        claims={k: v for k, v in claims.items() if k not in {"email", "exp"}},
    )


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/reset-link", response_model=ResetLinkResponse)
@limiter.limit(login_rate_limit)  # [H2]
def request_reset_link(request: Request, response: Response, body: ResetLinkRequest) -> ResetLinkResponse:
    """Issue a reset link for the account and return it for out-of-band delivery.

    A new request supersedes any link issued earlier for the same account.
    """
    token = _service(request).request_reset(body.email)
    response.headers.update(_NO_STORE)  # [M5]
    return ResetLinkResponse(link=_reset_link(request, token))


@router.get("/auth/change-password/{token}", response_model=LinkStatusResponse)
def check_reset_link(request: Request, token: str) -> LinkStatusResponse:
    """Report whether a reset link is still valid. Does not consume it."""
    return LinkStatusResponse(valid=_service(request).check_link_valid(token))


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(request: Request, body: ChangePasswordRequest) -> MessageResponse:
    """Set a new password using a reset link. The link stops working afterwards."""
    _service(request).consume_reset(body.email, body.token, body.password)
    return MessageResponse(message="Password changed.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _reset_link(request: Request, token: str) -> str:
    """Build the absolute URL a user follows to reach the reset form.

    PUBLIC_BASE_URL wins when set, so links stay correct behind a proxy that
    rewrites the Host header.
    """
    base = request.app.state.settings.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}/api/v1/auth/change-password/{token}"
