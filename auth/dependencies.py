"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

The client sends `Authorization: Bearer <token>` where <token> came from
POST /api/v1/auth/login. The token is validated by the TokenIssuer held on
the AuthService in app.state; any failure (bad signature, expired, malformed)
collapses into the same 401.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.service import AuthService


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_claims(request: Request) -> dict | None:
    """Return the verified token claims, or None on any failure. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    service: AuthService = request.app.state.auth_service
    return service.tokens.decode(token)


def get_current_claims(request: Request) -> dict:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: dict = Depends(get_current_claims)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims
