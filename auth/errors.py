"""
auth/errors.py -- Exception taxonomy for the credential subsystem.

Each exception carries an error_code and an http_status_code so the API layer
can render every failure through a single handler without a lookup table.

Uniform rejection rule: Unauthorized and everything rendered like it
(UnknownAccount, InvalidCiphertext) expose the same generic message. The
specific cause is available to server-side logs via the exception type, never
to the client. InvalidInput is the only failure whose message names a field.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Root exception for all credential-subsystem errors."""

    http_status_code: int = 400
    error_code: str = "auth_error"

    def __init__(self, message: str, detail: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.detail = detail or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.error_code, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class InvalidInput(AuthError):
    """A request field is empty or malformed. User-correctable."""

    http_status_code = 422
    error_code = "invalid_input"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(
            message=f"Invalid {field}: {reason}",
            detail={"field": field, "reason": reason},
        )


class Unauthorized(AuthError):
    """Credential mismatch or unauthorized reset. Always generic."""

    http_status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Invalid credentials.") -> None:
        super().__init__(message=message)


class UnknownAccount(Unauthorized):
    """No account exists for the email.

    Subclasses Unauthorized so the API boundary renders it identically to a
    wrong password -- clients cannot enumerate accounts.
    """

    def __init__(self) -> None:
        super().__init__()


class InvalidCiphertext(AuthError):
    """Stored ciphertext was not produced by this key/scheme (tamper or corruption)."""

    http_status_code = 401
    error_code = "unauthorized"

    def __init__(self) -> None:
        super().__init__(message="Invalid credentials.")


class DuplicateEmail(AuthError):
    """Registration conflict: an account with this email already exists."""

    http_status_code = 409
    error_code = "conflict"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(message="An account with that email already exists.")


class SigningKeyMissing(AuthError):
    """TokenIssuer was constructed without a signing key. Startup-only."""

    http_status_code = 500
    error_code = "signing_key_missing"

    def __init__(self) -> None:
        super().__init__(message="No token signing key is configured.")
