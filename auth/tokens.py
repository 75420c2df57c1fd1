"""
auth/tokens.py -- JWT bearer token issuing and validation.

Security design decisions:
  JWT: python-jose with an HMAC algorithm (HS256 by default). Tokens are
       signed, not encrypted -- never put secrets in claims. They carry the
       account email (as both `email` and `sub`), issue time, expiry, and any
       opaque extra claims the caller supplies.

  Expiry: a fixed offset from issuance (30 days by default). Issuing has no
       side effects; nothing is persisted.

  Verification returns None on any failure (bad signature, expired,
       malformed, missing email). The route layer turns None into a 401.

  Signing key: injected at construction from Settings. An empty key raises
       SigningKeyMissing immediately, so a misconfigured process fails at
       startup rather than on the first login.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from jose import JWTError, jwt

from auth.errors import InvalidInput, SigningKeyMissing

logger = logging.getLogger("storekeeper.auth.tokens")

_RESERVED_CLAIMS = frozenset({"sub", "email", "iat", "exp"})
_ALLOWED_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})


class TokenIssuer:
    """Mint and validate signed bearer tokens.

    Usage:
        issuer = TokenIssuer(signing_key, expire_days=30)
        token = issuer.issue({"email": "a@x.com"})
        claims = issuer.decode(token)   # dict or None
    """

    def __init__(self, signing_key: str, algorithm: str = "HS256", expire_days: int = 30) -> None:
        if not signing_key:
            raise SigningKeyMissing()
        if algorithm not in _ALLOWED_ALGORITHMS:
            raise ValueError(f"algorithm must be one of {sorted(_ALLOWED_ALGORITHMS)}")
        self._signing_key = signing_key
        self.algorithm = algorithm
        self.expire = timedelta(days=expire_days)

    def __repr__(self) -> str:
        return f"TokenIssuer(algorithm={self.algorithm!r}, expire={self.expire})"

    @property
    def expires_in(self) -> int:
        """Token lifetime in seconds."""
        return int(self.expire.total_seconds())

    def issue(self, claims: Mapping[str, Any]) -> str:
        """Encode a signed JWT for the given identity claims.

        claims must contain a non-empty "email". Other keys are copied as-is,
        except the registered claims (sub, email, iat, exp), which this
        method always sets itself.
        """
        email = claims.get("email")
        if not email:
            raise InvalidInput("email", "token claims must include an email")
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {k: v for k, v in claims.items() if k not in _RESERVED_CLAIMS}
        payload.update(
            {
                "sub": email,
                "email": email,
                "iat": int(now.timestamp()),
                "exp": int((now + self.expire).timestamp()),
            }
        )
        return jwt.encode(payload, self._signing_key, algorithm=self.algorithm)

    def decode(self, token: str) -> Optional[dict]:
        """Decode and verify a JWT. Returns the payload dict or None on any failure.

        Only this issuer's algorithm is accepted, which rules out "none" and
        algorithm-confusion tokens.
        """
        try:
            payload = jwt.decode(token, self._signing_key, algorithms=[self.algorithm])
        except JWTError as exc:
            logger.debug("Bearer token rejected: %s", type(exc).__name__)
            return None
        if not payload.get("email") or "exp" not in payload:
            return None
        return payload
