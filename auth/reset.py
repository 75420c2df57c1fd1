"""
auth/reset.py -- Single-use password reset links.

State machine per account:
    NoActiveReset --request_reset--> LinkIssued --consume--> NoActiveReset

Token design:
  secrets.token_urlsafe(16): 128 random bits, base64url without padding. The
  alphabet is [A-Za-z0-9_-], so the token can sit in a path segment or a
  query string without escaping.

  The token is stored on the account row (reset_token, UNIQUE). Issuing a new
  token overwrites the old one in a single UPDATE, so only the most recent
  link is ever valid.

Consumption:
  The new credential is always a fresh HashedCredential -- a completed reset
  migrates an encrypted-mode account to hashed mode. Writing it and clearing
  the token is one compare-and-swap statement in CredentialStore; a second
  consumption of the same token finds no matching row and fails.

Expiry:
  Optional. With ttl_seconds set, tokens older than the TTL are treated as
  absent by link_exists() and consume(), and purge_expired() clears them.
  purge_expired() never touches credentials.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from auth.errors import InvalidInput, Unauthorized, UnknownAccount
from auth.hashing import Hasher
from auth.models import HashedCredential
from auth.store import CredentialStore

logger = logging.getLogger("storekeeper.auth.reset")

RESET_TOKEN_BYTES = 16


def generate_reset_token() -> str:
    """Return a fresh URL-safe reset token with 128 bits of entropy."""
    return secrets.token_urlsafe(RESET_TOKEN_BYTES)


class ResetLinkWorkflow:
    def __init__(
        self,
        store: CredentialStore,
        hasher: Hasher,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.ttl_seconds = ttl_seconds or None
        self._clock = clock

    def _not_before(self) -> Optional[float]:
        if self.ttl_seconds is None:
            return None
        return self._clock() - self.ttl_seconds

    def request_reset(self, email: str) -> str:
        """Issue a reset token for email and return it.

        Raises UnknownAccount if no account has this email. Any previously
        issued token for the account stops working.
        """
        token = generate_reset_token()
        if not self.store.set_reset_token(email, token, issued_at=self._clock()):
            raise UnknownAccount()
        logger.info("Reset link issued for %s", email)
        return token

    def link_exists(self, token: str) -> bool:
        """Return True if token is an outstanding, unexpired reset token. Read-only."""
        if not token:
            return False
        return self.store.reset_token_exists(token, not_before=self._not_before())

    def consume(self, email: str, token: str, new_plaintext: str) -> None:
        """Set a new hashed password for email, authorized by token.

        Raises InvalidInput for an empty new password, Unauthorized if the
        (email, token) pair does not match an outstanding reset.
        """
        if not new_plaintext:
            raise InvalidInput("password", "must not be empty")
        if not email or not token:
            raise Unauthorized("Operation not authorized.")
        hashed = self.hasher.hash(new_plaintext)
        credential = HashedCredential(digest=hashed.digest, salt=hashed.salt)
        if not self.store.consume_reset_token(email, token, credential, not_before=self._not_before()):
            logger.info("Rejected reset consumption for %s", email)
            raise Unauthorized("Operation not authorized.")
        logger.info("Password reset completed for %s", email)

    def purge_expired(self) -> int:
        """Clear reset tokens older than the TTL. Returns the number cleared (0 without a TTL)."""
        not_before = self._not_before()
        if not_before is None:
            return 0
        cleared = self.store.clear_expired_reset_tokens(issued_before=not_before)
        if cleared:
            logger.info("Purged %d expired reset token(s)", cleared)
        return cleared
