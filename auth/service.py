"""
auth/service.py -- The credential operations exposed to the rest of the app.

AuthService composes Hasher, ReversibleCipher, TokenIssuer, ResetLinkWorkflow
and CredentialStore into six transport-agnostic operations:

  register(email, plaintext, mode)        -> Account      InvalidInput, DuplicateEmail
  login(email, plaintext)                 -> LoginResult  Unauthorized
  verify_only(email, plaintext, mode)     -> None         Unauthorized
  request_reset(email)                    -> str          UnknownAccount
  check_link_valid(token)                 -> bool
  consume_reset(email, token, plaintext)  -> None         InvalidInput, Unauthorized

Uniform rejection [C1]: unknown email and wrong password raise the same
Unauthorized. Unknown emails and encrypted-mode accounts each pay for one
digest computation against a dummy salt, so every lookup costs one KDF and
response time reveals neither whether the account exists nor its mode.

Every operation performs at most one store read and one store write and
holds no in-process lock, so handlers can call it from any thread.

Layer rule: imports core/ only in build_auth_service().
"""

from __future__ import annotations

import hmac
import logging
import re
from typing import TYPE_CHECKING, Any, Mapping, Optional

from sqlalchemy.exc import IntegrityError

from auth.cipher import ReversibleCipher
from auth.errors import DuplicateEmail, InvalidCiphertext, InvalidInput, Unauthorized
from auth.hashing import Hasher
from auth.models import Account, CredentialMode, EncryptedCredential, HashedCredential, LoginResult
from auth.reset import ResetLinkWorkflow
from auth.store import CredentialStore
from auth.tokens import TokenIssuer

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("storekeeper.auth")

# Deliberately loose: one "@", something on each side, a dot in the domain.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_EMAIL_MAX = 100

_DUMMY_SALT = "c3RvcmVrZWVwZXItZHVtbXk="


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: Hasher,
        cipher: ReversibleCipher,
        tokens: TokenIssuer,
        resets: ResetLinkWorkflow,
        default_mode: CredentialMode = CredentialMode.HASHED,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.cipher = cipher
        self.tokens = tokens
        self.resets = resets
        self.default_mode = default_mode

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, plaintext: str, mode: Optional[CredentialMode] = None) -> Account:
        """Create an account with an initial credential in the given mode.

        Raises InvalidInput for a malformed email or empty password, and
        DuplicateEmail if the email is taken (including by a concurrent
        registration that committed first).
        """
        _validate_email(email)
        if not plaintext:
            raise InvalidInput("password", "must not be empty")
        mode = CredentialMode(mode) if mode is not None else self.default_mode

        if mode is CredentialMode.HASHED:
            hashed = self.hasher.hash(plaintext)
            credential = HashedCredential(digest=hashed.digest, salt=hashed.salt)
        else:
            credential = EncryptedCredential(ciphertext=self.cipher.encrypt(plaintext))

        account = Account(email=email, credential=credential)
        try:
            account.id = self.store.create_account(account)
        except IntegrityError as exc:
            raise DuplicateEmail(email) from exc
        logger.info("Registered %s (%s mode)", email, mode.value)
        created = self.store.get_by_id(account.id)
        return created if created is not None else account

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _authenticate(self, email: str, plaintext: str, mode: Optional[CredentialMode] = None) -> Account:
        """Return the account if plaintext is its password; raise Unauthorized otherwise.

        Every path that reaches the store pays exactly one KDF computation [C1].
        When mode is given, an account stored in the other mode is rejected
        like a wrong password.
        """
        if not email or not plaintext:
            raise Unauthorized()
        account = self.store.get_by_email(email)
        if account is None:
            self.hasher.verify(plaintext, "", _DUMMY_SALT)
            raise Unauthorized()
        matches = self._credential_matches(account, plaintext)
        if not matches or (mode is not None and account.mode is not CredentialMode(mode)):
            raise Unauthorized()
        return account

    def _credential_matches(self, account: Account, plaintext: str) -> bool:
        credential = account.credential
        if isinstance(credential, HashedCredential):
            return self.hasher.verify(plaintext, credential.digest, credential.salt)
        # Decryption is cheap; spend the same KDF as the hashed path [C1]
        self.hasher.verify(plaintext, "", _DUMMY_SALT)
        try:
            stored = self.cipher.decrypt(credential.ciphertext)
        except InvalidCiphertext:
            logger.warning("Stored ciphertext for %s failed authentication", account.email)
            return False
        return hmac.compare_digest(stored.encode("utf-8"), plaintext.encode("utf-8"))

    def verify_only(self, email: str, plaintext: str, mode: Optional[CredentialMode] = None) -> None:
        """Check email/password without issuing a token. Raises Unauthorized on mismatch.

        mode, when given, must match the account's stored credential mode.
        """
        self._authenticate(email, plaintext, mode)

    def login(self, email: str, plaintext: str, extra_claims: Optional[Mapping[str, Any]] = None) -> LoginResult:
        """Verify credentials and issue a bearer token.

        Works for accounts in either credential mode. Raises Unauthorized for
        an unknown email or wrong password -- the two are indistinguishable.
        """
        try:
            account = self._authenticate(email, plaintext)
        except Unauthorized:
            logger.info("Failed login for %s", email)
            raise
        claims: dict[str, Any] = dict(extra_claims or {})
        claims["email"] = account.email
        token = self.tokens.issue(claims)
        logger.info("Login succeeded for %s", account.email)
        return LoginResult(token=token, email=account.email, expires_in=self.tokens.expires_in)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_reset(self, email: str) -> str:
        """Issue a reset token for email. Raises UnknownAccount if there is no such account."""
        return self.resets.request_reset(email)

    def check_link_valid(self, token: str) -> bool:
        return self.resets.link_exists(token)

    def consume_reset(self, email: str, token: str, new_plaintext: str) -> None:
        """Change the password using a reset token. Raises Unauthorized on any mismatch."""
        self.resets.consume(email, token, new_plaintext)

    def purge_expired_resets(self) -> int:
        return self.resets.purge_expired()


def _validate_email(email: str) -> None:
    if not email:
        raise InvalidInput("email", "must not be empty")
    if len(email) > _EMAIL_MAX:
        raise InvalidInput("email", f"must be at most {_EMAIL_MAX} characters")
    if not _EMAIL_RE.match(email):
        raise InvalidInput("email", "is not a valid email address")


def build_auth_service(settings: "Settings", store: Optional[CredentialStore] = None) -> AuthService:
    """Wire an AuthService from Settings.

    Keys flow from the immutable Settings object into the components at
    construction; nothing reads configuration after this point. Pass an
    existing store to share it (tests, the API lifespan).
    """
    if store is None:
        store = CredentialStore(settings.database_url)
    hasher = Hasher(rounds=settings.hash_rounds)
    return AuthService(
        store=store,
        hasher=hasher,
        cipher=ReversibleCipher(settings.cipher_key_bytes),
        tokens=TokenIssuer(
            settings.jwt_signing_key,
            algorithm=settings.jwt_algorithm,
            expire_days=settings.token_expire_days,
        ),
        resets=ResetLinkWorkflow(store, hasher, ttl_seconds=settings.reset_token_ttl),
        default_mode=CredentialMode(settings.default_credential_mode),
    )
