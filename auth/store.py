"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_account / _credential_columns are the mappers. Service code never
touches SQL directly.

Atomicity contract:
  Every mutating method is exactly one SQL statement inside one transaction
  (engine.begin()). There is no read-modify-write anywhere in this module.

  set_reset_token():     UPDATE ... WHERE email = ?            -- last writer wins
  consume_reset_token(): UPDATE ... WHERE email = ? AND reset_token = ?
                         -- compare-and-swap: credential and token change
                            together or not at all, and two concurrent
                            consumers cannot both see rowcount == 1.
  create_account():      INSERT guarded by UNIQUE(email) -- the loser of a
                         registration race gets IntegrityError, not an
                         overwrite.

  CHECK constraint ck_accounts_salt_iff_hashed keeps "salt present iff the
  credential is hashed" true even for writes that bypass this class.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/storekeeper_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Account, Credential, CredentialMode, EncryptedCredential, HashedCredential

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(100), nullable=False, unique=True),
    Column("credential_mode", String(10), nullable=False),  # "hashed" | "encrypted"
    Column("password", Text, nullable=False),  # digest (hashed) or ciphertext (encrypted)
    Column("salt", String(64)),  # NULL unless hashed
    Column("reset_token", String(64), unique=True),  # NULL unless a link is outstanding
    Column("reset_issued_at", Float),  # epoch seconds, NULL with reset_token
    Column("created_at", String(32), nullable=False),
    CheckConstraint(
        "(credential_mode = 'hashed' AND salt IS NOT NULL) "
        "OR (credential_mode = 'encrypted' AND salt IS NULL)",
        name="ck_accounts_salt_iff_hashed",
    ),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new connection.

    WAL lets readers proceed during writes; the busy timeout makes a writer
    wait for a concurrent writer's lock instead of failing immediately.
    Set per-connection because SQLite PRAGMAs are not inherited from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA busy_timeout=5000")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _credential_columns(credential: Credential) -> dict:
    """Flatten a Credential variant into its three storage columns."""
    if isinstance(credential, HashedCredential):
        return {
            "credential_mode": CredentialMode.HASHED.value,
            "password": credential.digest,
            "salt": credential.salt,
        }
    if isinstance(credential, EncryptedCredential):
        return {
            "credential_mode": CredentialMode.ENCRYPTED.value,
            "password": credential.ciphertext,
            "salt": None,
        }
    raise TypeError(f"unsupported credential type: {type(credential).__name__}")


def _reset_token_is_live(not_before: Optional[float]):
    """WHERE clause matching an outstanding reset token issued at or after not_before."""
    clause = _accounts.c.reset_token.is_not(None)
    if not_before is not None:
        clause = clause & (_accounts.c.reset_issued_at >= not_before)
    return clause


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Account entities, keyed by email.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        store.create_account(Account(email="a@x.com", credential=HashedCredential(d, s)))
        account = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def reset_token_exists(self, token: str, not_before: Optional[float] = None) -> bool:
        """Return True if some account currently holds this exact reset token.

        Read-only. When not_before is given, tokens issued earlier count as
        absent (expired).
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_accounts.c.id).where((_accounts.c.reset_token == token) & _reset_token_is_live(not_before))
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Mutations -- one statement each
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The service layer turns that into DuplicateEmail.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=account.email,
                    created_at=_now_iso(),
                    **_credential_columns(account.credential),
                )
            )
            return result.inserted_primary_key[0]

    def set_reset_token(self, email: str, token: str, issued_at: float) -> bool:
        """Attach a reset token to the account, replacing any outstanding one.

        Single UPDATE -- concurrent requests serialize in the database and the
        last to commit wins. Returns False if no account has this email.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.email == email)
                .values(reset_token=token, reset_issued_at=issued_at)
            )
        return result.rowcount > 0

    def consume_reset_token(
        self,
        email: str,
        token: str,
        credential: Credential,
        not_before: Optional[float] = None,
    ) -> bool:
        """Replace the credential and clear the reset token, iff email and token match.

        Compare-and-swap: the WHERE clause is the check, the SET clause is the
        swap, and both happen in one statement. Returns True only for the
        caller whose update actually matched a row.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.email == email)
                    & (_accounts.c.reset_token == token)
                    & _reset_token_is_live(not_before)
                )
                .values(
                    reset_token=None,
                    reset_issued_at=None,
                    **_credential_columns(credential),
                )
            )
        return result.rowcount == 1

    def clear_expired_reset_tokens(self, issued_before: float) -> int:
        """Clear reset tokens issued before the cutoff. Returns number of rows touched.

        Housekeeping only ever clears the reset fields -- credentials are
        never modified here.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.reset_token.is_not(None) & (_accounts.c.reset_issued_at < issued_before))
                .values(reset_token=None, reset_issued_at=None)
            )
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    credential: Credential
    if row.credential_mode == CredentialMode.HASHED.value:
        credential = HashedCredential(digest=row.password, salt=row.salt)
    else:
        credential = EncryptedCredential(ciphertext=row.password)
    return Account(
        id=row.id,
        email=row.email,
        credential=credential,
        reset_token=row.reset_token,
        reset_issued_at=row.reset_issued_at,
        created_at=row.created_at,
    )
