"""Unit tests for auth/store.py -- CredentialStore persistence contract.

Covers:
- Round trip of both credential variants through the row mapper
- UNIQUE(email), including a concurrent registration race
- set_reset_token(): last writer wins, unknown email reports False
- consume_reset_token(): compare-and-swap on (email, token); concurrent consumers
- clear_expired_reset_tokens() touches reset fields only
- The salt-iff-hashed CHECK constraint
"""

import threading
import time

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from auth.models import Account, CredentialMode, EncryptedCredential, HashedCredential
from auth.store import CredentialStore

HASHED = HashedCredential(digest="ZGlnZXN0", salt="c2FsdA==")
NEW_HASHED = HashedCredential(digest="bmV3LWRpZ2VzdA==", salt="bmV3LXNhbHQ=")
ENCRYPTED = EncryptedCredential(ciphertext="Y2lwaGVydGV4dA==")


class TestAccounts:
    def test_hashed_round_trip(self, store: CredentialStore) -> None:
        account_id = store.create_account(Account(email="a@x.com", credential=HASHED))
        account = store.get_by_email("a@x.com")
        assert account is not None
        assert account.id == account_id
        assert account.credential == HASHED
        assert account.mode is CredentialMode.HASHED
        assert account.reset_token is None
        assert account.created_at

    def test_encrypted_round_trip(self, store: CredentialStore) -> None:
        store.create_account(Account(email="b@x.com", credential=ENCRYPTED))
        account = store.get_by_email("b@x.com")
        assert account.credential == ENCRYPTED
        assert account.mode is CredentialMode.ENCRYPTED

    def test_email_is_case_sensitive(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        assert store.get_by_email("A@X.COM") is None

    def test_missing_account(self, store: CredentialStore) -> None:
        assert store.get_by_email("nobody@x.com") is None
        assert store.get_by_id(12345) is None

    def test_duplicate_email_rejected(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        with pytest.raises(IntegrityError):
            store.create_account(Account(email="a@x.com", credential=ENCRYPTED))
        assert store.get_by_email("a@x.com").credential == HASHED

    def test_salt_iff_hashed_constraint(self, store: CredentialStore) -> None:
        with pytest.raises(IntegrityError):
            with store.engine.begin() as conn:
                conn.execute(
                    text(
                        "INSERT INTO accounts (email, credential_mode, password, salt, created_at) "
                        "VALUES ('c@x.com', 'encrypted', 'x', 'salt', 'now')"
                    )
                )

    def test_concurrent_registration_one_winner(self, tmp_path) -> None:
        """Two threads inserting the same email: exactly one insert succeeds."""
        store = CredentialStore(f"sqlite:///{tmp_path / 'race.db'}")
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def register(credential) -> None:
            barrier.wait()
            try:
                store.create_account(Account(email="race@x.com", credential=credential))
                result = "ok"
            except IntegrityError:
                result = "duplicate"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=register, args=(c,)) for c in (HASHED, ENCRYPTED)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        store.close()

        assert sorted(outcomes) == ["duplicate", "ok"]


class TestResetToken:
    def test_set_and_find(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        assert store.set_reset_token("a@x.com", "tok1", issued_at=time.time()) is True
        assert store.reset_token_exists("tok1") is True
        assert store.get_by_email("a@x.com").reset_token == "tok1"

    def test_unknown_email(self, store: CredentialStore) -> None:
        assert store.set_reset_token("nobody@x.com", "tok1", issued_at=time.time()) is False
        assert store.reset_token_exists("tok1") is False

    def test_last_writer_wins(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        store.set_reset_token("a@x.com", "tok1", issued_at=time.time())
        store.set_reset_token("a@x.com", "tok2", issued_at=time.time())
        assert store.reset_token_exists("tok1") is False
        assert store.reset_token_exists("tok2") is True

    def test_exists_honours_not_before(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        store.set_reset_token("a@x.com", "tok1", issued_at=1000.0)
        assert store.reset_token_exists("tok1", not_before=999.0) is True
        assert store.reset_token_exists("tok1", not_before=1001.0) is False

    def test_consume_swaps_credential_and_clears_token(self, store: CredentialStore) -> None:
        store.create_account(Account(email="b@x.com", credential=ENCRYPTED))
        store.set_reset_token("b@x.com", "tok1", issued_at=time.time())

        assert store.consume_reset_token("b@x.com", "tok1", NEW_HASHED) is True

        account = store.get_by_email("b@x.com")
        assert account.credential == NEW_HASHED
        assert account.mode is CredentialMode.HASHED
        assert account.reset_token is None
        assert account.reset_issued_at is None

    def test_consume_twice(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        store.set_reset_token("a@x.com", "tok1", issued_at=time.time())
        assert store.consume_reset_token("a@x.com", "tok1", NEW_HASHED) is True
        assert store.consume_reset_token("a@x.com", "tok1", HASHED) is False
        assert store.get_by_email("a@x.com").credential == NEW_HASHED

    def test_consume_requires_matching_email(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        store.create_account(Account(email="b@x.com", credential=HASHED))
        store.set_reset_token("a@x.com", "tok1", issued_at=time.time())

        assert store.consume_reset_token("b@x.com", "tok1", NEW_HASHED) is False
        assert store.get_by_email("a@x.com").reset_token == "tok1"
        assert store.get_by_email("b@x.com").credential == HASHED

    def test_consume_wrong_token_leaves_account_untouched(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        store.set_reset_token("a@x.com", "tok1", issued_at=time.time())
        assert store.consume_reset_token("a@x.com", "bogus", NEW_HASHED) is False
        account = store.get_by_email("a@x.com")
        assert account.credential == HASHED
        assert account.reset_token == "tok1"

    def test_consume_expired(self, store: CredentialStore) -> None:
        store.create_account(Account(email="a@x.com", credential=HASHED))
        store.set_reset_token("a@x.com", "tok1", issued_at=1000.0)
        assert store.consume_reset_token("a@x.com", "tok1", NEW_HASHED, not_before=2000.0) is False
        assert store.get_by_email("a@x.com").credential == HASHED

    def test_concurrent_consume_one_winner(self, tmp_path) -> None:
        store = CredentialStore(f"sqlite:///{tmp_path / 'consume.db'}")
        store.create_account(Account(email="a@x.com", credential=HASHED))
        store.set_reset_token("a@x.com", "tok1", issued_at=time.time())
        barrier = threading.Barrier(4)
        results: list[bool] = []
        lock = threading.Lock()

        def consume() -> None:
            barrier.wait()
            ok = store.consume_reset_token("a@x.com", "tok1", NEW_HASHED)
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=consume) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        store.close()

        assert results.count(True) == 1
        assert results.count(False) == 3

    def test_clear_expired_only_touches_reset_fields(self, store: CredentialStore) -> None:
        store.create_account(Account(email="old@x.com", credential=HASHED))
        store.create_account(Account(email="new@x.com", credential=ENCRYPTED))
        store.set_reset_token("old@x.com", "old-tok", issued_at=1000.0)
        store.set_reset_token("new@x.com", "new-tok", issued_at=5000.0)

        assert store.clear_expired_reset_tokens(issued_before=2000.0) == 1

        old = store.get_by_email("old@x.com")
        assert old.reset_token is None
        assert old.credential == HASHED
        assert store.get_by_email("new@x.com").reset_token == "new-tok"

    def test_ping(self, store: CredentialStore) -> None:
        assert store.ping() is True
