"""
auth/hashing.py -- Salted one-way password digests.

Security design decisions:
  KDF: bcrypt-pbkdf via bcrypt.kdf(). The salt is an explicit input, so the
       (digest, salt) pair can be stored in separate columns and the digest
       recomputed deterministically on login. Each round runs the bcrypt
       block cipher, so brute force stays expensive for low-entropy secrets.

  Salt: secrets.token_bytes(16) -- 128 bits per account, fresh on every
       registration and every password reset.

  Verification is equality of digests (hmac.compare_digest), never of
       plaintexts. The raw secret is never stored.

  Encoding: digest and salt are stored as standard base64 text.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import secrets
from dataclasses import dataclass

import bcrypt

from auth.errors import InvalidInput

SALT_BYTES = 16
DIGEST_BYTES = 32
DEFAULT_ROUNDS = 64


@dataclass(frozen=True)
class HashResult:
    digest: str
    salt: str


class Hasher:
    """Derive and check salted digests.

    Usage:
        hasher = Hasher(rounds=64)
        result = hasher.hash("s3cret")               # new random salt
        hasher.verify("s3cret", result.digest, result.salt)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if rounds < 1:
            raise ValueError("rounds must be >= 1")
        self.rounds = rounds

    def hash(self, plaintext: str, salt: str | None = None) -> HashResult:
        """Return the digest of plaintext under salt, generating a salt if None.

        Raises InvalidInput if plaintext is empty or the supplied salt is not
        valid base64.
        """
        if not plaintext:
            raise InvalidInput("password", "must not be empty")
        if salt is None:
            salt_raw = secrets.token_bytes(SALT_BYTES)
        else:
            salt_raw = _b64decode(salt)
            if not salt_raw:
                raise InvalidInput("salt", "must be non-empty base64")
        # Round count is operator-configured and range-checked in Settings.
        derived = bcrypt.kdf(
            password=plaintext.encode("utf-8"),
            salt=salt_raw,
            desired_key_bytes=DIGEST_BYTES,
            rounds=self.rounds,
            ignore_few_rounds=True,
        )
        return HashResult(
            digest=base64.b64encode(derived).decode("ascii"),
            salt=base64.b64encode(salt_raw).decode("ascii"),
        )

    def verify(self, plaintext: str, digest: str, salt: str) -> bool:
        """Return True if plaintext hashes to digest under salt.

        Never raises for a bad candidate: empty plaintext or a corrupt stored
        salt is simply a mismatch.
        """
        try:
            candidate = self.hash(plaintext, salt)
        except InvalidInput:
            return False
        return hmac.compare_digest(candidate.digest.encode("ascii"), digest.encode("ascii"))


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInput("salt", "must be non-empty base64") from exc
