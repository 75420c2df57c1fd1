"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the domain shape.

Credential is a tagged union, not two optional columns on Account:
  EncryptedCredential(ciphertext)  -- legacy recoverable mode
  HashedCredential(digest, salt)   -- preferred one-way mode
Code that needs to know which mode an account uses dispatches on the type (or
on its `mode` tag), so "salt present iff hashed" holds by construction.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class CredentialMode(str, Enum):
    HASHED = "hashed"
    ENCRYPTED = "encrypted"


@dataclass(frozen=True)
class EncryptedCredential:
    """Ciphertext of the plaintext password under ReversibleCipher."""

    ciphertext: str

    @property
    def mode(self) -> CredentialMode:
        return CredentialMode.ENCRYPTED


@dataclass(frozen=True)
class HashedCredential:
    """Digest + salt pair from Hasher. Both base64-encoded."""

    digest: str
    salt: str

    @property
    def mode(self) -> CredentialMode:
        return CredentialMode.HASHED


Credential = Union[EncryptedCredential, HashedCredential]


@dataclass
class Account:
    """A registered identity.

    email is the identity key -- unique, matched exactly as stored.

    reset_token is None unless a reset link is outstanding. reset_issued_at is
    the epoch time the token was minted; it lets the store honour the optional
    reset-token TTL.
    """

    email: str
    credential: Credential
    id: int | None = None
    reset_token: str | None = None
    reset_issued_at: float | None = None
    created_at: str | None = None

    @property
    def mode(self) -> CredentialMode:
        return self.credential.mode


@dataclass(frozen=True)
class LoginResult:
    """What a successful login hands back: the bearer token and whose it is."""

    token: str
    email: str
    expires_in: int
