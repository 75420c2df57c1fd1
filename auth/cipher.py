"""
auth/cipher.py -- AES-256-GCM encryption for the legacy recoverable-password mode.

WARNING: this mode lets the server recover every plaintext password. It is
kept only so accounts created by the encrypted registration path keep
working. New deployments should register in hashed mode, and a completed
password reset always migrates an account to hashed mode.

Format: urlsafe_b64(nonce(12b) + ciphertext + tag(16b)). A fixed purpose
string is bound as GCM associated data, so a ciphertext produced for another
purpose under the same key fails authentication here.

Layer rule: no imports from api/ or core/. The key arrives as bytes.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from auth.errors import InvalidCiphertext, InvalidInput

_NONCE_BYTES = 12
_TAG_BYTES = 16
DEFAULT_PURPOSE = "storekeeper.account-password"


class ReversibleCipher:
    """Authenticated symmetric cipher keyed once at startup."""

    def __init__(self, key: bytes, purpose: str = DEFAULT_PURPOSE) -> None:
        if len(key) != 32:
            raise ValueError(f"cipher key must be exactly 32 bytes (got {len(key)})")
        self._aesgcm = AESGCM(key)
        self._aad = purpose.encode("utf-8")

    def __repr__(self) -> str:
        return "ReversibleCipher(key=<redacted>)"

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext. A fresh random nonce is used on every call."""
        if not plaintext:
            raise InvalidInput("password", "must not be empty")
        nonce = os.urandom(_NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), self._aad)
        return base64.urlsafe_b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt ciphertext produced by encrypt().

        Raises InvalidCiphertext on bad encoding, truncation, or tag mismatch.
        """
        try:
            raw = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise InvalidCiphertext() from exc
        if len(raw) < _NONCE_BYTES + _TAG_BYTES:
            raise InvalidCiphertext()
        nonce, sealed = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, sealed, self._aad)
        except InvalidTag as exc:
            raise InvalidCiphertext() from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidCiphertext() from exc
