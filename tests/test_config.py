"""Unit tests for core/config.py -- startup key policy and derived settings."""

import pytest

from core.config import Settings

SIGNING_KEY = "s" * 40
# base64 of 32 zero bytes
CIPHER_KEY = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="


def _settings(**overrides) -> Settings:
    values = {"jwt_signing_key": SIGNING_KEY, "cipher_key": CIPHER_KEY, "hash_rounds": 4}
    values.update(overrides)
    return Settings(**values)


class TestKeyPolicy:
    def test_valid_keys(self) -> None:
        settings = _settings()
        assert settings.cipher_key_bytes == bytes(32)

    def test_missing_signing_key(self) -> None:
        with pytest.raises(ValueError, match="JWT_SIGNING_KEY is required"):
            _settings(jwt_signing_key="")

    def test_short_signing_key(self) -> None:
        with pytest.raises(ValueError, match="at least 32 characters"):
            _settings(jwt_signing_key="short")

    def test_missing_cipher_key(self) -> None:
        with pytest.raises(ValueError, match="CIPHER_KEY is required"):
            _settings(cipher_key="")

    def test_cipher_key_not_base64(self) -> None:
        with pytest.raises(ValueError, match="not valid base64"):
            _settings(cipher_key="!!not base64!!")

    def test_cipher_key_wrong_length(self) -> None:
        with pytest.raises(ValueError, match="exactly 32 bytes"):
            _settings(cipher_key="AAAAAAAAAAAAAAAAAAAAAA==")

    def test_repr_hides_keys(self) -> None:
        text = repr(_settings())
        assert SIGNING_KEY not in text
        assert CIPHER_KEY not in text


class TestOtherFields:
    def test_defaults(self) -> None:
        settings = _settings()
        assert settings.jwt_algorithm == "HS256"
        assert settings.token_expire_days == 30
        assert settings.default_credential_mode == "hashed"
        assert settings.reset_token_ttl == 24 * 60 * 60

    def test_algorithm_normalized(self) -> None:
        assert _settings(jwt_algorithm="hs512").jwt_algorithm == "HS512"

    @pytest.mark.parametrize("algorithm", ["RS256", "none", "ES256"])
    def test_non_hmac_algorithm_rejected(self, algorithm: str) -> None:
        with pytest.raises(ValueError):
            _settings(jwt_algorithm=algorithm)

    def test_unknown_credential_mode_rejected(self) -> None:
        with pytest.raises(ValueError):
            _settings(default_credential_mode="plaintext")

    def test_zero_ttl_disables_expiry(self) -> None:
        assert _settings(reset_token_ttl_seconds=0).reset_token_ttl is None

    def test_settings_are_frozen(self) -> None:
        settings = _settings()
        with pytest.raises(ValueError):
            settings.jwt_signing_key = "x" * 40
