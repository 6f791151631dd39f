"""Tests for Fernet token encryption."""

import pytest
from cryptography.fernet import Fernet

from autopilot.exceptions import ConfigurationError
from autopilot.utils.encryption import (
    DecryptionError,
    EncryptionKeyMissingError,
    TokenCipher,
    get_token_cipher,
)


class TestTokenCipher:
    def test_encrypt_produces_ciphertext_not_plaintext(self, valid_fernet_key):
        cipher = TokenCipher(valid_fernet_key)

        encrypted = cipher.encrypt("ya29.secret")

        assert isinstance(encrypted, bytes)
        assert b"ya29.secret" not in encrypted
        assert cipher.decrypt(encrypted) == "ya29.secret"

    def test_wrong_key_raises_decryption_error_with_channel(self, valid_fernet_key):
        encrypted = TokenCipher(valid_fernet_key).encrypt("ya29.secret")
        other = TokenCipher(Fernet.generate_key())

        with pytest.raises(DecryptionError) as exc_info:
            other.decrypt(encrypted, channel_id="chan-1")

        assert exc_info.value.channel_id == "chan-1"
        assert "channel_id=chan-1" in str(exc_info.value)

    def test_corrupted_data_raises(self, valid_fernet_key):
        with pytest.raises(DecryptionError):
            TokenCipher(valid_fernet_key).decrypt(b"not-a-token")

    def test_malformed_key_raises(self):
        with pytest.raises(EncryptionKeyMissingError, match="Invalid FERNET_KEY"):
            TokenCipher("too-short")


class TestGetTokenCipher:
    def test_missing_key_is_a_configuration_error(self, monkeypatch):
        get_token_cipher.cache_clear()
        monkeypatch.delenv("FERNET_KEY", raising=False)

        with pytest.raises(ConfigurationError, match="FERNET_KEY"):
            get_token_cipher()

        get_token_cipher.cache_clear()

    def test_cipher_is_cached(self, encryption_env):
        assert get_token_cipher() is get_token_cipher()

    def test_uses_env_key(self, encryption_env):
        encrypted = Fernet(encryption_env.encode()).encrypt(b"refresh-token")

        assert get_token_cipher().decrypt(encrypted) == "refresh-token"
