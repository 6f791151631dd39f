"""Fernet encryption for channel OAuth tokens at rest.

Channel rows hold YouTube access and refresh tokens encrypted with the key in
FERNET_KEY. Only the credential service decrypts them, and only long enough
to call the token endpoint.

Usage:
    from autopilot.utils.encryption import get_token_cipher

    cipher = get_token_cipher()
    channel.youtube_access_token_encrypted = cipher.encrypt("ya29...")
    token = cipher.decrypt(channel.youtube_access_token_encrypted, channel_id=str(channel.id))

Security Notes:
    - NEVER log plaintext tokens or ciphertext
    - Rotating FERNET_KEY requires re-encrypting every stored token
"""

import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from autopilot.exceptions import ConfigurationError


class EncryptionKeyMissingError(ConfigurationError):
    """Raised when FERNET_KEY is unset or not a valid Fernet key."""

    pass


class DecryptionError(Exception):
    """Raised when a stored token cannot be decrypted.

    Attributes:
        channel_id: Channel whose token failed, for debugging without
            exposing the ciphertext.
    """

    def __init__(self, message: str, channel_id: str | None = None) -> None:
        self.channel_id = channel_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.channel_id:
            return f"{super().__str__()} (channel_id={self.channel_id})"
        return super().__str__()


class TokenCipher:
    """Encrypt/decrypt string tokens with a single Fernet key."""

    def __init__(self, key: str | bytes) -> None:
        raw_key = key.encode() if isinstance(key, str) else key
        try:
            self._fernet = Fernet(raw_key)
        except ValueError as e:
            raise EncryptionKeyMissingError(
                "Invalid FERNET_KEY format: must be 32 url-safe base64-encoded bytes"
            ) from e

    @classmethod
    def from_env(cls) -> "TokenCipher":
        """Build a cipher from FERNET_KEY.

        Raises:
            EncryptionKeyMissingError: If FERNET_KEY is unset or malformed.
        """
        key = os.environ.get("FERNET_KEY")
        if not key:
            raise EncryptionKeyMissingError("FERNET_KEY environment variable is required")
        return cls(key)

    def encrypt(self, plaintext: str) -> bytes:
        return self._fernet.encrypt(plaintext.encode())

    def decrypt(self, ciphertext: bytes, channel_id: str | None = None) -> str:
        """Decrypt a stored token.

        Raises:
            DecryptionError: Wrong key, corrupted data or non-UTF-8 plaintext.
        """
        try:
            return self._fernet.decrypt(ciphertext).decode()
        except InvalidToken as e:
            raise DecryptionError(
                "Decryption failed: invalid encryption key or corrupted data",
                channel_id=channel_id,
            ) from e
        except (TypeError, UnicodeDecodeError) as e:
            raise DecryptionError(
                f"Decryption failed: {type(e).__name__}",
                channel_id=channel_id,
            ) from e


@lru_cache
def get_token_cipher() -> TokenCipher:
    """Process-wide cipher built from FERNET_KEY.

    Tests that change FERNET_KEY call get_token_cipher.cache_clear().
    """
    return TokenCipher.from_env()
