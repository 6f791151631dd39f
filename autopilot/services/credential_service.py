"""YouTube OAuth access token refresh (the CredentialRefresher port).

Channel tokens are stored Fernet-encrypted. refresh_access_token() is
idempotent: while the current access token is valid for more than
REFRESH_BUFFER, it is decrypted and returned unchanged, and the token
endpoint is not called.

Usage:
    service = CredentialService(session_factory, oauth_client)
    token = await service.refresh_access_token(channel_id)

Security Notes:
    - tokens are decrypted only in memory, never logged
    - database sessions are kept short: read → close → HTTP call → write
"""

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.clients.google_oauth import GoogleOAuthClient
from autopilot.exceptions import ConfigurationError
from autopilot.models import Channel, as_utc, utcnow
from autopilot.utils.encryption import TokenCipher, get_token_cipher
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)


class CredentialService:
    """Keep channel access tokens fresh.

    Args:
        session_factory: Database session factory.
        oauth_client: Token endpoint client.
        cipher: Token cipher (defaults to the FERNET_KEY cipher).
        clock: UTC clock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oauth_client: GoogleOAuthClient,
        *,
        cipher: TokenCipher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.oauth_client = oauth_client
        self._cipher = cipher
        self.clock = clock

    @property
    def cipher(self) -> TokenCipher:
        if self._cipher is None:
            self._cipher = get_token_cipher()
        return self._cipher

    async def refresh_access_token(self, channel_id: str) -> str:
        """Return a valid access token for the channel.

        Raises:
            ConfigurationError: Channel missing or has no refresh token.
            DecryptionError: Stored token cannot be decrypted.
            GenerationAPIError: The refresh token was rejected.
        """
        async with self.session_factory() as session:
            channel = await session.scalar(
                select(Channel).where(Channel.id == uuid.UUID(str(channel_id)))
            )
        if channel is None:
            raise ConfigurationError(f"Channel not found: {channel_id}")
        if not channel.youtube_refresh_token_encrypted:
            log.warning("credential_refresh_failed", channel_id=str(channel_id), reason="no_refresh_token")
            raise ConfigurationError(f"No refresh token stored for channel {channel_id}")

        expires_at = as_utc(channel.youtube_token_expires_at)
        now = self.clock()
        if (
            channel.youtube_access_token_encrypted
            and expires_at is not None
            and expires_at - now > REFRESH_BUFFER
        ):
            log.info("credential_still_valid", channel_id=str(channel_id), expires_at=expires_at.isoformat())
            return self.cipher.decrypt(channel.youtube_access_token_encrypted, channel_id=str(channel_id))

        refresh_token = self.cipher.decrypt(
            channel.youtube_refresh_token_encrypted, channel_id=str(channel_id)
        )
        refreshed = await self.oauth_client.refresh(refresh_token)
        new_expiry = now + timedelta(seconds=refreshed.expires_in)

        async with self.session_factory() as session, session.begin():
            stored = await session.get(Channel, channel.id)
            if stored is None:
                raise ConfigurationError(f"Channel not found: {channel_id}")
            stored.youtube_access_token_encrypted = self.cipher.encrypt(refreshed.access_token)
            stored.youtube_token_expires_at = new_expiry

        log.info("credential_refreshed", channel_id=str(channel_id), expires_at=new_expiry.isoformat())
        return refreshed.access_token
