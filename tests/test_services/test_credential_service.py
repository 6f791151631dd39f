"""Tests for CredentialService.refresh_access_token()."""

from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from autopilot.clients.google_oauth import GoogleOAuthClient
from autopilot.exceptions import ConfigurationError, GenerationAPIError
from autopilot.models import Channel, as_utc
from autopilot.services.credential_service import CredentialService
from autopilot.utils.encryption import get_token_cipher
from tests.support.factories import BASE_TIME, create_channel


def token_endpoint(status_code: int = 200, body: dict | None = None):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=body or {"access_token": "ya29.fresh", "expires_in": 3599})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleOAuthClient("client-id", "client-secret", client=client), requests


async def channel_with_tokens(session_factory, access: str | None, expires_in: timedelta | None):
    cipher = get_token_cipher()
    return await create_channel(
        session_factory,
        youtube_refresh_token_encrypted=cipher.encrypt("1//refresh"),
        youtube_access_token_encrypted=cipher.encrypt(access) if access else None,
        youtube_token_expires_at=BASE_TIME + expires_in if expires_in is not None else None,
    )


class TestRefreshAccessToken:
    @pytest.mark.asyncio
    async def test_valid_token_returned_without_refresh(self, session_factory, encryption_env):
        channel = await channel_with_tokens(session_factory, "ya29.current", timedelta(minutes=30))
        oauth, requests = token_endpoint()
        service = CredentialService(session_factory, oauth, clock=lambda: BASE_TIME)

        token = await service.refresh_access_token(str(channel.id))

        assert token == "ya29.current"
        assert requests == []

    @pytest.mark.asyncio
    async def test_token_near_expiry_is_refreshed_and_stored(self, session_factory, encryption_env):
        channel = await channel_with_tokens(session_factory, "ya29.old", timedelta(minutes=4))
        oauth, requests = token_endpoint()
        service = CredentialService(session_factory, oauth, clock=lambda: BASE_TIME)

        token = await service.refresh_access_token(str(channel.id))

        assert token == "ya29.fresh"
        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["1//refresh"]

        async with session_factory() as session:
            stored = await session.get(Channel, channel.id)
        assert get_token_cipher().decrypt(stored.youtube_access_token_encrypted) == "ya29.fresh"
        assert as_utc(stored.youtube_token_expires_at) == BASE_TIME + timedelta(seconds=3599)

    @pytest.mark.asyncio
    async def test_missing_access_token_is_refreshed(self, session_factory, encryption_env):
        channel = await channel_with_tokens(session_factory, None, None)
        oauth, requests = token_endpoint()
        service = CredentialService(session_factory, oauth, clock=lambda: BASE_TIME)

        assert await service.refresh_access_token(str(channel.id)) == "ya29.fresh"
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_channel_without_refresh_token_raises(self, session_factory, encryption_env):
        channel = await create_channel(session_factory)
        oauth, _ = token_endpoint()
        service = CredentialService(session_factory, oauth)

        with pytest.raises(ConfigurationError, match="No refresh token"):
            await service.refresh_access_token(str(channel.id))

    @pytest.mark.asyncio
    async def test_unknown_channel_raises(self, session_factory, encryption_env):
        oauth, _ = token_endpoint()
        service = CredentialService(session_factory, oauth)

        with pytest.raises(ConfigurationError, match="Channel not found"):
            await service.refresh_access_token("00000000-0000-0000-0000-000000000099")

    @pytest.mark.asyncio
    async def test_revoked_refresh_token_raises(self, session_factory, encryption_env):
        channel = await channel_with_tokens(session_factory, None, None)
        oauth, _ = token_endpoint(status_code=400, body={"error": "invalid_grant"})
        service = CredentialService(session_factory, oauth, clock=lambda: BASE_TIME)

        with pytest.raises(GenerationAPIError) as exc_info:
            await service.refresh_access_token(str(channel.id))

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.response_body
