"""Google OAuth token endpoint client (refresh_token grant only)."""

from dataclasses import dataclass

import httpx

from autopilot.exceptions import GenerationAPIError

TOKEN_URL = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_in: int


class GoogleOAuthClient:
    """Exchange a refresh token for a new access token.

    Args:
        client_id: OAuth client id (YOUTUBE_CLIENT_ID).
        client_secret: OAuth client secret (YOUTUBE_CLIENT_SECRET).
        client: Optional httpx client (tests pass MockTransport).
    """

    def __init__(self, client_id: str, client_secret: str, *, client: httpx.AsyncClient | None = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.client = client or httpx.AsyncClient(timeout=15.0)

    async def refresh(self, refresh_token: str) -> RefreshedToken:
        """Call the token endpoint.

        Raises:
            GenerationAPIError: On 400/401 (revoked or invalid refresh token).
            httpx.HTTPStatusError: On other non-2xx responses.
        """
        response = await self.client.post(
            TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code in (400, 401):
            raise GenerationAPIError(
                "Token refresh rejected",
                status_code=response.status_code,
                response_body=response.text,
            )
        response.raise_for_status()

        body = response.json()
        return RefreshedToken(
            access_token=body["access_token"],
            expires_in=int(body.get("expires_in", 3600)),
        )

    async def close(self) -> None:
        await self.client.aclose()
