# ABOUTME: Client-credentials token handling for the console API
# ABOUTME: Exchanges service account credentials for bearer tokens and caches them per client

"""
Machine-to-machine authentication.

A service account (client id + secret) is exchanged for a short-lived bearer
token at POST /api/m2m/oauth/token using the OAuth2 client-credentials grant:

    POST /api/m2m/oauth/token
    Authorization: Basic base64(client_id:client_secret)
    Content-Type: application/x-www-form-urlencoded

    grant_type=client_credentials

    -> {"access_token": "...", "token_type": "Bearer", "expires_in": 3600}

TokenCache holds one token for one ConsoleClient. It is created with the
client, fetches on first use and fetches again once the token is inside the
expiry window. Nothing here is module-level, so two clients (or two tests)
never share a token.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog

from console_mcp.errors import ConsoleError

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import SecretStr

logger = structlog.get_logger(__name__)

M2M_TOKEN_PATH = "/api/m2m/oauth/token"

# Refresh this many seconds before the token actually expires
EXPIRATION_WINDOW_SECONDS = 300


@dataclass
class AccessToken:
    """Bearer token with its absolute expiry time (epoch seconds)."""

    access_token: str
    token_type: str
    expires_at: float

    def expired(self, window_seconds: float = 0, now: float | None = None) -> bool:
        """True if the token expires within ``window_seconds`` from ``now``."""
        current = time.time() if now is None else now
        return self.expires_at - (current + window_seconds) <= 0


class TokenCache:
    """Lazily fetched, automatically refreshed client-credentials token."""

    def __init__(
        self,
        client_id: str,
        client_secret: SecretStr,
        expiration_window: float = EXPIRATION_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._window = expiration_window
        self._clock = clock
        self._token: AccessToken | None = None
        # Concurrent tool calls share one refresh instead of racing the token endpoint
        self._lock = asyncio.Lock()

    @property
    def token(self) -> AccessToken | None:
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token; the next request authenticates again."""
        self._token = None

    async def get_token(self, http: httpx.AsyncClient) -> str:
        """Return a valid access token, authenticating if needed."""
        async with self._lock:
            if self._token is None or self._token.expired(self._window, now=self._clock()):
                self._token = await self._authenticate(http)
            return self._token.access_token

    async def _authenticate(self, http: httpx.AsyncClient) -> AccessToken:
        log = logger.bind(client_id=self._client_id)
        log.debug("Requesting client-credentials token")

        response = await http.post(
            M2M_TOKEN_PATH,
            data={"grant_type": "client_credentials"},
            auth=httpx.BasicAuth(self._client_id, self._client_secret.get_secret_value()),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if response.status_code != 200:
            message = f"Unknown error with status {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                message = body["message"]
            log.warning("Token request rejected", status=response.status_code)
            raise ConsoleError(code=response.status_code, message=message)

        data = response.json()
        return AccessToken(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            expires_at=self._clock() + float(data.get("expires_in", 0)),
        )
