"""OAuth client-credentials token management for the Rithum API."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from order_bridge.config.constants import TOKEN_EXPIRY_BUFFER_SECONDS, TOKEN_TIMEOUT_SECONDS
from order_bridge.core.errors import AuthError, TransientNetworkError
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class AccessToken:
    """Bearer token with its (buffered) expiry as an epoch timestamp."""

    value: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CredentialManager:
    """Owns the access token: caches it, refreshes on expiry or auth failure.

    The token is replaced wholesale on every refresh. Refreshes are serialized
    so concurrent callers share one exchange.
    """

    def __init__(
        self,
        token_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        expiry_buffer: int = TOKEN_EXPIRY_BUFFER_SECONDS,
        timeout: float = TOKEN_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.expiry_buffer = expiry_buffer
        self.timeout = timeout
        self.transport = transport
        self.clock = clock
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()

    @property
    def token(self) -> Optional[AccessToken]:
        return self._token

    async def ensure_token(self) -> AccessToken:
        """Return the cached token if still valid, otherwise exchange credentials."""
        token = self._token
        if token and not token.is_expired(self.clock()):
            return token

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._token
            if token and not token.is_expired(self.clock()):
                return token
            self._token = await self._exchange()
            return self._token

    async def on_auth_failure(self, rejected: Optional[AccessToken] = None) -> AccessToken:
        """Invalidate the token after a 401 and force one re-exchange.

        Args:
            rejected: The token the failed request carried. If a concurrent
                caller already replaced it, the newer token is reused.
        """
        async with self._lock:
            if rejected is not None and self._token is not None and self._token != rejected:
                return self._token
            logger.info("Access token rejected, forcing credential exchange")
            self._token = None
            self._token = await self._exchange()
            return self._token

    async def _exchange(self) -> AccessToken:
        """
        Perform the client_credentials exchange.

        Returns:
            Fresh AccessToken

        Raises:
            AuthError: Credentials missing or rejected
            TransientNetworkError: Identity provider unreachable or failing
        """
        if not self.client_id or not self.client_secret:
            raise AuthError("Missing client credentials for token exchange")

        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        try:
            logger.info("Requesting new access token")
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.token_url, data=form)
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status >= 500 or status == 429:
                raise TransientNetworkError(
                    f"Token endpoint returned HTTP {status}", status_code=status
                ) from e
            raise AuthError(
                f"Credential exchange rejected (HTTP {status}): {e.response.text}",
                status_code=status,
            ) from e

        except httpx.TransportError as e:
            raise TransientNetworkError(f"Token exchange failed: {type(e).__name__}: {e}") from e

        access_token = (data or {}).get("access_token")
        if not access_token:
            raise AuthError("Failed to obtain access token", details=data)

        expires_in = int(data.get("expires_in") or 0)
        expires_at = self.clock() + max(0, expires_in - self.expiry_buffer)
        logger.info(f"Access token obtained (valid for {max(0, expires_in - self.expiry_buffer)}s)")
        return AccessToken(value=access_token, expires_at=expires_at)
