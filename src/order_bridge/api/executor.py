"""Resilient request executor with retry, backoff and auth replay."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from order_bridge.api.credentials import AccessToken, CredentialManager
from order_bridge.config.constants import (
    API_TIMEOUT_SECONDS,
    MAX_ATTEMPTS,
    RETRY_BASE_DELAY_SECONDS,
)
from order_bridge.core.errors import AuthError, RequestError, TransientNetworkError
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class ApiRequest:
    """An outbound API call, replayable as many times as needed."""

    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    json: Optional[Any] = None


def is_retryable_status(status_code: int) -> bool:
    """5xx and 429 are retryable; every other 4xx is not."""
    return status_code == 429 or status_code >= 500


class RequestExecutor:
    """Wraps every outbound call with retry/backoff and error classification.

    Retry schedule: up to max_attempts attempts, waiting
    base_delay * 2 ** (attempt - 1) between them. A 401 is handed once to the
    credential manager and the request replayed before normal classification.
    """

    def __init__(
        self,
        base_url: str,
        credentials: Optional[CredentialManager] = None,
        headers: Optional[Dict[str, str]] = None,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        timeout: float = API_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.credentials = credentials
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", **(headers or {})},
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _send(self, request: ApiRequest, token: Optional[AccessToken]) -> httpx.Response:
        headers = {}
        if token is not None:
            headers["Authorization"] = f"Bearer {token.value}"
        return await self.client.request(
            request.method,
            request.path,
            params=request.params,
            json=request.json,
            headers=headers,
        )

    async def _send_with_auth(self, request: ApiRequest, refreshed: bool) -> Tuple[httpx.Response, bool]:
        """Send once, replaying a single time after a 401 unless this call already refreshed."""
        token = await self.credentials.ensure_token() if self.credentials else None
        response = await self._send(request, token)

        if response.status_code == 401 and self.credentials is not None and not refreshed:
            logger.warning(f"HTTP 401 from {request.method} {request.path}, refreshing token and replaying")
            token = await self.credentials.on_auth_failure(token)
            refreshed = True
            response = await self._send(request, token)

        return response, refreshed

    async def execute(self, request: ApiRequest) -> httpx.Response:
        """
        Execute a request with retries.

        Args:
            request: The call to perform

        Returns:
            Successful httpx.Response

        Raises:
            AuthError: Still unauthorized after replay, or token exchange rejected
            RequestError: Non-retryable 4xx
            TransientNetworkError: Retryable failure after all attempts
        """
        last_error: Optional[Exception] = None
        refreshed = False

        for attempt in range(1, self.max_attempts + 1):
            try:
                if attempt > 1:
                    logger.info(f"Retry {attempt}/{self.max_attempts}: {request.method} {request.path}")

                response, refreshed = await self._send_with_auth(request, refreshed)
                status = response.status_code

                if status < 400:
                    return response

                error_text = f"HTTP {status} from {request.method} {request.path}: {response.text[:500]}"

                if status == 401:
                    raise AuthError(error_text, status_code=status, details=_safe_json(response))

                if not is_retryable_status(status):
                    logger.error(error_text)
                    raise RequestError(error_text, status_code=status, details=_safe_json(response))

                last_error = TransientNetworkError(error_text, status_code=status, details=_safe_json(response))
                logger.warning(f"Attempt {attempt} failed: {error_text}")

            except httpx.TransportError as e:
                last_error = TransientNetworkError(f"{type(e).__name__}: {e}")
                logger.warning(f"Attempt {attempt} failed: {last_error}")

            except TransientNetworkError as e:
                # Raised by the token exchange
                last_error = e
                logger.warning(f"Attempt {attempt} failed: {e}")

            if attempt < self.max_attempts:
                retry_delay = self.base_delay * 2 ** (attempt - 1)
                logger.info(f"Waiting {retry_delay}s before next retry...")
                await self.sleep(retry_delay)

        logger.error(f"Giving up on {request.method} {request.path} after {self.max_attempts} attempts")
        raise last_error

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """Execute and decode the JSON body (None for an empty body)."""
        response = await self.execute(ApiRequest(method=method, path=path, params=params, json=json))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransientNetworkError(
                f"Non-JSON body from {method} {path} (HTTP {response.status_code})",
                status_code=response.status_code,
                details=response.text[:500],
            ) from e


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None
