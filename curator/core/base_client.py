import asyncio
from typing import Any

import httpx
from loguru import logger

from curator.core.errors import UpstreamUnavailable


class BaseClient:
    """
    Base asynchronous HTTP client with retry logic and logging.

    Transport and status failures are retried with exponential backoff and,
    once retries are exhausted, surface as ``UpstreamUnavailable``.
    """

    def __init__(
        self,
        source: str,
        base_url: str = "",
        timeout: float = 10.0,
        max_retries: int = 3,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.source = source
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx.AsyncClient instance."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, max_tries: int | None = None, **kwargs) -> httpx.Response:
        client = await self.get_client()
        tries = max_tries or self.max_retries
        last_exception: Exception | None = None

        for attempt in range(1, tries + 1):
            try:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                last_exception = e
                # Client errors will not succeed on retry
                if e.response.status_code < 500 and e.response.status_code != 429:
                    logger.error(f"[{self.source}] {method} {url} rejected: {e.response.status_code}")
                    break
            except httpx.RequestError as e:
                last_exception = e

            if attempt < tries:
                wait_time = 0.5 * (2 ** (attempt - 1))
                logger.warning(
                    f"[{self.source}] Request failed ({method} {url}): {last_exception}. "
                    f"Retrying in {wait_time}s... (Attempt {attempt}/{tries})"
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"[{self.source}] Request failed after {tries} attempts: {last_exception}")

        raise UpstreamUnavailable(self.source, str(last_exception or "request failed for unknown reasons"))

    async def post(self, url: str, json: dict[str, Any] | None = None, **kwargs) -> dict[str, Any]:
        """Perform a POST request and return the JSON response."""
        response = await self._request("POST", url, json=json, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable(self.source, f"invalid JSON response: {e}") from e
