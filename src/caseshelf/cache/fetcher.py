"""
Document fetchers.

A fetcher turns a URL into the full document bytes or raises FetchError.
HttpFetcher is the default network implementation; it never retries, retry
policy belongs to the caller.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from caseshelf.exceptions import FetchError
from caseshelf.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "caseshelf/0.1 (offline document cache)"

# Request timeout
REQUEST_TIMEOUT = 30.0

# Max document size to fetch (50MB)
MAX_CONTENT_SIZE = 50 * 1024 * 1024


@runtime_checkable
class Fetcher(Protocol):
    """Source of document bytes."""

    async def fetch(self, url: str) -> bytes:
        """Fetch the full content at ``url``.

        Raises:
            FetchError: If the content cannot be retrieved.
        """
        ...


class HttpFetcher:
    """Fetches documents over HTTP(S) with httpx.

    The whole body is read into memory before returning, so a cancelled or
    failed fetch never yields a partial payload.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        max_content_size: int = MAX_CONTENT_SIZE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds.
            max_content_size: Largest body accepted, in bytes.
            client: Optional preconfigured client (owned by the caller).
        """
        self.timeout = timeout
        self.max_content_size = max_content_size
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> bytes:
        """Download ``url`` and return its body.

        Raises:
            FetchError: On transport errors, non-2xx responses or oversized bodies.
        """
        client = await self._get_client()
        try:
            async with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise FetchError(
                        f"HTTP {response.status_code} fetching document",
                        context={"url": url, "status_code": response.status_code},
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_content_size:
                    raise FetchError(
                        "Document exceeds maximum size",
                        context={"url": url, "size": int(declared), "limit": self.max_content_size},
                    )

                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_content_size:
                        raise FetchError(
                            "Document exceeds maximum size",
                            context={"url": url, "limit": self.max_content_size},
                        )
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise FetchError(
                f"Network error fetching document: {type(e).__name__}",
                context={"url": url, "reason": str(e)},
            ) from e

        content = b"".join(chunks)
        logger.debug("Fetched document", url=url[:80], size=len(content))
        return content
