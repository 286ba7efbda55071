"""
Offline-aware document cache.

Reading and caching are separate actions: ``resolve`` serves cached bytes or
fetches without storing, and ``cache`` is the only path that grows the store.
Cached documents are immutable, so a cached read never touches the network.
"""

from __future__ import annotations

from caseshelf.cache.fetcher import Fetcher
from caseshelf.cache.store import BinaryStore
from caseshelf.connectivity import ConnectivityObserver
from caseshelf.exceptions import FetchError, StorageUnavailableError
from caseshelf.logging import get_logger
from caseshelf.types import (
    CachedDocument,
    CacheUsage,
    DocumentInfo,
    FailureKind,
    ResolveOrigin,
    ResolveResult,
    StoreOutcome,
)

logger = get_logger(__name__)


class DocumentCache:
    """Document retrieval over a BinaryStore, a Fetcher and connectivity state."""

    def __init__(
        self,
        store: BinaryStore,
        fetcher: Fetcher,
        connectivity: ConnectivityObserver,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.connectivity = connectivity

    async def is_cached(self, identity: str) -> bool:
        """Check whether a document is available offline.

        Raises:
            StorageUnavailableError: If the store cannot be read.
        """
        return await self.store.contains(identity)

    async def resolve(self, identity: str, source_url: str, title: str = "") -> ResolveResult:
        """Get document bytes for viewing.

        Serves the cached copy when present. Otherwise fetches from
        ``source_url`` while online without caching the result, or reports
        unavailable_offline.

        Args:
            identity: Document key.
            source_url: URL to fetch from when not cached.
            title: Display label, used for logging only.

        Returns:
            ResolveResult with content and origin, or a failure kind.
        """
        try:
            document = await self.store.get(identity)
        except StorageUnavailableError as e:
            logger.warning("Cache unreadable during resolve", identity=identity, error=str(e))
            return ResolveResult(
                identity=identity,
                failure=FailureKind.STORAGE_UNAVAILABLE,
                error=str(e),
            )

        if document is not None:
            logger.debug("Resolved from cache", identity=identity, size=document.size_bytes)
            return ResolveResult(
                identity=identity,
                content=document.payload,
                origin=ResolveOrigin.CACHE,
            )

        if not self.connectivity.is_online:
            logger.info("Document unavailable offline", identity=identity, title=title)
            return ResolveResult(
                identity=identity,
                failure=FailureKind.UNAVAILABLE_OFFLINE,
                error="Document is not cached and the network is offline",
            )

        try:
            content = await self.fetcher.fetch(source_url)
        except FetchError as e:
            logger.warning("Fetch failed during resolve", identity=identity, error=str(e))
            return ResolveResult(identity=identity, failure=FailureKind.FETCH_FAILED, error=str(e))

        return ResolveResult(identity=identity, content=content, origin=ResolveOrigin.NETWORK)

    async def cache(self, identity: str, title: str, source_url: str) -> StoreOutcome:
        """Fetch a document and store it for offline use.

        Re-caching an identity replaces its title, source URL and payload.
        Nothing is written unless the full payload was fetched.

        Returns:
            StoreOutcome; failure kinds are unavailable_offline, fetch_failed
            and storage_unavailable.
        """
        if not self.connectivity.is_online:
            return StoreOutcome.fail(
                FailureKind.UNAVAILABLE_OFFLINE,
                "Cannot cache a document while offline",
            )

        try:
            payload = await self.fetcher.fetch(source_url)
        except FetchError as e:
            logger.warning("Failed to cache document", identity=identity, error=str(e))
            return StoreOutcome.fail(FailureKind.FETCH_FAILED, str(e))

        outcome = await self.store.put(identity, title, source_url, payload)
        if outcome:
            logger.info("Cached document", identity=identity, title=title, size=len(payload))
        return outcome

    async def get_document(self, identity: str) -> CachedDocument | None:
        """Get the cached record for ``identity``, None if not cached."""
        return await self.store.get(identity)

    async def list_documents(self) -> list[DocumentInfo]:
        """List cached documents, newest first."""
        return await self.store.list_documents()

    async def remove(self, identity: str) -> StoreOutcome:
        """Evict one document."""
        return await self.store.remove(identity)

    async def clear(self) -> StoreOutcome:
        """Evict every document."""
        return await self.store.clear()

    async def usage(self) -> CacheUsage:
        """Get document count and total size."""
        count, total_size = await self.store.stats()
        return CacheUsage(
            count=count,
            total_size_bytes=total_size,
            quota_bytes=self.store.quota_bytes,
        )
