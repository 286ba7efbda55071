"""
Offline document cache package.

This package provides:
- BinaryStore (store.py): SQLite-backed persistence of document payloads
- Fetcher / HttpFetcher (fetcher.py): network retrieval of document bytes
- DocumentCache (documents.py): offline-aware resolve and explicit caching
"""

from caseshelf.cache.documents import DocumentCache
from caseshelf.cache.fetcher import Fetcher, HttpFetcher
from caseshelf.cache.store import BinaryStore

__all__ = ["BinaryStore", "DocumentCache", "Fetcher", "HttpFetcher"]
