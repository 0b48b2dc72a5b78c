"""
Asset Cache
===========
Process-scoped memo of decoded assets (vector documents, bitmaps) keyed by
source identity.

Lifecycle:
- populated on first access
- concurrent requests for the same key share one in-flight load
- never evicted; entries leave only through invalidate() / clear()
- failed loads are not cached, so the next request retries
"""

import asyncio
import base64
import os
from typing import Any, Awaitable, Callable, Dict, Hashable
from urllib.parse import unquote_to_bytes

import cv2
import numpy as np
import requests

from .errors import AssetLoadError

REQUEST_TIMEOUT_S = 15


class AssetCache:
    """
    Memoizing cache with in-flight load coalescing
    """

    def __init__(self):
        self._values: Dict[Hashable, Any] = {}
        self._in_flight: Dict[Hashable, asyncio.Future] = {}
        self.loads_started = 0

    def __contains__(self, key):
        return key in self._values

    def __len__(self):
        return len(self._values)

    def peek(self, key, default=None):
        return self._values.get(key, default)

    async def get(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for key, loading it at most once

        Args:
            key: Source identity (path, URL, or a tuple namespacing it)
            loader: Zero-argument coroutine function producing the value

        Returns:
            The cached or freshly loaded value
        """
        if key in self._values:
            return self._values[key]

        loop = asyncio.get_running_loop()
        task = self._in_flight.get(key)
        if task is None or task.get_loop() is not loop:
            task = loop.create_task(self._load(key, loader))
            self._in_flight[key] = task

        # Shielded: one waiter being cancelled must not cancel the shared load
        return await asyncio.shield(task)

    async def _load(self, key, loader):
        self.loads_started += 1
        try:
            value = await loader()
            self._values[key] = value
            return value
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry (e.g. after its source changed). Returns True if present."""
        return self._values.pop(key, None) is not None

    def clear(self):
        self._values.clear()


default_cache = AssetCache()


def _read_data_url(source: str) -> bytes:
    header, _, payload = source.partition(',')
    if header.endswith(';base64'):
        return base64.b64decode(payload)
    return unquote_to_bytes(payload)


def _read_url(source: str) -> bytes:
    response = requests.get(source, timeout=REQUEST_TIMEOUT_S)
    response.raise_for_status()
    return response.content


def _read_file(source: str) -> bytes:
    with open(source, 'rb') as f:
        return f.read()


async def read_source(source: str) -> bytes:
    """
    Read raw bytes from a file path, http(s) URL or data: URL

    Raises:
        AssetLoadError: if the source cannot be read
    """
    try:
        if source.startswith('data:'):
            return _read_data_url(source)
        if source.startswith(('http://', 'https://')):
            return await asyncio.to_thread(_read_url, source)
        return await asyncio.to_thread(_read_file, os.fspath(source))
    except (OSError, ValueError, requests.RequestException) as e:
        raise AssetLoadError(f"Could not read asset {source[:80]}: {e}") from e


def decode_image(data: bytes, flags: int = cv2.IMREAD_UNCHANGED) -> np.ndarray:
    """
    Decode encoded image bytes (PNG, JPEG, ...) to a BGR/BGRA/gray array

    Raises:
        AssetLoadError: if the bytes are not a decodable image
    """
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, flags) if buffer.size else None
    if image is None:
        raise AssetLoadError("Could not decode image data")
    return image


async def load_image(source: str, cache: AssetCache = None) -> np.ndarray:
    """Load and decode a bitmap asset through the cache."""
    cache = cache or default_cache

    async def _loader():
        data = await read_source(source)
        return await asyncio.to_thread(decode_image, data)

    return await cache.get(('image', source), _loader)
