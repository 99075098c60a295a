"""
hashd:// URLs

Addresses for content on the ByteCave network:

    hashd://{cid}?type={mimeType}&decrypt={true|false}

Fetching resolves the CID through a ByteCaveClient, materializes the bytes
as a BlobHandle and caches the handle so repeated display of the same
content does not touch the network.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import parse_qs, urlencode

from .core.errors import ContentFetchError, FailureKind, InvalidHashdUrl
from .core.types import DEFAULT_MIME_TYPE
from .storage.blob_handles import BlobHandle, create_blob_handle
from .storage.cache import ContentCache

logger = logging.getLogger(__name__)


HASHD_SCHEME = "hashd://"


@dataclass
class HashdUrl:
    cid: str
    mime_type: Optional[str] = None
    decrypt: Optional[bool] = None
    raw: str = ""


def parse_hashd_url(url: str) -> HashdUrl:
    """
    Parse a hashd:// URL.

    Unknown query parameters are ignored; ``decrypt`` is true only for the
    literal ``"true"``.

    Raises:
        InvalidHashdUrl: wrong scheme or missing CID
    """
    if not isinstance(url, str) or not url.startswith(HASHD_SCHEME):
        raise InvalidHashdUrl(f"Invalid hashd:// URL: {url}")

    cid, _, query = url[len(HASHD_SCHEME):].partition("?")
    if not cid:
        raise InvalidHashdUrl("Invalid hashd:// URL: missing CID")

    result = HashdUrl(cid=cid, raw=url)
    if query:
        params = parse_qs(query, keep_blank_values=True)
        if "type" in params:
            result.mime_type = params["type"][0]
        if "decrypt" in params:
            result.decrypt = params["decrypt"][0] == "true"

    return result


def create_hashd_url(cid: str, mime_type: Optional[str] = None, decrypt: Optional[bool] = None) -> str:
    url = f"{HASHD_SCHEME}{cid}"

    params = {}
    if mime_type:
        params["type"] = mime_type
    if decrypt is not None:
        params["decrypt"] = "true" if decrypt else "false"

    if params:
        url += f"?{urlencode(params)}"
    return url


def detect_mime_type(data: bytes) -> str:
    """Sniff common image/video formats from magic bytes."""
    if len(data) < 4:
        return DEFAULT_MIME_TYPE

    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:3] == b"GIF":
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if len(data) >= 12 and data[4:8] == b"ftyp":
        return "video/mp4"

    return DEFAULT_MIME_TYPE


@dataclass
class HashdFetchResult:
    data: bytes  # empty when served from cache
    mime_type: str
    handle: BlobHandle
    cached: bool

    @property
    def uri(self) -> str:
        return self.handle.uri


class HashdFetcher:
    """
    Cache-first content fetcher for hashd:// URLs.

    Args:
        client: Object with ``async retrieve(cid) -> RetrieveResult`` (a ByteCaveClient)
        cache: Handle cache (built from the client config's cache_max_age if None)
    """

    def __init__(self, client: Any, cache: Optional[ContentCache] = None):
        self.client = client
        if cache is None:
            config = getattr(client, "config", None)
            cache = ContentCache(max_age=config.cache_max_age) if config is not None else ContentCache()
        self.cache = cache

    async def fetch(self, url: Union[str, HashdUrl], timeout: Optional[float] = None) -> HashdFetchResult:
        """
        Fetch content, consulting the cache first.

        Raises:
            InvalidHashdUrl: malformed URL
            ContentFetchError: retrieval failed or timed out
        """
        parsed = parse_hashd_url(url) if isinstance(url, str) else url

        cached = self.cache.get(parsed.cid)
        if cached is not None:
            handle, mime_type = cached
            logger.debug(f"Cache hit for CID: {parsed.cid[:16]}...")
            return HashdFetchResult(data=b"", mime_type=mime_type, handle=handle, cached=True)

        logger.info(f"Fetching CID: {parsed.cid[:16]}...")
        try:
            if timeout is not None:
                result = await asyncio.wait_for(self.client.retrieve(parsed.cid), timeout=timeout)
            else:
                result = await self.client.retrieve(parsed.cid)
        except asyncio.TimeoutError:
            raise ContentFetchError(f"Timed out fetching {parsed.cid}", kind=FailureKind.TIMEOUT)

        if not result.success or not result.data:
            raise ContentFetchError(
                result.error or "Failed to retrieve content",
                kind=result.error_kind or FailureKind.APPLICATION_ERROR
            )

        # A concurrent fetch of the same CID may have committed while we waited
        cached = self.cache.get(parsed.cid)
        if cached is not None:
            handle, mime_type = cached
            return HashdFetchResult(data=result.data, mime_type=mime_type, handle=handle, cached=True)

        mime_type = parsed.mime_type or detect_mime_type(result.data)
        handle = create_blob_handle(result.data, mime_type)
        self.cache.set(parsed.cid, handle, mime_type)

        logger.info(f"Retrieved and cached CID: {parsed.cid[:16]}... ({mime_type})")
        return HashdFetchResult(data=result.data, mime_type=mime_type, handle=handle, cached=False)

    async def prefetch(self, url: Union[str, HashdUrl]):
        await self.fetch(url)

    def clear_cache(self):
        self.cache.clear()

    def cache_stats(self) -> Dict:
        return {"size": self.cache.size()}

    def revoke(self, cid: str):
        self.cache.revoke(cid)


class HashdContentLoader:
    """
    Loader for display bindings that outlive individual fetches.

    Each :meth:`load` supersedes the previous one: a fetch that completes
    after being superseded, or after :meth:`close`, is discarded and its
    result never committed to ``result``/``error``.
    """

    def __init__(
        self,
        fetcher: HashdFetcher,
        on_change: Optional[Callable[["HashdContentLoader"], Any]] = None
    ):
        self.fetcher = fetcher
        self.on_change = on_change
        self.result: Optional[HashdFetchResult] = None
        self.error: Optional[str] = None
        self.loading = False
        self.closed = False
        self._generation = 0

    @property
    def uri(self) -> Optional[str]:
        return self.result.uri if self.result else None

    def _current(self, generation: int) -> bool:
        return not self.closed and generation == self._generation

    def _notify(self):
        if self.on_change is not None:
            try:
                self.on_change(self)
            except Exception as e:
                logger.error(f"Loader change listener failed: {e}")

    async def load(self, url: Optional[str]) -> Optional[HashdFetchResult]:
        """
        Load ``url``; None clears the loader.

        Returns:
            The committed result, or None if cleared, failed or superseded
        """
        if self.closed:
            return None

        self._generation += 1
        generation = self._generation

        if not url:
            self.result = None
            self.error = None
            self.loading = False
            self._notify()
            return None

        self.loading = True
        self.error = None
        self._notify()

        try:
            result = await self.fetcher.fetch(url)
        except (ContentFetchError, InvalidHashdUrl) as e:
            if self._current(generation):
                self.result = None
                self.error = str(e)
                self.loading = False
                self._notify()
            return None

        if not self._current(generation):
            logger.debug(f"Discarding superseded load of {url}")
            return None

        self.result = result
        self.loading = False
        self._notify()
        return result

    def close(self):
        """Stop accepting results; in-flight loads are discarded."""
        self.closed = True
        self._generation += 1
        self.loading = False
