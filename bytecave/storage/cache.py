"""
Content Cache

Time-bounded cache of retrieved content, keyed by content id. Each entry
owns a handle (usually a BlobHandle) that is released when the entry
expires, is replaced, revoked or cleared.

Features:
- Lazy expiry on lookup (no background sweeper)
- Injected release function and clock
- At most one live entry per content id
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.config import CACHE_MAX_AGE
from .blob_handles import release_blob_handle

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    content_id: str
    handle: Any
    media_type: str
    created_at: float = field(default_factory=time.time)


class ContentCache:
    """
    TTL cache of content handles.

    All mutation happens on the event loop thread, so no locking is done.
    """

    def __init__(
        self,
        max_age: float = CACHE_MAX_AGE,
        release: Callable[[Any], None] = release_blob_handle,
        clock: Callable[[], float] = time.time
    ):
        self.max_age = max_age
        self._release = release
        self._clock = clock
        self.entries: Dict[str, CacheEntry] = {}

        # Statistics
        self.stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
        }

    def _release_entry(self, entry: CacheEntry):
        try:
            self._release(entry.handle)
        except Exception as e:
            logger.warning(f"Failed to release handle for {entry.content_id[:16]}...: {e}")

    def set(self, content_id: str, handle: Any, media_type: str):
        """Insert or overwrite an entry; a replaced handle is released."""
        previous = self.entries.get(content_id)
        if previous is not None and previous.handle is not handle:
            self._release_entry(previous)

        self.entries[content_id] = CacheEntry(
            content_id=content_id,
            handle=handle,
            media_type=media_type,
            created_at=self._clock(),
        )

    def get(self, content_id: str) -> Optional[Tuple[Any, str]]:
        """
        Look up an entry.

        Returns:
            ``(handle, media_type)``, or None when absent or expired
        """
        entry = self.entries.get(content_id)
        if entry is None:
            self.stats["misses"] += 1
            return None

        if self._clock() - entry.created_at > self.max_age:
            del self.entries[content_id]
            self._release_entry(entry)
            self.stats["expired"] += 1
            self.stats["misses"] += 1
            logger.debug(f"Cache entry expired: {content_id[:16]}...")
            return None

        self.stats["hits"] += 1
        return entry.handle, entry.media_type

    def revoke(self, content_id: str):
        entry = self.entries.pop(content_id, None)
        if entry is not None:
            self._release_entry(entry)

    def clear(self):
        entries = list(self.entries.values())
        self.entries.clear()
        for entry in entries:
            self._release_entry(entry)

    def size(self) -> int:
        return len(self.entries)

    def keys(self) -> List[str]:
        return list(self.entries)

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            "size": self.size(),
            "entries": self.keys(),
        }
