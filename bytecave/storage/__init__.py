"""
Client-side storage: content cache, blob handles and the relay websocket path.
"""

from .blob_handles import BlobHandle, create_blob_handle, release_blob_handle
from .cache import CacheEntry, ContentCache
from .websocket_client import PendingRequest, WebSocketFallbackClient, RELAY_PEER_ID

__all__ = [
    "BlobHandle",
    "create_blob_handle",
    "release_blob_handle",
    "CacheEntry",
    "ContentCache",
    "PendingRequest",
    "WebSocketFallbackClient",
    "RELAY_PEER_ID",
]
