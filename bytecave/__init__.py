"""
ByteCave - client for decentralized content storage.

Quick Start:
    >>> from bytecave import ByteCaveClient, ClientConfig
    >>>
    >>> config = ClientConfig(relay_peers=["/ip4/1.2.3.4/tcp/4001/p2p/<relay id>"])
    >>> async with ByteCaveClient(config) as client:
    ...     stored = await client.store(b"Hello, ByteCave!", mime_type="text/plain")
    ...     fetched = await client.retrieve(stored.cid)

Features:
    - Length-prefixed JSON framing over P2P streams
    - Store, retrieve, health, info, directory and have-list protocols
    - Relay-assisted peer discovery with registered-first storage
    - Relay websocket fallback
    - hashd:// URLs with a cache-first content fetcher
"""

from .client import ByteCaveClient, StorageOrchestrator
from .core import (
    ClientConfig,
    ConnectionState,
    Ed25519Signer,
    FailureKind,
    RetrieveResult,
    StoreResult,
    ByteCaveError,
)
from .hashd import (
    HashdContentLoader,
    HashdFetcher,
    HashdUrl,
    create_hashd_url,
    parse_hashd_url,
)
from .storage import ContentCache, WebSocketFallbackClient

__version__ = "0.1.0"

__all__ = [
    "ByteCaveClient",
    "StorageOrchestrator",
    "ClientConfig",
    "ConnectionState",
    "Ed25519Signer",
    "FailureKind",
    "RetrieveResult",
    "StoreResult",
    "ByteCaveError",
    "HashdContentLoader",
    "HashdFetcher",
    "HashdUrl",
    "create_hashd_url",
    "parse_hashd_url",
    "ContentCache",
    "WebSocketFallbackClient",
]
