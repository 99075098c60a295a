"""
ByteCave client configuration.

Values can be given explicitly or read from ``BYTECAVE_*`` environment
variables via :meth:`ClientConfig.from_env`.
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field

# Defaults
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB upload limit
STORE_TIMEOUT_BASE = 15.0  # Seconds allowed for any store exchange
STORE_TIMEOUT_PER_MB = 5.0  # Extra seconds per started megabyte
RETRIEVE_TIMEOUT = 10.0  # Seconds per retrieval candidate
WS_REQUEST_TIMEOUT = 30.0  # Relay websocket request timeout
CACHE_MAX_AGE = 60 * 60  # 1 hour


def _split_env_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class ClientConfig(BaseModel):
    """Orchestrator configuration."""

    relay_peers: List[str] = Field(
        default_factory=list,
        description="Relay multiaddrs (/ip4/.../tcp/.../p2p/<peerId>) used for bootstrap and directory queries"
    )
    direct_node_addrs: List[str] = Field(
        default_factory=list,
        description="Cached storage node multiaddrs dialed directly"
    )
    relay_http_url: Optional[str] = Field(
        default=None,
        description="Relay HTTP base URL exposing GET /peers for fast discovery"
    )
    relay_ws_url: Optional[str] = Field(
        default=None,
        description="Relay websocket URL used as the alternate storage path"
    )
    app_id: str = Field(default="bytecave", description="Application id bound into authorizations")
    max_peers: int = Field(default=10, description="Maximum concurrent peer connections for the default transport")
    connection_timeout: float = Field(default=30.0, description="Dial timeout in seconds")

    max_file_size: int = Field(default=MAX_FILE_SIZE, description="Maximum payload size in bytes")
    require_authorization: bool = Field(
        default=False,
        description="Refuse to store without a signer"
    )
    store_timeout_base: float = Field(default=STORE_TIMEOUT_BASE)
    store_timeout_per_mb: float = Field(default=STORE_TIMEOUT_PER_MB)
    retrieve_timeout: float = Field(default=RETRIEVE_TIMEOUT)
    ws_request_timeout: float = Field(default=WS_REQUEST_TIMEOUT)
    cache_max_age: float = Field(default=CACHE_MAX_AGE, description="hashd cache entry lifetime in seconds")

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build a configuration from BYTECAVE_* environment variables."""
        return cls(
            relay_peers=_split_env_list(os.getenv("BYTECAVE_RELAY_PEERS")),
            direct_node_addrs=_split_env_list(os.getenv("BYTECAVE_DIRECT_NODE_ADDRS")),
            relay_http_url=os.getenv("BYTECAVE_RELAY_HTTP_URL") or None,
            relay_ws_url=os.getenv("BYTECAVE_RELAY_WS_URL") or None,
            app_id=os.getenv("BYTECAVE_APP_ID", "bytecave"),
            max_peers=int(os.getenv("BYTECAVE_MAX_PEERS", "10")),
            connection_timeout=float(os.getenv("BYTECAVE_CONNECTION_TIMEOUT", "30")),
            max_file_size=int(os.getenv("BYTECAVE_MAX_FILE_SIZE", str(MAX_FILE_SIZE))),
            require_authorization=os.getenv("BYTECAVE_REQUIRE_AUTHORIZATION", "false").lower() == "true",
            retrieve_timeout=float(os.getenv("BYTECAVE_RETRIEVE_TIMEOUT", str(RETRIEVE_TIMEOUT))),
        )

    def store_timeout(self, size_bytes: int) -> float:
        """Time budget for storing ``size_bytes`` to a single peer."""
        megabytes = -(-size_bytes // (1024 * 1024))  # ceil
        return self.store_timeout_base + self.store_timeout_per_mb * megabytes
