"""
Relay HTTP Discovery

Fast peer discovery through the relay's HTTP endpoint. The relay lists the
storage nodes currently attached to it together with circuit multiaddrs the
client can dial through the relay.

Endpoint:
- GET {relay_http_url}/peers -> [{"peerId": ..., "multiaddrs": [...]}]
"""

import logging
from typing import List, Optional

import aiohttp

from ..network.messages import DirectoryEntry

logger = logging.getLogger(__name__)


# Discovery constants
HTTP_TIMEOUT = 10  # Seconds for the whole /peers request


class RelayHttpDiscovery:
    """
    Relay-based peer discovery over HTTP.

    Failures never propagate: an unreachable relay or a malformed listing
    yields an empty list and the caller falls back to P2P discovery.
    """

    def __init__(
        self,
        relay_http_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = HTTP_TIMEOUT
    ):
        self.relay_http_url = relay_http_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def get_connected_peers(self) -> List[DirectoryEntry]:
        """
        Get storage nodes currently connected to the relay.

        Returns:
            Peer ids with relay circuit multiaddrs, empty on any failure
        """
        url = f"{self.relay_http_url}/peers"
        try:
            session = await self._get_session()
            async with session.get(url) as response:
                if response.status != 200:
                    raise aiohttp.ClientResponseError(
                        response.request_info,
                        response.history,
                        status=response.status,
                        message=f"Relay returned {response.status}"
                    )
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning(f"Failed to fetch peers from relay: {e}")
            return []

        if isinstance(payload, dict):
            payload = payload.get("peers", [])
        if not isinstance(payload, list):
            logger.warning("Relay /peers returned an unexpected shape")
            return []

        peers = []
        for entry in payload:
            if not isinstance(entry, dict) or not entry.get("peerId"):
                continue
            try:
                peers.append(DirectoryEntry.from_dict(entry))
            except ValueError as e:
                logger.debug(f"Skipping malformed relay peer entry: {e}")
        logger.info(f"Relay HTTP discovery found {len(peers)} connected peers")
        return peers

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
