"""
Peer Directory - in-memory registry of known storage peers.

Records are created on the first announcement, directory entry or live
connection and are never removed: a disconnect only changes the state, so
the record (relay addresses in particular) is kept for reconnection.

Updates are field-level last-write-wins: a field supplied as None keeps the
previously learned value, anything else overwrites it.
"""

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from ..network.messages import HealthResponse

logger = logging.getLogger(__name__)


class PeerState(Enum):
    KNOWN = "known"  # learned from directory/announcement, never dialed
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"  # was connected, is not now


@dataclass
class PeerRecord:
    """Information about a remote storage peer."""

    peer_id: str
    public_key: str = ""
    content_types: Union[str, List[str]] = "all"
    state: PeerState = PeerState.KNOWN
    latency: Optional[float] = None
    is_registered: Optional[bool] = None
    owner: Optional[str] = None
    node_id: Optional[str] = None
    multiaddrs: List[str] = field(default_factory=list)
    relay_addrs: List[str] = field(default_factory=list)
    available_storage: Optional[int] = None
    blob_count: Optional[int] = None
    on_chain_node_id: Optional[str] = None
    first_seen: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)

    @property
    def connected(self) -> bool:
        return self.state == PeerState.CONNECTED

    def accepts(self, content_type: str) -> bool:
        """Check whether the peer accepts a content type."""
        if self.content_types == "all":
            return True
        return isinstance(self.content_types, list) and content_type in self.content_types

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peerId": self.peer_id,
            "publicKey": self.public_key,
            "contentTypes": self.content_types,
            "connected": self.connected,
            "state": self.state.value,
            "latency": self.latency,
            "isRegistered": self.is_registered,
            "owner": self.owner,
            "nodeId": self.node_id,
            "relayAddrs": self.relay_addrs,
        }


# Fields an update may overwrite
_MUTABLE_FIELDS = {
    "public_key",
    "content_types",
    "latency",
    "is_registered",
    "owner",
    "node_id",
    "multiaddrs",
    "relay_addrs",
    "available_storage",
    "blob_count",
    "on_chain_node_id",
}


class PeerDirectory:
    """
    Registry of peers keyed by peer id.

    Insertion order is discovery order; store candidate ordering relies on it.
    """

    def __init__(self):
        self.peers: Dict[str, PeerRecord] = {}

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self.peers

    def __len__(self) -> int:
        return len(self.peers)

    def get(self, peer_id: str) -> Optional[PeerRecord]:
        return self.peers.get(peer_id)

    def upsert(self, peer_id: str, connected: Optional[bool] = None, **fields: Any) -> PeerRecord:
        """
        Create or update a record.

        Args:
            peer_id: Peer to update
            connected: Live status if known; None leaves the state untouched
            **fields: PeerRecord fields; None values keep what was learned before

        Returns:
            The stored record
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown peer fields: {sorted(unknown)}")

        record = self.peers.get(peer_id)
        if record is None:
            record = PeerRecord(peer_id=peer_id)
            self.peers[peer_id] = record
            logger.info(f"Added peer: {peer_id[:16]}...")

        for name, value in fields.items():
            if value is not None:
                setattr(record, name, value)

        if connected is True:
            record.state = PeerState.CONNECTED
        elif connected is False and record.state == PeerState.CONNECTED:
            record.state = PeerState.DISCONNECTED

        record.last_updated = time.time()
        return record

    def upsert_from_announcement(self, announcement: Dict[str, Any], connected: bool) -> PeerRecord:
        """Apply a pub/sub peer announcement."""
        return self.upsert(
            announcement["peerId"],
            connected=connected,
            public_key=announcement.get("publicKey"),
            content_types=announcement.get("contentTypes"),
            node_id=announcement.get("nodeId"),
            multiaddrs=announcement.get("multiaddrs"),
            relay_addrs=announcement.get("relayAddrs"),
            available_storage=announcement.get("availableStorage"),
            blob_count=announcement.get("blobCount"),
            is_registered=announcement.get("isRegistered"),
            on_chain_node_id=announcement.get("onChainNodeId"),
        )

    def upsert_from_health(
        self,
        peer_id: str,
        health: HealthResponse,
        connected: bool = True,
        relay_addrs: Optional[List[str]] = None,
        latency: Optional[float] = None
    ) -> PeerRecord:
        """Apply metadata fetched over the health protocol."""
        return self.upsert(
            peer_id,
            connected=connected,
            public_key=health.public_key,
            content_types=health.content_types,
            node_id=health.node_id,
            owner=health.owner_address,
            multiaddrs=health.multiaddrs or None,
            relay_addrs=relay_addrs,
            blob_count=health.blob_count,
            available_storage=max(health.storage_max - health.storage_used, 0) if health.storage_max else None,
            latency=latency,
        )

    def mark_connected(self, peer_id: str) -> PeerRecord:
        return self.upsert(peer_id, connected=True)

    def mark_disconnected(self, peer_id: str) -> Optional[PeerRecord]:
        record = self.peers.get(peer_id)
        if record is not None and record.state == PeerState.CONNECTED:
            record.state = PeerState.DISCONNECTED
            record.last_updated = time.time()
        return record

    def mark_all_disconnected(self):
        for peer_id in list(self.peers):
            self.mark_disconnected(peer_id)

    def registered_ids(self) -> List[str]:
        return [p.peer_id for p in self.peers.values() if p.is_registered]

    def list_peers(self, connected_ids: Iterable[str]) -> List[PeerRecord]:
        """
        Snapshot of every peer, overlaid with live status from the transport.

        Directory records come first in discovery order, followed by
        transport-connected peers the directory has not heard of yet.
        """
        live = list(dict.fromkeys(connected_ids))
        live_set = set(live)
        result: List[PeerRecord] = []

        for peer_id, record in self.peers.items():
            if peer_id in live_set:
                state = PeerState.CONNECTED
            elif record.state == PeerState.CONNECTED:
                state = PeerState.DISCONNECTED
            else:
                state = record.state
            result.append(dataclasses.replace(record, state=state))

        for peer_id in live:
            if peer_id not in self.peers:
                result.append(PeerRecord(peer_id=peer_id, state=PeerState.CONNECTED))

        return result

    def find_for_content_type(
        self,
        content_type: str,
        connected_ids: Optional[Iterable[str]] = None
    ) -> Optional[PeerRecord]:
        """
        Pick a connected peer accepting ``content_type``.

        Registered peers are preferred. An unregistered peer is returned only
        as a last resort: it can hold the data but will not replicate it.

        Args:
            content_type: Content category to place
            connected_ids: Live peer ids from the transport; defaults to record state
        """
        if connected_ids is None:
            candidates = [p for p in self.peers.values() if p.connected]
        else:
            candidates = [p for p in self.list_peers(connected_ids) if p.connected]

        for peer in candidates:
            if peer.is_registered and peer.accepts(content_type):
                return peer

        for peer in candidates:
            if peer.accepts(content_type):
                logger.warning(
                    "No registered peers available, using unregistered peer. Data will NOT replicate."
                )
                return peer

        return None
