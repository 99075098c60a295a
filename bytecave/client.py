"""
ByteCave Client - storage orchestration over the P2P network.

The client starts a transport, discovers storage peers through relays,
tracks them in a PeerDirectory and runs store/retrieve workflows against
them with ordering, timeout and fallback policy.

Features:
- Bootstrap dialing of direct node and relay addresses
- Relay HTTP discovery and relay peer directory queries
- Pub/sub peer announcements and WebRTC signaling (when the transport has pub/sub)
- Registered-first store candidate ordering
- Have-list probing before retrieval
- Relay websocket as an alternate storage path
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .core.config import ClientConfig
from .core.errors import ByteCaveError, FailureKind, PayloadTooLarge
from .core.events import (
    CONNECTION_STATE_CHANGE,
    EventEmitter,
    PEER_ANNOUNCE,
    PEER_CONNECT,
    PEER_DISCONNECT,
    SIGNALING,
)
from .core.signing import Signer, build_authorization
from .core.types import (
    DEFAULT_MIME_TYPE,
    AuthorizationEnvelope,
    ConnectionState,
    PeerFailure,
    RetrieveResult,
    SignalingMessage,
    StoreResult,
)
from .p2p.discovery import NodeRegistry, RelayHttpDiscovery, active_node_ids
from .p2p.network.messages import DirectoryEntry, HealthResponse, InfoResponse
from .p2p.network.protocol import ProtocolClient
from .p2p.peers import PeerDirectory, PeerRecord
from .p2p.transport import (
    EVENT_PEER_CONNECT,
    EVENT_PEER_DISCONNECT,
    TCPTransport,
    Transport,
    peer_id_from_multiaddr,
)
from .storage.websocket_client import WebSocketFallbackClient

logger = logging.getLogger(__name__)


# Pub/sub topics
ANNOUNCE_TOPIC = "bytecave-announce"
SIGNALING_TOPIC_PREFIX = "bytecave-signaling-"


class ByteCaveClient:
    """
    Storage orchestrator.

    State machine: disconnected -> connecting -> connected | error, and
    connected -> disconnected on :meth:`stop`. Every transition is emitted
    as ``connectionStateChange``.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[Transport] = None,
        registry: Optional[NodeRegistry] = None,
        signer: Optional[Signer] = None,
        protocol_client: Optional[ProtocolClient] = None,
        relay_discovery: Optional[RelayHttpDiscovery] = None,
        websocket_client: Optional[WebSocketFallbackClient] = None
    ):
        """
        Initialize the client.

        Args:
            config: Client configuration (defaults if None)
            transport: P2P transport (a TCPTransport if None)
            registry: Node registry used to flag registered peers
            signer: Default signer for storage authorizations
            protocol_client: Protocol client (built from config if None)
            relay_discovery: HTTP discovery (built when relay_http_url is set)
            websocket_client: Relay websocket (built when relay_ws_url is set)
        """
        self.config = config or ClientConfig()
        self.transport = transport or TCPTransport(
            connection_timeout=self.config.connection_timeout,
            max_connections=self.config.max_peers
        )
        self.registry = registry
        self.signer = signer
        self.protocol = protocol_client or ProtocolClient(config=self.config)
        self.directory = PeerDirectory()
        self.events = EventEmitter()

        if relay_discovery is None and self.config.relay_http_url:
            relay_discovery = RelayHttpDiscovery(self.config.relay_http_url)
            logger.info(f"Using relay HTTP URL for peer discovery: {self.config.relay_http_url}")
        self.relay_discovery = relay_discovery

        if websocket_client is None and self.config.relay_ws_url:
            websocket_client = WebSocketFallbackClient(
                self.config.relay_ws_url,
                request_timeout=self.config.ws_request_timeout
            )
        self.ws_client = websocket_client

        self.connection_state = ConnectionState.DISCONNECTED
        self._started = False
        self._transport_listeners = False
        self._pubsub_ready = False
        self._signaling_topic: Optional[str] = None

        # Statistics
        self.stats = {
            "stores_succeeded": 0,
            "stores_failed": 0,
            "retrieves_succeeded": 0,
            "retrieves_failed": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._started and self.transport.is_started

    def _set_state(self, state: ConnectionState):
        self.connection_state = state
        self.events.emit(CONNECTION_STATE_CHANGE, state)

    def _relay_peer_ids(self) -> Set[str]:
        ids = (peer_id_from_multiaddr(addr) for addr in self.config.relay_peers)
        return {peer_id for peer_id in ids if peer_id}

    def _connected_ids(self) -> List[str]:
        return self.transport.get_peers() if self.is_started else []

    async def start(self):
        """Start the transport, bootstrap, and discover storage peers."""
        if self._started:
            logger.warning("ByteCave client already started")
            return

        self._set_state(ConnectionState.CONNECTING)
        try:
            await self.transport.start()
            self._started = True
            logger.info(f"Node started with peer id: {self.transport.peer_id[:16]}...")

            self._setup_event_listeners()
            self._setup_pubsub()

            bootstrap = list(self.config.direct_node_addrs) + list(self.config.relay_peers)
            for address in bootstrap:
                await self._dial(address)
            logger.info(f"Connected peers after bootstrap: {len(self.transport.get_peers())}")

            self.protocol.set_transport(self.transport)

            discovered = 0
            if self.relay_discovery is not None:
                discovered += await self._discover_via_relay_http()
            discovered += await self._discover_via_relay_directory()

            if discovered == 0 and self.config.direct_node_addrs:
                logger.info("No peers discovered via relays, dialing direct node addresses")
                for address in self.config.direct_node_addrs:
                    await self._dial(address)

            if self.registry is not None:
                await self.refresh_registration()
        except Exception as e:
            logger.error(f"Failed to start client: {e}")
            self._set_state(ConnectionState.ERROR)
            raise

        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"ByteCave client started, {len(self.directory)} known peers")

    async def stop(self):
        """Stop the transport and mark every peer disconnected."""
        if self._started:
            await self.transport.stop()
        self._started = False
        self.protocol.set_transport(None)

        if self.ws_client is not None:
            await self.ws_client.disconnect()
        if self.relay_discovery is not None:
            await self.relay_discovery.close()

        self.directory.mark_all_disconnected()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("ByteCave client stopped")

    async def __aenter__(self) -> "ByteCaveClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def _setup_event_listeners(self):
        if self._transport_listeners:
            return
        self.transport.add_event_listener(EVENT_PEER_CONNECT, self._on_peer_connect)
        self.transport.add_event_listener(EVENT_PEER_DISCONNECT, self._on_peer_disconnect)
        self._transport_listeners = True

    def _on_peer_connect(self, peer_id: str):
        self.directory.mark_connected(peer_id)
        logger.info(f"Peer connected: {peer_id[:16]}..., total now: {len(self.transport.get_peers())}")
        self.events.emit(PEER_CONNECT, peer_id)

    def _on_peer_disconnect(self, peer_id: str):
        self.directory.mark_disconnected(peer_id)
        logger.info(f"Peer disconnected: {peer_id[:16]}...")
        self.events.emit(PEER_DISCONNECT, peer_id)

    async def _dial(self, address: str) -> Optional[str]:
        """Dial an address; failures are logged and reported as None."""
        try:
            peer_id = await self.transport.dial(address)
        except Exception as e:
            logger.warning(f"Failed to dial {address}: {e}")
            return None
        logger.debug(f"Dialed {address} -> {peer_id[:16]}...")
        return peer_id

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _discover_via_relay_http(self) -> int:
        """Dial every peer the relay lists over HTTP. No health fetch."""
        entries = await self.relay_discovery.get_connected_peers()
        connected = 0
        for entry in entries:
            if entry.peer_id == self.transport.peer_id:
                continue
            for address in entry.multiaddrs:
                if await self._dial(address):
                    connected += 1
                    break
            self.directory.upsert(
                entry.peer_id,
                connected=entry.peer_id in self.transport.get_peers(),
                relay_addrs=entry.multiaddrs or None,
            )
        logger.info(f"Relay HTTP discovery connected {connected}/{len(entries)} peers")
        return connected

    async def _fetch_relay_directory(self) -> List[DirectoryEntry]:
        """Listing from the first relay answering with a non-empty directory."""
        for address in self.config.relay_peers:
            relay_id = peer_id_from_multiaddr(address)
            if not relay_id:
                continue
            result = await self.protocol.peer_directory(relay_id)
            if not result.success:
                logger.warning(f"Peer directory query to {relay_id[:16]}... failed: {result.error}")
                continue
            if result.value.peers:
                return result.value.peers
        return []

    async def _discover_via_relay_directory(self) -> int:
        entries = await self._fetch_relay_directory()
        connected = 0
        for entry in entries:
            if await self._connect_to_entry(entry):
                connected += 1
        return connected

    async def _connect_to_entry(self, entry: DirectoryEntry) -> bool:
        """Dial a listed peer through its addresses in order and refresh its metadata."""
        if entry.peer_id == self.transport.peer_id or entry.peer_id in self._relay_peer_ids():
            return False

        for address in entry.multiaddrs:
            if await self._dial(address):
                break
        else:
            self.directory.upsert(entry.peer_id, relay_addrs=entry.multiaddrs or None)
            logger.warning(f"Could not reach listed peer {entry.peer_id[:16]}...")
            return False

        await self._refresh_health(entry.peer_id, relay_addrs=entry.multiaddrs or None)
        return True

    async def _refresh_health(self, peer_id: str, relay_addrs: Optional[List[str]] = None) -> Optional[PeerRecord]:
        started = time.monotonic()
        result = await self.protocol.health(peer_id)
        if not result.success:
            logger.warning(f"Health fetch from {peer_id[:16]}... failed: {result.error}")
            return self.directory.upsert(peer_id, connected=True, relay_addrs=relay_addrs)

        latency = (time.monotonic() - started) * 1000
        return self.directory.upsert_from_health(
            peer_id,
            result.value,
            connected=True,
            relay_addrs=relay_addrs,
            latency=latency,
        )

    async def refresh_peer_directory(self):
        """Re-query the relays and reconnect to listed peers that are not live."""
        if not self.is_started:
            logger.warning("Cannot refresh peer directory - node not initialized")
            return

        entries: List[DirectoryEntry] = []
        if self.relay_discovery is not None:
            entries = await self.relay_discovery.get_connected_peers()
        if not entries:
            entries = await self._fetch_relay_directory()

        connected = set(self.transport.get_peers())
        reconnected = 0
        for entry in entries:
            if entry.peer_id in connected and entry.peer_id in self.directory:
                continue
            if await self._connect_to_entry(entry):
                reconnected += 1

        logger.info(f"Peer directory refreshed: {len(entries)} listed, {reconnected} reconnected")

    async def refresh_registration(self):
        """Flag peers whose node id is active in the registry."""
        if self.registry is None:
            return
        registered = await active_node_ids(self.registry)
        for record in list(self.directory.peers.values()):
            if record.node_id:
                self.directory.upsert(record.peer_id, is_registered=record.node_id in registered)
        logger.info(f"Registry lists {len(registered)} active nodes")

    # ------------------------------------------------------------------
    # Pub/sub
    # ------------------------------------------------------------------

    def _setup_pubsub(self):
        pubsub = getattr(self.transport, "pubsub", None)
        if pubsub is None or self._pubsub_ready:
            return

        self._signaling_topic = f"{SIGNALING_TOPIC_PREFIX}{self.transport.peer_id}"
        pubsub.subscribe(ANNOUNCE_TOPIC)
        pubsub.subscribe(self._signaling_topic)
        pubsub.add_message_handler(self._on_pubsub_message)
        self._pubsub_ready = True

    def _on_pubsub_message(self, topic: str, data: bytes):
        if topic == ANNOUNCE_TOPIC:
            try:
                announcement = json.loads(data)
                self._handle_announcement(announcement)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Failed to parse announcement: {e}")
        elif topic == self._signaling_topic:
            try:
                signal = SignalingMessage.from_dict(json.loads(data))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Failed to parse signaling message: {e}")
                return
            logger.debug(f"Received signaling message: {signal.type} from {signal.from_peer[:16]}...")
            self.events.emit(SIGNALING, signal)

    def _handle_announcement(self, announcement: Dict[str, Any]):
        peer_id = announcement["peerId"]
        if not isinstance(peer_id, str) or not peer_id:
            raise TypeError("announcement peerId must be a non-empty string")

        record = self.directory.upsert_from_announcement(
            announcement,
            connected=peer_id in self._connected_ids()
        )
        logger.debug(f"Received announcement from {peer_id[:16]}...")
        self.events.emit(PEER_ANNOUNCE, record)

    async def send_signaling_message(
        self,
        target_peer_id: str,
        signal: Union[SignalingMessage, Dict[str, Any]]
    ) -> bool:
        """
        Publish a WebRTC signaling message to a peer's signaling topic.

        Returns:
            True if published
        """
        pubsub = getattr(self.transport, "pubsub", None)
        if not self.is_started or pubsub is None:
            return False

        if isinstance(signal, dict):
            signal = SignalingMessage.from_dict(signal)
        signal.from_peer = self.transport.peer_id

        try:
            await pubsub.publish(
                f"{SIGNALING_TOPIC_PREFIX}{target_peer_id}",
                json.dumps(signal.to_dict()).encode("utf-8")
            )
        except Exception as e:
            logger.warning(f"Failed to send signaling message: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Store / retrieve
    # ------------------------------------------------------------------

    async def _authorize(self, data: bytes, signer: Signer) -> Optional[AuthorizationEnvelope]:
        try:
            return await build_authorization(signer, data, self.config.app_id)
        except Exception as e:
            logger.warning(f"Failed to create storage authorization, storing without it: {e}")
            return None

    def _order_candidates(self, peer_ids: List[str]) -> List[str]:
        """Registered peers first, then the rest; discovery order within each group."""
        rank = {peer_id: i for i, peer_id in enumerate(self.directory.peers)}
        registered = set(self.directory.registered_ids())
        return sorted(
            peer_ids,
            key=lambda p: (p not in registered, rank.get(p, len(rank)))
        )

    async def store(
        self,
        data: bytes,
        mime_type: Optional[str] = None,
        signer: Optional[Signer] = None,
        hash_id_token: Optional[int] = None
    ) -> StoreResult:
        """
        Store a blob on the network.

        Candidates are tried one at a time until one accepts; per-peer
        failures are collected and only reported if every candidate fails.

        Args:
            data: Payload bytes
            mime_type: Media type (octet-stream if None)
            signer: Signer for the authorization (client default if None)
            hash_id_token: Identity token forwarded on the relay websocket

        Returns:
            StoreResult with the CID and storing peer on success
        """
        mime_type = mime_type or DEFAULT_MIME_TYPE

        if len(data) > self.config.max_file_size:
            return self._store_failed(
                FailureKind.VALIDATION_ERROR,
                str(PayloadTooLarge(len(data), self.config.max_file_size))
            )

        signer = signer or self.signer
        if signer is None and self.config.require_authorization:
            return self._store_failed(
                FailureKind.VALIDATION_ERROR,
                "Storage authorization required but no signer provided"
            )

        authorization = await self._authorize(data, signer) if signer is not None else None

        if self.ws_client is not None:
            try:
                result = await self.ws_client.store(
                    data,
                    mime_type,
                    hash_id_token=hash_id_token,
                    authorization=authorization,
                    timeout=self.config.ws_request_timeout
                )
            except ByteCaveError as e:
                logger.warning(f"WebSocket store failed, trying P2P: {e}")
            else:
                if result.success:
                    self.stats["stores_succeeded"] += 1
                    logger.info(f"Stored {result.cid} via relay websocket")
                    return result
                logger.warning(f"WebSocket store failed, trying P2P: {result.error}")

        if not self.is_started:
            return self._store_failed(FailureKind.TRANSPORT_UNAVAILABLE, "P2P node not initialized")

        relay_ids = self._relay_peer_ids()
        candidates = [p for p in self.transport.get_peers() if p not in relay_ids]
        if not candidates:
            return self._store_failed(FailureKind.TRANSPORT_UNAVAILABLE, "No connected storage peers available")

        failures: List[PeerFailure] = []
        for peer_id in self._order_candidates(candidates):
            record = self.directory.get(peer_id)
            if record is None or not record.is_registered:
                logger.warning(f"Storing to unregistered peer {peer_id[:16]}... - data will NOT replicate")

            result = await self.protocol.store(
                peer_id,
                data,
                mime_type,
                authorization=authorization,
                app_id=self.config.app_id
            )
            if result.success:
                self.stats["stores_succeeded"] += 1
                logger.info(f"Stored {result.value} on {peer_id[:16]}...")
                return StoreResult(success=True, cid=result.value, peer_id=peer_id)

            logger.warning(f"Store to {peer_id[:16]}... failed: {result.error}")
            failures.append(PeerFailure(peer_id, result.kind, result.error))

        reasons = "; ".join(str(f) for f in failures)
        result = self._store_failed(FailureKind.ALL_CANDIDATES_FAILED, f"All storage peers failed: {reasons}")
        result.failures = failures
        return result

    def _store_failed(self, kind: FailureKind, error: str) -> StoreResult:
        self.stats["stores_failed"] += 1
        logger.error(f"Store failed: {error}")
        return StoreResult(success=False, error=error, error_kind=kind)

    async def retrieve(self, cid: str) -> RetrieveResult:
        """
        Retrieve a blob by CID.

        Every connected peer is asked whether it holds the CID; holders are
        then tried in order, each bounded by ``retrieve_timeout``.
        """
        if not self.is_started:
            return self._retrieve_failed(FailureKind.TRANSPORT_UNAVAILABLE, "P2P node not initialized")

        peers = self.transport.get_peers()
        if not peers:
            return self._retrieve_failed(
                FailureKind.TRANSPORT_UNAVAILABLE,
                f"No connected peers available ({len(self.directory)} known)"
            )

        holders = []
        for peer_id in peers:
            has = await self.protocol.peer_has_cid(peer_id, cid)
            if has.success and has.value:
                holders.append(peer_id)

        if not holders:
            return self._retrieve_failed(FailureKind.NOT_FOUND, "Blob not found on any connected peer")

        timeout = self.config.retrieve_timeout
        failures: List[PeerFailure] = []
        for peer_id in holders:
            try:
                result = await asyncio.wait_for(self.protocol.retrieve(peer_id, cid), timeout=timeout)
            except asyncio.TimeoutError:
                failures.append(PeerFailure(peer_id, FailureKind.TIMEOUT, f"Retrieval timeout after {timeout:g}s"))
                continue

            if result.success:
                self.stats["retrieves_succeeded"] += 1
                return RetrieveResult(
                    success=True,
                    data=result.value.data,
                    mime_type=result.value.mime_type,
                    peer_id=peer_id,
                )
            failures.append(PeerFailure(peer_id, result.kind, result.error))

        reasons = "; ".join(str(f) for f in failures)
        result = self._retrieve_failed(
            FailureKind.ALL_CANDIDATES_FAILED,
            f"Failed to retrieve blob from peers that have it: {reasons}"
        )
        result.failures = failures
        return result

    def _retrieve_failed(self, kind: FailureKind, error: str) -> RetrieveResult:
        self.stats["retrieves_failed"] += 1
        logger.warning(f"Retrieve failed: {error}")
        return RetrieveResult(success=False, error=error, error_kind=kind)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_peers(self) -> List[PeerRecord]:
        """Known peers plus any connected peers not yet in the directory."""
        return self.directory.list_peers(self._connected_ids())

    def get_connected_peer_count(self) -> int:
        return len(self._connected_ids())

    def get_connection_state(self) -> ConnectionState:
        return self.connection_state

    def find_peer_for_content_type(self, content_type: str) -> Optional[PeerRecord]:
        return self.directory.find_for_content_type(content_type, self._connected_ids())

    async def get_node_info(self, peer_id: str) -> Optional[InfoResponse]:
        """Node info for registration, or None if the peer did not answer."""
        result = await self.protocol.info(peer_id)
        if not result.success:
            logger.warning(f"Failed to get node info from {peer_id[:16]}...: {result.error}")
            return None
        return result.value

    async def get_node_health(self, peer_id: str) -> Optional[HealthResponse]:
        """
        Health of a peer, dialing it through its first relay address first.

        Returns:
            HealthResponse, or None if the peer did not answer
        """
        record = self.directory.get(peer_id)
        if record is not None and record.relay_addrs and self.is_started:
            logger.debug(f"Dialing {peer_id[:16]}... through relay {record.relay_addrs[0]}")
            await self._dial(record.relay_addrs[0])

        result = await self.protocol.health(peer_id)
        if not result.success:
            logger.warning(f"Failed to get node health from {peer_id[:16]}...: {result.error}")
            return None
        return result.value

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, listener: Callable[..., Any]):
        self.events.on(event, listener)

    def off(self, event: str, listener: Callable[..., Any]):
        self.events.off(event, listener)

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            "state": self.connection_state.value,
            "known_peers": len(self.directory),
            "connected_peers": self.get_connected_peer_count(),
            "protocol": self.protocol.get_stats(),
        }


StorageOrchestrator = ByteCaveClient
