"""
TCP Network Transport

Reference implementation of the ByteCave transport interface over plain
TCP sockets, for local networks, tests and relay-less deployments.

Features:
- Peer-to-peer control connections with a peer-id handshake
- One TCP connection per protocol stream (request/response streams are short lived)
- Protocol negotiation: the dialer names the protocol, the listener answers ok/na
- Backpressure reporting through the socket write buffer
- Connect/disconnect events for the orchestrator

Wire handshake (one line each, UTF-8, newline terminated):
    control:  "HELLO <peer id> <listen port>"  ->  "HELLO <peer id>"
    stream:   "STREAM <peer id> <protocol>"     ->  "ok" | "na"
"""

import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

from ...core.errors import StreamOpenError
from .base import (
    EVENT_PEER_CONNECT,
    EVENT_PEER_DISCONNECT,
    StreamHandler,
    parse_multiaddr,
)

logger = logging.getLogger(__name__)


# Transport constants
MAX_CONNECTIONS = 50  # Maximum concurrent peer connections
CONNECTION_TIMEOUT = 10  # Connection attempt timeout (seconds)
HANDSHAKE_TIMEOUT = 5  # Handshake line timeout (seconds)
READ_CHUNK_SIZE = 64 * 1024  # Bytes per read from a stream socket
WRITE_HIGH_WATER = 256 * 1024  # Write buffer size that signals backpressure
MAX_HANDSHAKE_LINE = 1024


class TCPStream:
    """A negotiated protocol stream over one TCP connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        remote_peer: str,
        protocol: str
    ):
        self.reader = reader
        self.writer = writer
        self.remote_peer = remote_peer
        self.protocol = protocol
        self.bytes_sent = 0
        self.bytes_received = 0
        self._closed = False

    def send(self, data: bytes) -> bool:
        """Write bytes; returns False when the write buffer is above the high-water mark."""
        self.writer.write(data)
        self.bytes_sent += len(data)
        return self.writer.transport.get_write_buffer_size() <= WRITE_HIGH_WATER

    async def on_drain(self):
        await self.writer.drain()

    async def _chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.reader.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            self.bytes_received += len(chunk)
            yield chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


@dataclass
class PeerConnection:
    """Represents an active control connection to a peer."""

    peer_id: str
    host: str
    port: int  # remote listen port (streams are opened here)
    reader: Optional[asyncio.StreamReader] = None
    writer: Optional[asyncio.StreamWriter] = None
    inbound: bool = False

    connected_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    streams_opened: int = 0

    @property
    def address(self) -> str:
        return f"/ip4/{self.host}/tcp/{self.port}/p2p/{self.peer_id}"

    def update_activity(self):
        """Update last activity timestamp."""
        self.last_activity = time.time()


class TCPTransport:
    """
    TCP-based transport for ByteCave peers.

    Acts as both dialer and listener: protocol handlers registered with
    :meth:`handle` serve inbound streams, :meth:`new_stream` opens outbound ones.
    """

    def __init__(
        self,
        peer_id: Optional[str] = None,
        listen_host: str = "127.0.0.1",
        listen_port: int = 0,
        connection_timeout: float = CONNECTION_TIMEOUT,
        max_connections: int = MAX_CONNECTIONS
    ):
        """
        Initialize TCP transport.

        Args:
            peer_id: Our peer id (random SHA-256 hex when omitted)
            listen_host: Host to listen on
            listen_port: Port to listen on (0 picks a free port)
            connection_timeout: Dial timeout in seconds
            max_connections: Cap on concurrent control connections
        """
        self.peer_id = peer_id or hashlib.sha256(os.urandom(32)).hexdigest()
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.connection_timeout = connection_timeout
        self.max_connections = max_connections
        self.pubsub = None  # No pub/sub over plain TCP

        # Active connections (peer_id → PeerConnection), in connection order
        self.connections: Dict[str, PeerConnection] = {}

        # Protocol handlers (protocol id → handler)
        self.handlers: Dict[str, StreamHandler] = {}

        self._listeners: Dict[str, List[Callable[[str], Any]]] = {}
        self._server: Optional[asyncio.AbstractServer] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

        # Statistics
        self.stats = {
            "connections_accepted": 0,
            "connections_initiated": 0,
            "connections_failed": 0,
            "streams_opened": 0,
            "streams_accepted": 0,
            "streams_declined": 0,
        }

        logger.info(
            f"Initialized TCP transport for node: {self.peer_id[:16]}... "
            f"on {listen_host}:{listen_port}"
        )

    @property
    def is_started(self) -> bool:
        return self._running

    @property
    def listen_addrs(self) -> List[str]:
        return [f"/ip4/{self.listen_host}/tcp/{self.listen_port}/p2p/{self.peer_id}"]

    def handle(self, protocol: str, handler: StreamHandler):
        """
        Register a protocol handler.

        Args:
            protocol: Protocol id to serve
            handler: Coroutine ``handler(stream, remote_peer_id)``
        """
        self.handlers[protocol] = handler
        logger.debug(f"Registered handler for {protocol}")

    def add_event_listener(self, event: str, callback: Callable[[str], Any]):
        self._listeners.setdefault(event, []).append(callback)

    def _emit(self, event: str, peer_id: str):
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(peer_id)
            except Exception as e:
                logger.error(f"Error in {event} listener: {e}")

    def get_peers(self) -> List[str]:
        return list(self.connections.keys())

    async def start(self):
        """Start listening for inbound connections."""
        if self._running:
            return

        self._server = await asyncio.start_server(
            self._handle_inbound, self.listen_host, self.listen_port
        )
        sockets = self._server.sockets or []
        if sockets:
            self.listen_port = sockets[0].getsockname()[1]

        self._running = True
        logger.info(f"Server listening on {self.listen_host}:{self.listen_port}")

    async def _read_line(self, reader: asyncio.StreamReader) -> str:
        line = await asyncio.wait_for(reader.readline(), timeout=HANDSHAKE_TIMEOUT)
        if not line or len(line) > MAX_HANDSHAKE_LINE:
            raise ConnectionError("Invalid handshake")
        return line.decode("utf-8").strip()

    async def _handle_inbound(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Dispatch an inbound socket as a control connection or a protocol stream."""
        addr = writer.get_extra_info("peername") or ("unknown", 0)

        try:
            parts = (await self._read_line(reader)).split(" ")
        except (asyncio.TimeoutError, ConnectionError, UnicodeDecodeError) as e:
            logger.debug(f"Dropped connection from {addr[0]}:{addr[1]}: {e}")
            writer.close()
            return

        if parts[0] == "HELLO" and len(parts) == 3 and parts[2].isdigit():
            await self._accept_control(parts[1], int(parts[2]), addr[0], reader, writer)
        elif parts[0] == "STREAM" and len(parts) == 3:
            await self._accept_stream(parts[1], parts[2], reader, writer)
        else:
            logger.warning(f"Unknown handshake from {addr[0]}:{addr[1]}")
            writer.close()

    async def _accept_control(
        self,
        remote_peer: str,
        remote_port: int,
        host: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter
    ):
        if len(self.connections) >= self.max_connections:
            logger.warning(f"Max connections reached, rejecting {remote_peer[:16]}...")
            writer.close()
            return

        writer.write(f"HELLO {self.peer_id}\n".encode("utf-8"))
        await writer.drain()

        connection = PeerConnection(
            peer_id=remote_peer,
            host=host,
            port=remote_port,
            reader=reader,
            writer=writer,
            inbound=True
        )
        self.stats["connections_accepted"] += 1
        self._register_connection(connection)
        await self._watch_connection(connection)

    async def _accept_stream(
        self,
        remote_peer: str,
        protocol: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter
    ):
        handler = self.handlers.get(protocol)
        if handler is None:
            self.stats["streams_declined"] += 1
            writer.write(b"na\n")
            await writer.drain()
            writer.close()
            return

        writer.write(b"ok\n")
        await writer.drain()
        self.stats["streams_accepted"] += 1

        stream = TCPStream(reader, writer, remote_peer, protocol)
        try:
            await handler(stream, remote_peer)
        except Exception as e:
            logger.error(f"Error in handler for {protocol}: {e}")
        finally:
            await stream.close()

    def _register_connection(self, connection: PeerConnection):
        existing = self.connections.get(connection.peer_id)
        self.connections[connection.peer_id] = connection
        if existing is None:
            logger.info(f"Connected to {connection.peer_id[:16]}... at {connection.host}:{connection.port}")
            self._emit(EVENT_PEER_CONNECT, connection.peer_id)

    async def _watch_connection(self, connection: PeerConnection):
        """Hold a control connection open until the remote side closes it."""
        try:
            while True:
                data = await connection.reader.read(1024)
                if not data:
                    break
                connection.update_activity()
        except (ConnectionError, OSError):
            pass
        except asyncio.CancelledError:
            raise
        finally:
            if self.connections.get(connection.peer_id) is connection:
                del self.connections[connection.peer_id]
                if self._running:
                    logger.info(f"Connection closed by {connection.peer_id[:16]}...")
                    self._emit(EVENT_PEER_DISCONNECT, connection.peer_id)
            if connection.writer:
                connection.writer.close()

    async def dial(self, address: str) -> str:
        """
        Connect to a remote peer.

        Args:
            address: ``/ip4/<host>/tcp/<port>[/p2p/<peer id>]``

        Returns:
            Remote peer id

        Raises:
            ConnectionError: if the peer cannot be reached or identifies differently
        """
        if not self._running:
            raise ConnectionError("Transport not started")

        target = parse_multiaddr(address)
        if target.peer_id and target.peer_id in self.connections:
            logger.debug(f"Already connected to {target.peer_id[:16]}...")
            return target.peer_id

        if len(self.connections) >= self.max_connections:
            raise ConnectionError("Max connections reached")

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(target.host, target.port),
                timeout=self.connection_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            self.stats["connections_failed"] += 1
            raise ConnectionError(f"Failed to connect to {address}: {e}") from e

        try:
            writer.write(f"HELLO {self.peer_id} {self.listen_port}\n".encode("utf-8"))
            await writer.drain()
            parts = (await self._read_line(reader)).split(" ")
        except (OSError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            writer.close()
            self.stats["connections_failed"] += 1
            raise ConnectionError(f"Handshake with {address} failed: {e}") from e

        if len(parts) != 2 or parts[0] != "HELLO":
            writer.close()
            self.stats["connections_failed"] += 1
            raise ConnectionError(f"Unexpected handshake from {address}")

        remote_peer = parts[1]
        if target.peer_id and target.peer_id != remote_peer:
            writer.close()
            self.stats["connections_failed"] += 1
            raise ConnectionError(
                f"Peer at {address} identified as {remote_peer[:16]}..., expected {target.peer_id[:16]}..."
            )

        if remote_peer in self.connections:
            writer.close()
            return remote_peer

        connection = PeerConnection(
            peer_id=remote_peer,
            host=target.host,
            port=target.port,
            reader=reader,
            writer=writer
        )
        self.stats["connections_initiated"] += 1
        self._register_connection(connection)
        task = asyncio.create_task(self._watch_connection(connection))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return remote_peer

    async def new_stream(self, peer_id: str, protocol: str) -> TCPStream:
        """
        Open a protocol stream to a connected peer.

        Raises:
            StreamOpenError: peer not connected, unreachable, or protocol unsupported
        """
        connection = self.connections.get(peer_id)
        if connection is None:
            raise StreamOpenError(peer_id, protocol, "peer not connected")

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(connection.host, connection.port),
                timeout=self.connection_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise StreamOpenError(peer_id, protocol, str(e) or "connection failed") from e

        try:
            writer.write(f"STREAM {self.peer_id} {protocol}\n".encode("utf-8"))
            await writer.drain()
            answer = await self._read_line(reader)
        except (OSError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            writer.close()
            raise StreamOpenError(peer_id, protocol, str(e) or "stream reset") from e

        if answer != "ok":
            writer.close()
            raise StreamOpenError(peer_id, protocol)

        connection.streams_opened += 1
        connection.update_activity()
        self.stats["streams_opened"] += 1
        return TCPStream(reader, writer, peer_id, protocol)

    async def hang_up(self, peer_id: str):
        """Close the control connection to a peer."""
        connection = self.connections.get(peer_id)
        if connection and connection.writer:
            connection.writer.close()

    def get_stats(self) -> Dict:
        """Get transport statistics."""
        return {
            **self.stats,
            "active_connections": len(self.connections),
            "max_connections": self.max_connections
        }

    async def stop(self):
        """Shutdown transport and close all connections."""
        if not self._running:
            return
        logger.info("Shutting down transport...")
        self._running = False

        for connection in list(self.connections.values()):
            if connection.writer:
                connection.writer.close()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        self.connections.clear()
        logger.info("Transport shutdown complete")
