"""
Transport interface consumed by the ByteCave client.

The node runtime (dialing, stream lifecycle, encryption, relaying) lives
outside this package. Anything implementing :class:`Transport` can drive the
orchestrator; :mod:`.tcp_transport` is the bundled implementation.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Protocol

# Transport event names
EVENT_PEER_CONNECT = "peer:connect"
EVENT_PEER_DISCONNECT = "peer:disconnect"


class Stream(Protocol):
    """A duplex byte stream negotiated for a single protocol."""

    def send(self, data: bytes) -> bool:
        """Queue bytes; returns False when the sink reports backpressure."""
        ...

    async def on_drain(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[bytes]: ...

    async def close(self) -> None: ...


class PubSub(Protocol):
    def subscribe(self, topic: str) -> None: ...

    def add_message_handler(self, handler: Callable[[str, bytes], Any]) -> None: ...

    async def publish(self, topic: str, data: bytes) -> None: ...


class Transport(Protocol):
    peer_id: str
    pubsub: Optional[PubSub]

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    @property
    def is_started(self) -> bool: ...

    async def dial(self, address: str) -> str:
        """Connect to ``address`` and return the remote peer id."""
        ...

    async def new_stream(self, peer_id: str, protocol: str) -> Stream: ...

    def get_peers(self) -> List[str]:
        """Currently connected peer ids in connection order."""
        ...

    def add_event_listener(self, event: str, callback: Callable[[str], Any]) -> None: ...


StreamHandler = Callable[[Stream, str], Awaitable[None]]


@dataclass
class Multiaddr:
    """Parsed ``/ip4/<host>/tcp/<port>[/p2p/<peer id>]`` address."""

    host: str
    port: int
    peer_id: Optional[str] = None

    def __str__(self) -> str:
        base = f"/ip4/{self.host}/tcp/{self.port}"
        return f"{base}/p2p/{self.peer_id}" if self.peer_id else base


def parse_multiaddr(address: str) -> Multiaddr:
    """
    Parse the subset of multiaddr syntax the TCP transport dials.

    Raises:
        ValueError: if the address is not ``/ip4|ip6|dns4/<host>/tcp/<port>``
    """
    parts = [p for p in address.split("/") if p]
    if len(parts) < 4 or parts[0] not in ("ip4", "ip6", "dns4", "dns") or parts[2] != "tcp":
        raise ValueError(f"Unsupported multiaddr: {address}")

    try:
        port = int(parts[3])
    except ValueError:
        raise ValueError(f"Invalid port in multiaddr: {address}")

    peer_id = None
    if "p2p" in parts:
        index = parts.index("p2p")
        if index + 1 < len(parts):
            # Circuit addresses name the target last
            peer_id = address.split("/p2p/")[-1].split("/")[0]

    return Multiaddr(host=parts[1], port=port, peer_id=peer_id)


def peer_id_from_multiaddr(address: str) -> Optional[str]:
    """Trailing ``/p2p/<id>`` component of an address, if present."""
    parts = address.split("/p2p/")
    if len(parts) < 2:
        return None
    return parts[-1].split("/")[0] or None
