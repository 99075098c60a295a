"""
Network Transport Layer

Transport interface and the bundled TCP implementation.
"""

from .base import (
    Stream,
    Transport,
    PubSub,
    Multiaddr,
    parse_multiaddr,
    peer_id_from_multiaddr,
    EVENT_PEER_CONNECT,
    EVENT_PEER_DISCONNECT,
)
from .tcp_transport import (
    TCPTransport,
    TCPStream,
    PeerConnection,
    MAX_CONNECTIONS,
)

__all__ = [
    "Stream",
    "Transport",
    "PubSub",
    "Multiaddr",
    "parse_multiaddr",
    "peer_id_from_multiaddr",
    "EVENT_PEER_CONNECT",
    "EVENT_PEER_DISCONNECT",
    "TCPTransport",
    "TCPStream",
    "PeerConnection",
    "MAX_CONNECTIONS",
]
