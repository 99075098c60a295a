"""
ByteCave P2P Layer

Components:
- Transport: stream transport interface and the TCP implementation
- Network: length-prefixed message framing and request/response protocols
- Peers: directory of known storage peers
- Discovery: relay HTTP listing and node registry
"""

from .discovery import NodeRegistry, RelayHttpDiscovery, StaticNodeRegistry
from .network import ProtocolClient, register_responder
from .peers import PeerDirectory, PeerRecord, PeerState
from .transport import TCPTransport, Transport

__all__ = [
    "NodeRegistry",
    "RelayHttpDiscovery",
    "StaticNodeRegistry",
    "ProtocolClient",
    "register_responder",
    "PeerDirectory",
    "PeerRecord",
    "PeerState",
    "TCPTransport",
    "Transport",
]
