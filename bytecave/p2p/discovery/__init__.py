"""
Peer Discovery

Relay HTTP listing and the node registry.
"""

from .registry import NodeRegistry, StaticNodeRegistry, active_node_ids
from .relay_http import RelayHttpDiscovery, HTTP_TIMEOUT

__all__ = [
    "NodeRegistry",
    "StaticNodeRegistry",
    "active_node_ids",
    "RelayHttpDiscovery",
    "HTTP_TIMEOUT",
]
