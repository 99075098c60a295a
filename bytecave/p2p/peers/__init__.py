"""
Peer tracking for the ByteCave client.
"""

from .directory import PeerDirectory, PeerRecord, PeerState

__all__ = ["PeerDirectory", "PeerRecord", "PeerState"]
