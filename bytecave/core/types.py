"""
Result and state types shared across the ByteCave client.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from .errors import FailureKind

T = TypeVar("T")

DEFAULT_MIME_TYPE = "application/octet-stream"


class ConnectionState(Enum):
    """Lifecycle state of the orchestrator."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class ProtocolResult(Generic[T]):
    """
    Outcome of a single request/response exchange with one peer.

    Exactly one of ``value`` or ``kind`` is meaningful: a successful call
    carries a value, a failed one carries the failure kind and reason.
    """

    value: Optional[T] = None
    kind: Optional[FailureKind] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.kind is None

    @classmethod
    def ok(cls, value: T) -> "ProtocolResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: FailureKind, error: str) -> "ProtocolResult[T]":
        return cls(kind=kind, error=error)


@dataclass
class PeerFailure:
    """One candidate's failure during a multi-peer workflow."""

    peer_id: str
    kind: FailureKind
    reason: str

    def __str__(self) -> str:
        return f"{self.peer_id[:12]}: {self.reason}"


@dataclass
class StoreResult:
    success: bool
    cid: Optional[str] = None
    peer_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None
    failures: List[PeerFailure] = field(default_factory=list)


@dataclass
class RetrieveResult:
    success: bool
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    peer_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None
    failures: List[PeerFailure] = field(default_factory=list)


@dataclass
class AuthorizationEnvelope:
    """
    Signed storage authorization attached to store requests.

    Built client-side only; the receiving node is responsible for
    validating the signature against the canonical message.
    """

    sender: str
    signature: str
    timestamp: int  # milliseconds since epoch
    nonce: str
    app_id: str
    content_hash: str  # "0x" + sha256 hex

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used on P2P store streams."""
        return {
            "sender": self.sender,
            "signature": self.signature,
            "timestamp": self.timestamp,
            "nonce": self.nonce,
            "appId": self.app_id,
            "contentHash": self.content_hash,
        }

    def to_relay_dict(self) -> Dict[str, Any]:
        """Wire form used by the relay websocket, which names the sender ``address``."""
        return {
            "signature": self.signature,
            "address": self.sender,
            "timestamp": self.timestamp,
            "nonce": self.nonce,
            "appId": self.app_id,
            "contentHash": self.content_hash,
        }


@dataclass
class SignalingMessage:
    """WebRTC negotiation message relayed over pub/sub."""

    type: str  # offer | answer | ice-candidate
    from_peer: str = ""
    sdp: Optional[str] = None
    candidate: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"type": self.type, "from": self.from_peer}
        if self.sdp is not None:
            message["sdp"] = self.sdp
        if self.candidate is not None:
            message["candidate"] = self.candidate
        return message

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SignalingMessage":
        return SignalingMessage(
            type=data["type"],
            from_peer=data.get("from", ""),
            sdp=data.get("sdp"),
            candidate=data.get("candidate"),
        )


@dataclass
class NodeRegistryEntry:
    """Active storage node as listed by the on-chain registry."""

    node_id: str
    owner: str
    public_key: str
    url: str = ""
    active: bool = True
    fetched_at: float = field(default_factory=time.time)
