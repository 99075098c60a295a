"""
Core ByteCave types: configuration, errors, results, events and signing.
"""

from .config import ClientConfig
from .content_addressing import compute_cid, content_hash, verify_cid
from .errors import (
    FailureKind,
    ByteCaveError,
    ValidationError,
    InvalidHashdUrl,
    PayloadTooLarge,
    TransportUnavailable,
    ProtocolDecline,
    StreamOpenError,
    MessageDecodeError,
    RequestTimeout,
    TransportClosed,
    ContentFetchError,
)
from .events import EventEmitter
from .signing import Ed25519Signer, Signer, build_authorization
from .types import (
    ConnectionState,
    ProtocolResult,
    PeerFailure,
    StoreResult,
    RetrieveResult,
    AuthorizationEnvelope,
    SignalingMessage,
    NodeRegistryEntry,
)

__all__ = [
    "ClientConfig",
    "compute_cid",
    "content_hash",
    "verify_cid",
    "FailureKind",
    "ByteCaveError",
    "ValidationError",
    "InvalidHashdUrl",
    "PayloadTooLarge",
    "TransportUnavailable",
    "ProtocolDecline",
    "StreamOpenError",
    "MessageDecodeError",
    "RequestTimeout",
    "TransportClosed",
    "ContentFetchError",
    "EventEmitter",
    "Ed25519Signer",
    "Signer",
    "build_authorization",
    "ConnectionState",
    "ProtocolResult",
    "PeerFailure",
    "StoreResult",
    "RetrieveResult",
    "AuthorizationEnvelope",
    "SignalingMessage",
    "NodeRegistryEntry",
]
