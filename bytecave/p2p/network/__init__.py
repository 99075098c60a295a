"""
Network Protocol Layer

Message framing and the request/response protocols built on it.
"""

from .message_channel import (
    MessageChannel,
    read_message,
    write_message,
    encode_message,
    CHUNK_SIZE,
    MESSAGE_SIZE_LIMIT,
)
from .messages import (
    StoreRequest,
    StoreResponse,
    RetrieveResponse,
    RetrievedBlob,
    HealthResponse,
    InfoResponse,
    DirectoryEntry,
    PeerDirectoryResponse,
    HaveListResponse,
)
from .protocol import (
    ProtocolClient,
    register_responder,
    PROTOCOL_STORE,
    PROTOCOL_BLOB,
    PROTOCOL_HEALTH,
    PROTOCOL_INFO,
    PROTOCOL_PEER_DIRECTORY,
    PROTOCOL_HAVE_LIST,
)

__all__ = [
    "MessageChannel",
    "read_message",
    "write_message",
    "encode_message",
    "CHUNK_SIZE",
    "MESSAGE_SIZE_LIMIT",
    "StoreRequest",
    "StoreResponse",
    "RetrieveResponse",
    "RetrievedBlob",
    "HealthResponse",
    "InfoResponse",
    "DirectoryEntry",
    "PeerDirectoryResponse",
    "HaveListResponse",
    "ProtocolClient",
    "register_responder",
    "PROTOCOL_STORE",
    "PROTOCOL_BLOB",
    "PROTOCOL_HEALTH",
    "PROTOCOL_INFO",
    "PROTOCOL_PEER_DIRECTORY",
    "PROTOCOL_HAVE_LIST",
]
