"""
Wire records exchanged over ByteCave protocol streams.

Field names on the wire are camelCase to match storage nodes and relays.
Response parsers raise ValueError when a peer sends a field of the wrong type.
"""

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ...core.types import DEFAULT_MIME_TYPE

ContentTypes = Union[str, List[str]]  # "all" or explicit list


def _drop_none(message: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in message.items() if v is not None}


def _number(d: Dict[str, Any], key: str, default: float = 0) -> Any:
    value = d.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number, got {type(value).__name__}")
    return value


def _text(d: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    value = d.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _text_list(d: Dict[str, Any], key: str) -> List[str]:
    value = d.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return list(value)


def _error(d: Dict[str, Any]) -> Optional[str]:
    value = d.get("error")
    return None if value is None else str(value)


def _content_types(d: Dict[str, Any]) -> ContentTypes:
    value = d.get("contentTypes")
    if not value:
        return "all"
    if isinstance(value, str):
        return value
    return _text_list(d, "contentTypes")


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(data: str) -> bytes:
    return base64.b64decode(data)


@dataclass
class StoreRequest:
    cid: str
    mime_type: str
    ciphertext: str  # base64
    app_id: Optional[str] = None
    content_type: Optional[str] = None
    sender: Optional[str] = None
    timestamp: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    authorization: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "cid": self.cid,
            "mimeType": self.mime_type,
            "ciphertext": self.ciphertext,
            "appId": self.app_id,
            "contentType": self.content_type,
            "sender": self.sender,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
            "authorization": self.authorization,
        })

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StoreRequest":
        return StoreRequest(
            cid=d["cid"],
            mime_type=d.get("mimeType", DEFAULT_MIME_TYPE),
            ciphertext=d["ciphertext"],
            app_id=d.get("appId"),
            content_type=d.get("contentType"),
            sender=d.get("sender"),
            timestamp=d.get("timestamp"),
            metadata=d.get("metadata"),
            authorization=d.get("authorization"),
        )


@dataclass
class StoreResponse:
    success: bool
    cid: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"success": self.success, "cid": self.cid, "error": self.error})

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StoreResponse":
        return StoreResponse(success=bool(d.get("success")), cid=_text(d, "cid"), error=_error(d))


@dataclass
class RetrieveResponse:
    success: bool
    ciphertext: Optional[str] = None  # base64
    mime_type: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "success": self.success,
            "ciphertext": self.ciphertext,
            "mimeType": self.mime_type,
            "error": self.error,
        })

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "RetrieveResponse":
        return RetrieveResponse(
            success=bool(d.get("success")),
            ciphertext=_text(d, "ciphertext"),
            mime_type=_text(d, "mimeType"),
            error=_error(d),
        )


@dataclass
class RetrievedBlob:
    """Payload returned by a successful retrieval."""

    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE


@dataclass
class HealthResponse:
    peer_id: str
    status: str = "healthy"  # healthy | degraded | unhealthy
    blob_count: int = 0
    storage_used: int = 0
    storage_max: int = 0
    uptime: float = 0
    version: str = ""
    multiaddrs: List[str] = field(default_factory=list)
    content_types: ContentTypes = "all"
    node_id: Optional[str] = None
    public_key: Optional[str] = None
    owner_address: Optional[str] = None
    metrics: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "peerId": self.peer_id,
            "status": self.status,
            "blobCount": self.blob_count,
            "storageUsed": self.storage_used,
            "storageMax": self.storage_max,
            "uptime": self.uptime,
            "version": self.version,
            "multiaddrs": self.multiaddrs,
            "contentTypes": self.content_types,
            "nodeId": self.node_id,
            "publicKey": self.public_key,
            "ownerAddress": self.owner_address,
            "metrics": self.metrics,
        })

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "HealthResponse":
        return HealthResponse(
            peer_id=_text(d, "peerId", ""),
            status=_text(d, "status", "healthy"),
            blob_count=_number(d, "blobCount"),
            storage_used=_number(d, "storageUsed"),
            storage_max=_number(d, "storageMax"),
            uptime=_number(d, "uptime"),
            version=_text(d, "version", ""),
            multiaddrs=_text_list(d, "multiaddrs"),
            content_types=_content_types(d),
            node_id=_text(d, "nodeId"),
            public_key=_text(d, "publicKey"),
            owner_address=_text(d, "ownerAddress"),
            metrics=d.get("metrics") if isinstance(d.get("metrics"), dict) else None,
        )


@dataclass
class InfoResponse:
    peer_id: str
    public_key: str = ""
    version: str = ""
    content_types: ContentTypes = "all"
    owner_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "peerId": self.peer_id,
            "publicKey": self.public_key,
            "ownerAddress": self.owner_address,
            "version": self.version,
            "contentTypes": self.content_types,
        })

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "InfoResponse":
        return InfoResponse(
            peer_id=_text(d, "peerId", ""),
            public_key=_text(d, "publicKey", ""),
            version=_text(d, "version", ""),
            content_types=_content_types(d),
            owner_address=_text(d, "ownerAddress"),
        )


@dataclass
class DirectoryEntry:
    peer_id: str
    multiaddrs: List[str] = field(default_factory=list)
    last_seen: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"peerId": self.peer_id, "multiaddrs": self.multiaddrs, "lastSeen": self.last_seen}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "DirectoryEntry":
        return DirectoryEntry(
            peer_id=_text(d, "peerId", ""),
            multiaddrs=_text_list(d, "multiaddrs"),
            last_seen=_number(d, "lastSeen"),
        )


@dataclass
class PeerDirectoryResponse:
    peers: List[DirectoryEntry] = field(default_factory=list)
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {"peers": [p.to_dict() for p in self.peers], "timestamp": self.timestamp}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "PeerDirectoryResponse":
        return PeerDirectoryResponse(
            peers=[DirectoryEntry.from_dict(p) for p in d.get("peers") or [] if p.get("peerId")],
            timestamp=_number(d, "timestamp"),
        )


@dataclass
class HaveListResponse:
    cids: List[str] = field(default_factory=list)
    total: int = 0
    has_more: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"cids": self.cids, "total": self.total, "hasMore": self.has_more}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "HaveListResponse":
        cids = _text_list(d, "cids")
        return HaveListResponse(cids=cids, total=_number(d, "total", len(cids)), has_more=bool(d.get("hasMore")))
