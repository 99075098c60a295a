"""
ByteCave error taxonomy.

Per-peer failures are soft: the orchestrator records them and moves on to
the next candidate. Only input validation raises straight to the caller.
"""

from enum import Enum


class FailureKind(Enum):
    """Why an operation against the network did not succeed."""

    TRANSPORT_UNAVAILABLE = "transport_unavailable"  # no transport / no peers
    PROTOCOL_DECLINE = "protocol_decline"  # stream open/reset, peer unreachable
    TIMEOUT = "timeout"
    APPLICATION_ERROR = "application_error"  # peer answered success=false
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"  # peers connected, none holds the CID
    ALL_CANDIDATES_FAILED = "all_candidates_failed"


class ByteCaveError(Exception):
    """Base class for all ByteCave client errors."""

    kind: FailureKind = FailureKind.APPLICATION_ERROR


class ValidationError(ByteCaveError, ValueError):
    """Input rejected before any network access."""

    kind = FailureKind.VALIDATION_ERROR


class InvalidHashdUrl(ValidationError):
    """String is not a well-formed hashd:// URL."""


class PayloadTooLarge(ValidationError):
    """Payload exceeds the configured maximum size."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"File size ({size / (1024 * 1024):.2f}MB) exceeds maximum "
            f"allowed size of {limit / (1024 * 1024):.0f}MB"
        )


class TransportUnavailable(ByteCaveError):
    kind = FailureKind.TRANSPORT_UNAVAILABLE


class ProtocolDecline(ByteCaveError):
    """Peer unreachable, stream reset, or protocol not supported."""

    kind = FailureKind.PROTOCOL_DECLINE


class StreamOpenError(ProtocolDecline):
    """Stream could not be opened for the requested protocol."""

    def __init__(self, peer_id: str, protocol: str, reason: str = "protocol not supported"):
        self.peer_id = peer_id
        self.protocol = protocol
        super().__init__(f"{protocol} declined by {peer_id[:16]}: {reason}")


class MessageDecodeError(ProtocolDecline):
    """Framed message could not be decoded."""


class RequestTimeout(ByteCaveError):
    kind = FailureKind.TIMEOUT


class TransportClosed(ByteCaveError):
    """Underlying socket closed while requests were outstanding."""

    kind = FailureKind.PROTOCOL_DECLINE


class ContentFetchError(ByteCaveError):
    """Content behind a hashd:// URL could not be loaded."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.APPLICATION_ERROR):
        super().__init__(message)
        self.kind = kind
