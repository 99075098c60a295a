"""
ByteCave Stream Protocols

Request/response protocols spoken between clients, storage nodes and relays.

Each call opens a stream for a fixed protocol id, writes exactly one framed
request, reads exactly one framed response and closes the stream. Calls
never raise: the outcome is a ProtocolResult whose failure kind tells the
caller whether to try another peer (decline, timeout) or not (application
error).

Protocols:
- /bytecave/replicate/1.0.0 - Blob storage
- /bytecave/blob/1.0.0 - Blob retrieval
- /bytecave/health/1.0.0 - Health status
- /bytecave/info/1.0.0 - Node info (for registration)
- /bytecave/relay/peers/1.0.0 - Relay peer directory
- /bytecave/have-list/1.0.0 - CID possession query
"""

import asyncio
import binascii
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ...core.config import ClientConfig
from ...core.content_addressing import compute_cid
from ...core.errors import FailureKind, ProtocolDecline
from ...core.types import DEFAULT_MIME_TYPE, AuthorizationEnvelope, ProtocolResult
from ..transport.base import Stream, Transport
from .message_channel import read_message, write_message
from .messages import (
    HaveListResponse,
    HealthResponse,
    InfoResponse,
    PeerDirectoryResponse,
    RetrievedBlob,
    RetrieveResponse,
    StoreRequest,
    StoreResponse,
    decode_bytes,
    encode_bytes,
)

logger = logging.getLogger(__name__)


# Protocol identifiers - must match storage nodes and relays
PROTOCOL_STORE = "/bytecave/replicate/1.0.0"
PROTOCOL_BLOB = "/bytecave/blob/1.0.0"
PROTOCOL_HEALTH = "/bytecave/health/1.0.0"
PROTOCOL_INFO = "/bytecave/info/1.0.0"
PROTOCOL_PEER_DIRECTORY = "/bytecave/relay/peers/1.0.0"
PROTOCOL_HAVE_LIST = "/bytecave/have-list/1.0.0"


class ProtocolClient:
    """
    Protocol client for client-to-node communication.

    Bound to a transport with :meth:`set_transport`; until then every call
    fails with TRANSPORT_UNAVAILABLE.
    """

    def __init__(self, transport: Optional[Transport] = None, config: Optional[ClientConfig] = None):
        self.transport = transport
        self.config = config or ClientConfig()

        # Statistics
        self.stats = {
            "requests_sent": 0,
            "declined": 0,
            "timeouts": 0,
            "application_errors": 0,
        }

    def set_transport(self, transport: Optional[Transport]):
        self.transport = transport

    def _fail(self, kind: FailureKind, error: str) -> ProtocolResult:
        if kind == FailureKind.PROTOCOL_DECLINE:
            self.stats["declined"] += 1
        elif kind == FailureKind.TIMEOUT:
            self.stats["timeouts"] += 1
        elif kind == FailureKind.APPLICATION_ERROR:
            self.stats["application_errors"] += 1
        return ProtocolResult.fail(kind, error)

    def _parse(self, record: Any, value: Dict[str, Any]) -> ProtocolResult:
        """Build ``record`` from a response dict; malformed fields become a decline."""
        try:
            return ProtocolResult.ok(record.from_dict(value))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            return self._fail(FailureKind.PROTOCOL_DECLINE, f"Malformed {record.__name__}: {e}")

    async def _exchange(self, peer_id: str, protocol: str, request: Dict[str, Any]) -> ProtocolResult[Dict[str, Any]]:
        """Open a stream, send one request, read one response."""
        if self.transport is None:
            return self._fail(FailureKind.TRANSPORT_UNAVAILABLE, "P2P node not initialized")

        try:
            stream = await self.transport.new_stream(peer_id, protocol)
        except ProtocolDecline as e:
            logger.debug(f"{protocol} declined by {peer_id[:16]}...: {e}")
            return self._fail(FailureKind.PROTOCOL_DECLINE, str(e))
        except Exception as e:
            logger.warning(f"Failed to open {protocol} stream to {peer_id[:16]}...: {e}")
            return self._fail(FailureKind.PROTOCOL_DECLINE, str(e) or type(e).__name__)

        self.stats["requests_sent"] += 1
        try:
            await write_message(stream, request)
            response = await read_message(stream)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{protocol} exchange with {peer_id[:16]}... failed: {e}")
            return self._fail(FailureKind.PROTOCOL_DECLINE, str(e) or "stream reset")
        finally:
            try:
                await stream.close()
            except Exception as e:
                logger.debug(f"Error closing {protocol} stream: {e}")

        if response is None:
            return self._fail(FailureKind.PROTOCOL_DECLINE, "Stream closed before response")
        if not isinstance(response, dict):
            return self._fail(FailureKind.PROTOCOL_DECLINE, "Unexpected response shape")

        return ProtocolResult.ok(response)

    async def store(
        self,
        peer_id: str,
        data: bytes,
        mime_type: str = DEFAULT_MIME_TYPE,
        content_type: Optional[str] = None,
        authorization: Optional[AuthorizationEnvelope] = None,
        app_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> ProtocolResult[str]:
        """
        Store a blob on a peer.

        The whole exchange is raced against ``store_timeout_base`` plus a
        per-megabyte allowance; a timeout is reported as TIMEOUT, an explicit
        refusal from the node as APPLICATION_ERROR.

        Args:
            peer_id: Target storage peer
            data: Payload bytes
            mime_type: Declared media type
            content_type: Content category the node may filter on
            authorization: Signed storage authorization
            app_id: Application id
            metadata: Free-form metadata forwarded to the node
            timeout: Override the computed time budget

        Returns:
            ProtocolResult carrying the CID on success
        """
        cid = compute_cid(data)
        request = StoreRequest(
            cid=cid,
            mime_type=mime_type,
            ciphertext=encode_bytes(data),
            app_id=app_id or (authorization.app_id if authorization else None),
            content_type=content_type,
            sender=authorization.sender if authorization else None,
            timestamp=authorization.timestamp if authorization else None,
            metadata=metadata,
            authorization=authorization.to_dict() if authorization else None,
        )
        budget = timeout if timeout is not None else self.config.store_timeout(len(data))

        try:
            result = await asyncio.wait_for(
                self._exchange(peer_id, PROTOCOL_STORE, request.to_dict()),
                timeout=budget
            )
        except asyncio.TimeoutError:
            logger.warning(f"Store to {peer_id[:16]}... timed out after {budget:.1f}s")
            return self._fail(FailureKind.TIMEOUT, f"Store timed out after {budget:.1f}s")

        if not result.success:
            return ProtocolResult.fail(result.kind, result.error)

        parsed = self._parse(StoreResponse, result.value)
        if not parsed.success:
            return parsed
        response = parsed.value
        if response.success:
            return ProtocolResult.ok(response.cid or cid)
        return self._fail(FailureKind.APPLICATION_ERROR, response.error or "Store failed")

    async def retrieve(self, peer_id: str, cid: str) -> ProtocolResult[RetrievedBlob]:
        """Retrieve a blob from a peer."""
        result = await self._exchange(peer_id, PROTOCOL_BLOB, {"cid": cid})
        if not result.success:
            return ProtocolResult.fail(result.kind, result.error)

        parsed = self._parse(RetrieveResponse, result.value)
        if not parsed.success:
            return parsed
        response = parsed.value
        if not response.success or not response.ciphertext:
            return self._fail(FailureKind.APPLICATION_ERROR, response.error or "Blob not found")

        try:
            data = decode_bytes(response.ciphertext)
        except (binascii.Error, TypeError, ValueError) as e:
            return self._fail(FailureKind.PROTOCOL_DECLINE, f"Invalid ciphertext encoding: {e}")

        return ProtocolResult.ok(RetrievedBlob(data=data, mime_type=response.mime_type or DEFAULT_MIME_TYPE))

    async def health(self, peer_id: str) -> ProtocolResult[HealthResponse]:
        """Get health info from a peer."""
        result = await self._exchange(peer_id, PROTOCOL_HEALTH, {})
        if not result.success:
            return ProtocolResult.fail(result.kind, result.error)
        if "error" in result.value and "peerId" not in result.value:
            return self._fail(FailureKind.APPLICATION_ERROR, str(result.value["error"]))
        return self._parse(HealthResponse, result.value)

    async def info(self, peer_id: str) -> ProtocolResult[InfoResponse]:
        """Get node info from a peer (for registration)."""
        result = await self._exchange(peer_id, PROTOCOL_INFO, {})
        if not result.success:
            return ProtocolResult.fail(result.kind, result.error)
        if "error" in result.value and "peerId" not in result.value:
            return self._fail(FailureKind.APPLICATION_ERROR, str(result.value["error"]))
        return self._parse(InfoResponse, result.value)

    async def peer_directory(self, relay_peer_id: str) -> ProtocolResult[PeerDirectoryResponse]:
        """Query a relay for the peers it currently knows."""
        logger.info(f"Querying relay for peer directory: {relay_peer_id[:16]}...")
        result = await self._exchange(relay_peer_id, PROTOCOL_PEER_DIRECTORY, {})
        if not result.success:
            return ProtocolResult.fail(result.kind, result.error)

        parsed = self._parse(PeerDirectoryResponse, result.value)
        if not parsed.success:
            return parsed
        directory = parsed.value

        logger.info(f"Received peer directory: {len(directory.peers)} peers")
        return ProtocolResult.ok(directory)

    async def have_list(self, peer_id: str, cids: List[str]) -> ProtocolResult[HaveListResponse]:
        """Ask a peer which of ``cids`` it currently holds."""
        result = await self._exchange(peer_id, PROTOCOL_HAVE_LIST, {"cids": list(cids)})
        if not result.success:
            return ProtocolResult.fail(result.kind, result.error)
        if result.value.get("success") is False:
            return self._fail(FailureKind.APPLICATION_ERROR, result.value.get("error") or "Have-list refused")
        return self._parse(HaveListResponse, result.value)

    async def peer_has_cid(self, peer_id: str, cid: str) -> ProtocolResult[bool]:
        """Check if a peer has a specific CID."""
        result = await self.have_list(peer_id, [cid])
        if not result.success:
            return ProtocolResult.fail(result.kind, result.error)
        return ProtocolResult.ok(cid in result.value.cids)

    def get_stats(self) -> Dict:
        return dict(self.stats)


Responder = Callable[[Dict[str, Any], str], Union[Dict[str, Any], Awaitable[Dict[str, Any]]]]


def register_responder(transport: Any, protocol: str, responder: Responder):
    """
    Serve ``protocol`` on a transport with a request -> response function.

    Args:
        transport: Transport exposing ``handle(protocol, handler)``
        protocol: Protocol id to serve
        responder: ``responder(request, remote_peer_id)`` returning the response dict
    """
    async def handler(stream: Stream, remote_peer: str):
        request = await read_message(stream)
        if request is None:
            return
        response = responder(request, remote_peer)
        if inspect.isawaitable(response):
            response = await response
        await write_message(stream, response)

    transport.handle(protocol, handler)
