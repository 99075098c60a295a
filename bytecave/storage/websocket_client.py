"""
Relay WebSocket Storage Client

Alternate storage path for environments where direct P2P streams are not
available: requests go over a single persistent websocket to the relay,
which routes them to storage nodes.

Messages are JSON objects correlated by ``requestId``:
- storage-request -> storage-response
- retrieve-request -> retrieve-response
"""

import asyncio
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from ..core.config import WS_REQUEST_TIMEOUT
from ..core.errors import FailureKind, RequestTimeout, TransportClosed, TransportUnavailable
from ..core.types import DEFAULT_MIME_TYPE, AuthorizationEnvelope, RetrieveResult, StoreResult
from ..p2p.network.messages import decode_bytes, encode_bytes

logger = logging.getLogger(__name__)


# WebSocket constants
CONNECT_TIMEOUT = 5  # Seconds to open the socket
BASE64_SLICE = 48 * 1024  # Input bytes per base64 slice (multiple of 3)
RELAY_PEER_ID = "relay-ws"  # Reported as the storing peer for websocket stores

STORAGE_REQUEST = "storage-request"
STORAGE_RESPONSE = "storage-response"
RETRIEVE_REQUEST = "retrieve-request"
RETRIEVE_RESPONSE = "retrieve-response"


@dataclass
class PendingRequest:
    """Request awaiting its correlated response."""

    request_id: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


def encode_payload(data: bytes) -> str:
    """Base64 encode in bounded slices; output equals a one-shot encoding."""
    return "".join(
        encode_bytes(data[i:i + BASE64_SLICE])
        for i in range(0, len(data), BASE64_SLICE)
    )


class WebSocketFallbackClient:
    """
    Correlating request/response client over one relay websocket.

    Every pending request is resolved exactly once: by its response, its
    timeout, a send failure, a disconnect or the socket closing.
    """

    def __init__(
        self,
        relay_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = WS_REQUEST_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT
    ):
        self.relay_url = relay_url
        self.request_timeout = request_timeout
        self.connect_timeout = connect_timeout

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._receiver: Optional[asyncio.Task] = None
        self.pending: Dict[str, PendingRequest] = {}

    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self):
        """Open the socket; a no-op when already open."""
        if self.is_connected():
            return

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        logger.info(f"Connecting to relay websocket: {self.relay_url}")
        try:
            ws = await asyncio.wait_for(self._session.ws_connect(self.relay_url), self.connect_timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransportUnavailable(f"WebSocket connection failed: {e}") from e

        self._ws = ws
        self._receiver = asyncio.ensure_future(self._receive_loop(ws))
        logger.info("Connected to relay websocket")

    async def disconnect(self):
        """Close the socket and reject every pending request."""
        self._reject_all("Client disconnected")

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()

        if self._receiver is not None:
            try:
                await self._receiver
            except asyncio.CancelledError:
                pass
            self._receiver = None

        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse):
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        message = json.loads(msg.data)
                    except ValueError as e:
                        logger.error(f"Failed to parse websocket message: {e}")
                        continue
                    self._handle_message(message)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break
        finally:
            logger.info("Relay websocket closed")
            if self._ws is ws:
                self._ws = None
            self._reject_all("WebSocket connection closed")

    def _handle_message(self, message: Any):
        if not isinstance(message, dict):
            return
        if message.get("type") not in (STORAGE_RESPONSE, RETRIEVE_RESPONSE):
            logger.debug(f"Ignoring websocket message of type {message.get('type')}")
            return

        pending = self.pending.pop(message.get("requestId", ""), None)
        if pending is None:
            logger.debug("Response for unknown or expired request")
            return

        pending.timer.cancel()
        if not pending.future.done():
            pending.future.set_result(message)

    def _expire(self, request_id: str):
        pending = self.pending.pop(request_id, None)
        if pending is not None and not pending.future.done():
            logger.error(f"Relay request timed out: {request_id}")
            pending.future.set_exception(RequestTimeout(f"Request {request_id} timed out"))

    def _remove(self, request_id: str):
        pending = self.pending.pop(request_id, None)
        if pending is not None:
            pending.timer.cancel()

    def _reject_all(self, reason: str):
        pending, self.pending = list(self.pending.values()), {}
        for request in pending:
            request.timer.cancel()
            if not request.future.done():
                request.future.set_exception(TransportClosed(reason))

    async def _request(self, envelope: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """Send one envelope and wait for the correlated response."""
        if not self.is_connected():
            await self.connect()

        loop = asyncio.get_running_loop()
        request_id = secrets.token_hex(12)
        future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id)
        self.pending[request_id] = PendingRequest(request_id, future, timer)

        try:
            try:
                await self._ws.send_str(json.dumps({**envelope, "requestId": request_id}))
            except (ConnectionError, RuntimeError, aiohttp.ClientError, AttributeError) as e:
                raise TransportClosed(f"Failed to send request: {e}") from e
            return await future
        finally:
            self._remove(request_id)

    async def store(
        self,
        data: bytes,
        content_type: str,
        hash_id_token: Optional[int] = None,
        authorization: Optional[AuthorizationEnvelope] = None,
        timeout: Optional[float] = None
    ) -> StoreResult:
        """
        Store a blob through the relay.

        Raises:
            RequestTimeout: no response within ``timeout``
            TransportClosed: socket closed or client disconnected first
            TransportUnavailable: the socket could not be opened
        """
        logger.info(f"Storing {len(data)} bytes via relay websocket")
        envelope: Dict[str, Any] = {
            "type": STORAGE_REQUEST,
            "data": encode_payload(data),
            "contentType": content_type,
        }
        if hash_id_token is not None:
            envelope["hashIdToken"] = hash_id_token
        if authorization is not None:
            envelope["authorization"] = authorization.to_relay_dict()

        response = await self._request(envelope, timeout or self.request_timeout)

        if response.get("success") and response.get("cid"):
            return StoreResult(success=True, cid=response["cid"], peer_id=RELAY_PEER_ID)
        return StoreResult(
            success=False,
            error=response.get("error") or "Storage failed",
            error_kind=FailureKind.APPLICATION_ERROR,
        )

    async def retrieve(self, cid: str, timeout: Optional[float] = None) -> RetrieveResult:
        """Retrieve a blob through the relay. Raises like :meth:`store`."""
        response = await self._request(
            {"type": RETRIEVE_REQUEST, "cid": cid},
            timeout or self.request_timeout
        )

        if response.get("success") and response.get("data"):
            return RetrieveResult(
                success=True,
                data=decode_bytes(response["data"]),
                mime_type=response.get("mimeType") or DEFAULT_MIME_TYPE,
                peer_id=RELAY_PEER_ID,
            )
        return RetrieveResult(
            success=False,
            error=response.get("error") or "Retrieval failed",
            error_kind=FailureKind.APPLICATION_ERROR,
        )
