"""
Protocol Client Tests

Request/response protocols against in-memory peers.
"""

import asyncio
import base64

import pytest

from bytecave.core.content_addressing import compute_cid
from bytecave.core.errors import FailureKind
from bytecave.core.types import AuthorizationEnvelope
from bytecave.p2p.network.protocol import (
    PROTOCOL_BLOB,
    PROTOCOL_HAVE_LIST,
    PROTOCOL_HEALTH,
    PROTOCOL_INFO,
    PROTOCOL_PEER_DIRECTORY,
    PROTOCOL_STORE,
    ProtocolClient,
)
from fakes import FakeTransport

PEER = "storage-peer-aaaaaaaaaaaa"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class TestStore:
    """Store protocol."""

    def setup_method(self):
        self.transport = FakeTransport()
        self.transport.connect_peer(PEER)
        self.client = ProtocolClient(self.transport)
        self.requests = []

    def accept(self, request):
        self.requests.append(request)
        return {"success": True, "cid": request["cid"]}

    @pytest.mark.asyncio
    async def test_store_success_returns_cid(self):
        self.transport.serve(PEER, PROTOCOL_STORE, self.accept)
        data = b"hello bytecave"

        result = await self.client.store(PEER, data, "text/plain", app_id="demo")

        assert result.success
        assert result.value == compute_cid(data)
        request = self.requests[0]
        assert base64.b64decode(request["ciphertext"]) == data
        assert request["mimeType"] == "text/plain"
        assert request["appId"] == "demo"
        assert "authorization" not in request

    @pytest.mark.asyncio
    async def test_store_forwards_authorization(self):
        self.transport.serve(PEER, PROTOCOL_STORE, self.accept)
        auth = AuthorizationEnvelope(
            sender="0xabc",
            signature="sig",
            timestamp=1700000000000,
            nonce="n1",
            app_id="demo",
            content_hash="0x" + "00" * 32,
        )

        result = await self.client.store(PEER, b"payload", authorization=auth)

        assert result.success
        request = self.requests[0]
        assert request["sender"] == "0xabc"
        assert request["timestamp"] == 1700000000000
        assert request["appId"] == "demo"
        assert request["authorization"]["contentHash"] == auth.content_hash
        assert request["authorization"]["nonce"] == "n1"

    @pytest.mark.asyncio
    async def test_explicit_refusal_is_application_error(self):
        self.transport.serve(PEER, PROTOCOL_STORE, lambda r: {"success": False, "error": "quota exceeded"})

        result = await self.client.store(PEER, b"payload")

        assert not result.success
        assert result.kind == FailureKind.APPLICATION_ERROR
        assert result.error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_unsupported_protocol_is_decline(self):
        result = await self.client.store(PEER, b"payload")

        assert not result.success
        assert result.kind == FailureKind.PROTOCOL_DECLINE

    @pytest.mark.asyncio
    async def test_disconnected_peer_is_decline(self):
        result = await self.client.store("unknown-peer-bbbbbbbbbbbb", b"payload")
        assert result.kind == FailureKind.PROTOCOL_DECLINE

    @pytest.mark.asyncio
    async def test_stream_closed_before_response_is_decline(self):
        self.transport.serve(PEER, PROTOCOL_STORE, lambda r: None)

        result = await self.client.store(PEER, b"payload")

        assert result.kind == FailureKind.PROTOCOL_DECLINE
        assert result.error == "Stream closed before response"

    @pytest.mark.asyncio
    async def test_slow_peer_times_out(self):
        async def stall(request):
            await asyncio.sleep(10)
            return {"success": True}

        self.transport.serve(PEER, PROTOCOL_STORE, stall)

        result = await self.client.store(PEER, b"payload", timeout=0.05)

        assert result.kind == FailureKind.TIMEOUT
        assert self.client.get_stats()["timeouts"] == 1
        await self.transport.stop()

    @pytest.mark.asyncio
    async def test_no_transport_is_unavailable(self):
        client = ProtocolClient()
        result = await client.store(PEER, b"payload")

        assert result.kind == FailureKind.TRANSPORT_UNAVAILABLE
        assert result.error == "P2P node not initialized"

    def test_store_timeout_grows_per_megabyte(self):
        config = self.client.config
        assert config.store_timeout(0) == 15.0
        assert config.store_timeout(1) == 20.0
        assert config.store_timeout(1024 * 1024) == 20.0
        assert config.store_timeout(1024 * 1024 + 1) == 25.0
        assert config.store_timeout(5 * 1024 * 1024) == 40.0


class TestRetrieve:
    """Blob protocol."""

    def setup_method(self):
        self.transport = FakeTransport()
        self.transport.connect_peer(PEER)
        self.client = ProtocolClient(self.transport)

    @pytest.mark.asyncio
    async def test_retrieve_decodes_payload(self):
        self.transport.serve(
            PEER, PROTOCOL_BLOB,
            lambda r: {"success": True, "ciphertext": b64(b"\x89PNG data"), "mimeType": "image/png"}
        )

        result = await self.client.retrieve(PEER, "baf123")

        assert result.success
        assert result.value.data == b"\x89PNG data"
        assert result.value.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_retrieve_defaults_mime_type(self):
        self.transport.serve(PEER, PROTOCOL_BLOB, lambda r: {"success": True, "ciphertext": b64(b"x")})

        result = await self.client.retrieve(PEER, "baf123")
        assert result.value.mime_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_retrieve_sends_cid(self):
        seen = []

        def respond(request):
            seen.append(request)
            return {"success": True, "ciphertext": b64(b"x")}

        self.transport.serve(PEER, PROTOCOL_BLOB, respond)
        await self.client.retrieve(PEER, "baf999")
        assert seen == [{"cid": "baf999"}]

    @pytest.mark.asyncio
    async def test_retrieve_not_found(self):
        self.transport.serve(PEER, PROTOCOL_BLOB, lambda r: {"success": False, "error": "Blob not found"})

        result = await self.client.retrieve(PEER, "baf123")

        assert result.kind == FailureKind.APPLICATION_ERROR
        assert result.error == "Blob not found"


class TestProbes:
    """Health, info, directory and have-list protocols."""

    def setup_method(self):
        self.transport = FakeTransport()
        self.transport.connect_peer(PEER)
        self.client = ProtocolClient(self.transport)

    @pytest.mark.asyncio
    async def test_health(self):
        requests = []

        def respond(request):
            requests.append(request)
            return {
                "peerId": PEER,
                "status": "healthy",
                "blobCount": 12,
                "storageUsed": 100,
                "storageMax": 1000,
                "uptime": 42,
                "version": "1.0.0",
                "multiaddrs": ["/ip4/127.0.0.1/tcp/4001"],
                "contentTypes": ["image/png"],
                "nodeId": "0xnode",
                "publicKey": "pk",
                "ownerAddress": "0xowner",
            }

        self.transport.serve(PEER, PROTOCOL_HEALTH, respond)

        result = await self.client.health(PEER)

        assert requests == [{}]
        health = result.value
        assert health.blob_count == 12
        assert health.content_types == ["image/png"]
        assert health.node_id == "0xnode"
        assert health.owner_address == "0xowner"

    @pytest.mark.asyncio
    async def test_info(self):
        self.transport.serve(
            PEER, PROTOCOL_INFO,
            lambda r: {"peerId": PEER, "publicKey": "pk", "version": "2", "contentTypes": "all"}
        )

        result = await self.client.info(PEER)

        assert result.value.public_key == "pk"
        assert result.value.content_types == "all"
        assert result.value.owner_address is None

    @pytest.mark.asyncio
    async def test_unreachable_distinguished_from_negative(self):
        declined = await self.client.health(PEER)
        assert declined.kind == FailureKind.PROTOCOL_DECLINE

        self.transport.serve(PEER, PROTOCOL_HAVE_LIST, lambda r: {"cids": [], "total": 0, "hasMore": False})
        negative = await self.client.peer_has_cid(PEER, "baf1")
        assert negative.success
        assert negative.value is False

    @pytest.mark.asyncio
    async def test_peer_directory(self):
        self.transport.serve(PEER, PROTOCOL_PEER_DIRECTORY, lambda r: {
            "peers": [
                {"peerId": "p1", "multiaddrs": ["/ip4/1.1.1.1/tcp/1"], "lastSeen": 5},
                {"peerId": "p2", "multiaddrs": []},
            ],
            "timestamp": 99,
        })

        result = await self.client.peer_directory(PEER)

        assert [p.peer_id for p in result.value.peers] == ["p1", "p2"]
        assert result.value.peers[0].multiaddrs == ["/ip4/1.1.1.1/tcp/1"]
        assert result.value.timestamp == 99

    @pytest.mark.asyncio
    async def test_have_list(self):
        requests = []

        def respond(request):
            requests.append(request)
            return {"cids": ["baf1"], "total": 1, "hasMore": False}

        self.transport.serve(PEER, PROTOCOL_HAVE_LIST, respond)

        result = await self.client.have_list(PEER, ["baf1", "baf2"])
        has = await self.client.peer_has_cid(PEER, "baf1")

        assert requests[0] == {"cids": ["baf1", "baf2"]}
        assert result.value.cids == ["baf1"]
        assert result.value.has_more is False
        assert has.value is True


class TestMalformedReplies:
    """Replies with fields of the wrong type fail the call instead of raising."""

    def setup_method(self):
        self.transport = FakeTransport()
        self.transport.connect_peer(PEER)
        self.client = ProtocolClient(self.transport)

    def reply(self, protocol, response):
        self.transport.serve(PEER, protocol, lambda r: response)

    @pytest.mark.asyncio
    async def test_null_health_numbers_take_defaults(self):
        self.reply(PROTOCOL_HEALTH, {"peerId": PEER, "storageMax": 100, "storageUsed": None})

        result = await self.client.health(PEER)

        assert result.success
        assert result.value.storage_max == 100
        assert result.value.storage_used == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        {"peerId": PEER, "storageMax": "lots"},
        {"peerId": PEER, "blobCount": True},
        {"peerId": 7},
        {"peerId": PEER, "multiaddrs": "/ip4/1.1.1.1/tcp/1"},
        {"peerId": PEER, "contentTypes": 5},
    ])
    async def test_health_wrong_types_declined(self, response):
        self.reply(PROTOCOL_HEALTH, response)

        result = await self.client.health(PEER)

        assert not result.success
        assert result.kind == FailureKind.PROTOCOL_DECLINE

    @pytest.mark.asyncio
    async def test_info_wrong_types_declined(self):
        self.reply(PROTOCOL_INFO, {"peerId": PEER, "publicKey": ["pk"]})

        result = await self.client.info(PEER)

        assert result.kind == FailureKind.PROTOCOL_DECLINE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cids", [5, "baf1", [1, 2], {"baf1": True}])
    async def test_have_list_wrong_types_declined(self, cids):
        self.reply(PROTOCOL_HAVE_LIST, {"cids": cids})

        listed = await self.client.have_list(PEER, ["baf1"])
        has = await self.client.peer_has_cid(PEER, "baf1")

        assert listed.kind == FailureKind.PROTOCOL_DECLINE
        assert has.kind == FailureKind.PROTOCOL_DECLINE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        {"success": True, "ciphertext": 123},
        {"success": True, "ciphertext": b64(b"x"), "mimeType": 9},
        {"success": True, "ciphertext": "abc"},
    ])
    async def test_retrieve_wrong_types_declined(self, response):
        self.reply(PROTOCOL_BLOB, response)

        result = await self.client.retrieve(PEER, "baf123")

        assert result.kind == FailureKind.PROTOCOL_DECLINE

    @pytest.mark.asyncio
    async def test_store_wrong_cid_type_declined(self):
        self.reply(PROTOCOL_STORE, {"success": True, "cid": 42})

        result = await self.client.store(PEER, b"payload")

        assert result.kind == FailureKind.PROTOCOL_DECLINE

    @pytest.mark.asyncio
    async def test_store_error_object_kept_as_text(self):
        self.reply(PROTOCOL_STORE, {"success": False, "error": {"code": 507}})

        result = await self.client.store(PEER, b"payload")

        assert result.kind == FailureKind.APPLICATION_ERROR
        assert result.error == "{'code': 507}"

    @pytest.mark.asyncio
    async def test_peer_directory_wrong_types_declined(self):
        self.reply(PROTOCOL_PEER_DIRECTORY, {"peers": [{"peerId": "p1", "multiaddrs": "/ip4/1.1.1.1/tcp/1"}]})

        result = await self.client.peer_directory(PEER)

        assert result.kind == FailureKind.PROTOCOL_DECLINE
