"""
Peer Directory Tests
"""

from bytecave.p2p.network.messages import HealthResponse
from bytecave.p2p.peers import PeerDirectory, PeerState


class TestUpsert:
    """Record creation and field-level merging."""

    def setup_method(self):
        self.directory = PeerDirectory()

    def test_new_record_starts_known(self):
        record = self.directory.upsert("peer-1", public_key="pk1")

        assert record.state == PeerState.KNOWN
        assert not record.connected
        assert record.content_types == "all"
        assert "peer-1" in self.directory
        assert len(self.directory) == 1

    def test_none_fields_preserve_previous_values(self):
        self.directory.upsert("peer-1", public_key="pk1", relay_addrs=["/relay/a"], node_id="n1")
        record = self.directory.upsert("peer-1", public_key=None, relay_addrs=None, content_types=["image/png"])

        assert record.public_key == "pk1"
        assert record.relay_addrs == ["/relay/a"]
        assert record.node_id == "n1"
        assert record.content_types == ["image/png"]

    def test_later_values_win(self):
        self.directory.upsert("peer-1", node_id="n1")
        record = self.directory.upsert("peer-1", node_id="n2")
        assert record.node_id == "n2"

    def test_announcement_keeps_relay_addrs_when_omitted(self):
        self.directory.upsert_from_announcement(
            {"peerId": "peer-1", "publicKey": "pk", "relayAddrs": ["/relay/circuit"]},
            connected=False,
        )
        record = self.directory.upsert_from_announcement(
            {"peerId": "peer-1", "blobCount": 7},
            connected=True,
        )

        assert record.relay_addrs == ["/relay/circuit"]
        assert record.public_key == "pk"
        assert record.blob_count == 7
        assert record.connected

    def test_health_fills_metadata(self):
        health = HealthResponse(
            peer_id="peer-1",
            storage_used=100,
            storage_max=1000,
            content_types=["video/mp4"],
            node_id="node-1",
            public_key="pk",
            owner_address="0xowner",
        )
        record = self.directory.upsert_from_health("peer-1", health, relay_addrs=["/relay/x"])

        assert record.connected
        assert record.owner == "0xowner"
        assert record.available_storage == 900
        assert record.relay_addrs == ["/relay/x"]
        assert record.accepts("video/mp4")
        assert not record.accepts("image/png")


class TestLiveness:
    """Connect/disconnect transitions."""

    def setup_method(self):
        self.directory = PeerDirectory()

    def test_disconnect_retains_record(self):
        self.directory.upsert("peer-1", relay_addrs=["/relay/a"])
        self.directory.mark_connected("peer-1")
        self.directory.mark_disconnected("peer-1")

        record = self.directory.get("peer-1")
        assert record.state == PeerState.DISCONNECTED
        assert record.relay_addrs == ["/relay/a"]

    def test_mark_connected_creates_record(self):
        record = self.directory.mark_connected("peer-9")
        assert record.connected
        assert record.public_key == ""

    def test_disconnect_of_unknown_peer_is_ignored(self):
        assert self.directory.mark_disconnected("ghost") is None
        assert len(self.directory) == 0

    def test_known_peer_stays_known_on_disconnect(self):
        self.directory.upsert("peer-1")
        self.directory.mark_disconnected("peer-1")
        assert self.directory.get("peer-1").state == PeerState.KNOWN

    def test_mark_all_disconnected(self):
        self.directory.mark_connected("a")
        self.directory.mark_connected("b")
        self.directory.mark_all_disconnected()

        assert len(self.directory) == 2
        assert not any(p.connected for p in self.directory.peers.values())


class TestListing:
    """Snapshots and selection."""

    def setup_method(self):
        self.directory = PeerDirectory()

    def test_list_overlays_live_status_and_appends_unknown(self):
        self.directory.upsert("known-a", public_key="pka")
        self.directory.mark_connected("known-b")

        peers = self.directory.list_peers(["known-a", "stranger"])

        assert [p.peer_id for p in peers] == ["known-a", "known-b", "stranger"]
        assert peers[0].connected
        assert not peers[1].connected
        assert peers[2].connected
        assert peers[2].public_key == ""
        assert peers[2].content_types == "all"

    def test_list_does_not_mutate_records(self):
        self.directory.upsert("known-a")
        self.directory.list_peers(["known-a"])
        assert self.directory.get("known-a").state == PeerState.KNOWN

    def test_registered_ids(self):
        self.directory.upsert("a", is_registered=True)
        self.directory.upsert("b", is_registered=False)
        self.directory.upsert("c")
        assert self.directory.registered_ids() == ["a"]

    def test_find_prefers_registered_peer(self):
        self.directory.upsert("unregistered", connected=True)
        self.directory.upsert("registered", connected=True, is_registered=True)

        assert self.directory.find_for_content_type("image/png").peer_id == "registered"

    def test_find_falls_back_to_unregistered(self):
        self.directory.upsert("unregistered", connected=True, content_types=["image/png"])
        self.directory.upsert("offline", is_registered=True)

        assert self.directory.find_for_content_type("image/png").peer_id == "unregistered"
        assert self.directory.find_for_content_type("video/mp4") is None

    def test_find_uses_live_ids_when_given(self):
        self.directory.upsert("a", is_registered=True)
        assert self.directory.find_for_content_type("text/plain") is None
        assert self.directory.find_for_content_type("text/plain", ["a"]).peer_id == "a"
