"""
Authorization Signing and Content Addressing Tests
"""

import pytest

from bytecave.core.config import ClientConfig
from bytecave.core.content_addressing import compute_cid, content_hash, verify_cid
from bytecave.core.signing import (
    Ed25519Signer,
    build_authorization,
    canonical_storage_message,
    signer_from_env,
)


class TestContentAddressing:
    def test_cid_format(self):
        cid = compute_cid(b"hello")

        assert cid.startswith("baf")
        assert len(cid) == 3 + 56
        assert cid == compute_cid(b"hello")
        assert cid != compute_cid(b"hello!")

    def test_content_hash_is_full_digest(self):
        digest = content_hash(b"hello")

        assert digest.startswith("0x")
        assert len(digest) == 2 + 64
        assert compute_cid(b"hello")[3:] == digest[2:58]

    def test_verify_cid(self):
        assert verify_cid(b"data", compute_cid(b"data"))
        assert not verify_cid(b"other", compute_cid(b"data"))


class TestSigning:
    def test_canonical_message_layout(self):
        message = canonical_storage_message("0xabc", "app", 1700000000000, "n0nce")

        assert message == (
            "ByteCave Storage Request for:\n"
            "Content Hash: 0xabc\n"
            "App ID: app\n"
            "Timestamp: 1700000000000\n"
            "Nonce: n0nce"
        )

    @pytest.mark.asyncio
    async def test_build_authorization(self):
        signer = Ed25519Signer.generate()

        auth = await build_authorization(signer, b"payload", "gallery")

        assert auth.sender == await signer.get_address()
        assert auth.content_hash == content_hash(b"payload")
        assert auth.app_id == "gallery"
        assert len(auth.nonce) == 26
        message = canonical_storage_message(auth.content_hash, auth.app_id, auth.timestamp, auth.nonce)
        assert Ed25519Signer.verify(signer.public_key_bytes(), message, auth.signature)

    @pytest.mark.asyncio
    async def test_nonces_differ(self):
        signer = Ed25519Signer.generate()

        first = await build_authorization(signer, b"payload", "app")
        second = await build_authorization(signer, b"payload", "app")

        assert first.nonce != second.nonce

    @pytest.mark.asyncio
    async def test_verify_rejects_tampered_message(self):
        signer = Ed25519Signer.generate()
        signature = await signer.sign_message("original")

        assert not Ed25519Signer.verify(signer.public_key_bytes(), "tampered", signature)
        assert not Ed25519Signer.verify(signer.public_key_bytes(), "original", "not hex")

    @pytest.mark.asyncio
    async def test_key_file_persists_identity(self, tmp_path):
        key_path = tmp_path / "keys" / "signer.pem"

        first = Ed25519Signer.load_or_generate(key_path)
        second = Ed25519Signer.load_or_generate(key_path)

        assert key_path.exists()
        assert await first.get_address() == await second.get_address()

    def test_signer_from_env(self, tmp_path, monkeypatch):
        monkeypatch.delenv("BYTECAVE_KEY_PATH", raising=False)
        assert signer_from_env() is None

        monkeypatch.setenv("BYTECAVE_KEY_PATH", str(tmp_path / "env.pem"))
        assert isinstance(signer_from_env(), Ed25519Signer)
        assert (tmp_path / "env.pem").exists()


class TestConfig:
    def test_defaults(self):
        config = ClientConfig()

        assert config.relay_peers == []
        assert config.max_file_size == 5 * 1024 * 1024
        assert config.retrieve_timeout == 10.0
        assert not config.require_authorization

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BYTECAVE_RELAY_PEERS", "/ip4/1.1.1.1/tcp/1/p2p/a, /ip4/2.2.2.2/tcp/2/p2p/b")
        monkeypatch.setenv("BYTECAVE_RELAY_WS_URL", "ws://relay:9000/ws")
        monkeypatch.setenv("BYTECAVE_REQUIRE_AUTHORIZATION", "true")
        monkeypatch.setenv("BYTECAVE_APP_ID", "gallery")

        config = ClientConfig.from_env()

        assert config.relay_peers == ["/ip4/1.1.1.1/tcp/1/p2p/a", "/ip4/2.2.2.2/tcp/2/p2p/b"]
        assert config.relay_ws_url == "ws://relay:9000/ws"
        assert config.relay_http_url is None
        assert config.require_authorization
        assert config.app_id == "gallery"
