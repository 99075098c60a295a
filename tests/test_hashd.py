"""
hashd:// URL and Fetcher Tests
"""

import asyncio

import pytest

from bytecave.core.config import ClientConfig
from bytecave.core.errors import ContentFetchError, FailureKind, InvalidHashdUrl
from bytecave.core.types import RetrieveResult
from bytecave.hashd import (
    HashdContentLoader,
    HashdFetcher,
    create_hashd_url,
    detect_mime_type,
    parse_hashd_url,
)
from bytecave.storage.cache import ContentCache

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeRetriever:
    """Stands in for ByteCaveClient.retrieve."""

    def __init__(self, result=None, delay: float = 0):
        self.result = result or RetrieveResult(success=True, data=PNG, mime_type="image/png", peer_id="node-a")
        self.delay = delay
        self.calls = []

    async def retrieve(self, cid):
        self.calls.append(cid)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class TestUrls:
    def test_parse_cid_only(self):
        parsed = parse_hashd_url("hashd://bafabc")

        assert parsed.cid == "bafabc"
        assert parsed.mime_type is None
        assert parsed.decrypt is None

    def test_parse_query(self):
        parsed = parse_hashd_url("hashd://bafabc?type=image%2Fpng&decrypt=true&extra=1")

        assert parsed.mime_type == "image/png"
        assert parsed.decrypt is True

    def test_decrypt_only_true_literal(self):
        assert parse_hashd_url("hashd://bafabc?decrypt=yes").decrypt is False

    def test_create_then_parse(self):
        url = create_hashd_url("bafabc", mime_type="video/mp4", decrypt=False)
        parsed = parse_hashd_url(url)

        assert url.startswith("hashd://bafabc?")
        assert parsed.cid == "bafabc"
        assert parsed.mime_type == "video/mp4"
        assert parsed.decrypt is False

    def test_create_without_params(self):
        assert create_hashd_url("bafabc") == "hashd://bafabc"

    @pytest.mark.parametrize("url", ["https://bafabc", "hashd://", "hashd://?type=image/png", "", None])
    def test_rejects_malformed(self, url):
        with pytest.raises(InvalidHashdUrl):
            parse_hashd_url(url)


class TestMimeSniffing:
    @pytest.mark.parametrize("data,expected", [
        (PNG, "image/png"),
        (b"\xff\xd8\xff\xe0rest", "image/jpeg"),
        (b"GIF89a....", "image/gif"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"\x00\x00\x00\x18ftypmp42", "video/mp4"),
        (b"plain text", "application/octet-stream"),
        (b"ab", "application/octet-stream"),
    ])
    def test_detect(self, data, expected):
        assert detect_mime_type(data) == expected


class TestFetcher:
    """Cache-first fetching."""

    def setup_method(self):
        self.retriever = FakeRetriever()
        self.fetcher = HashdFetcher(self.retriever, cache=ContentCache())

    def teardown_method(self):
        self.fetcher.clear_cache()

    @pytest.mark.asyncio
    async def test_second_fetch_served_from_cache(self):
        first = await self.fetcher.fetch("hashd://bafpng")
        second = await self.fetcher.fetch("hashd://bafpng")

        assert not first.cached
        assert first.data == PNG
        assert first.mime_type == "image/png"
        assert first.handle.read() == PNG
        assert second.cached
        assert second.uri == first.uri
        assert self.retriever.calls == ["bafpng"]
        assert self.fetcher.cache_stats() == {"size": 1}

    @pytest.mark.asyncio
    async def test_url_type_overrides_sniffing(self):
        result = await self.fetcher.fetch("hashd://bafpng?type=application%2Fx-custom")
        assert result.mime_type == "application/x-custom"

    @pytest.mark.asyncio
    async def test_revoke_forces_refetch(self):
        first = await self.fetcher.fetch("hashd://bafpng")
        self.fetcher.revoke("bafpng")
        await self.fetcher.fetch("hashd://bafpng")

        assert first.handle.released
        assert self.retriever.calls == ["bafpng", "bafpng"]

    @pytest.mark.asyncio
    async def test_failure_raises_with_kind(self):
        self.retriever.result = RetrieveResult(
            success=False,
            error="Blob not found on any connected peer",
            error_kind=FailureKind.NOT_FOUND
        )

        with pytest.raises(ContentFetchError) as exc_info:
            await self.fetcher.fetch("hashd://bafmissing")

        assert exc_info.value.kind == FailureKind.NOT_FOUND
        assert self.fetcher.cache_stats() == {"size": 0}

    @pytest.mark.asyncio
    async def test_timeout(self):
        self.retriever.delay = 5

        with pytest.raises(ContentFetchError) as exc_info:
            await self.fetcher.fetch("hashd://bafslow", timeout=0.05)

        assert exc_info.value.kind == FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_handle(self):
        self.retriever.delay = 0.05

        first, second = await asyncio.gather(
            self.fetcher.fetch("hashd://bafpng"),
            self.fetcher.fetch("hashd://bafpng"),
        )

        assert first.handle is second.handle
        assert not first.handle.released
        assert first.handle.read() == PNG
        assert self.fetcher.cache_stats() == {"size": 1}

    @pytest.mark.asyncio
    async def test_prefetch_warms_cache(self):
        await self.fetcher.prefetch("hashd://bafpng")
        result = await self.fetcher.fetch("hashd://bafpng")

        assert result.cached
        assert self.retriever.calls == ["bafpng"]

    def test_default_cache_uses_client_config(self):
        self.retriever.config = ClientConfig(cache_max_age=42)

        fetcher = HashdFetcher(self.retriever)

        assert fetcher.cache.max_age == 42


class TestLoader:
    """Superseded and closed loads are discarded."""

    def setup_method(self):
        self.retriever = FakeRetriever()
        self.fetcher = HashdFetcher(self.retriever, cache=ContentCache())
        self.changes = 0

    def teardown_method(self):
        self.fetcher.clear_cache()

    def on_change(self, loader):
        self.changes += 1

    @pytest.mark.asyncio
    async def test_load_commits_result(self):
        loader = HashdContentLoader(self.fetcher, on_change=self.on_change)

        result = await loader.load("hashd://bafpng")

        assert loader.result is result
        assert loader.uri == result.uri
        assert not loader.loading
        assert self.changes == 2

    @pytest.mark.asyncio
    async def test_superseded_load_is_discarded(self):
        self.retriever.delay = 0.05
        loader = HashdContentLoader(self.fetcher)

        slow = asyncio.ensure_future(loader.load("hashd://bafold"))
        await asyncio.sleep(0)
        cleared = await loader.load(None)

        assert cleared is None
        assert await slow is None
        assert loader.result is None

    @pytest.mark.asyncio
    async def test_close_discards_in_flight_load(self):
        self.retriever.delay = 0.05
        loader = HashdContentLoader(self.fetcher)

        task = asyncio.ensure_future(loader.load("hashd://bafpng"))
        await asyncio.sleep(0)
        loader.close()

        assert await task is None
        assert loader.result is None
        assert await loader.load("hashd://bafpng") is None

    @pytest.mark.asyncio
    async def test_error_recorded(self):
        self.retriever.result = RetrieveResult(success=False, error="gone", error_kind=FailureKind.NOT_FOUND)
        loader = HashdContentLoader(self.fetcher)

        assert await loader.load("hashd://bafgone") is None
        assert loader.error == "gone"
        assert loader.result is None

    @pytest.mark.asyncio
    async def test_invalid_url_recorded(self):
        loader = HashdContentLoader(self.fetcher)

        await loader.load("http://not-hashd")

        assert "Invalid hashd:// URL" in loader.error
