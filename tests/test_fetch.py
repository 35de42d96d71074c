import asyncio
from datetime import UTC, datetime

import aiohttp
import pytest

from mbgl_renderer.config import config
from mbgl_renderer.fetch import (
    ResourceFetcher,
    fetch_asset,
    fetch_json,
    fetch_tile,
)
from mbgl_renderer.lib import FetchError, UnsupportedFeatureError
from mbgl_renderer.types import FetchResult, ResourceKind, ResourceRequest
from tests import FakeResponse, FakeSession

TILE_URL = "https://tiles.example.com/3/4/2.pbf"
GLYPH_URL = "https://fonts.example.com/Open%20Sans/0-255.pbf"

HEADERS = {
    "etag": '"abc123"',
    "last-modified": "Wed, 21 Oct 2015 07:28:00 GMT",
    "expires": "Thu, 22 Oct 2015 07:28:00 GMT",
}


def tile(url=TILE_URL, **kwargs):
    return ResourceRequest(url=url, kind=ResourceKind.TILE, **kwargs)


def glyphs(url=GLYPH_URL):
    return ResourceRequest(url=url, kind=ResourceKind.GLYPHS)


class TestFetchTile:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [204, 404])
    async def test_missing_tile_is_not_an_error(self, status):
        session = FakeSession({TILE_URL: FakeResponse(status=status)})
        result = await fetch_tile(session, tile())
        assert result.data is None
        assert result.not_modified is False

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        session = FakeSession({TILE_URL: FakeResponse(status=500)})
        with pytest.raises(FetchError, match="status: 500") as excinfo:
            await fetch_tile(session, tile())
        assert excinfo.value.status_code == 500
        assert excinfo.value.url == TILE_URL

    @pytest.mark.asyncio
    async def test_success_captures_cache_headers(self):
        session = FakeSession({TILE_URL: FakeResponse(body=b"tile", headers=HEADERS)})
        result = await fetch_tile(session, tile())
        assert result == FetchResult(
            data=b"tile",
            etag='"abc123"',
            modified=datetime(2015, 10, 21, 7, 28, tzinfo=UTC),
            expires=datetime(2015, 10, 22, 7, 28, tzinfo=UTC),
        )

    @pytest.mark.asyncio
    async def test_unparseable_dates_are_dropped(self):
        headers = {"last-modified": "yesterday", "expires": "0"}
        session = FakeSession({TILE_URL: FakeResponse(body=b"tile", headers=headers)})
        result = await fetch_tile(session, tile())
        assert result.modified is None
        assert result.expires is None

    @pytest.mark.asyncio
    async def test_uses_tile_timeout(self):
        session = FakeSession({TILE_URL: FakeResponse(body=b"tile")})
        await fetch_tile(session, tile())
        (_, kwargs), = session.calls
        assert kwargs["timeout"] == aiohttp.ClientTimeout(total=15)

    @pytest.mark.asyncio
    async def test_timeout_raises_fetch_error(self):
        session = FakeSession({TILE_URL: TimeoutError()})
        with pytest.raises(FetchError, match="timed out"):
            await fetch_tile(session, tile())

    @pytest.mark.asyncio
    async def test_conditional_headers(self):
        session = FakeSession({TILE_URL: FakeResponse(status=304, headers=HEADERS)})
        modified = datetime(2015, 10, 21, 7, 28, tzinfo=UTC)
        result = await fetch_tile(session, tile(etag='"abc123"', modified=modified))
        (_, kwargs), = session.calls
        assert kwargs["headers"] == {
            "If-None-Match": '"abc123"',
            "If-Modified-Since": "Wed, 21 Oct 2015 07:28:00 GMT",
        }
        assert result.not_modified is True
        assert result.data is None


class TestFetchAsset:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 403, 500])
    async def test_any_non_2xx_fails(self, status):
        session = FakeSession({GLYPH_URL: FakeResponse(status=status)})
        with pytest.raises(FetchError):
            await fetch_asset(session, glyphs())

    @pytest.mark.asyncio
    async def test_no_content_is_a_success(self):
        session = FakeSession({GLYPH_URL: FakeResponse(status=204)})
        result = await fetch_asset(session, glyphs())
        assert result.data == b""

    @pytest.mark.asyncio
    async def test_no_timeout_by_default(self):
        session = FakeSession({GLYPH_URL: FakeResponse(body=b"glyphs")})
        result = await fetch_asset(session, glyphs())
        assert result.data == b"glyphs"
        (_, kwargs), = session.calls
        assert "timeout" not in kwargs

    @pytest.mark.asyncio
    async def test_configured_timeout(self):
        session = FakeSession({GLYPH_URL: FakeResponse(body=b"glyphs")})
        with config.set(asset_timeout=30):
            await fetch_asset(session, glyphs())
        (_, kwargs), = session.calls
        assert kwargs["timeout"] == aiohttp.ClientTimeout(total=30)

    @pytest.mark.asyncio
    async def test_client_error(self):
        session = FakeSession({GLYPH_URL: aiohttp.ClientConnectionError("refused")})
        with pytest.raises(FetchError, match="refused"):
            await fetch_asset(session, glyphs())

    @pytest.mark.asyncio
    async def test_mapbox_urls_are_unsupported(self):
        session = FakeSession()
        with pytest.raises(UnsupportedFeatureError):
            await fetch_asset(session, glyphs("mapbox://fonts/mapbox/{fontstack}/{range}.pbf"))
        assert session.calls == []


class TestFetchJson:
    @pytest.mark.asyncio
    async def test_decodes(self):
        url = "https://example.com/style.json"
        session = FakeSession({url: FakeResponse(body={"version": 8})})
        assert await fetch_json(session, url) == {"version": 8}

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        url = "https://example.com/style.json"
        session = FakeSession({url: FakeResponse(body=b"<html>")})
        with pytest.raises(FetchError, match="Invalid JSON"):
            await fetch_json(session, url)


class TestResourceFetcher:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind", ["source", "glyph", "spriteImage", "spriteJSON", "imageSource", 2, 4, 5, 6, 7]
    )
    async def test_assets_are_strict(self, kind):
        session = FakeSession({GLYPH_URL: FakeResponse(status=404)})
        fetcher = ResourceFetcher(session)
        with pytest.raises(FetchError):
            await fetcher.fetch({"url": GLYPH_URL, "kind": kind})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", ["tile", 3, ResourceKind.TILE])
    async def test_tiles_are_tolerant(self, kind):
        session = FakeSession({TILE_URL: FakeResponse(status=404)})
        fetcher = ResourceFetcher(session)
        result = await fetcher.fetch({"url": TILE_URL, "kind": kind})
        assert result.data is None

    @pytest.mark.asyncio
    async def test_unknown_kind(self):
        fetcher = ResourceFetcher(FakeSession())
        with pytest.raises(FetchError, match="Unsupported resource kind"):
            await fetcher.fetch({"url": TILE_URL, "kind": 0})

    @pytest.mark.asyncio
    async def test_mapbox_tiles_rejected(self):
        fetcher = ResourceFetcher(FakeSession())
        with pytest.raises(UnsupportedFeatureError):
            await fetcher.fetch({"url": "mapbox://mapbox.satellite", "kind": "tile"})

    @pytest.mark.asyncio
    async def test_request_resource_reports_through_callback(self):
        session = FakeSession(
            {
                TILE_URL: FakeResponse(body=b"tile"),
                GLYPH_URL: FakeResponse(status=500),
            }
        )
        fetcher = ResourceFetcher(session)
        results = {}
        done = asyncio.Event()

        def callback_for(name):
            def callback(error, result):
                results[name] = (error, result)
                if len(results) == 2:
                    done.set()

            return callback

        fetcher.request_resource({"url": TILE_URL, "kind": 3}, callback_for("tile"))
        fetcher.request_resource({"url": GLYPH_URL, "kind": 4}, callback_for("glyphs"))
        await asyncio.wait_for(done.wait(), timeout=5)

        error, result = results["tile"]
        assert error is None
        assert result.data == b"tile"
        error, result = results["glyphs"]
        assert isinstance(error, FetchError)
        assert result is None
