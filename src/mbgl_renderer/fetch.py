"""Network access for resources the rendering engine pulls while drawing.

Two strategies share one GET primitive:

- tile fetches run under a fixed timeout and treat 204/404 as "no tile",
  so sparse tile coverage never aborts a render;
- asset fetches (styles, sources, glyphs, sprites, images) fail hard on
  any non-2xx status.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any

import aiohttp

from mbgl_renderer.config import config
from mbgl_renderer.lib import FetchError, UnsupportedFeatureError
from mbgl_renderer.logger import get_context_logger
from mbgl_renderer.types import MAPBOX_SCHEME, FetchResult, ResourceKind, ResourceRequest

MISSING_TILE_STATUSES = frozenset({204, 404})
NOT_MODIFIED = 304

FetchStrategy = Callable[[Any, ResourceRequest], Awaitable[FetchResult]]
EngineCallback = Callable[[Exception | None, FetchResult | None], Any]


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _conditional_headers(request: ResourceRequest) -> dict[str, str]:
    headers = {}
    if request.etag:
        headers["If-None-Match"] = request.etag
    if request.modified is not None:
        headers["If-Modified-Since"] = format_datetime(request.modified, usegmt=True)
    return headers


def _result_from_headers(headers: Any, data: bytes | None, **kwargs) -> FetchResult:
    return FetchResult(
        data=data,
        etag=headers.get("etag"),
        modified=_parse_http_date(headers.get("last-modified")),
        expires=_parse_http_date(headers.get("expires")),
        **kwargs,
    )


def check_supported_url(url: str) -> None:
    if url.startswith(MAPBOX_SCHEME):
        raise UnsupportedFeatureError(
            f"mapbox:// resources are not supported by this renderer: {url}"
        )


async def fetch_remote(
    session: aiohttp.ClientSession,
    request: ResourceRequest,
    *,
    timeout: float | None = None,
    tolerate_missing: bool = False,
) -> FetchResult:
    """
    GET a single resource.

    Parameters
    ----------
    session : aiohttp.ClientSession
        Session owned by the current render request.
    request : ResourceRequest
        URL plus the cache validators the engine already holds.
    timeout : float, optional
        Total timeout in seconds. ``None`` leaves the session default.
    tolerate_missing : bool
        Resolve 204 and 404 responses to ``FetchResult(data=None)``
        instead of raising.

    Returns
    -------
    FetchResult
        Body bytes plus ``etag``, ``last-modified`` and ``expires``.
    """
    url = request.url
    check_supported_url(url)

    kwargs: dict[str, Any] = {"headers": _conditional_headers(request)}
    if timeout is not None:
        kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

    bound_logger = get_context_logger()
    try:
        async with session.get(url, **kwargs) as resp:
            status = resp.status
            if tolerate_missing and status in MISSING_TILE_STATUSES:
                bound_logger.debug("missing tile", url=url, status=status)
                return _result_from_headers(resp.headers, None)
            if status == NOT_MODIFIED:
                return _result_from_headers(resp.headers, None, not_modified=True)
            if not 200 <= status < 300:
                bound_logger.error("fetch failed", url=url, status=status)
                raise FetchError(
                    f"Request for remote asset failed: {url} (status: {status})",
                    url=url,
                    status_code=status,
                )
            data = await resp.read()
            return _result_from_headers(resp.headers, data)
    except FetchError:
        raise
    except TimeoutError as e:
        bound_logger.error("fetch timed out", url=url, timeout=timeout)
        raise FetchError(
            f"Request for remote asset timed out after {timeout}s: {url}", url=url
        ) from e
    except aiohttp.ClientError as e:
        bound_logger.error("fetch failed", url=url, error=str(e))
        raise FetchError(f"Request for remote asset failed: {url} ({e})", url=url) from e


async def fetch_tile(session: aiohttp.ClientSession, request: ResourceRequest) -> FetchResult:
    return await fetch_remote(
        session,
        request,
        timeout=config.get("tile_timeout"),
        tolerate_missing=True,
    )


async def fetch_asset(session: aiohttp.ClientSession, request: ResourceRequest) -> FetchResult:
    return await fetch_remote(session, request, timeout=config.get("asset_timeout"))


async def fetch_json(session: aiohttp.ClientSession, url: str) -> Any:
    """Fetch an asset and decode it as JSON."""
    result = await fetch_asset(
        session, ResourceRequest(url=url, kind=ResourceKind.STYLE)
    )
    if result.data is None:
        raise FetchError(f"Empty response for JSON asset: {url}", url=url)
    try:
        return json.loads(result.data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FetchError(f"Invalid JSON from {url}: {e}", url=url) from e


FETCH_STRATEGIES: dict[ResourceKind, FetchStrategy] = {
    ResourceKind.TILE: fetch_tile,
    ResourceKind.STYLE: fetch_asset,
    ResourceKind.SOURCE: fetch_asset,
    ResourceKind.GLYPHS: fetch_asset,
    ResourceKind.SPRITE_IMAGE: fetch_asset,
    ResourceKind.SPRITE_JSON: fetch_asset,
    ResourceKind.IMAGE: fetch_asset,
}


class ResourceFetcher:
    """Answers the engine's resource requests for one render call.

    ``request_resource`` is the callable handed to the engine. It may be
    invoked from any thread; the fetch itself always runs on ``loop``.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        strategies: dict[ResourceKind, FetchStrategy] | None = None,
    ) -> None:
        self._session = session
        self._loop = loop or asyncio.get_running_loop()
        self._strategies = FETCH_STRATEGIES if strategies is None else strategies

    async def fetch(self, request: Any) -> FetchResult:
        request = ResourceRequest.from_engine(request)
        if not request.url:
            raise FetchError(f"Resource request without a url: {request!r}")
        check_supported_url(request.url)
        strategy = self._strategies.get(request.kind)
        if strategy is None:
            raise FetchError(
                f"Unsupported resource kind {request.kind!s} for {request.url}",
                url=request.url,
            )
        return await strategy(self._session, request)

    def request_resource(self, request: Any, callback: EngineCallback) -> None:
        future = asyncio.run_coroutine_threadsafe(self.fetch(request), self._loop)

        def _done(fut) -> None:
            if fut.cancelled():
                callback(FetchError("Resource request cancelled", url=str(request)), None)
                return
            exc = fut.exception()
            if exc is not None:
                callback(exc, None)
            else:
                callback(None, fut.result())

        future.add_done_callback(_done)

    __call__ = request_resource
