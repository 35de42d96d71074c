import asyncio
import contextlib
import uuid
from collections.abc import AsyncIterator, Mapping
from typing import Any

import aiohttp

from mbgl_renderer.config import config
from mbgl_renderer.fetch import ResourceFetcher
from mbgl_renderer.icons import load_images
from mbgl_renderer.lib import (
    MapRenderError,
    RenderError,
    async_run,
    finalize_pixels,
    scaled_size,
)
from mbgl_renderer.logger import get_context_logger, set_context_logger
from mbgl_renderer.render import Engine, get_engine, render_map
from mbgl_renderer.style_imports import resolve_style
from mbgl_renderer.types import RenderRequest
from mbgl_renderer.utils import async_time_debug, time_debug
from mbgl_renderer.validators import validate_params
from mbgl_renderer.viewport import resolve_viewport


@contextlib.asynccontextmanager
async def _client_session(
    session: aiohttp.ClientSession | None,
) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield ``session`` if given, else a fresh session closed on exit."""
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession(
        headers={"User-Agent": config.get("user_agent")}
    ) as owned:
        yield owned


@time_debug
def _finalize(buffer: bytes, width: int, height: int) -> bytes:
    return finalize_pixels(buffer, width, height)


@async_time_debug
async def pipeline(
    request: RenderRequest,
    *,
    engine: Engine | None = None,
    session: aiohttp.ClientSession | None = None,
) -> bytes:
    """Render a validated request to PNG bytes."""
    viewport = resolve_viewport(request)
    bound_logger = get_context_logger().bind(
        width=request.width,
        height=request.height,
        center=viewport.center,
        zoom=viewport.zoom,
    )
    set_context_logger(bound_logger)

    if engine is None:
        engine = get_engine()

    async with _client_session(session) as http:
        style = await resolve_style(http, request.style, request.imports, request.token)
        fetcher = ResourceFetcher(http)

        try:
            handle = engine.create_renderer(
                ratio=request.ratio, request_resource=fetcher.request_resource
            )
        except Exception as e:
            raise RenderError(f"Could not create renderer: {e}") from e

        try:
            try:
                handle.load_style(style)
            except Exception as e:
                raise RenderError(f"Renderer could not load style: {e}") from e
            await load_images(http, handle, request.images)
            bound_logger.info("map loaded")

            buffer = await render_map(
                handle,
                {
                    "zoom": viewport.zoom,
                    "center": list(viewport.center),
                    "width": request.width,
                    "height": request.height,
                    "bearing": request.bearing,
                    "pitch": request.pitch,
                },
            )
            bound_logger.info("map rendered")
        finally:
            handle.release()

    width, height = scaled_size(request.width, request.height, request.ratio)
    return await async_run(_finalize, buffer, width, height)


async def render(
    raw_params: Mapping[str, Any],
    *,
    engine: Engine | None = None,
    session: aiohttp.ClientSession | None = None,
) -> bytes:
    """
    Validate raw render parameters and render them to PNG bytes.

    Raises one of the ``MapRenderError`` subclasses; nothing is returned
    unless the whole render succeeded.
    """
    set_context_logger(get_context_logger().bind(request_id=uuid.uuid4().hex))
    request = validate_params(raw_params)
    try:
        return await pipeline(request, engine=engine, session=session)
    except MapRenderError:
        raise
    except Exception as e:
        get_context_logger().error("Exception", error=str(e))
        raise RenderError(f"Unexpected error while rendering: {e}") from e


def render_sync(raw_params: Mapping[str, Any], **kwargs: Any) -> bytes:
    return asyncio.run(render(raw_params, **kwargs))
