"""Load icon images and register them with a renderer."""

import asyncio
import base64
import binascii
from urllib.parse import unquote_to_bytes

import aiohttp
from PIL import UnidentifiedImageError

from mbgl_renderer.fetch import fetch_asset
from mbgl_renderer.lib import IconError, MapRenderError, async_run, decode_image
from mbgl_renderer.logger import get_context_logger
from mbgl_renderer.render import RendererHandle
from mbgl_renderer.types import ImageRef, ResourceKind, ResourceRequest


def decode_data_url(url: str) -> bytes:
    """Return the payload of a ``data:`` URL."""
    header, sep, payload = url.partition(",")
    if not sep:
        raise ValueError("data URL has no payload")
    if header.endswith(";base64"):
        return base64.b64decode(payload, validate=False)
    return unquote_to_bytes(payload)


async def read_image_bytes(session: aiohttp.ClientSession, url: str) -> bytes:
    if url.startswith("data:"):
        return decode_data_url(url)
    result = await fetch_asset(session, ResourceRequest(url=url, kind=ResourceKind.IMAGE))
    if not result.data:
        raise ValueError(f"empty response for {url}")
    return result.data


async def load_image(
    session: aiohttp.ClientSession,
    handle: RendererHandle,
    image_id: str,
    image: ImageRef,
) -> None:
    bound_logger = get_context_logger()
    try:
        encoded = await read_image_bytes(session, image.url)
        data, width, height = await async_run(decode_image, encoded)
    except (
        MapRenderError,
        ValueError,
        binascii.Error,
        UnidentifiedImageError,
        OSError,
    ) as e:
        bound_logger.error("icon load failed", image_id=image_id, error=str(e))
        raise IconError(f"Error loading icon image: {image_id}: {e}", image_id=image_id) from e

    try:
        handle.add_image(
            image_id,
            data,
            width=width,
            height=height,
            pixel_ratio=image.pixel_ratio,
            sdf=image.sdf,
        )
    except Exception as e:
        bound_logger.error("icon registration failed", image_id=image_id, error=str(e))
        raise IconError(
            f"Error registering icon image: {image_id}: {e}", image_id=image_id
        ) from e


async def load_images(
    session: aiohttp.ClientSession,
    handle: RendererHandle,
    images: dict[str, ImageRef],
) -> None:
    """Load every image concurrently; any single failure fails the whole load."""
    if not images:
        return
    await asyncio.gather(
        *(load_image(session, handle, image_id, image) for image_id, image in images.items())
    )
    get_context_logger().debug("icons loaded", count=len(images))
