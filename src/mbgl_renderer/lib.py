"""Library utility functions for mbgl-renderer."""

import asyncio
import io
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import numpy as np
from PIL import Image

from mbgl_renderer.config import config


class MapRenderError(Exception):
    """Base class for every error surfaced by a render request."""

    pass


class ValidationError(MapRenderError):
    """Raised when request parameters are malformed or out of range."""

    pass


class StyleImportError(MapRenderError):
    """Raised when a remote style import cannot be fetched or is not a valid style."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class FetchError(MapRenderError):
    """Raised when a network fetch fails."""

    def __init__(
        self, message: str, *, url: str = "", status_code: int | None = None
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class UnsupportedFeatureError(MapRenderError):
    """Raised for local tile archives and mapbox:// resources."""

    pass


class RenderError(MapRenderError):
    """Raised when the rendering engine fails or returns no output."""

    pass


class IconError(MapRenderError):
    """Raised when an icon image cannot be resolved, decoded or registered."""

    def __init__(self, message: str, *, image_id: str = "") -> None:
        self.image_id = image_id
        super().__init__(message)


EXECUTOR = ThreadPoolExecutor(
    max_workers=config.get("num_threads"),
    thread_name_prefix="mbgl-renderer-threadpool",
)


async def async_run(func, *args, **kwargs) -> Any:
    """Run a CPU-bound callable on the shared thread pool."""
    loop = asyncio.get_running_loop()
    if kwargs:
        return await loop.run_in_executor(EXECUTOR, lambda: func(*args, **kwargs))
    return await loop.run_in_executor(EXECUTOR, func, *args)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scaled_size(width: int, height: int, ratio: float) -> tuple[int, int]:
    """Pixel dimensions of the engine's output for a given pixel ratio."""
    return round_half_up(width * ratio), round_half_up(height * ratio)


def unpremultiply(pixels: np.ndarray) -> np.ndarray:
    """
    Convert premultiplied RGBA pixels to straight alpha, in place.

    Parameters
    ----------
    pixels : np.ndarray
        uint8 array whose last axis holds RGBA, or a flat uint8 array whose
        length is a multiple of 4.

    Returns
    -------
    np.ndarray
        The same array, with RGB divided by ``alpha / 255`` and fully
        transparent pixels set to black.
    """
    rgba = pixels.reshape(-1, 4)
    alpha = rgba[:, 3].astype(np.float64)
    rgb = rgba[:, :3].astype(np.float64)

    transparent = alpha == 0
    with np.errstate(divide="ignore", invalid="ignore"):
        straight = rgb / (alpha[:, np.newaxis] / 255.0)
    straight[transparent] = 0
    np.clip(np.rint(straight), 0, 255, out=straight)
    rgba[:, :3] = straight.astype(np.uint8)
    return pixels


def encode_png(pixels: np.ndarray | bytes, width: int, height: int) -> bytes:
    """Encode a straight-alpha RGBA buffer as PNG."""
    data = pixels.tobytes() if isinstance(pixels, np.ndarray) else bytes(pixels)
    expected = width * height * 4
    if len(data) != expected:
        raise RenderError(
            f"Pixel buffer has {len(data)} bytes, expected {expected} for {width}x{height} RGBA"
        )
    img = Image.frombytes("RGBA", (width, height), data)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG", compress_level=config.get("png_compress_level"))
    return buffer.getvalue()


def finalize_pixels(buffer: bytes | bytearray | memoryview, width: int, height: int) -> bytes:
    """Un-premultiply the engine's raw output and encode it as PNG."""
    pixels = np.frombuffer(buffer, dtype=np.uint8).copy()
    expected = width * height * 4
    if pixels.size != expected:
        raise RenderError(
            f"Renderer returned {pixels.size} bytes, expected {expected} for {width}x{height} RGBA"
        )
    unpremultiply(pixels)
    return encode_png(pixels, width, height)


def decode_image(data: bytes) -> tuple[bytes, int, int]:
    """Decode an encoded image (PNG, JPEG, WebP, ...) to raw RGBA bytes."""
    img = Image.open(io.BytesIO(data))
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    width, height = img.size
    return img.tobytes(), width, height
