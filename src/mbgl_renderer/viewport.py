"""Derive a center and zoom from geographic bounds and an image size."""

import math
from functools import lru_cache, partial

import pyproj

from mbgl_renderer.config import config
from mbgl_renderer.lib import ValidationError
from mbgl_renderer.types import RenderRequest, Viewport

# https://pyproj4.github.io/pyproj/stable/advanced_examples.html#caching-pyproj-objects
transformer_from_crs = lru_cache(partial(pyproj.Transformer.from_crs, always_xy=True))

# Half the equatorial circumference of the EPSG:3857 sphere, in metres.
WEBMERC_HALF_EXTENT = math.pi * 6378137.0
WEBMERC_MAX_LATITUDE = 85.0511287798066


def _to_pixels(
    lon: float, lat: float, world_size: float
) -> tuple[float, float]:
    """Project lon/lat to global pixel coordinates (origin top-left)."""
    lat = max(-WEBMERC_MAX_LATITUDE, min(WEBMERC_MAX_LATITUDE, lat))
    x, y = transformer_from_crs(4326, 3857).transform(lon, lat)
    scale = world_size / (2 * WEBMERC_HALF_EXTENT)
    return (x + WEBMERC_HALF_EXTENT) * scale, (WEBMERC_HALF_EXTENT - y) * scale


def _to_lonlat(px: float, py: float, world_size: float) -> tuple[float, float]:
    scale = (2 * WEBMERC_HALF_EXTENT) / world_size
    x = px * scale - WEBMERC_HALF_EXTENT
    y = WEBMERC_HALF_EXTENT - py * scale
    return transformer_from_crs(3857, 4326).transform(x, y)


def fit_bounds(
    bounds: tuple[float, float, float, float],
    dimensions: tuple[float, float],
    *,
    min_zoom: int = 0,
    max_zoom: int | None = None,
    tile_size: int | None = None,
) -> Viewport:
    """
    Fit a lon/lat bounding box inside a pixel window.

    Parameters
    ----------
    bounds : tuple
        ``(west, south, east, north)`` in degrees. ``west > east`` is read
        as a box crossing the antimeridian.
    dimensions : tuple
        ``(width, height)`` of the window in pixels.
    min_zoom, max_zoom : int
        Zoom limits for the result.
    tile_size : int
        Tile size in pixels the zoom levels are expressed in.

    Returns
    -------
    Viewport
        The box center and the largest integer zoom at which the whole box
        fits in the window.
    """
    if max_zoom is None:
        max_zoom = config.get("viewport_max_zoom")
    if tile_size is None:
        tile_size = config.get("viewport_tile_size")

    west, south, east, north = bounds

    world_size = tile_size * 2**max_zoom
    left, bottom = _to_pixels(west, south, world_size)
    right, top = _to_pixels(east, north, world_size)
    if west > east:
        # crosses the antimeridian, so the east edge lies one world to the right
        right += world_size

    box_width = abs(right - left)
    box_height = abs(bottom - top)
    ratio = max(box_width / dimensions[0], box_height / dimensions[1])
    zoom = math.floor(max_zoom - math.log2(ratio)) if ratio > 0 else max_zoom
    zoom = max(min_zoom, min(max_zoom, zoom))

    lon, lat = _to_lonlat(
        min(left, right) + box_width / 2, min(top, bottom) + box_height / 2, world_size
    )
    lon = ((lon + 180) % 360) - 180 if abs(lon) > 180 else lon
    return Viewport(center=(lon, lat), zoom=zoom)


def resolve_viewport(request: RenderRequest) -> Viewport:
    """
    Return the viewport to render.

    An explicit center and zoom are used as given. Otherwise the viewport is
    fitted to ``bounds`` inside the image minus padding, then pulled back one
    zoom level to leave a margin around the box.
    """
    if request.center is not None and request.zoom is not None:
        return Viewport(center=request.center, zoom=request.zoom)
    if request.bounds is None:
        raise ValidationError("Either center and zoom OR bounds must be provided")

    fitted = fit_bounds(
        request.bounds,
        (
            request.width - 2 * request.padding,
            request.height - 2 * request.padding,
        ),
    )
    return Viewport(center=fitted.center, zoom=max(fitted.zoom - 1, 0))
