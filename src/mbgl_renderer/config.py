"""Configuration management for mbgl-renderer using donfig."""

from __future__ import annotations

import donfig

from mbgl_renderer._version import __version__

config = donfig.Config(
    "mbgl_renderer",
    defaults=[
        {
            # Tiles are numerous and individually non-critical, so they get a
            # hard deadline. Assets are left to the transport's own behaviour.
            "tile_timeout": 15,
            "asset_timeout": None,
            "mapbox_api_url": "https://api.mapbox.com",
            "token": None,
            "tile_path": None,
            "engine": None,
            "num_threads": 8,
            "png_compress_level": 2,
            "user_agent": f"mbgl-renderer/{__version__}",
            "viewport_tile_size": 256,
            "viewport_max_zoom": 20,
        }
    ],
    paths=[],
    env_var="MBGL_RENDERER_CONFIG_PATH",
    env={
        "mbgl_renderer": {
            "tile_timeout": "MBGL_RENDERER_TILE_TIMEOUT",
            "asset_timeout": "MBGL_RENDERER_ASSET_TIMEOUT",
            "mapbox_api_url": "MBGL_RENDERER_MAPBOX_API_URL",
            "token": "MBGL_RENDERER_TOKEN",
            "tile_path": "MBGL_RENDERER_TILE_PATH",
            "engine": "MBGL_RENDERER_ENGINE",
            "num_threads": "MBGL_RENDERER_NUM_THREADS",
            "png_compress_level": "MBGL_RENDERER_PNG_COMPRESS_LEVEL",
            "user_agent": "MBGL_RENDERER_USER_AGENT",
            "viewport_tile_size": "MBGL_RENDERER_VIEWPORT_TILE_SIZE",
            "viewport_max_zoom": "MBGL_RENDERER_VIEWPORT_MAX_ZOOM",
        }
    },
)
