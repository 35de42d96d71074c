from mbgl_renderer._version import __version__
from mbgl_renderer.lib import (
    FetchError,
    IconError,
    MapRenderError,
    RenderError,
    StyleImportError,
    UnsupportedFeatureError,
    ValidationError,
)
from mbgl_renderer.pipeline import render, render_sync

__all__ = [
    "FetchError",
    "IconError",
    "MapRenderError",
    "RenderError",
    "StyleImportError",
    "UnsupportedFeatureError",
    "ValidationError",
    "__version__",
    "render",
    "render_sync",
]
