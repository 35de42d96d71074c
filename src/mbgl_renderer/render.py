"""The seam between the pipeline and the external rendering engine.

An engine is any object with ``create_renderer(ratio=..., request_resource=...)``
returning a ``RendererHandle``. Engines are given as an import path
(``"package.module:attribute"``) through the ``engine`` config key.
"""

import asyncio
import importlib
from collections.abc import Callable
from typing import Any, Protocol

from mbgl_renderer.config import config
from mbgl_renderer.lib import MapRenderError, RenderError
from mbgl_renderer.logger import init_message_bus
from mbgl_renderer.types import StyleDoc

RenderCallback = Callable[[Exception | None, Any], Any]


class RendererHandle(Protocol):
    def load_style(self, style: StyleDoc) -> None: ...

    def add_image(
        self,
        image_id: str,
        data: bytes,
        *,
        width: int,
        height: int,
        pixel_ratio: float,
        sdf: bool,
    ) -> None: ...

    def render(self, options: dict[str, Any], callback: RenderCallback) -> None: ...

    def release(self) -> None: ...


class Engine(Protocol):
    def create_renderer(
        self, *, ratio: float, request_resource: Callable[..., Any]
    ) -> RendererHandle: ...


def _import_engine(path: str) -> Any:
    module_name, sep, attr = path.partition(":")
    if not (sep and module_name and attr):
        raise RenderError(
            f"Rendering engine must be given as 'module:attribute', got {path!r}"
        )
    try:
        engine = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise RenderError(f"Could not load rendering engine {path!r}: {e}") from e
    return engine() if isinstance(engine, type) else engine


def get_engine(name: str | None = None) -> Engine:
    """Resolve the configured engine and attach its message bus once."""
    name = name or config.get("engine")
    if not name:
        raise RenderError(
            "No rendering engine configured; set the MBGL_RENDERER_ENGINE environment variable"
        )
    engine = _import_engine(name)
    init_message_bus(engine)
    return engine


async def render_map(handle: RendererHandle, options: dict[str, Any]) -> bytes:
    """Run the engine's callback-style render and await its pixel buffer."""
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _resolve(error: Exception | None, buffer: Any) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(
                error if isinstance(error, Exception) else RenderError(str(error))
            )
        elif buffer is None or len(buffer) == 0:
            future.set_exception(RenderError("Renderer produced no output"))
        else:
            future.set_result(bytes(buffer))

    def callback(error: Exception | None, buffer: Any = None) -> None:
        loop.call_soon_threadsafe(_resolve, error, buffer)

    try:
        handle.render(options, callback)
    except Exception as e:
        raise RenderError(f"Renderer failed to start rendering: {e}") from e

    try:
        return await future
    except MapRenderError:
        raise
    except Exception as e:
        raise RenderError(f"Renderer reported an error: {e}") from e
