"""HTTP endpoints for rendering static map images."""

from typing import Any

from fastapi import APIRouter, Body, FastAPI, HTTPException, Request
from fastapi.responses import Response

from mbgl_renderer.config import config
from mbgl_renderer.lib import (
    FetchError,
    IconError,
    MapRenderError,
    StyleImportError,
    UnsupportedFeatureError,
    ValidationError,
)
from mbgl_renderer.logger import get_context_logger
from mbgl_renderer.pipeline import render
from mbgl_renderer.utils import merge_params

STATUS_CODES: dict[type[MapRenderError], int] = {
    ValidationError: 400,
    UnsupportedFeatureError: 400,
    StyleImportError: 502,
    FetchError: 502,
    IconError: 502,
}

render_router = APIRouter()


def status_for(error: MapRenderError) -> int:
    for error_cls, status_code in STATUS_CODES.items():
        if isinstance(error, error_cls):
            return status_code
    return 500


async def _render_image(params: dict[str, Any], request: Request, status_code: int):
    engine = getattr(request.app.state, "engine", None)
    try:
        data = await render(params, engine=engine)
    except MapRenderError as e:
        bound_logger = get_context_logger()
        bound_logger.error(type(e).__name__, error=str(e))
        raise HTTPException(
            status_code=status_for(e), detail=f"Error processing render request: {e}"
        ) from e
    return Response(data, status_code=status_code, media_type="image/png")


@render_router.get("/render")
async def get_render(request: Request):
    """Render an image from query string parameters."""
    params = merge_params(dict(request.query_params))
    return await _render_image(params, request, 200)


@render_router.post("/render")
async def post_render(request: Request, body: dict[str, Any] = Body(...)):
    """Render an image from a JSON body."""
    params = merge_params(dict(request.query_params), body)
    return await _render_image(params, request, 201)


@render_router.get("/health")
async def health():
    return Response(status_code=200)


def create_app(
    *, tile_path: str | None = None, engine: Any = None, verbose: bool = False
) -> FastAPI:
    """Build the FastAPI application.

    ``tile_path`` becomes the process-wide default; ``engine`` overrides the
    configured rendering engine.
    """
    if tile_path is not None:
        config.set(tile_path=tile_path)
    app = FastAPI(title="mbgl-renderer", debug=verbose)
    app.state.engine = engine
    app.include_router(render_router)
    return app
