"""Resolve remote style imports and merge them into the base style."""

import asyncio
import json
import re
from typing import Any

import aiohttp
from yarl import URL

from mbgl_renderer.config import config
from mbgl_renderer.fetch import fetch_json
from mbgl_renderer.lib import MapRenderError, StyleImportError, UnsupportedFeatureError
from mbgl_renderer.logger import get_context_logger
from mbgl_renderer.types import MAPBOX_STYLES_PREFIX, ImportRef, StyleDoc
from mbgl_renderer.validators import style_shape_error

COMPOSITE_SOURCE = "composite"
STYLE_SPEC_VERSION = 8

MBTILES_REGEXP = re.compile(r"mbtiles://(\S+?)(?=[/\"]+)", re.IGNORECASE)


def is_mapbox_style_url(url: str) -> bool:
    return url.startswith(MAPBOX_STYLES_PREFIX)


def normalize_mapbox_style_url(url: str, token: str | None) -> str:
    """Rewrite ``mapbox://styles/<user>/<style>`` to the Mapbox Styles API."""
    if not token:
        raise StyleImportError(
            f"A Mapbox access token is required to import {url}", url=url
        )
    path = url[len(MAPBOX_STYLES_PREFIX) :].strip("/")
    if not path:
        raise StyleImportError(f"Could not normalize Mapbox style URL: {url}", url=url)
    api = URL(config.get("mapbox_api_url"))
    return str(
        api.with_path(f"/styles/v1/{path}").with_query(
            {"access_token": token, "secure": "true"}
        )
    )


def resolve_import_url(url: str, token: str | None) -> str:
    return normalize_mapbox_style_url(url, token) if is_mapbox_style_url(url) else url


async def fetch_style_import(
    session: aiohttp.ClientSession, ref: ImportRef, token: str | None
) -> StyleDoc:
    url = resolve_import_url(ref.url, token)
    try:
        style = await fetch_json(session, url)
    except MapRenderError as e:
        get_context_logger().error("style import failed", id=ref.id, url=ref.url)
        raise StyleImportError(
            f"Could not fetch import style {ref.id!r} from {ref.url}: {e}", url=ref.url
        ) from e
    if not isinstance(style, dict):
        raise StyleImportError(
            f"Invalid import style {ref.id!r} from {ref.url}: expected a JSON object",
            url=ref.url,
        )
    if style.get("version") != STYLE_SPEC_VERSION:
        raise StyleImportError(
            f"Invalid import style {ref.id!r} from {ref.url}: "
            f"version {style.get('version')!r} (Version Required: {STYLE_SPEC_VERSION})",
            url=ref.url,
        )
    problem = style_shape_error(style)
    if problem is not None:
        raise StyleImportError(
            f"Invalid import style {ref.id!r} from {ref.url}: {problem}", url=ref.url
        )
    return StyleDoc(style)


async def fetch_style_imports(
    session: aiohttp.ClientSession, imports: list[ImportRef], token: str | None
) -> list[StyleDoc]:
    """Fetch every import concurrently; results keep the order of ``imports``."""
    return list(
        await asyncio.gather(*(fetch_style_import(session, ref, token) for ref in imports))
    )


def namespaced_source(import_id: str, source: str) -> str:
    if source == COMPOSITE_SOURCE:
        return import_id
    return f"{import_id}-{source}"


def merge_style_import(
    style: StyleDoc, import_id: str, imported: StyleDoc
) -> list[dict[str, Any]]:
    """
    Merge the sources and top-level settings of one import into ``style``.

    Sources are namespaced under ``import_id`` and never replace a source the
    style already has. ``fog``, ``glyphs`` and ``sprite`` are only taken from
    the import while ``style`` has none. Returns the import's layers with
    their source references rewritten; the caller decides where they go.
    """
    sources = style.setdefault("sources", {})
    for key, source in (imported.get("sources") or {}).items():
        sources.setdefault(namespaced_source(import_id, key), source)

    layers = []
    for layer in imported.get("layers") or []:
        layer = dict(layer)
        if layer.get("source"):
            layer["source"] = namespaced_source(import_id, layer["source"])
        else:
            layer.pop("source", None)
        layers.append(layer)

    if isinstance(imported.get("fog"), dict) and style.get("fog") is None:
        style["fog"] = imported["fog"]
    for key in ("glyphs", "sprite"):
        if isinstance(imported.get(key), str) and style.get(key) is None:
            style[key] = imported[key]
    return layers


def merge_style_imports(
    style: StyleDoc, imports: list[ImportRef], imported_styles: list[StyleDoc]
) -> StyleDoc:
    """Merge fetched imports into ``style`` in place, in import order.

    Imported layers are drawn beneath the style's own layers, earlier
    imports beneath later ones.
    """
    imported_layers: list[dict[str, Any]] = []
    for idx, (ref, imported) in enumerate(zip(imports, imported_styles, strict=True)):
        imported_layers.extend(merge_style_import(style, ref.id or str(idx), imported))
    style["layers"] = imported_layers + list(style.get("layers") or [])
    return style


def check_local_tiles(style: StyleDoc) -> None:
    """Reject styles that reference local ``mbtiles://`` archives."""
    match = MBTILES_REGEXP.search(json.dumps(style))
    if match is not None:
        raise UnsupportedFeatureError(
            f"Local mbtiles not supported: {match.group(0)}"
        )


async def resolve_style(
    session: aiohttp.ClientSession,
    style: StyleDoc,
    imports: list[ImportRef],
    token: str | None,
) -> StyleDoc:
    """Fetch and merge all imports, then check the result can be rendered."""
    if imports:
        imported_styles = await fetch_style_imports(session, imports, token)
        merge_style_imports(style, imports, imported_styles)
        get_context_logger().info("style imports merged", count=len(imports))
    check_local_tiles(style)
    return style
