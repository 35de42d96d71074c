"""Validation and normalization of raw render parameters.

Values may arrive already decoded (JSON body) or as strings (query string).
Everything is coerced first, unparseable numbers becoming NaN, and then an
ordered table of rules is evaluated; the first rule that matches raises.
"""

import json
import math
import os
from collections.abc import Callable, Mapping
from typing import Any

import pydantic
from yarl import URL

from mbgl_renderer.config import config
from mbgl_renderer.lib import ValidationError
from mbgl_renderer.types import (
    MAPBOX_STYLES_PREFIX,
    ImageRef,
    ImportRef,
    RenderRequest,
    StyleDoc,
)

Params = dict[str, Any]
Rule = tuple[Callable[[Params], bool], Callable[[Params], ValidationError]]


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def parse_float(v: Any) -> float | None:
    if v is None:
        return None
    if isinstance(v, bool):
        return math.nan
    try:
        return float(v)
    except (TypeError, ValueError):
        return math.nan


def parse_float_list(v: Any) -> list[float] | None:
    """Parse ``"7.1,45.0"`` or ``[7.1, "45.0"]`` to floats; bad items become NaN."""
    if v is None:
        return None
    if isinstance(v, str):
        values = v.split(",")
    elif isinstance(v, list | tuple):
        values = list(v)
    else:
        values = [v]
    return [parse_float(x) for x in values]


def _parse_json_value(v: Any) -> Any:
    """Decode a JSON-encoded string, leaving anything else untouched."""
    if isinstance(v, str):
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            return v
    return v


def parse_style(v: Any) -> StyleDoc:
    if v is None or v == "":
        raise ValidationError("style is a required parameter")
    if isinstance(v, str):
        try:
            v = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValidationError("Error parsing JSON style") from e
    if not isinstance(v, dict):
        raise ValidationError("style must be a JSON object")
    problem = style_shape_error(v)
    if problem is not None:
        raise ValidationError(f"Invalid style: {problem}")
    return StyleDoc(v)


def style_shape_error(style: dict) -> str | None:
    """Describe what is wrong with the ``sources`` / ``layers`` members, if anything.

    Both members may be absent; when present, ``sources`` must be an object of
    objects and ``layers`` a list of objects.
    """
    if "sources" in style:
        sources = style["sources"]
        if not isinstance(sources, dict):
            return "sources must be an object"
        for key, source in sources.items():
            if not isinstance(source, dict):
                return f"source {key!r} must be an object"
    if "layers" in style:
        layers = style["layers"]
        if not isinstance(layers, list):
            return "layers must be an array"
        for idx, layer in enumerate(layers):
            if not isinstance(layer, dict):
                return f"layer {idx} must be an object"
    return None


def parse_dimension(v: Any, name: str) -> int:
    try:
        value = int(v)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            "width and height are required parameters and must be non-zero"
        ) from e
    if value <= 0:
        raise ValidationError(
            f"width and height are required parameters and must be non-zero: {name}={v!r}"
        )
    return value


def parse_padding(v: Any) -> int:
    if v is None:
        return 0
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"padding must be an integer: {v!r}") from e


def is_well_formed_url(url: Any) -> bool:
    if not isinstance(url, str) or not url:
        return False
    try:
        parsed = URL(url)
    except (TypeError, ValueError):
        return False
    return bool(parsed.scheme) and bool(parsed.host or parsed.path)


def _is_finite(values: list[float]) -> bool:
    return all(math.isfinite(x) for x in values)


def _out_of_range(value: float | None, low: float, high: float) -> bool:
    # NaN compares false against both limits, so it is out of range too
    return value is not None and not (low <= value <= high)


def _invalid_image_entries(p: Params) -> bool:
    return any(
        not (isinstance(image, dict) and "url" in image)
        for image in p["images"].values()
    )


def _first_bad_image_url(p: Params) -> str | None:
    for image in p["images"].values():
        url = image["url"]
        if isinstance(url, str) and url.startswith("data:"):
            continue
        if not is_well_formed_url(url):
            return url
    return None


def _invalid_import_entries(p: Params) -> bool:
    return any(
        not (isinstance(imp, dict) and imp.get("url") and imp.get("id"))
        for imp in p["imports"]
    )


def _first_bad_import_url(p: Params) -> str | None:
    for imp in p["imports"]:
        url = imp["url"]
        if isinstance(url, str) and url.startswith(MAPBOX_STYLES_PREFIX):
            continue
        if not is_well_formed_url(url):
            return url
    return None


GEOMETRY_RULES: list[Rule] = [
    (
        lambda p: p["center"] is not None and len(p["center"]) != 2,
        lambda p: ValidationError(
            f"Center must be longitude,latitude. Invalid value found: {p['raw_center']!r}"
        ),
    ),
    (
        lambda p: p["center"] is not None
        and not (math.isfinite(p["center"][0]) and abs(p["center"][0]) <= 180),
        lambda p: ValidationError(
            f"Center longitude is outside world bounds (-180 to 180 deg): {p['center'][0]}"
        ),
    ),
    (
        lambda p: p["center"] is not None
        and not (math.isfinite(p["center"][1]) and abs(p["center"][1]) <= 90),
        lambda p: ValidationError(
            f"Center latitude is outside world bounds (-90 to 90 deg): {p['center'][1]}"
        ),
    ),
    (
        lambda p: _out_of_range(p["zoom"], 0, 22),
        lambda p: ValidationError(
            f"Zoom level is outside supported range (0-22): {p['zoom']}"
        ),
    ),
    (
        lambda p: not (math.isfinite(p["ratio"]) and p["ratio"] >= 1),
        lambda p: ValidationError(
            f"Ratio is outside supported range (>=1): {p['ratio']}"
        ),
    ),
    (
        lambda p: p["bounds"] is not None
        and (len(p["bounds"]) != 4 or not _is_finite(p["bounds"])),
        lambda p: ValidationError(
            f"Bounds must be west,south,east,north. Invalid value found: {p['raw_bounds']!r}"
        ),
    ),
    (
        lambda p: p["bounds"] is not None and p["bounds"][0] == p["bounds"][2],
        lambda p: ValidationError("Bounds west and east coordinate are the same value"),
    ),
    (
        lambda p: p["bounds"] is not None and p["bounds"][1] == p["bounds"][3],
        lambda p: ValidationError(
            "Bounds south and north coordinate are the same value"
        ),
    ),
    (
        lambda p: p["bounds"] is not None
        and p["padding"] != 0
        and abs(p["padding"]) >= p["width"] / 2,
        lambda p: ValidationError(
            f"Padding must be less than width / 2: padding={p['padding']}, width={p['width']}"
        ),
    ),
    (
        lambda p: p["bounds"] is not None
        and p["padding"] != 0
        and abs(p["padding"]) >= p["height"] / 2,
        lambda p: ValidationError(
            f"Padding must be less than height / 2: padding={p['padding']}, height={p['height']}"
        ),
    ),
    (
        lambda p: _out_of_range(p["bearing"], 0, 360),
        lambda p: ValidationError(
            f"Bearing is outside supported range (0-360): {p['bearing']}"
        ),
    ),
    (
        lambda p: _out_of_range(p["pitch"], 0, 60),
        lambda p: ValidationError(
            f"Pitch is outside supported range (0-60): {p['pitch']}"
        ),
    ),
    (
        lambda p: not (
            (p["center"] is not None and p["zoom"] is not None)
            or p["bounds"] is not None
        ),
        lambda p: ValidationError("Either center and zoom OR bounds must be provided"),
    ),
    (
        lambda p: p["images"] is not None and not isinstance(p["images"], dict),
        lambda p: ValidationError("images must be an object or a JSON string"),
    ),
    (
        lambda p: p["images"] is not None and _invalid_image_entries(p),
        lambda p: ValidationError(
            "Invalid image object; a url is required for each image"
        ),
    ),
    (
        lambda p: p["images"] is not None and _first_bad_image_url(p) is not None,
        lambda p: ValidationError(f"Invalid image URL: {_first_bad_image_url(p)}"),
    ),
    (
        lambda p: p["imports"] is not None and not isinstance(p["imports"], list),
        lambda p: ValidationError("imports must be an array"),
    ),
    (
        lambda p: p["imports"] is not None and _invalid_import_entries(p),
        lambda p: ValidationError(
            "Invalid import object; a url and a id is required for each import"
        ),
    ),
    (
        lambda p: p["imports"] is not None and _first_bad_import_url(p) is not None,
        lambda p: ValidationError(f"Invalid import URL: {_first_bad_import_url(p)}"),
    ),
]


def apply_rules(params: Params, rules: list[Rule] = GEOMETRY_RULES) -> None:
    """Raise the error of the first rule whose predicate matches."""
    for predicate, error in rules:
        if predicate(params):
            raise error(params)


def coerce_params(raw: Mapping[str, Any]) -> Params:
    """Coerce raw request values into the shapes the rules operate on."""
    center = raw.get("center")
    bounds = raw.get("bounds")
    ratio = parse_float(raw.get("ratio"))
    return {
        "style": parse_style(raw.get("style")),
        "width": parse_dimension(raw.get("width"), "width"),
        "height": parse_dimension(raw.get("height"), "height"),
        "raw_center": center,
        "center": parse_float_list(center),
        "zoom": parse_float(raw.get("zoom")),
        "ratio": 1.0 if ratio is None else ratio,
        "raw_bounds": bounds,
        "bounds": parse_float_list(bounds),
        "padding": parse_padding(raw.get("padding")),
        "bearing": parse_float(raw.get("bearing")),
        "pitch": parse_float(raw.get("pitch")),
        "token": raw.get("token"),
        "images": _parse_json_value(raw.get("images")),
        "imports": _parse_json_value(raw.get("imports")),
        "tile_path": _first(raw, "tilePath", "tile_path"),
    }


def validate_params(raw: Mapping[str, Any]) -> RenderRequest:
    """Validate raw render parameters and build an immutable RenderRequest."""
    params = coerce_params(raw)
    apply_rules(params)

    try:
        images = {
            str(image_id): ImageRef.model_validate(image)
            for image_id, image in (params["images"] or {}).items()
        }
        imports = [
            ImportRef(id=str(imp["id"]), url=imp["url"])
            for imp in (params["imports"] or [])
        ]
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid image or import definition: {e}") from e

    tile_path = params["tile_path"] or config.get("tile_path")
    if tile_path:
        tile_path = os.path.normpath(tile_path)

    return RenderRequest(
        style=params["style"],
        width=params["width"],
        height=params["height"],
        center=tuple(params["center"]) if params["center"] is not None else None,
        zoom=params["zoom"],
        bounds=tuple(params["bounds"]) if params["bounds"] is not None else None,
        padding=params["padding"],
        ratio=params["ratio"],
        bearing=params["bearing"] if params["bearing"] is not None else 0.0,
        pitch=params["pitch"] if params["pitch"] is not None else 0.0,
        token=params["token"] or config.get("token"),
        images=images,
        imports=imports,
        tile_path=tile_path,
    )
