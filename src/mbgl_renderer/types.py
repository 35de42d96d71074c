import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NewType

from pydantic import BaseModel, ConfigDict, Field

StyleDoc = NewType("StyleDoc", dict)

MAPBOX_SCHEME = "mapbox://"
MAPBOX_STYLES_PREFIX = "mapbox://styles/"


class ResourceKind(enum.StrEnum):
    UNKNOWN = enum.auto()
    STYLE = enum.auto()
    SOURCE = enum.auto()
    TILE = enum.auto()
    GLYPHS = enum.auto()
    SPRITE_IMAGE = enum.auto()
    SPRITE_JSON = enum.auto()
    IMAGE = enum.auto()

    @classmethod
    def parse(cls, value: "ResourceKind | str | int") -> "ResourceKind":
        """Accept an enum member, its name in any spelling, or the engine's numeric code."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            try:
                return _NATIVE_KINDS[value]
            except KeyError:
                return cls.UNKNOWN
        normalized = str(value).replace("-", "_").lower()
        normalized = _KIND_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


# numeric resource kinds as the native engine reports them
_NATIVE_KINDS = {
    0: ResourceKind.UNKNOWN,
    1: ResourceKind.STYLE,
    2: ResourceKind.SOURCE,
    3: ResourceKind.TILE,
    4: ResourceKind.GLYPHS,
    5: ResourceKind.SPRITE_IMAGE,
    6: ResourceKind.SPRITE_JSON,
    7: ResourceKind.IMAGE,
}

_KIND_ALIASES = {
    "glyph": "glyphs",
    "spriteimage": "sprite_image",
    "spritejson": "sprite_json",
    "imagesource": "image",
    "image_source": "image",
}


class ImageRef(BaseModel):
    """An icon image to register with the renderer before drawing."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    pixel_ratio: float = Field(1.0, alias="pixelRatio")
    sdf: bool = False


class ImportRef(BaseModel):
    """A remote partial style merged into the base style."""

    model_config = ConfigDict(frozen=True)

    id: str
    url: str


@dataclass(frozen=True)
class Viewport:
    center: tuple[float, float]
    zoom: float


@dataclass(frozen=True, kw_only=True)
class RenderRequest:
    """Validated, normalized parameters for a single render call.

    ``style`` is the one mutable member: style imports are merged into it in
    place and the same dict is handed to the engine.
    """

    style: StyleDoc
    width: int
    height: int
    center: tuple[float, float] | None = None
    zoom: float | None = None
    bounds: tuple[float, float, float, float] | None = None
    padding: int = 0
    ratio: float = 1.0
    bearing: float = 0.0
    pitch: float = 0.0
    token: str | None = None
    images: dict[str, ImageRef] = field(default_factory=dict)
    imports: list[ImportRef] = field(default_factory=list)
    tile_path: str | None = None


@dataclass(frozen=True, kw_only=True)
class ResourceRequest:
    """One pull request from the engine for a tile, glyph range, sprite, ..."""

    url: str
    kind: ResourceKind
    etag: str | None = None
    modified: datetime | None = None

    @classmethod
    def from_engine(cls, request: Any) -> "ResourceRequest":
        if isinstance(request, cls):
            return request
        if isinstance(request, dict):
            get = request.get
        else:

            def get(key, default=None):
                return getattr(request, key, default)

        return cls(
            url=get("url"),
            kind=ResourceKind.parse(get("kind", ResourceKind.UNKNOWN)),
            etag=get("etag"),
            modified=get("modified"),
        )


@dataclass(kw_only=True)
class FetchResult:
    data: bytes | None
    etag: str | None = None
    modified: datetime | None = None
    expires: datetime | None = None
    not_modified: bool = False
