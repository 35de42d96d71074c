import pytest

from mbgl_renderer.config import config
from mbgl_renderer.lib import (
    FetchError,
    IconError,
    RenderError,
    StyleImportError,
    UnsupportedFeatureError,
    ValidationError,
)
from mbgl_renderer.pipeline import render, render_sync
from mbgl_renderer.testing.renderer import FakeEngine
from tests import FakeResponse, FakeSession, decode_png, minimal_style, png_data_url

TILES = "https://tiles.example.com/{z}/{x}/{y}.pbf"
TILE_URL = "https://tiles.example.com/0/0/0.pbf"
IMPORT_URL = "https://styles.example.com/basemap.json"


def turin(**overrides):
    params = {
        "style": minimal_style(),
        "width": 400,
        "height": 260,
        "bounds": [7.0, 44.9, 7.3, 45.1],
        "padding": 0,
        "ratio": 1,
    }
    params.update(overrides)
    return params


def tiled_style():
    return minimal_style(
        sources={"roads": {"type": "vector", "tiles": [TILES]}},
        layers=[{"id": "road", "type": "line", "source": "roads"}],
    )


@pytest.mark.asyncio
async def test_renders_png_of_requested_size(engine, session):
    data = await render(turin(), engine=engine, session=session)
    img = decode_png(data)
    assert data[:8] == b"\x89PNG\r\n\x1a\n"
    assert img.size == (400, 260)
    # the fake engine emits premultiplied (64, 32, 16, 128)
    assert img.getpixel((0, 0)) == (128, 64, 32, 128)


@pytest.mark.asyncio
async def test_viewport_and_options_passed_to_engine(engine, session):
    await render(turin(bearing=45, pitch=30), engine=engine, session=session)
    (renderer,) = engine.renderers
    options = renderer.render_options
    assert options["zoom"] == 9
    assert options["center"][0] == pytest.approx(7.15)
    assert (options["width"], options["height"]) == (400, 260)
    assert (options["bearing"], options["pitch"]) == (45.0, 30.0)
    assert renderer.released


@pytest.mark.asyncio
async def test_ratio_scales_output(engine, session):
    data = await render(turin(ratio=2), engine=engine, session=session)
    assert decode_png(data).size == (800, 520)
    assert engine.renderers[0].ratio == 2.0


@pytest.mark.asyncio
async def test_center_and_zoom_used_verbatim(engine, session):
    params = {"style": minimal_style(), "width": 100, "height": 100, "center": "1.5,2.5", "zoom": "3"}
    await render(params, engine=engine, session=session)
    options = engine.renderers[0].render_options
    assert options["center"] == [1.5, 2.5]
    assert options["zoom"] == 3.0


@pytest.mark.asyncio
async def test_missing_viewport_fails_validation(engine, session):
    with pytest.raises(ValidationError, match="Either center and zoom OR bounds"):
        await render({"style": {}, "width": 400, "height": 260}, engine=engine, session=session)
    assert engine.renderers == []


@pytest.mark.asyncio
async def test_local_mbtiles_rejected_even_with_tile_path(engine, session, tmp_path):
    style = minimal_style(sources={"local": {"type": "vector", "url": "mbtiles://foo/1/2/3"}})
    with pytest.raises(UnsupportedFeatureError):
        await render(
            turin(style=style, tilePath=str(tmp_path)), engine=engine, session=session
        )
    assert engine.renderers == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [204, 404])
async def test_missing_tiles_do_not_abort(engine, status):
    session = FakeSession({TILE_URL: FakeResponse(status=status)})
    data = await render(turin(style=tiled_style()), engine=engine, session=session)
    assert decode_png(data).size == (400, 260)
    (url, error, result) = engine.renderers[0].fetched[0]
    assert url == TILE_URL
    assert error is None
    assert result.data is None


@pytest.mark.asyncio
async def test_tile_server_error_aborts(engine):
    session = FakeSession({TILE_URL: FakeResponse(status=500)})
    with pytest.raises(FetchError, match="status: 500"):
        await render(turin(style=tiled_style()), engine=engine, session=session)
    assert engine.renderers[0].released


@pytest.mark.asyncio
async def test_renderer_released_when_rendering_fails(session):
    engine = FakeEngine(fail_render=RuntimeError("GL context lost"))
    with pytest.raises(RenderError, match="GL context lost"):
        await render(turin(), engine=engine, session=session)
    assert engine.renderers[0].released


@pytest.mark.asyncio
async def test_imports_merged_before_loading(engine):
    imported = minimal_style(
        sources={"composite": {"type": "vector", "tiles": [TILES]}},
        layers=[{"id": "water", "type": "fill", "source": "composite"}],
        glyphs="https://fonts.example.com/{fontstack}/{range}.pbf",
    )
    session = FakeSession(
        {IMPORT_URL: FakeResponse(body=imported), TILE_URL: FakeResponse(body=b"tile")}
    )
    style = minimal_style(layers=[{"id": "pins", "type": "symbol", "source": "points"}])
    await render(
        turin(style=style, imports=[{"id": "basemap", "url": IMPORT_URL}]),
        engine=engine,
        session=session,
    )
    loaded = engine.renderers[0].style
    assert loaded is style
    assert [layer["id"] for layer in loaded["layers"]] == ["water", "pins"]
    assert loaded["layers"][0]["source"] == "basemap"
    assert loaded["glyphs"] == "https://fonts.example.com/{fontstack}/{range}.pbf"
    assert session.urls()[0] == IMPORT_URL


@pytest.mark.asyncio
async def test_failed_import_fails_request(engine):
    session = FakeSession({IMPORT_URL: FakeResponse(status=404)})
    with pytest.raises(StyleImportError):
        await render(
            turin(imports=[{"id": "basemap", "url": IMPORT_URL}]),
            engine=engine,
            session=session,
        )
    assert engine.renderers == []


@pytest.mark.asyncio
async def test_icons_registered(engine, session):
    images = {"dot": {"url": png_data_url(width=3, height=3), "pixelRatio": 2, "sdf": True}}
    await render(turin(images=images), engine=engine, session=session)
    image = engine.renderers[0].images["dot"]
    assert (image["width"], image["height"], image["pixel_ratio"], image["sdf"]) == (
        3,
        3,
        2.0,
        True,
    )


@pytest.mark.asyncio
async def test_icon_failure_fails_request_and_releases(engine):
    session = FakeSession()
    images = {"pin": {"url": "https://icons.example.com/missing.png"}}
    with pytest.raises(IconError, match="pin"):
        await render(turin(images=images), engine=engine, session=session)
    assert engine.renderers[0].released


@pytest.mark.asyncio
async def test_engine_from_config(session):
    with config.set(engine="mbgl_renderer.testing.renderer:FakeEngine"):
        data = await render(turin(), session=session)
    assert decode_png(data).size == (400, 260)


@pytest.mark.asyncio
async def test_no_engine_configured(session):
    with pytest.raises(RenderError, match="No rendering engine configured"):
        await render(turin(), session=session)


def test_render_sync(engine):
    data = render_sync(turin(), engine=engine, session=FakeSession())
    assert decode_png(data).size == (400, 260)


@pytest.mark.asyncio
async def test_engine_must_be_an_import_path(session):
    with config.set(engine="fake"):
        with pytest.raises(RenderError, match="'module:attribute'"):
            await render(turin(), session=session)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"ratio": "inf"}, "Ratio is outside supported range"),
        ({"style": {"version": 8, "sources": None}}, "sources must be an object"),
        ({"style": {"version": 8, "layers": ["not-a-layer"]}}, "layer 0 must be an object"),
    ],
)
async def test_malformed_input_is_a_validation_error(engine, session, overrides, message):
    with pytest.raises(ValidationError, match=message):
        await render(turin(**overrides), engine=engine, session=session)
    assert engine.renderers == []
