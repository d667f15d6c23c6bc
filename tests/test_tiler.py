import asyncio
import io
import logging
import math

import pytest
from PIL import Image

from overlay_tiler.services import raster
from overlay_tiler.services.errors import (
    DecodeFailureError,
    InvalidGeometryError,
    SourceNotFoundError,
)
from overlay_tiler.services.footprint import OverlayDescriptor, TileBounds, build_footprint
from overlay_tiler.services.projection import MAX_ZOOM, TileCoord
from overlay_tiler.services.raster import FILL_COLOR, TileEncoding
from overlay_tiler.services.tiler import TileRequest, compose_tile, render_tile, resolve_tile

from .conftest import HONOLULU, CountingStore, png_bytes, quadrant_png_bytes

RED = (220, 0, 0, 255)
BLUE = (0, 0, 220, 255)


def _open(content: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(content))
    image.load()
    return image.convert("RGBA")


def _close(color, expected, tolerance=2):
    return all(abs(a - b) <= tolerance for a, b in zip(color, expected))


def _all_close(image, expected, tolerance=2):
    extrema = image.getextrema()
    return all(
        low >= value - tolerance and high <= value + tolerance
        for (low, high), value in zip(extrema, expected)
    )


def _request(overlay, locator, zoom, x, y, **kwargs):
    return TileRequest(overlay=overlay, tile=TileCoord(zoom=zoom, x=x, y=y), locator=locator, **kwargs)


def test_honolulu_tile_resolves_to_full_size_raster(honolulu_overlay, locator, store):
    request = _request(honolulu_overlay, locator, 14, 1006, 7197)
    tile = asyncio.run(resolve_tile(request, store))

    assert tile.content_type == "image/webp"
    assert _open(tile.content).size == (256, 256)


def test_far_away_tile_is_placeholder_without_store_reads(honolulu_overlay, locator, store):
    request = _request(honolulu_overlay, locator, 14, 0, 0)
    tile = asyncio.run(resolve_tile(request, store, encoding=TileEncoding.PNG))

    assert tile.placeholder
    assert store.calls == []
    image = _open(tile.content)
    assert image.size == (256, 256)
    assert image.getpixel((0, 0)) == FILL_COLOR
    assert image.getpixel((255, 255)) == FILL_COLOR


def test_placeholder_respects_output_dimension(honolulu_overlay, locator, store):
    request = _request(honolulu_overlay, locator, 14, 5, 5, output_dimension=512)
    tile = asyncio.run(resolve_tile(request, store, encoding=TileEncoding.PNG))
    assert _open(tile.content).size == (512, 512)


def test_blank_placeholder(monkeypatch, honolulu_overlay, locator, store):
    monkeypatch.setenv("OVERLAY_PLACEHOLDER", "blank")
    request = _request(honolulu_overlay, locator, 14, 0, 0)
    tile = asyncio.run(resolve_tile(request, store, encoding=TileEncoding.PNG))
    assert _open(tile.content).getpixel((10, 10))[3] == 0


def test_tile_format_from_environment(monkeypatch, honolulu_overlay, locator, store):
    monkeypatch.setenv("OVERLAY_TILE_FORMAT", "png")
    tile = asyncio.run(resolve_tile(_request(honolulu_overlay, locator, 14, 0, 0), store))
    assert tile.content_type == "image/png"
    assert tile.content.startswith(b"\x89PNG")


def test_intersecting_tile_reads_source_once(rotated_overlay, locator, store):
    request = _request(rotated_overlay, locator, 14, 1006, 7197)
    tile = asyncio.run(resolve_tile(request, store))

    assert not tile.placeholder
    assert store.calls == [locator]
    assert _open(tile.content).size == (256, 256)


def test_resolve_tile_is_idempotent(rotated_overlay, locator, store):
    request = _request(rotated_overlay, locator, 14, 1006, 7197)
    first = asyncio.run(resolve_tile(request, store))
    second = asyncio.run(resolve_tile(request, store))
    assert first.content == second.content


def test_fully_covered_tile_has_no_background(honolulu_overlay, locator):
    store = CountingStore({locator: png_bytes((1024, 1024), RED)})
    bounds = build_footprint(honolulu_overlay).bounds(17)
    x = math.floor(bounds.min_x) + 2
    y = math.floor(bounds.min_y) + 2
    assert bounds.min_x <= x and x + 1 <= bounds.max_x
    assert bounds.min_y <= y and y + 1 <= bounds.max_y

    image = asyncio.run(render_tile(_request(honolulu_overlay, locator, 17, x, y), store))
    assert image.size == (256, 256)
    assert _all_close(image, RED)


def _compose(source_bytes, bounds, x, y, rotation=0.0, dimension=256):
    overlay = OverlayDescriptor(anchor=HONOLULU, width_meters=1000, rotation_degrees=rotation)
    request = TileRequest(
        overlay=overlay,
        tile=TileCoord(zoom=bounds.zoom, x=x, y=y),
        locator=None,
        output_dimension=dimension,
    )
    return compose_tile(raster.decode(source_bytes), bounds, request)


def test_compose_cuts_matching_quadrants():
    bounds = TileBounds(min_x=10.0, min_y=20.0, max_x=12.0, max_y=22.0, zoom=5)
    left = _compose(quadrant_png_bytes(), bounds, 10, 20)
    right = _compose(quadrant_png_bytes(), bounds, 11, 21)

    assert left.getcolors() == [(256 * 256, RED)]
    assert right.getcolors() == [(256 * 256, BLUE)]


def test_compose_pads_partial_tile_with_fill():
    bounds = TileBounds(min_x=10.5, min_y=20.0, max_x=12.5, max_y=22.0, zoom=5)
    tile = _compose(quadrant_png_bytes(), bounds, 10, 20)

    assert tile.size == (256, 256)
    assert tile.getpixel((10, 128)) == FILL_COLOR
    assert tile.getpixel((127, 128)) == FILL_COLOR
    assert tile.getpixel((129, 128)) == RED
    assert tile.getpixel((250, 128)) == RED


def test_compose_edge_touching_tile_is_all_fill():
    bounds = TileBounds(min_x=10.0, min_y=20.0, max_x=12.0, max_y=22.0, zoom=5)
    tile = _compose(quadrant_png_bytes(), bounds, 9, 20)
    assert tile.getcolors() == [(256 * 256, FILL_COLOR)]


def test_compose_stretches_to_output_dimension():
    bounds = TileBounds(min_x=10.0, min_y=20.0, max_x=12.0, max_y=22.0, zoom=5)
    small = _compose(quadrant_png_bytes(size=100), bounds, 10, 20)
    large = _compose(quadrant_png_bytes(size=2000), bounds, 11, 20, dimension=300)
    assert small.size == (256, 256)
    assert large.size == (300, 300)


def test_compose_quarter_turn_moves_left_half_to_top():
    bounds = TileBounds(min_x=10.0, min_y=20.0, max_x=12.0, max_y=22.0, zoom=5)
    # Rotating clockwise by 90 degrees puts the red left half on top.
    top = _compose(quadrant_png_bytes(), bounds, 10, 20, rotation=90)
    bottom = _compose(quadrant_png_bytes(), bounds, 10, 21, rotation=90)
    assert top.getcolors() == [(256 * 256, RED)]
    assert bottom.getcolors() == [(256 * 256, BLUE)]


def test_rotated_compose_fills_exposed_corners():
    bounds = TileBounds(min_x=10.0, min_y=20.0, max_x=12.0, max_y=22.0, zoom=5)
    tile = _compose(png_bytes((512, 512), RED), bounds, 10, 20, rotation=45)
    assert _close(tile.getpixel((2, 2)), FILL_COLOR)
    assert _close(tile.getpixel((250, 250)), RED)


def test_rotated_size_mismatch_is_not_reported_for_matching_raster(caplog):
    bounds = TileBounds(min_x=10.0, min_y=20.0, max_x=12.0, max_y=22.0, zoom=5)
    with caplog.at_level(logging.WARNING, logger="overlay_tiler.services.tiler"):
        _compose(png_bytes((300, 200), RED), bounds, 10, 20, rotation=30)
    assert "predicted" not in caplog.text


def test_missing_source_propagates(honolulu_overlay, locator):
    store = CountingStore()
    request = _request(honolulu_overlay, locator, 14, 1007, 7198)
    with pytest.raises(SourceNotFoundError):
        asyncio.run(resolve_tile(request, store))
    assert store.calls == [locator]


def test_corrupt_source_is_decode_failure(honolulu_overlay, locator):
    store = CountingStore({locator: b"definitely not an image"})
    request = _request(honolulu_overlay, locator, 14, 1007, 7198)
    with pytest.raises(DecodeFailureError):
        asyncio.run(resolve_tile(request, store))


@pytest.mark.parametrize(
    "overlay_kwargs,zoom,dimension",
    [
        ({"width_meters": 0}, 14, 256),
        ({"width_meters": 2800, "aspect_ratio_height": 0}, 14, 256),
        ({"width_meters": 2800}, -1, 256),
        ({"width_meters": 2800}, 14, 0),
        ({"width_meters": 2800}, MAX_ZOOM + 1, 256),
        ({"width_meters": 2800}, 1100, 256),
    ],
)
def test_invalid_requests_are_rejected_before_fetching(locator, store, overlay_kwargs, zoom, dimension):
    overlay = OverlayDescriptor(anchor=HONOLULU, **overlay_kwargs)
    request = _request(overlay, locator, zoom, 1007, 7198, output_dimension=dimension)
    with pytest.raises(InvalidGeometryError):
        asyncio.run(resolve_tile(request, store))
    assert store.calls == []


def test_compose_centres_overlay_inside_containing_tile():
    bounds = TileBounds(min_x=0.25, min_y=0.25, max_x=0.75, max_y=0.75, zoom=1)
    tile = _compose(png_bytes((240, 240), RED), bounds, 0, 0)

    assert tile.size == (256, 256)
    assert tile.getpixel((128, 128)) == RED
    assert tile.getpixel((64, 64)) == RED
    assert tile.getpixel((191, 191)) == RED
    assert tile.getpixel((63, 128)) == FILL_COLOR
    assert tile.getpixel((192, 128)) == FILL_COLOR
    assert tile.getpixel((128, 63)) == FILL_COLOR
    assert tile.getpixel((128, 192)) == FILL_COLOR


@pytest.mark.parametrize("zoom,x,y", [(4, 0, 7), (0, 0, 0)])
def test_low_zoom_tile_containing_whole_overlay(honolulu_overlay, locator, store, zoom, x, y):
    request = _request(honolulu_overlay, locator, zoom, x, y)
    bounds = build_footprint(honolulu_overlay).bounds(zoom)
    assert x < bounds.min_x and bounds.max_x < x + 1
    assert y < bounds.min_y and bounds.max_y < y + 1

    image = asyncio.run(render_tile(request, store))
    assert image.size == (256, 256)
    assert image.getpixel((0, 0)) == FILL_COLOR
    assert image.getpixel((255, 255)) == FILL_COLOR
    assert len(store.calls) == 1


def test_overlay_visible_inside_containing_tile(honolulu_overlay, locator):
    store = CountingStore({locator: png_bytes((240, 240), RED)})
    bounds = build_footprint(honolulu_overlay).bounds(9)
    x, y = math.floor(bounds.min_x), math.floor(bounds.min_y)
    assert bounds.max_x < x + 1 and bounds.max_y < y + 1

    image = asyncio.run(render_tile(_request(honolulu_overlay, locator, 9, x, y), store))
    centre_x = int(((bounds.min_x + bounds.max_x) / 2 - x) * 256)
    centre_y = int(((bounds.min_y + bounds.max_y) / 2 - y) * 256)

    assert image.size == (256, 256)
    assert _close(image.getpixel((centre_x, centre_y)), RED)
    assert image.getpixel((0, 0)) == FILL_COLOR
