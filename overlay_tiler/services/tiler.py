"""Resolve slippy-map tiles out of a single rotated, georeferenced overlay image.

A request flows through these stages:

1. Build the overlay footprint and its bounding box at the requested zoom.
   Tiles that do not touch the box get a placeholder without any storage
   access.
2. Fetch and decode the original image, then rotate it clockwise when the
   overlay is rotated.
3. Plan the crop from the analytically predicted rotated size, crop, pad with
   the background colour and stretch the result to the output dimension.
4. Encode the final raster.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from PIL import Image

from . import raster
from .crop import CropPlan, fit_to_output, image_size_after_rotation, plan_crop
from .errors import InvalidGeometryError, SourceUnavailableError, SourceTransientError
from .footprint import OverlayDescriptor, TileBounds, build_footprint
from .projection import MAX_ZOOM, TileCoord
from .raster import BLANK_COLOR, FILL_COLOR, Color, TileEncoding
from .storage import ImageStore, SourceLocator

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIMENSION = 256
MAX_OUTPUT_DIMENSION = 4096
ROTATED_SIZE_TOLERANCE = 1

TILE_FORMAT_ENV = "OVERLAY_TILE_FORMAT"
PLACEHOLDER_ENV = "OVERLAY_PLACEHOLDER"


@dataclass(frozen=True)
class TileRequest:
    """Everything needed to resolve one tile of one overlay."""

    overlay: OverlayDescriptor
    tile: TileCoord
    locator: SourceLocator
    output_dimension: int = DEFAULT_OUTPUT_DIMENSION


@dataclass(frozen=True)
class RenderedTile:
    content: bytes
    content_type: str
    placeholder: bool = False


def default_encoding() -> TileEncoding:
    raw_value = os.getenv(TILE_FORMAT_ENV, "").strip().lower()
    if not raw_value:
        return TileEncoding.WEBP
    try:
        return TileEncoding(raw_value)
    except ValueError:
        logger.warning("Ignoring unsupported %s=%r; using webp.", TILE_FORMAT_ENV, raw_value)
        return TileEncoding.WEBP


def placeholder_color() -> Color:
    raw_value = os.getenv(PLACEHOLDER_ENV, "").strip().lower()
    if raw_value == "blank":
        return BLANK_COLOR
    return FILL_COLOR


@contextmanager
def _timed(stage: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        logger.debug("%s took %.1f ms", stage, (time.perf_counter() - started) * 1000)


def _validate_request(request: TileRequest) -> None:
    tile = request.tile
    if not 0 <= tile.zoom <= MAX_ZOOM:
        raise InvalidGeometryError(f"Zoom level must be between 0 and {MAX_ZOOM}.")
    if not 1 <= request.output_dimension <= MAX_OUTPUT_DIMENSION:
        raise InvalidGeometryError(
            f"Output dimension must be between 1 and {MAX_OUTPUT_DIMENSION} pixels."
        )


def tile_bounds_for(request: TileRequest) -> TileBounds:
    _validate_request(request)
    footprint = build_footprint(request.overlay)
    return footprint.bounds(request.tile.zoom)


def _check_rotated_size(measured: tuple[int, int], predicted: tuple[float, float]) -> None:
    width_gap = abs(measured[0] - round(predicted[0]))
    height_gap = abs(measured[1] - round(predicted[1]))
    if width_gap > ROTATED_SIZE_TOLERANCE or height_gap > ROTATED_SIZE_TOLERANCE:
        logger.warning(
            "Rotated raster is %dx%d but %.2fx%.2f was predicted; tile content may shift.",
            measured[0],
            measured[1],
            predicted[0],
            predicted[1],
        )


def compose_tile(
    source: Image.Image,
    bounds: TileBounds,
    request: TileRequest,
    *,
    fill: Color = FILL_COLOR,
) -> Image.Image:
    """Cut ``request.tile`` out of the decoded, unrotated ``source`` raster."""

    rotation = request.overlay.normalized_rotation
    rotated = source
    if rotation != 0:
        with _timed("rotate()"):
            rotated = raster.rotate(source, request.overlay.rotation_degrees, fill)

    predicted = image_size_after_rotation(source.size, request.overlay.rotation_degrees)
    _check_rotated_size(rotated.size, predicted)

    plan: CropPlan = plan_crop(bounds, request.tile.x, request.tile.y, predicted)
    logger.debug("Crop plan for %s: %s", request.tile, plan)

    with _timed("crop()"):
        tile_image = raster.crop(rotated, plan.crop_box)

    dimension = request.output_dimension
    if not plan.needs_padding and tile_image.width and tile_image.height:
        with _timed("resize()"):
            return raster.resize_fill(tile_image, dimension, dimension)

    # Pads are scaled to output pixels before the canvas is built.
    placement = fit_to_output(plan, tile_image.size, dimension)
    with _timed("resize()"):
        if placement.crop_width and placement.crop_height:
            tile_image = raster.resize_fill(tile_image, placement.crop_width, placement.crop_height)
        else:
            tile_image = Image.new(tile_image.mode, (0, 0))
    with _timed("extend()"):
        return raster.extend(tile_image, placement, fill)


async def render_tile(request: TileRequest, store: ImageStore) -> Image.Image | None:
    """Return the composed tile image, or ``None`` when the tile misses the overlay."""

    bounds = tile_bounds_for(request)
    tile = request.tile
    if not bounds.intersects(tile.x, tile.y):
        logger.debug("Tile %s is outside the overlay footprint %s", tile, bounds)
        return None

    try:
        with _timed("fetch()"):
            content = await store.fetch(request.locator)
    except (SourceUnavailableError, SourceTransientError) as exc:
        logger.warning("Source image %s unavailable: %s", request.locator, exc)
        raise

    with _timed("decode()"):
        source = raster.decode(content)

    return compose_tile(source, bounds, request)


async def resolve_tile(
    request: TileRequest,
    store: ImageStore,
    *,
    encoding: TileEncoding | None = None,
) -> RenderedTile:
    encoding = encoding or default_encoding()

    tile_image = await render_tile(request, store)
    is_placeholder = tile_image is None
    if tile_image is None:
        tile_image = raster.placeholder(request.output_dimension, placeholder_color())

    with _timed("encode()"):
        content = raster.encode(tile_image, encoding)
    return RenderedTile(content=content, content_type=encoding.content_type, placeholder=is_placeholder)
