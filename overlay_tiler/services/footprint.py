from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple

from .errors import InvalidGeometryError
from .projection import (
    MAX_ZOOM,
    GeoPoint,
    PixelPoint,
    TileCoord,
    destination_point,
    project,
    tile_position,
)


@dataclass(frozen=True)
class OverlayDescriptor:
    """A source image pinned to the globe by its unrotated top-left corner."""

    anchor: GeoPoint
    width_meters: float
    rotation_degrees: float = 0.0
    aspect_ratio_width: float = 1.0
    aspect_ratio_height: float = 1.0

    @property
    def height_meters(self) -> float:
        return self.width_meters * (self.aspect_ratio_height / self.aspect_ratio_width)

    @property
    def normalized_rotation(self) -> float:
        """Rotation folded into ``[0, 360)``."""

        return self.rotation_degrees % 360.0

    def validate(self) -> None:
        values = (
            self.anchor.lat,
            self.anchor.lon,
            self.width_meters,
            self.rotation_degrees,
            self.aspect_ratio_width,
            self.aspect_ratio_height,
        )
        if not all(math.isfinite(value) for value in values):
            raise InvalidGeometryError("Overlay geometry must only contain finite numbers.")
        if self.width_meters <= 0:
            raise InvalidGeometryError("Overlay width in meters must be greater than zero.")
        if self.aspect_ratio_width <= 0 or self.aspect_ratio_height <= 0:
            raise InvalidGeometryError("Aspect ratio components must be greater than zero.")
        if not -90.0 < self.anchor.lat < 90.0:
            raise InvalidGeometryError("Overlay anchor latitude must be within -90 and 90 degrees.")


@dataclass(frozen=True)
class TileBounds:
    """Axis-aligned footprint bounding box in fractional tile units at one zoom."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float
    zoom: int

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def intersects(self, x: int, y: int) -> bool:
        """Return ``True`` when the unit square of tile ``(x, y)`` overlaps the box."""

        return not (
            x + 1 < self.min_x
            or x > self.max_x
            or y + 1 < self.min_y
            or y > self.max_y
        )


@dataclass(frozen=True)
class Footprint:
    """Corners of an overlay ordered top-left, top-right, bottom-right, bottom-left."""

    corners: Tuple[GeoPoint, GeoPoint, GeoPoint, GeoPoint]
    pixels: Tuple[PixelPoint, PixelPoint, PixelPoint, PixelPoint]

    def pixel_bounds(self) -> Tuple[float, float, float, float]:
        xs = [pixel.x for pixel in self.pixels]
        ys = [pixel.y for pixel in self.pixels]
        return min(xs), min(ys), max(xs), max(ys)

    def bounds(self, zoom: int) -> TileBounds:
        """Bounding box of the projected corners at ``zoom``.

        The box encloses the rotated quadrilateral, so it is usually larger
        than the overlay itself.
        """

        if not 0 <= zoom <= MAX_ZOOM:
            raise InvalidGeometryError(f"Zoom level must be between 0 and {MAX_ZOOM}.")
        min_x, min_y, max_x, max_y = self.pixel_bounds()
        top_left = tile_position(PixelPoint(min_x, min_y), zoom)
        bottom_right = tile_position(PixelPoint(max_x, max_y), zoom)
        bounds = TileBounds(
            min_x=top_left.x,
            min_y=top_left.y,
            max_x=bottom_right.x,
            max_y=bottom_right.y,
            zoom=zoom,
        )
        if not bounds.width > 0 or not bounds.height > 0:
            raise InvalidGeometryError(
                f"Overlay footprint collapses to a degenerate box at zoom {zoom}."
            )
        return bounds


def build_footprint(overlay: OverlayDescriptor) -> Footprint:
    overlay.validate()

    rotation = overlay.rotation_degrees
    top_left = overlay.anchor
    top_right = destination_point(top_left, overlay.width_meters, 90 + rotation)
    bottom_right = destination_point(top_right, overlay.height_meters, 180 + rotation)
    bottom_left = destination_point(bottom_right, overlay.width_meters, 270 + rotation)

    corners = (top_left, top_right, bottom_right, bottom_left)
    return Footprint(
        corners=corners,
        pixels=(project(top_left), project(top_right), project(bottom_right), project(bottom_left)),
    )


def covering_tiles(footprint: Footprint, zoom: int) -> List[TileCoord]:
    """List every on-grid tile at ``zoom`` whose square touches the footprint box."""

    bounds = footprint.bounds(zoom)
    tiles: List[TileCoord] = []
    for x in range(math.floor(bounds.min_x), math.ceil(bounds.max_x) + 1):
        for y in range(math.floor(bounds.min_y), math.ceil(bounds.max_y) + 1):
            tile = TileCoord(zoom=zoom, x=x, y=y)
            if tile.is_on_grid() and bounds.intersects(x, y):
                tiles.append(tile)
    return tiles
