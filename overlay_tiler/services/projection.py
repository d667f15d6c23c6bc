"""Spherical Web-Mercator helpers used to place overlays on the tile grid.

Pixel coordinates are expressed in the zoom 0 world, where one full wrap of
the globe spans ``TILE_SIZE`` pixels. Tile positions are derived from those
pixels by scaling with ``2 ** zoom``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

TILE_SIZE = 256
EARTH_RADIUS = 6378137.0
SIN_LATITUDE_LIMIT = 0.9999
MAX_ZOOM = 30


@dataclass(frozen=True)
class GeoPoint:
    """Geographic location in degrees."""

    lat: float
    lon: float


@dataclass(frozen=True)
class PixelPoint:
    """Point in the zoom 0 Mercator pixel space."""

    x: float
    y: float


@dataclass(frozen=True)
class TilePosition:
    """Fractional tile coordinate at a given zoom level."""

    x: float
    y: float
    zoom: int


@dataclass(frozen=True)
class TileCoord:
    """Address of a single slippy-map tile."""

    zoom: int
    x: int
    y: int

    @property
    def scale(self) -> int:
        return 2 ** self.zoom

    def is_on_grid(self) -> bool:
        """Return ``True`` when ``x`` and ``y`` fall inside the tile pyramid."""

        return self.zoom >= 0 and 0 <= self.x < self.scale and 0 <= self.y < self.scale


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(min(value, maximum), minimum)


def project(point: GeoPoint) -> PixelPoint:
    sin_lat = math.sin(math.radians(point.lat))
    sin_lat = _clamp(sin_lat, -SIN_LATITUDE_LIMIT, SIN_LATITUDE_LIMIT)
    return PixelPoint(
        x=TILE_SIZE * (0.5 + point.lon / 360.0),
        y=TILE_SIZE * (0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)),
    )


def unproject(pixel: PixelPoint) -> GeoPoint:
    """Inverse of :func:`project` for points that were not clamped."""

    lon = (pixel.x / TILE_SIZE - 0.5) * 360.0
    mercator_y = (0.5 - pixel.y / TILE_SIZE) * 2 * math.pi
    lat = math.degrees(math.atan(math.sinh(mercator_y)))
    return GeoPoint(lat=lat, lon=lon)


def destination_point(origin: GeoPoint, distance_meters: float, bearing_degrees: float) -> GeoPoint:
    """Walk ``distance_meters`` from ``origin`` along ``bearing_degrees`` on a sphere.

    The bearing is measured clockwise from north. The sphere uses the WGS84
    equatorial radius, which is accurate enough for overlays spanning a few
    kilometres but not for continental distances.
    """

    angular_distance = distance_meters / EARTH_RADIUS
    bearing = math.radians(bearing_degrees)
    lat1 = math.radians(origin.lat)
    lon1 = math.radians(origin.lon)

    sin_lat1, cos_lat1 = math.sin(lat1), math.cos(lat1)
    sin_dist, cos_dist = math.sin(angular_distance), math.cos(angular_distance)

    sin_lat2 = sin_lat1 * cos_dist + cos_lat1 * sin_dist * math.cos(bearing)
    lat2 = math.asin(_clamp(sin_lat2, -1.0, 1.0))
    y = math.sin(bearing) * sin_dist * cos_lat1
    x = cos_dist - sin_lat1 * sin_lat2
    lon2 = lon1 + math.atan2(y, x)

    return GeoPoint(lat=math.degrees(lat2), lon=math.degrees(lon2))


def tile_position(pixel: PixelPoint, zoom: int) -> TilePosition:
    scale = float(2 ** zoom)
    return TilePosition(x=pixel.x * scale / TILE_SIZE, y=pixel.y * scale / TILE_SIZE, zoom=zoom)
