from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from .services.footprint import OverlayDescriptor
from .services.projection import GeoPoint
from .services.storage import SourceLocator

DEFAULT_PREPARE_ZOOM = 14


class OverlayMap(SQLModel, table=True):
    """A georeferenced overlay image registered for tiling."""

    id: str = Field(primary_key=True)
    bucket: str
    key: str
    top_left_lat: float
    top_left_lon: float
    width_meters: float = Field(gt=0)
    rotation_degrees: float = Field(default=0.0)
    aspect_ratio_width: float = Field(default=1.0, gt=0)
    aspect_ratio_height: float = Field(default=1.0, gt=0)
    default_zoom: Optional[int] = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def descriptor(self) -> OverlayDescriptor:
        return OverlayDescriptor(
            anchor=GeoPoint(lat=self.top_left_lat, lon=self.top_left_lon),
            width_meters=self.width_meters,
            rotation_degrees=self.rotation_degrees,
            aspect_ratio_width=self.aspect_ratio_width,
            aspect_ratio_height=self.aspect_ratio_height,
        )

    def locator(self) -> SourceLocator:
        return SourceLocator(bucket=self.bucket, key=self.key)

    def prepare_zoom(self) -> int:
        """Zoom used when pre-rendering: two levels out from the map's default view."""

        if self.default_zoom:
            return max(0, self.default_zoom - 2)
        return DEFAULT_PREPARE_ZOOM
