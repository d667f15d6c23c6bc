import io
from typing import Dict, Tuple

import pytest
from PIL import Image

from overlay_tiler.services.errors import SourceNotFoundError
from overlay_tiler.services.footprint import OverlayDescriptor
from overlay_tiler.services.projection import GeoPoint
from overlay_tiler.services.storage import SourceLocator

HONOLULU = GeoPoint(lat=21.334011, lon=-157.866301)


def png_bytes(size: Tuple[int, int] = (240, 240), color=(200, 40, 40, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def quadrant_png_bytes(size: int = 512) -> bytes:
    """Left half red, right half blue."""
    image = Image.new("RGBA", (size, size), (220, 0, 0, 255))
    image.paste((0, 0, 220, 255), (size // 2, 0, size, size))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class CountingStore:
    """In-memory image store that records every fetch."""

    def __init__(self, images: Dict[SourceLocator, bytes] | None = None) -> None:
        self.images = dict(images or {})
        self.calls: list[SourceLocator] = []

    async def fetch(self, locator: SourceLocator) -> bytes:
        self.calls.append(locator)
        try:
            return self.images[locator]
        except KeyError:
            raise SourceNotFoundError(f"source image {locator} not found", locator=locator) from None


@pytest.fixture
def locator() -> SourceLocator:
    return SourceLocator(bucket="overlays", key="honolulu/map.png")


@pytest.fixture
def store(locator) -> CountingStore:
    return CountingStore({locator: png_bytes()})


@pytest.fixture
def honolulu_overlay() -> OverlayDescriptor:
    return OverlayDescriptor(anchor=HONOLULU, width_meters=2800, rotation_degrees=0)


@pytest.fixture
def rotated_overlay() -> OverlayDescriptor:
    return OverlayDescriptor(anchor=HONOLULU, width_meters=2800, rotation_degrees=136)


@pytest.fixture(autouse=True)
def _clean_tiler_env(monkeypatch):
    for name in (
        "OVERLAY_TILE_FORMAT",
        "OVERLAY_PLACEHOLDER",
        "OVERLAY_SOURCE_DIR",
        "OVERLAY_SOURCE_URL_TEMPLATE",
        "SOURCE_BUCKETS",
        "OVERLAY_REQUEST_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
