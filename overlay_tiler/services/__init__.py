"""Tile resolution services exposed by the ``overlay_tiler.services`` package."""

from .footprint import OverlayDescriptor, build_footprint, covering_tiles
from .projection import GeoPoint, TileCoord
from .storage import HttpImageStore, LocalImageStore, SourceLocator, default_image_store
from .tiler import RenderedTile, TileRequest, render_tile, resolve_tile

__all__ = [
    "GeoPoint",
    "HttpImageStore",
    "LocalImageStore",
    "OverlayDescriptor",
    "RenderedTile",
    "SourceLocator",
    "TileCoord",
    "TileRequest",
    "build_footprint",
    "covering_tiles",
    "default_image_store",
    "render_tile",
    "resolve_tile",
]
