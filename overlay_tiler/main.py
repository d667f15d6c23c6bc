from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Annotated, Dict, List, NoReturn, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlmodel import Session

from .database import get_session, init_db
from .models import OverlayMap
from .services.errors import (
    DecodeFailureError,
    InvalidGeometryError,
    SourceAccessDeniedError,
    SourceNotFoundError,
    SourceTransientError,
    TilerError,
)
from .services.footprint import OverlayDescriptor, build_footprint, covering_tiles
from .services.projection import MAX_ZOOM, GeoPoint, TileCoord
from .services.storage import ImageStore, SourceLocator, default_image_store
from .services.tiler import DEFAULT_OUTPUT_DIMENSION, RenderedTile, TileRequest, resolve_tile

app = FastAPI(title="Overlay Tiler", version="0.1.0")

logger = logging.getLogger(__name__)


class TilerParams(BaseModel):
    """Tile parameters as encoded by map clients inside an image request."""

    model_config = ConfigDict(populate_by_name=True)

    top_left_lat: float = Field(alias="topLeftLat")
    top_left_lon: float = Field(alias="topLeftLong")
    width_meters: float = Field(alias="overlayWidthInMeters")
    rotation_degrees: float = Field(default=0.0, alias="rotationDegrees")
    x: int
    y: int
    zoom: int = Field(ge=0, le=MAX_ZOOM)
    aspect_ratio_width: float = Field(default=1.0, alias="aspectRatioWidth")
    aspect_ratio_height: float = Field(default=1.0, alias="aspectRatioHeight")
    output_dimension: Optional[int] = Field(default=None, alias="outputDimension")

    def descriptor(self) -> OverlayDescriptor:
        return OverlayDescriptor(
            anchor=GeoPoint(lat=self.top_left_lat, lon=self.top_left_lon),
            width_meters=self.width_meters,
            rotation_degrees=self.rotation_degrees,
            aspect_ratio_width=self.aspect_ratio_width,
            aspect_ratio_height=self.aspect_ratio_height,
        )


class ImageRequestPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bucket: str
    key: str
    tiler_params: TilerParams = Field(alias="tilerParams")

    def tile_request(self) -> TileRequest:
        params = self.tiler_params
        return TileRequest(
            overlay=params.descriptor(),
            tile=TileCoord(zoom=params.zoom, x=params.x, y=params.y),
            locator=SourceLocator(bucket=self.bucket, key=self.key),
            output_dimension=params.output_dimension or DEFAULT_OUTPUT_DIMENSION,
        )


class OverlayMapPayload(BaseModel):
    id: str
    bucket: str
    key: str
    top_left_lat: float
    top_left_lon: float
    width_meters: float
    rotation_degrees: float = 0.0
    aspect_ratio_width: float = 1.0
    aspect_ratio_height: float = 1.0
    default_zoom: Optional[int] = None


def get_image_store() -> ImageStore:
    return default_image_store()


@app.on_event("startup")
def on_startup() -> None:
    init_db()


def _raise_http_error(exc: TilerError) -> NoReturn:
    if isinstance(exc, InvalidGeometryError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, SourceNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, SourceAccessDeniedError):
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    if isinstance(exc, DecodeFailureError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, SourceTransientError):
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc


def _tile_response(tile: RenderedTile) -> Response:
    return Response(content=tile.content, media_type=tile.content_type)


def _get_map(session: Session, map_id: str) -> OverlayMap:
    overlay_map = session.get(OverlayMap, map_id)
    if overlay_map is None:
        raise HTTPException(status_code=404, detail=f"Unknown map: {map_id}")
    return overlay_map


def _decode_image_request(encoded: str) -> ImageRequestPayload:
    token = encoded.strip().strip("/")
    padded = token + "=" * (-len(token) % 4)
    try:
        if "-" in token or "_" in token:
            raw = base64.urlsafe_b64decode(padded)
        else:
            raw = base64.b64decode(padded, validate=True)
        payload = json.loads(raw)
        return ImageRequestPayload.model_validate(payload)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Request path is not a valid encoded image request") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid image request: {exc}") from exc


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/maps", status_code=201)
def create_map(payload: OverlayMapPayload, session: Session = Depends(get_session)) -> Dict[str, object]:
    if session.get(OverlayMap, payload.id) is not None:
        raise HTTPException(status_code=409, detail=f"Map {payload.id} already exists")

    overlay_map = OverlayMap(**payload.model_dump())
    try:
        build_footprint(overlay_map.descriptor())
    except InvalidGeometryError as exc:
        _raise_http_error(exc)

    session.add(overlay_map)
    session.commit()
    session.refresh(overlay_map)
    logger.info("Registered overlay map %s (%s/%s)", overlay_map.id, overlay_map.bucket, overlay_map.key)
    return overlay_map.model_dump()


@app.get("/maps/{map_id}")
def read_map(map_id: str, session: Session = Depends(get_session)) -> Dict[str, object]:
    return _get_map(session, map_id).model_dump()


@app.get("/maps/{map_id}/tiles")
def list_map_tiles(
    map_id: str,
    zoom: Optional[int] = Query(None, ge=0, le=24),
    session: Session = Depends(get_session),
) -> Dict[str, object]:
    overlay_map = _get_map(session, map_id)
    resolved_zoom = zoom if zoom is not None else overlay_map.prepare_zoom()
    try:
        tiles = covering_tiles(build_footprint(overlay_map.descriptor()), resolved_zoom)
    except InvalidGeometryError as exc:
        _raise_http_error(exc)

    payload: List[Dict[str, int]] = [{"x": tile.x, "y": tile.y} for tile in tiles]
    return {"map_id": map_id, "zoom": resolved_zoom, "count": len(payload), "tiles": payload}


@app.get("/maps/{map_id}/{zoom}/{x}/{y}")
async def read_map_tile(
    map_id: str,
    zoom: Annotated[int, Path(ge=0, le=MAX_ZOOM)],
    x: int,
    y: int,
    size: int = Query(DEFAULT_OUTPUT_DIMENSION, ge=1, le=4096),
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_image_store),
) -> Response:
    overlay_map = _get_map(session, map_id)
    request = TileRequest(
        overlay=overlay_map.descriptor(),
        tile=TileCoord(zoom=zoom, x=x, y=y),
        locator=overlay_map.locator(),
        output_dimension=size,
    )
    try:
        tile = await resolve_tile(request, store)
    except TilerError as exc:
        _raise_http_error(exc)
    return _tile_response(tile)


@app.get("/{encoded_request:path}")
async def read_encoded_tile(
    encoded_request: str,
    store: ImageStore = Depends(get_image_store),
) -> Response:
    payload = _decode_image_request(encoded_request)
    try:
        tile = await resolve_tile(payload.tile_request(), store)
    except TilerError as exc:
        _raise_http_error(exc)
    return _tile_response(tile)
