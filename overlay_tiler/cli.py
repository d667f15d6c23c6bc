"""Command line access to the overlay tiler.

Usage:
    overlay-tiler tiles --anchor 21.334011,-157.866301 --width 2800 --zoom 14
    overlay-tiler render ./source/map.png --anchor LAT,LON --width 2800 --tile 14/1006/7197 -o tile.webp
    overlay-tiler prepare ./source/map.png --anchor LAT,LON --width 2800 --zoom 14,15 -o ./tiles
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Tuple

import click

from .services.errors import TilerError
from .services.footprint import OverlayDescriptor, build_footprint, covering_tiles
from .services.projection import GeoPoint, TileCoord
from .services import raster
from .services.raster import TileEncoding
from .services.storage import LocalImageStore, SourceLocator
from .services.tiler import DEFAULT_OUTPUT_DIMENSION, TileRequest, compose_tile, resolve_tile

overlay_options = [
    click.option("--anchor", required=True, help="Unrotated top-left corner as LAT,LON"),
    click.option("--width", "width_meters", required=True, type=float, help="Overlay width in meters"),
    click.option("--rotation", default=0.0, type=float, help="Clockwise rotation in degrees"),
    click.option("--aspect", default="1:1", help="Aspect ratio as WIDTH:HEIGHT"),
]


def with_overlay_options(func):
    for option in reversed(overlay_options):
        func = option(func)
    return func


def _parse_pair(value: str, separator: str, label: str) -> Tuple[float, float]:
    try:
        first, second = (float(token.strip()) for token in value.split(separator))
    except ValueError as exc:
        raise click.BadParameter(f"expected {label}, got {value!r}") from exc
    return first, second


def _descriptor(anchor: str, width_meters: float, rotation: float, aspect: str) -> OverlayDescriptor:
    lat, lon = _parse_pair(anchor, ",", "LAT,LON")
    aspect_width, aspect_height = _parse_pair(aspect, ":", "WIDTH:HEIGHT")
    return OverlayDescriptor(
        anchor=GeoPoint(lat=lat, lon=lon),
        width_meters=width_meters,
        rotation_degrees=rotation,
        aspect_ratio_width=aspect_width,
        aspect_ratio_height=aspect_height,
    )


def _parse_tile(value: str) -> TileCoord:
    try:
        zoom, x, y = (int(token) for token in value.split("/"))
    except ValueError as exc:
        raise click.BadParameter(f"expected Z/X/Y, got {value!r}") from exc
    return TileCoord(zoom=zoom, x=x, y=y)


def _parse_zooms(value: str) -> List[int]:
    try:
        zooms = [int(token.strip()) for token in value.split(",") if token.strip()]
    except ValueError as exc:
        raise click.BadParameter(f"expected comma-separated zoom levels, got {value!r}") from exc
    if not zooms or any(zoom < 0 for zoom in zooms):
        raise click.BadParameter(f"zoom levels must be non-negative integers, got {value!r}")
    return zooms


def _source_store(source: Path) -> Tuple[LocalImageStore, SourceLocator]:
    source = source.resolve()
    return LocalImageStore(source.parent.parent), SourceLocator(bucket=source.parent.name, key=source.name)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Cut Web-Mercator tiles out of rotated, georeferenced overlay images."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


@cli.command()
@with_overlay_options
@click.option("--zoom", required=True, type=int, help="Zoom level")
def tiles(anchor: str, width_meters: float, rotation: float, aspect: str, zoom: int):
    """List the tiles that touch an overlay at one zoom level."""
    overlay = _descriptor(anchor, width_meters, rotation, aspect)
    try:
        coords = covering_tiles(build_footprint(overlay), zoom)
    except TilerError as exc:
        raise click.ClickException(str(exc)) from exc
    for coord in coords:
        click.echo(f"{coord.zoom}/{coord.x}/{coord.y}")


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@with_overlay_options
@click.option("--tile", "tile_spec", required=True, help="Tile as Z/X/Y")
@click.option("--size", default=DEFAULT_OUTPUT_DIMENSION, type=int, help="Output dimension in pixels")
@click.option("--format", "encoding", type=click.Choice([e.value for e in TileEncoding]),
              default=TileEncoding.WEBP.value, help="Output image format")
@click.option("--output", "-o", required=True, type=click.Path(dir_okay=False, path_type=Path))
def render(source: Path, anchor: str, width_meters: float, rotation: float, aspect: str,
           tile_spec: str, size: int, encoding: str, output: Path):
    """Render a single tile from a local source image."""
    store, locator = _source_store(source)
    request = TileRequest(
        overlay=_descriptor(anchor, width_meters, rotation, aspect),
        tile=_parse_tile(tile_spec),
        locator=locator,
        output_dimension=size,
    )
    try:
        rendered = asyncio.run(resolve_tile(request, store, encoding=TileEncoding(encoding)))
    except TilerError as exc:
        raise click.ClickException(str(exc)) from exc

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(rendered.content)
    state = "placeholder" if rendered.placeholder else "tile"
    click.echo(f"Wrote {state} {tile_spec} ({rendered.content_type}, {len(rendered.content)} bytes) to {output}")


async def _prepare_tiles(
    store: LocalImageStore,
    locator: SourceLocator,
    overlay: OverlayDescriptor,
    zoom_levels: List[int],
    output_dir: Path,
    size: int,
    encoding: TileEncoding,
) -> int:
    footprint = build_footprint(overlay)
    source_image = raster.decode(await store.fetch(locator))
    written = 0
    for zoom in zoom_levels:
        bounds = footprint.bounds(zoom)
        coords = covering_tiles(footprint, zoom)
        click.echo(f"Zoom {zoom}: {len(coords)} tiles")
        for coord in coords:
            request = TileRequest(overlay=overlay, tile=coord, locator=locator, output_dimension=size)
            tile_image = compose_tile(source_image, bounds, request)
            path = output_dir / str(coord.zoom) / str(coord.x) / f"{coord.y}{encoding.extension}"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(raster.encode(tile_image, encoding))
            written += 1
    return written


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@with_overlay_options
@click.option("--zoom", default="14", help="Comma-separated zoom levels")
@click.option("--size", default=DEFAULT_OUTPUT_DIMENSION, type=int, help="Output dimension in pixels")
@click.option("--format", "encoding", type=click.Choice([e.value for e in TileEncoding]),
              default=TileEncoding.WEBP.value, help="Output image format")
@click.option("--output", "-o", default="./tiles", type=click.Path(file_okay=False, path_type=Path))
def prepare(source: Path, anchor: str, width_meters: float, rotation: float, aspect: str,
            zoom: str, size: int, encoding: str, output: Path):
    """Render every tile covering an overlay into OUTPUT/Z/X/Y files."""
    store, locator = _source_store(source)
    overlay = _descriptor(anchor, width_meters, rotation, aspect)
    try:
        written = asyncio.run(_prepare_tiles(
            store, locator, overlay, _parse_zooms(zoom), output, size, TileEncoding(encoding),
        ))
    except TilerError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Wrote {written} tiles to {output}")


def main():
    cli()


if __name__ == "__main__":
    main()
