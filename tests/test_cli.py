from pathlib import Path

from click.testing import CliRunner
from PIL import Image

from overlay_tiler.cli import cli

from .conftest import png_bytes

OVERLAY_ARGS = ["--anchor", "21.334011,-157.866301", "--width", "2800"]


def _write_source(tmp_path: Path) -> Path:
    source = tmp_path / "overlays" / "map.png"
    source.parent.mkdir(parents=True)
    source.write_bytes(png_bytes((512, 512)))
    return source


def test_tiles_lists_covering_tiles():
    result = CliRunner().invoke(cli, ["tiles", *OVERLAY_ARGS, "--zoom", "14"])

    assert result.exit_code == 0, result.output
    lines = result.output.split()
    assert "14/1007/7198" in lines
    assert "14/1006/7197" not in lines


def test_render_writes_tile(tmp_path):
    source = _write_source(tmp_path)
    output = tmp_path / "out" / "tile.png"

    result = CliRunner().invoke(
        cli,
        ["render", str(source), *OVERLAY_ARGS, "--tile", "14/1007/7198",
         "--size", "128", "--format", "png", "-o", str(output)],
    )

    assert result.exit_code == 0, result.output
    assert "Wrote tile 14/1007/7198" in result.output
    with Image.open(output) as image:
        assert image.format == "PNG"
        assert image.size == (128, 128)


def test_render_outside_footprint_writes_placeholder(tmp_path):
    source = _write_source(tmp_path)
    output = tmp_path / "placeholder.webp"

    result = CliRunner().invoke(
        cli, ["render", str(source), *OVERLAY_ARGS, "--tile", "14/1006/7197", "-o", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert "Wrote placeholder" in result.output
    with Image.open(output) as image:
        assert image.size == (256, 256)


def test_prepare_writes_tile_pyramid(tmp_path):
    source = _write_source(tmp_path)
    output = tmp_path / "tiles"

    result = CliRunner().invoke(
        cli,
        ["prepare", str(source), *OVERLAY_ARGS, "--zoom", "13,14",
         "--size", "64", "--format", "png", "-o", str(output)],
    )

    assert result.exit_code == 0, result.output
    assert (output / "14" / "1007" / "7198.png").is_file()
    written = sorted(output.rglob("*.png"))
    assert written
    assert {path.relative_to(output).parts[0] for path in written} == {"13", "14"}
    assert f"Wrote {len(written)} tiles" in result.output


def test_bad_aspect_is_a_usage_error():
    result = CliRunner().invoke(cli, ["tiles", *OVERLAY_ARGS, "--aspect", "wide", "--zoom", "14"])
    assert result.exit_code == 2
    assert "WIDTH:HEIGHT" in result.output


def test_negative_zoom_is_a_usage_error(tmp_path):
    source = _write_source(tmp_path)
    result = CliRunner().invoke(
        cli, ["prepare", str(source), *OVERLAY_ARGS, "--zoom", "14,-1", "-o", str(tmp_path / "t")]
    )
    assert result.exit_code == 2


def test_invalid_geometry_is_reported():
    result = CliRunner().invoke(cli, ["tiles", "--anchor", "21.3,-157.8", "--width", "0", "--zoom", "14"])
    assert result.exit_code == 1
    assert "Error" in result.output
