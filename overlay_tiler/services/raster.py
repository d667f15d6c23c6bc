"""Pillow-backed raster primitives used by the tile compositor."""

from __future__ import annotations

import io
from enum import Enum
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from .crop import CropPlan
from .errors import DecodeFailureError


Color = Tuple[int, int, int, int]

FILL_COLOR: Color = (63, 120, 106, 255)
BLANK_COLOR: Color = (0, 0, 0, 0)
RASTER_MODE = "RGBA"


class TileEncoding(str, Enum):
    """Output formats supported for rendered tiles."""

    WEBP = "webp"
    PNG = "png"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return f".{self.value}"


def decode(content: bytes) -> Image.Image:
    if not content:
        raise DecodeFailureError("source image is empty")
    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise DecodeFailureError(f"unable to decode source image: {exc}") from exc
    return image.convert(RASTER_MODE)


def rotate(image: Image.Image, degrees: float, fill: Color = FILL_COLOR) -> Image.Image:
    """Rotate clockwise by ``degrees``, growing the canvas to fit the result.

    Corners uncovered by the rotation are painted with ``fill``.
    """

    return image.rotate(-degrees, resample=Image.BICUBIC, expand=True, fillcolor=fill)


def crop(image: Image.Image, box: Tuple[int, int, int, int]) -> Image.Image:
    """Crop ``box`` clamped to the raster, allowing an empty result."""

    left, top, right, bottom = box
    left = max(0, min(left, image.width))
    top = max(0, min(top, image.height))
    right = max(left, min(right, image.width))
    bottom = max(top, min(bottom, image.height))
    if right == left or bottom == top:
        return Image.new(image.mode, (right - left, bottom - top))
    return image.crop((left, top, right, bottom))


def extend(image: Image.Image, plan: CropPlan, fill: Color = FILL_COLOR) -> Image.Image:
    """Surround ``image`` with the padding requested by ``plan``."""

    width = max(1, image.width + plan.left_pad + plan.right_pad)
    height = max(1, image.height + plan.top_pad + plan.bottom_pad)
    canvas = Image.new(RASTER_MODE, (width, height), fill)
    if image.width and image.height:
        canvas.paste(image.convert(RASTER_MODE), (plan.left_pad, plan.top_pad))
    return canvas


def resize_fill(image: Image.Image, width: int, height: int) -> Image.Image:
    """Stretch ``image`` to exactly ``width`` x ``height`` ignoring its aspect ratio."""

    if image.size == (width, height):
        return image
    return image.resize((width, height), Image.LANCZOS)


def placeholder(dimension: int, fill: Color = FILL_COLOR) -> Image.Image:
    return Image.new(RASTER_MODE, (dimension, dimension), fill)


def encode(image: Image.Image, encoding: TileEncoding = TileEncoding.WEBP) -> bytes:
    buffer = io.BytesIO()
    if encoding == TileEncoding.WEBP:
        image.save(buffer, format="WEBP", lossless=True, quality=80)
    elif encoding == TileEncoding.PNG:
        image.save(buffer, format="PNG", optimize=False)
    else:  # pragma: no cover - exhaustive over TileEncoding
        raise ValueError(f"Unsupported tile encoding: {encoding}")
    return buffer.getvalue()
