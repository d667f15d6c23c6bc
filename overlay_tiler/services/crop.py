"""Crop planning against the bounding box of a rotated overlay raster.

The planner never looks at pixels. It predicts the size of the rotated raster
analytically and maps the requested tile's unit square, expressed relative to
the footprint bounding box, onto that raster.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from .footprint import TileBounds

Size = Tuple[float, float]


@dataclass(frozen=True)
class CropPlan:
    """Pixel rectangle to extract from the rotated raster plus background padding."""

    left: int
    top: int
    right: int
    bottom: int
    left_pad: int = 0
    top_pad: int = 0
    right_pad: int = 0
    bottom_pad: int = 0

    @property
    def crop_box(self) -> Tuple[int, int, int, int]:
        return self.left, self.top, self.right, self.bottom

    @property
    def crop_width(self) -> int:
        return max(0, self.right - self.left)

    @property
    def crop_height(self) -> int:
        return max(0, self.bottom - self.top)

    @property
    def needs_padding(self) -> bool:
        return any(pad > 0 for pad in (self.left_pad, self.top_pad, self.right_pad, self.bottom_pad))

    @property
    def padded_size(self) -> Tuple[int, int]:
        return (
            self.crop_width + self.left_pad + self.right_pad,
            self.crop_height + self.top_pad + self.bottom_pad,
        )


def _round_half_up(value: float) -> int:
    # Halves round towards positive infinity.
    return int(math.floor(value + 0.5))


def image_size_after_rotation(size: Size, degrees: float) -> Size:
    """Bounding size of a ``size`` rectangle rotated by ``degrees``.

    Rotations are periodic over 180 degrees and a rotation of ``90 + t`` has
    the same bounding box as the transposed rectangle rotated by ``t``.
    """

    width, height = size
    degrees = math.fmod(degrees, 180.0)
    if degrees < 0:
        degrees += 180.0
    if degrees >= 90:
        width, height = height, width
        degrees -= 90
    if degrees == 0:
        return width, height

    radians = math.radians(degrees)
    rotated_width = width * math.cos(radians) + height * math.sin(radians)
    rotated_height = width * math.sin(radians) + height * math.cos(radians)
    return rotated_width, rotated_height


def plan_crop(bounds: TileBounds, x: int, y: int, rotated_size: Size) -> CropPlan:
    """Plan the crop of tile ``(x, y)`` out of a raster of ``rotated_size``.

    ``bounds`` must be the footprint bounding box at the tile's zoom level.
    Padding is reported in the same pixel scale as the crop so the padded
    result keeps the raster's resolution until the final resize.
    """

    rotated_width, rotated_height = rotated_size
    width_in_tiles = bounds.width
    height_in_tiles = bounds.height

    left = _round_half_up(max(0.0, (x - bounds.min_x) / width_in_tiles) * rotated_width)
    top = _round_half_up(max(0.0, (y - bounds.min_y) / height_in_tiles) * rotated_height)
    right = _round_half_up(
        min(rotated_width, (x + 1 - bounds.min_x) / width_in_tiles * rotated_width)
    )
    bottom = _round_half_up(
        min(rotated_height, (y + 1 - bounds.min_y) / height_in_tiles * rotated_height)
    )

    left_pad = _round_half_up(max(0.0, (bounds.min_x - x) / width_in_tiles * rotated_width))
    top_pad = _round_half_up(max(0.0, (bounds.min_y - y) / height_in_tiles * rotated_height))
    right_pad = _round_half_up(max(0.0, (x + 1 - bounds.max_x) / width_in_tiles * rotated_width))
    bottom_pad = _round_half_up(
        max(0.0, (y + 1 - bounds.max_y) / height_in_tiles * rotated_height)
    )

    return CropPlan(
        left=left,
        top=top,
        right=right,
        bottom=bottom,
        left_pad=left_pad,
        top_pad=top_pad,
        right_pad=right_pad,
        bottom_pad=bottom_pad,
    )


def _output_span(pad_before: int, length: int, pad_after: int, dimension: int) -> Tuple[int, int]:
    total = pad_before + length + pad_after
    if total <= 0:
        return 0, 0
    scale = dimension / total
    start = _round_half_up(pad_before * scale)
    end = _round_half_up((pad_before + length) * scale)
    return start, min(end, dimension)


def fit_to_output(plan: CropPlan, crop_size: Tuple[int, int], dimension: int) -> CropPlan:
    """Rescale a padded crop into a ``dimension`` x ``dimension`` output tile.

    ``crop_size`` is the size of the raster actually cut out for ``plan``.
    The returned plan describes the resized crop (``crop_width`` x
    ``crop_height``) and its padding in output pixels; the padded size is
    always exactly ``dimension`` on both axes.
    """

    crop_width, crop_height = crop_size
    x0, x1 = _output_span(plan.left_pad, crop_width, plan.right_pad, dimension)
    y0, y1 = _output_span(plan.top_pad, crop_height, plan.bottom_pad, dimension)
    if x1 <= x0 or y1 <= y0:
        return CropPlan(left=0, top=0, right=0, bottom=0, right_pad=dimension, bottom_pad=dimension)
    return CropPlan(
        left=0,
        top=0,
        right=x1 - x0,
        bottom=y1 - y0,
        left_pad=x0,
        top_pad=y0,
        right_pad=dimension - x1,
        bottom_pad=dimension - y1,
    )
