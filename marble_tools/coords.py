"""Tile/pixel addressing for the world canvas.

Every conversion here is integer arithmetic. Tiles are addressed by
``(tile_x, tile_y)`` and pixels inside a tile by ``(pixel_x, pixel_y)``; the
union of all tiles forms one global pixel grid.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

from .errors import ValidationError

DEFAULT_TILE_SIZE = 1000

TileCoord = Tuple[int, int]
TilePixel = Tuple[int, int, int, int]


def to_global(tile: int, pixel: int, tile_size: int) -> int:
    return tile * tile_size + pixel


def tile_of(global_: int, tile_size: int) -> int:
    return global_ // tile_size


def split_global(global_: int, tile_size: int) -> Tuple[int, int]:
    """Return ``(tile, pixel)`` for a global coordinate."""

    return divmod(global_, tile_size)


def ensure_tile_size(tile_size: object) -> int:
    if isinstance(tile_size, bool) or not isinstance(tile_size, int) or tile_size <= 0:
        raise ValidationError(f"Tile size must be a positive integer, got {tile_size!r}")
    return tile_size


@dataclass(frozen=True, slots=True)
class GlobalPoint:
    x: int
    y: int

    @classmethod
    def from_tile_pixel(
        cls, tile_x: int, tile_y: int, pixel_x: int, pixel_y: int, tile_size: int
    ) -> "GlobalPoint":
        return cls(
            x=to_global(tile_x, pixel_x, tile_size),
            y=to_global(tile_y, pixel_y, tile_size),
        )

    def to_tile_pixel(self, tile_size: int) -> TilePixel:
        tile_x, pixel_x = split_global(self.x, tile_size)
        tile_y, pixel_y = split_global(self.y, tile_size)
        return tile_x, tile_y, pixel_x, pixel_y


@dataclass(frozen=True, slots=True)
class TileSpan:
    """Inclusive rectangle of tile indices."""

    start_x: int
    start_y: int
    end_x: int
    end_y: int

    @property
    def columns(self) -> int:
        return self.end_x - self.start_x + 1

    @property
    def rows(self) -> int:
        return self.end_y - self.start_y + 1

    @property
    def count(self) -> int:
        return self.columns * self.rows

    def __iter__(self) -> Iterator[TileCoord]:
        # row-major: top row left to right, then the next row
        for tile_y in range(self.start_y, self.end_y + 1):
            for tile_x in range(self.start_x, self.end_x + 1):
                yield tile_x, tile_y


@dataclass(frozen=True, slots=True)
class AreaSelection:
    """Two corners of a capture region, in any order."""

    first: GlobalPoint
    second: GlobalPoint

    @property
    def min_x(self) -> int:
        return min(self.first.x, self.second.x)

    @property
    def min_y(self) -> int:
        return min(self.first.y, self.second.y)

    @property
    def max_x(self) -> int:
        return max(self.first.x, self.second.x)

    @property
    def max_y(self) -> int:
        return max(self.first.y, self.second.y)

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def tile_span(self, tile_size: int) -> TileSpan:
        return TileSpan(
            start_x=tile_of(self.min_x, tile_size),
            start_y=tile_of(self.min_y, tile_size),
            end_x=tile_of(self.max_x, tile_size),
            end_y=tile_of(self.max_y, tile_size),
        )


def _coerce_coordinate(value: object) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError()
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError()
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError() from None
    if not math.isfinite(number) or not number.is_integer():
        raise ValidationError()
    return int(number)


def parse_tile_pixel(values: Sequence[object], tile_size: int) -> TilePixel:
    """Validate one ``(tile_x, tile_y, pixel_x, pixel_y)`` quadruple."""

    if len(values) != 4:
        raise ValidationError()
    tile_x, tile_y, pixel_x, pixel_y = (_coerce_coordinate(v) for v in values)
    if tile_x < 0 or tile_y < 0:
        raise ValidationError("Tile coordinates cannot be negative")
    if not (0 <= pixel_x < tile_size and 0 <= pixel_y < tile_size):
        raise ValidationError(f"Pixel coordinates must be between 0 and {tile_size - 1}")
    return tile_x, tile_y, pixel_x, pixel_y


def selection_from_values(values: Sequence[object], tile_size: int) -> AreaSelection:
    """Build a selection from the raw ``tx1 ty1 px1 py1 tx2 ty2 px2 py2`` fields.

    Raw values come straight from input fields, so blanks, ``None`` and NaN
    are expected and rejected with :class:`ValidationError`.
    """

    tile_size = ensure_tile_size(tile_size)
    if len(values) != 8:
        raise ValidationError()
    # every field is checked before any range error so blank fields win
    for value in values:
        _coerce_coordinate(value)
    first = parse_tile_pixel(values[:4], tile_size)
    second = parse_tile_pixel(values[4:], tile_size)
    return AreaSelection(
        first=GlobalPoint.from_tile_pixel(*first, tile_size),
        second=GlobalPoint.from_tile_pixel(*second, tile_size),
    )
