"""Tests for tile/pixel coordinate math."""

import math

import pytest

from marble_tools.coords import (
    AreaSelection,
    GlobalPoint,
    TileSpan,
    selection_from_values,
    split_global,
    tile_of,
    to_global,
)
from marble_tools.errors import ValidationError


@pytest.mark.parametrize("tile_size", [1, 7, 256, 1000])
def test_tile_round_trip(tile_size):
    """tile_of(to_global(tile, pixel)) recovers the tile for every in-range pixel."""
    for tile in (0, 1, 5, 123):
        for pixel in {0, 1, tile_size // 2, tile_size - 1}:
            global_ = to_global(tile, pixel, tile_size)
            assert tile_of(global_, tile_size) == tile
            assert split_global(global_, tile_size) == (tile, pixel)


def test_global_point_round_trip():
    point = GlobalPoint.from_tile_pixel(3, 4, 999, 0, 1000)
    assert point == GlobalPoint(3999, 4000)
    assert point.to_tile_pixel(1000) == (3, 4, 999, 0)


def test_single_tile_selection():
    selection = selection_from_values([0, 0, 0, 0, 0, 0, 4, 4], 1000)

    assert (selection.min_x, selection.min_y) == (0, 0)
    assert (selection.max_x, selection.max_y) == (4, 4)
    assert selection.width == 5
    assert selection.height == 5
    assert list(selection.tile_span(1000)) == [(0, 0)]


def test_selection_is_order_independent():
    a = GlobalPoint(1002, 10)
    b = GlobalPoint(998, 3)
    forward = AreaSelection(a, b)
    backward = AreaSelection(b, a)

    assert forward.size == backward.size == (5, 8)
    assert forward.tile_span(1000) == backward.tile_span(1000) == TileSpan(0, 0, 1, 0)


def test_tile_span_crossing_boundary():
    selection = selection_from_values([0, 0, 998, 0, 1, 0, 2, 0], 1000)
    span = selection.tile_span(1000)

    assert (span.start_x, span.end_x) == (0, 1)
    assert list(span) == [(0, 0), (1, 0)]


def test_tile_span_is_row_major():
    span = TileSpan(start_x=2, start_y=5, end_x=3, end_y=6)
    assert list(span) == [(2, 5), (3, 5), (2, 6), (3, 6)]
    assert span.count == 4


def test_numeric_strings_are_accepted():
    selection = selection_from_values(["1", " 2", "3", "4", "1", "2", "5.0", "6"], 10)
    assert selection.first == GlobalPoint(13, 24)
    assert selection.second == GlobalPoint(15, 26)


@pytest.mark.parametrize(
    "bad",
    [math.nan, math.inf, -math.inf, None, "", "abc", 1.5],
)
def test_malformed_values_are_rejected(bad):
    values = [0, 0, 0, 0, 0, 0, 4, 4]
    values[5] = bad
    with pytest.raises(ValidationError, match="malformed"):
        selection_from_values(values, 1000)


def test_pixel_outside_tile_is_rejected():
    with pytest.raises(ValidationError, match="between 0 and 999"):
        selection_from_values([0, 0, 1000, 0, 0, 0, 4, 4], 1000)


def test_negative_tile_is_rejected():
    with pytest.raises(ValidationError):
        selection_from_values([-1, 0, 0, 0, 0, 0, 4, 4], 1000)


def test_wrong_field_count_is_rejected():
    with pytest.raises(ValidationError):
        selection_from_values([0, 0, 0, 0], 1000)


@pytest.mark.parametrize("tile_size", [0, -5, 2.5, True])
def test_invalid_tile_size(tile_size):
    with pytest.raises(ValidationError):
        selection_from_values([0] * 8, tile_size)
