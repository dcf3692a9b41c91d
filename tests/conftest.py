"""Shared fixtures for marble_tools tests."""

import numpy as np
import pytest
from PIL import Image

from marble_tools.errors import TileFetchError
from marble_tools.storage import JsonFileStore


def make_tile(tile_size: int, tile_x: int, tile_y: int) -> Image.Image:
    """Tile whose pixels encode their own local position and tile index."""
    ys, xs = np.mgrid[0:tile_size, 0:tile_size]
    pixels = np.zeros((tile_size, tile_size, 4), dtype=np.uint8)
    pixels[..., 0] = xs % 256
    pixels[..., 1] = ys % 256
    pixels[..., 2] = (tile_x * 16 + tile_y) % 256
    pixels[..., 3] = 255
    return Image.fromarray(pixels)


class FakeFetcher:
    """Serves generated tiles and records every request."""

    def __init__(self, tile_size: int, failing=()):
        self.tile_size = tile_size
        self.failing = set(failing)
        self.calls = []

    async def fetch_tile(self, tile_x, tile_y):
        self.calls.append((tile_x, tile_y))
        if (tile_x, tile_y) in self.failing:
            raise TileFetchError(tile_x, tile_y)
        return make_tile(self.tile_size, tile_x, tile_y)


class FakeTransport:
    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.urls = []

    async def fetch(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.responses[url]


@pytest.fixture
def fake_fetcher_factory():
    return FakeFetcher


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "store.json")


@pytest.fixture
def template_image():
    """4x2 template: two red, one green, one blue, one marker, three clear."""
    image = Image.new("RGBA", (4, 2), (0, 0, 0, 0))
    image.putpixel((0, 0), (255, 0, 0, 255))
    image.putpixel((1, 0), (255, 0, 0, 255))
    image.putpixel((2, 0), (0, 255, 0, 255))
    image.putpixel((3, 0), (0, 0, 255, 255))
    image.putpixel((0, 1), (0xDE, 0xFA, 0xCE, 255))
    return image


@pytest.fixture
def tile_factory():
    return make_tile


@pytest.fixture
def fake_transport_factory():
    return FakeTransport
