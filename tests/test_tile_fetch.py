"""Tests for the tile fetcher and its transports."""

import io

import httpx
import pytest
import requests
import requests.adapters
from PIL import Image

from marble_tools.errors import TileFetchError, ValidationError
from marble_tools.tile_fetch import (
    HttpxTileTransport,
    ImageDecodeTransport,
    TileFetcher,
    TransportError,
    encode_png,
    open_tile_fetcher,
)

BASE = "https://tiles.example/files/s0/tiles"


def _png(color=(10, 20, 30, 255), size=(4, 4)):
    return encode_png(Image.new("RGBA", size, color))


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_tile_url_format():
    fetcher = TileFetcher(BASE + "/", primary=None)
    assert fetcher.tile_url(12, 345) == f"{BASE}/12/345.png"


@pytest.mark.parametrize("base", [None, "", "   "])
def test_missing_base_is_validation_error(base):
    with pytest.raises(ValidationError, match="Tile server not detected"):
        TileFetcher(base, primary=None)


@pytest.mark.asyncio
async def test_primary_transport_success(fake_transport_factory):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, content=_png())

    fallback = fake_transport_factory(error=TransportError("unused"))
    async with _client(handler) as client:
        fetcher = TileFetcher(BASE, HttpxTileTransport(client), fallback)
        tile = await fetcher.fetch_tile(1, 2)

    assert requested == [f"{BASE}/1/2.png"]
    assert fallback.urls == []
    assert tile.mode == "RGBA"
    assert tile.getpixel((0, 0)) == (10, 20, 30, 255)


@pytest.mark.asyncio
async def test_fallback_used_on_http_error(fake_transport_factory):
    url = f"{BASE}/0/0.png"
    fallback = fake_transport_factory(responses={url: _png((1, 2, 3, 255))})

    async with _client(lambda request: httpx.Response(503)) as client:
        fetcher = TileFetcher(BASE, HttpxTileTransport(client), fallback)
        tile = await fetcher.fetch_tile(0, 0)

    assert fallback.urls == [url]
    assert tile.getpixel((3, 3)) == (1, 2, 3, 255)


@pytest.mark.asyncio
async def test_fallback_used_on_connection_error(fake_transport_factory):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    url = f"{BASE}/5/6.png"
    fallback = fake_transport_factory(responses={url: _png()})
    async with _client(handler) as client:
        fetcher = TileFetcher(BASE, HttpxTileTransport(client), fallback)
        await fetcher.fetch_tile(5, 6)

    assert fallback.urls == [url]


@pytest.mark.asyncio
async def test_corrupt_primary_bytes_fall_back(fake_transport_factory):
    primary = fake_transport_factory(responses={f"{BASE}/0/0.png": b"not a png"})
    fallback = fake_transport_factory(responses={f"{BASE}/0/0.png": _png()})
    fetcher = TileFetcher(BASE, primary, fallback)

    tile = await fetcher.fetch_tile(0, 0)

    assert tile.size == (4, 4)
    assert len(fallback.urls) == 1


@pytest.mark.asyncio
async def test_both_transports_fail_names_tile(fake_transport_factory):
    primary = fake_transport_factory(error=TransportError("HTTP 404"))
    fallback = fake_transport_factory(error=TransportError("decode failed"))
    fetcher = TileFetcher(BASE, primary, fallback)

    with pytest.raises(TileFetchError) as excinfo:
        await fetcher.fetch_tile(7, 8)

    assert (excinfo.value.tile_x, excinfo.value.tile_y) == (7, 8)
    assert "7,8" in str(excinfo.value)


@pytest.mark.asyncio
async def test_corrupt_bytes_on_both_paths(fake_transport_factory):
    url = f"{BASE}/0/0.png"
    primary = fake_transport_factory(responses={url: b"garbage"})
    fallback = fake_transport_factory(responses={url: b"more garbage"})
    fetcher = TileFetcher(BASE, primary, fallback)

    with pytest.raises(TileFetchError):
        await fetcher.fetch_tile(0, 0)


@pytest.mark.asyncio
async def test_no_fallback_configured(fake_transport_factory):
    fetcher = TileFetcher(BASE, fake_transport_factory(error=TransportError("down")))

    with pytest.raises(TileFetchError):
        await fetcher.fetch_tile(1, 1)


class StubAdapter(requests.adapters.BaseAdapter):
    """Answers ``requests`` calls from a URL -> (status, body) table."""

    def __init__(self, routes):
        super().__init__()
        self.routes = routes
        self.urls = []

    def send(self, request, **kwargs):
        self.urls.append(request.url)
        status, body = self.routes.get(request.url, (404, b""))
        response = requests.Response()
        response.status_code = status
        response.reason = "OK" if status < 400 else "Not Found"
        response.raw = io.BytesIO(body)
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


def _stub_session(routes):
    session = requests.Session()
    adapter = StubAdapter(routes)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session, adapter


def _bmp(color, size=(3, 2)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="BMP")
    return buffer.getvalue()


@pytest.mark.asyncio
async def test_image_decode_fallback_reencodes_png():
    url = f"{BASE}/4/2.png"
    session, adapter = _stub_session({url: (200, _bmp((9, 8, 7)))})

    async with _client(lambda request: httpx.Response(502)) as client:
        fetcher = TileFetcher(BASE, HttpxTileTransport(client), ImageDecodeTransport(session))
        tile = await fetcher.fetch_tile(4, 2)

    assert adapter.urls == [url]
    assert tile.mode == "RGBA"
    assert tile.size == (3, 2)
    assert tile.getpixel((2, 1)) == (9, 8, 7, 255)


@pytest.mark.asyncio
async def test_image_decode_transport_returns_png_bytes():
    url = f"{BASE}/0/0.png"
    session, _ = _stub_session({url: (200, _bmp((1, 1, 1)))})

    data = await ImageDecodeTransport(session).fetch(url)

    assert data.startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_image_decode_fallback_not_found():
    session, adapter = _stub_session({})

    async with _client(lambda request: httpx.Response(404)) as client:
        fetcher = TileFetcher(BASE, HttpxTileTransport(client), ImageDecodeTransport(session))
        with pytest.raises(TileFetchError) as excinfo:
            await fetcher.fetch_tile(3, 9)

    assert adapter.urls == [f"{BASE}/3/9.png"]
    assert str(excinfo.value) == "Failed to load tile 3,9"


@pytest.mark.asyncio
async def test_malformed_base_becomes_tile_fetch_error():
    session, _ = _stub_session({})

    async with _client(lambda request: httpx.Response(200, content=_png())) as client:
        fetcher = TileFetcher("http://[::1", HttpxTileTransport(client), ImageDecodeTransport(session))
        with pytest.raises(TileFetchError) as excinfo:
            await fetcher.fetch_tile(0, 0)

    assert (excinfo.value.tile_x, excinfo.value.tile_y) == (0, 0)


@pytest.mark.asyncio
async def test_invalid_url_is_a_transport_error():
    async with _client(lambda request: httpx.Response(200, content=_png())) as client:
        with pytest.raises(TransportError):
            await HttpxTileTransport(client).fetch("http://[::1/0/0.png")


@pytest.mark.asyncio
async def test_unexpected_primary_exception_uses_fallback(fake_transport_factory):
    url = f"{BASE}/2/2.png"
    primary = fake_transport_factory(error=ValueError("unexpected"))
    fallback = fake_transport_factory(responses={url: _png((5, 5, 5, 255))})
    fetcher = TileFetcher(BASE, primary, fallback)

    tile = await fetcher.fetch_tile(2, 2)

    assert fallback.urls == [url]
    assert tile.getpixel((0, 0)) == (5, 5, 5, 255)


@pytest.mark.asyncio
async def test_open_tile_fetcher_wires_default_transports():
    async with open_tile_fetcher(BASE + "/", timeout=3.0) as fetcher:
        assert fetcher.base == BASE
        assert isinstance(fetcher._primary, HttpxTileTransport)
        assert isinstance(fetcher._fallback, ImageDecodeTransport)
        assert fetcher._fallback._timeout == 3.0


@pytest.mark.asyncio
async def test_open_tile_fetcher_requires_base():
    with pytest.raises(ValidationError):
        async with open_tile_fetcher(""):
            pass
