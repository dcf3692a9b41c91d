"""Remote tile loading with a primary and a fallback transport."""
from __future__ import annotations

import asyncio
import io
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

import httpx
import requests
from PIL import Image, UnidentifiedImageError

from .errors import TileFetchError, ValidationError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class TransportError(RuntimeError):
    """Raised by a transport when it cannot produce usable image bytes."""


class TileTransport(Protocol):
    async def fetch(self, url: str) -> bytes:
        ...


class HttpxTileTransport:
    """Direct binary GET through a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch(self, url: str) -> bytes:
        try:
            response = await self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        if not response.is_success:
            raise TransportError(f"GET {url} returned HTTP {response.status_code}")
        if not response.content:
            raise TransportError(f"GET {url} returned an empty body")
        return response.content


class ImageDecodeTransport:
    """Load the URL as an image and re-encode it to PNG.

    The blocking ``requests`` call runs in a worker thread so the event loop
    keeps servicing other callbacks while it waits.
    """

    def __init__(self, session: requests.Session | None = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def _load(self, url: str) -> bytes:
        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(f"image load {url} failed: {exc}") from exc
        try:
            with Image.open(io.BytesIO(response.content)) as img:
                decoded = img.convert("RGBA")
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise TransportError(f"image decode {url} failed: {exc}") from exc
        return encode_png(decoded)

    async def fetch(self, url: str) -> bytes:
        return await asyncio.to_thread(self._load, url)


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def decode_tile(data: bytes) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise TransportError(f"tile bytes are not a readable image: {exc}") from exc


def normalize_base(tile_server_base: str | None) -> str:
    base = (tile_server_base or "").strip().rstrip("/")
    if not base:
        raise ValidationError("Tile server not detected yet; open the board to load tiles.")
    return base


class TileFetcher:
    """Fetch and decode tiles, falling back to a second transport on failure."""

    def __init__(
        self,
        tile_server_base: str | None,
        primary: TileTransport,
        fallback: TileTransport | None = None,
    ) -> None:
        self.base = normalize_base(tile_server_base)
        self._primary = primary
        self._fallback = fallback

    def tile_url(self, tile_x: int, tile_y: int) -> str:
        return f"{self.base}/{tile_x}/{tile_y}.png"

    @staticmethod
    async def _load(transport: TileTransport, url: str) -> Image.Image:
        try:
            data = await transport.fetch(url)
        except TransportError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise TransportError(f"{type(exc).__name__} while loading {url}: {exc}") from exc
        return decode_tile(data)

    async def fetch_tile(self, tile_x: int, tile_y: int) -> Image.Image:
        url = self.tile_url(tile_x, tile_y)
        try:
            return await self._load(self._primary, url)
        except TransportError as exc:
            if self._fallback is None:
                logger.warning("Tile %s,%s failed with no fallback: %s", tile_x, tile_y, exc)
                raise TileFetchError(tile_x, tile_y) from exc
            logger.debug("Primary transport failed for %s, trying fallback: %s", url, exc)
        try:
            return await self._load(self._fallback, url)
        except TransportError as exc:
            logger.warning("Tile %s,%s failed on both transports: %s", tile_x, tile_y, exc)
            raise TileFetchError(tile_x, tile_y) from exc


@asynccontextmanager
async def open_tile_fetcher(
    tile_server_base: str | None, timeout: float = DEFAULT_TIMEOUT
) -> AsyncIterator[TileFetcher]:
    """Yield a fetcher wired to the default transports and close them afterwards."""

    base = normalize_base(tile_server_base)
    session = requests.Session()
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            yield TileFetcher(
                base,
                primary=HttpxTileTransport(client),
                fallback=ImageDecodeTransport(session, timeout=timeout),
            )
    finally:
        session.close()
