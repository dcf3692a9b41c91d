"""Pull template coordinates and images out of gallery pages."""
from __future__ import annotations

import base64
import binascii
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple
from urllib.parse import parse_qs, unquote_to_bytes, urljoin, urlparse

import httpx

from .errors import MarbleError


logger = logging.getLogger(__name__)

Coords = Tuple[int, int, int, int]

_COORD_PATTERNS = [
    re.compile(r'data-coords\s*=\s*"(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)"', re.IGNORECASE),
    re.compile(r'"coords"\s*:\s*\[(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\]', re.IGNORECASE),
    re.compile(
        r"Tl\s*X\s*[:=]\s*(\d+).*?Tl\s*Y\s*[:=]\s*(\d+).*?Px\s*X\s*[:=]\s*(\d+).*?Px\s*Y\s*[:=]\s*(\d+)",
        re.IGNORECASE | re.DOTALL,
    ),
]
_OG_IMAGE = re.compile(r"""<meta[^>]*property=["']og:image["'][^>]*content=["']([^"']+)["'][^>]*>""", re.IGNORECASE)
_TEMPLATE_IMG = re.compile(
    r"""<img[^>]*src=["']([^"']+)["'][^>]*class=["'][^"']*template[^"']*["'][^>]*>""", re.IGNORECASE
)
_COORDS_TEXT = re.compile(r"(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)")


class GalleryError(MarbleError):
    default_message = "Failed to import from gallery URL."


@dataclass(slots=True)
class GalleryImport:
    page_url: str
    coords: Coords | None
    image_url: str | None
    image: bytes | None


def parse_gallery_coords(html: str) -> Coords | None:
    for pattern in _COORD_PATTERNS:
        match = pattern.search(html)
        if match:
            tx, ty, px, py = (int(group) for group in match.groups())
            return tx, ty, px, py
    return None


def find_gallery_image_url(html: str, page_url: str) -> str | None:
    match = _OG_IMAGE.search(html) or _TEMPLATE_IMG.search(html)
    if not match:
        return None
    return urljoin(page_url, match.group(1))


def parse_coords_text(text: str) -> Coords | None:
    match = _COORDS_TEXT.search(text or "")
    if not match:
        return None
    tx, ty, px, py = (int(group) for group in match.groups())
    return tx, ty, px, py


def coords_from_url(url: str) -> Coords | None:
    """Read a ``?coords=tx,ty,px,py`` query parameter."""

    values = parse_qs(urlparse(url).query).get("coords")
    if not values:
        return None
    parts: List[float] = []
    for raw in values[0].split(","):
        try:
            parts.append(float(raw))
        except ValueError:
            return None
    if len(parts) != 4 or not all(math.isfinite(p) for p in parts):
        return None
    tx, ty, px, py = (int(p) for p in parts)
    return tx, ty, px, py


async def fetch_gallery(url: str, client: httpx.AsyncClient, *, load_image: bool = True) -> GalleryImport:
    """Download a gallery page and, when advertised, its template image."""

    try:
        response = await client.get(url)
        response.raise_for_status()
        html = response.text
        image_url = find_gallery_image_url(html, str(response.url))
        image = None
        if load_image and image_url:
            image_response = await client.get(image_url)
            image_response.raise_for_status()
            image = image_response.content
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise GalleryError() from exc
    return GalleryImport(
        page_url=url,
        coords=parse_gallery_coords(html) or coords_from_url(url),
        image_url=image_url,
        image=image,
    )


GALLERY_MESSAGE_MARKERS = (
    ("type", "gallery-import"),
    ("bmEvent", "gallery-import"),
    ("source", "snupai-gallery"),
)


def is_gallery_message(payload: Mapping[str, Any]) -> bool:
    return any(payload.get(field) == value for field, value in GALLERY_MESSAGE_MARKERS)


def _coords_from_list(values: Any) -> Coords | None:
    if not isinstance(values, (list, tuple)) or len(values) < 4:
        return None
    parts: List[int] = []
    for raw in values[:4]:
        if isinstance(raw, bool):
            return None
        try:
            number = float(raw)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number):
            return None
        parts.append(int(number))
    tx, ty, px, py = parts
    return tx, ty, px, py


def decode_data_url(url: str) -> bytes:
    """Return the payload of a ``data:`` URL (base64 or percent-encoded)."""

    header, sep, data = url.partition(",")
    if not sep or not header.lower().startswith("data:"):
        raise GalleryError("Image data is not a data: URL.")
    if header.lower().endswith(";base64"):
        try:
            return base64.b64decode(data)
        except binascii.Error as exc:
            raise GalleryError("Image data is not valid base64.") from exc
    return unquote_to_bytes(data)


async def load_image_source(source: str, client: httpx.AsyncClient) -> bytes:
    if source.lower().startswith("data:"):
        return decode_data_url(source)
    try:
        response = await client.get(source)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise GalleryError("Failed to load image from gallery.") from exc
    return response.content


async def import_gallery_message(
    payload: Mapping[str, Any], client: httpx.AsyncClient, *, load_image: bool = True
) -> GalleryImport | None:
    """Read coordinates and an image from a gallery import message.

    Coordinates come from ``coords``, then ``coordsText``, then the
    ``?coords=`` parameter of ``url``. The image source is ``imageData``,
    ``imageUrl`` or ``url``, in that order. Returns ``None`` when the payload
    is not a gallery import message.
    """

    if not is_gallery_message(payload):
        logger.debug("Ignoring message without a gallery marker: %s", sorted(payload))
        return None
    url = payload.get("url") if isinstance(payload.get("url"), str) else None
    coords = _coords_from_list(payload.get("coords"))
    if coords is None and isinstance(payload.get("coordsText"), str):
        coords = parse_coords_text(payload["coordsText"])
    if coords is None and url:
        coords = coords_from_url(url)

    image_source = None
    for field in ("imageData", "imageUrl", "url"):
        value = payload.get(field)
        if isinstance(value, str) and value:
            image_source = value
            break
    image = None
    if load_image and image_source:
        image = await load_image_source(image_source, client)
    logger.debug("Gallery message coords=%s image=%s bytes", coords, len(image) if image else 0)
    return GalleryImport(
        page_url=url or "",
        coords=coords,
        image_url=None if image_source is None or image_source.lower().startswith("data:") else image_source,
        image=image,
    )
