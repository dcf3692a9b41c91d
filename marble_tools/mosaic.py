"""Stitch remote tiles into a single PNG covering an arbitrary area."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, Tuple

from PIL import Image

from .coords import AreaSelection, TileSpan, ensure_tile_size
from .tile_fetch import DEFAULT_TIMEOUT, encode_png, normalize_base, open_tile_fetcher


logger = logging.getLogger(__name__)

CAPTURE_PREFIX = "wplace_area"


class SupportsFetchTile(Protocol):
    async def fetch_tile(self, tile_x: int, tile_y: int) -> Image.Image:
        ...


@dataclass(frozen=True, slots=True)
class TileDraw:
    """Source rectangle inside a tile and where it lands in the mosaic."""

    src_x: int
    src_y: int
    dst_x: int
    dst_y: int
    width: int
    height: int

    @property
    def source_box(self) -> Tuple[int, int, int, int]:
        return (self.src_x, self.src_y, self.src_x + self.width, self.src_y + self.height)


@dataclass(slots=True)
class CaptureResult:
    data: bytes
    filename: str
    selection: AreaSelection
    span: TileSpan

    @property
    def size(self) -> Tuple[int, int]:
        return self.selection.size


def plan_tile_draw(
    tile_x: int, tile_y: int, selection: AreaSelection, tile_size: int
) -> TileDraw | None:
    """Intersect one tile's footprint with the selection.

    Returns ``None`` when nothing of the tile is visible.
    """

    origin_x = tile_x * tile_size
    origin_y = tile_y * tile_size
    src_x = max(0, selection.min_x - origin_x)
    src_y = max(0, selection.min_y - origin_y)
    dst_x = max(0, origin_x - selection.min_x)
    dst_y = max(0, origin_y - selection.min_y)
    draw_w = min(tile_size - src_x, selection.width - dst_x)
    draw_h = min(tile_size - src_y, selection.height - dst_y)
    if draw_w <= 0 or draw_h <= 0:
        return None
    return TileDraw(src_x, src_y, dst_x, dst_y, draw_w, draw_h)


def compose_tile(buffer: Image.Image, tile: Image.Image, draw: TileDraw) -> None:
    # crop + paste copies pixels verbatim, no resampling is involved
    region = tile.crop(draw.source_box)
    buffer.paste(region, (draw.dst_x, draw.dst_y))


def _iso_timestamp(now: datetime | None = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def capture_filename(span: TileSpan, now: datetime | None = None) -> str:
    stamp = _iso_timestamp(now).replace(":", "-").replace(".", "-")
    return f"{CAPTURE_PREFIX}_{span.start_x:04d},{span.start_y:04d}_{stamp}.png"


async def assemble_mosaic(
    selection: AreaSelection, tile_size: int, fetcher: SupportsFetchTile
) -> Image.Image:
    """Fetch every covering tile in row-major order and composite them.

    Any fetch failure propagates and the partial buffer is dropped.
    """

    span = selection.tile_span(tile_size)
    buffer = Image.new("RGBA", selection.size, (0, 0, 0, 0))
    logger.debug(
        "assemble_mosaic bbox=(%s,%s)-(%s,%s) size=%sx%s tiles=%s..%s,%s..%s",
        selection.min_x,
        selection.min_y,
        selection.max_x,
        selection.max_y,
        selection.width,
        selection.height,
        span.start_x,
        span.end_x,
        span.start_y,
        span.end_y,
    )
    for tile_x, tile_y in span:
        tile = await fetcher.fetch_tile(tile_x, tile_y)
        if tile.size != (tile_size, tile_size):
            logger.warning(
                "Tile %s,%s is %sx%s, expected %s", tile_x, tile_y, tile.width, tile.height, tile_size
            )
        draw = plan_tile_draw(tile_x, tile_y, selection, tile_size)
        if draw is None:
            logger.debug("Tile %s,%s has no overlap; skipped", tile_x, tile_y)
            continue
        compose_tile(buffer, tile, draw)
    return buffer


async def capture_area(
    selection: AreaSelection,
    tile_size: int,
    tile_server_base: str | None,
    *,
    fetcher: SupportsFetchTile | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    now: datetime | None = None,
) -> CaptureResult:
    """Capture ``selection`` as a PNG.

    Preconditions are checked before any network activity. When ``fetcher``
    is omitted the default httpx/requests transports are opened for the
    duration of the capture.
    """

    tile_size = ensure_tile_size(tile_size)
    base = normalize_base(tile_server_base)
    span = selection.tile_span(tile_size)
    if fetcher is None:
        async with open_tile_fetcher(base, timeout=timeout) as default_fetcher:
            buffer = await assemble_mosaic(selection, tile_size, default_fetcher)
    else:
        buffer = await assemble_mosaic(selection, tile_size, fetcher)
    data = encode_png(buffer)
    logger.info("Captured %sx%s area from %s tile(s)", selection.width, selection.height, span.count)
    return CaptureResult(
        data=data,
        filename=capture_filename(span, now),
        selection=selection,
        span=span,
    )


def save_capture(result: CaptureResult, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / result.filename
    output_path.write_bytes(result.data)
    return output_path
