"""Templates anchored on the world canvas and their tile-aligned chunks."""
from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Sequence

import numpy as np
from PIL import Image

from .coords import (
    DEFAULT_TILE_SIZE,
    AreaSelection,
    GlobalPoint,
    TileCoord,
    TilePixel,
    ensure_tile_size,
    parse_tile_pixel,
)
from .errors import RenderRegenerationError
from .palette_ops import (
    TRANSPARENT_RGB,
    ColorKey,
    ColorPalette,
    ColorTuple,
    pack_colors,
    pack_rgb,
    analyze_palette,
)


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TemplateChunk:
    """The part of a filtered template that falls inside one tile."""

    tile: TileCoord
    offset: tuple[int, int]
    image: Image.Image


def _pixel_digest(image: Image.Image) -> str:
    digest = hashlib.sha1()
    digest.update(f"{image.width}x{image.height}".encode("ascii"))
    digest.update(image.tobytes())
    return digest.hexdigest()


class Template:
    def __init__(
        self,
        name: str,
        image: Image.Image,
        coords: Sequence[int],
        tile_size: int = DEFAULT_TILE_SIZE,
        *,
        color_palette: ColorPalette | None = None,
        allowed_colors: Iterable[ColorTuple] | None = None,
        storage_key: str | None = None,
    ) -> None:
        self.tile_size = ensure_tile_size(tile_size)
        self.name = name
        self.image = image.convert("RGBA")
        self.coords: TilePixel = parse_tile_pixel(list(coords), self.tile_size)
        self.allowed_colors = None if allowed_colors is None else list(allowed_colors)
        if color_palette is None:
            color_palette = analyze_palette(self.image, self.allowed_colors)
        self.color_palette = color_palette
        self.storage_key = storage_key or f"{name} {_pixel_digest(self.image)[:12]}"
        self.chunked: Dict[TileCoord, TemplateChunk] | None = None
        self._disabled: frozenset[ColorKey] = self.color_palette.disabled_colors()

    @classmethod
    def open(cls, path: Path, coords: Sequence[int], tile_size: int = DEFAULT_TILE_SIZE, **kwargs) -> "Template":
        with Image.open(path) as img:
            image = img.convert("RGBA")
        return cls(path.stem, image, coords, tile_size, **kwargs)

    @property
    def origin(self) -> GlobalPoint:
        return GlobalPoint.from_tile_pixel(*self.coords, self.tile_size)

    @property
    def bounds(self) -> AreaSelection:
        origin = self.origin
        return AreaSelection(
            first=origin,
            second=GlobalPoint(origin.x + self.image.width - 1, origin.y + self.image.height - 1),
        )

    @property
    def disabled_colors(self) -> frozenset[ColorKey]:
        return self._disabled

    def set_disabled_colors(self, keys: Iterable["ColorKey | str"]) -> None:
        self._disabled = frozenset(ColorKey.parse(key) for key in keys)
        logger.debug("Template %s disabled colors=%s", self.name, sorted(map(str, self._disabled)))

    def _hidden_mask(self, rgba: np.ndarray) -> np.ndarray:
        packed = pack_rgb(rgba[..., :3])
        hidden = np.zeros(packed.shape, dtype=bool)
        rgb_disabled = [key.rgb for key in self._disabled if key.kind == "rgb" and key.rgb is not None]
        if rgb_disabled:
            hidden |= np.isin(packed, pack_colors(rgb_disabled))
        marker = pack_colors([TRANSPARENT_RGB])
        if ColorKey.transparent() in self._disabled:
            hidden |= packed == marker[0]
        if ColorKey.other() in self._disabled:
            known = self.allowed_colors if self.allowed_colors is not None else self.color_palette.rgb_colors()
            outside = ~np.isin(packed, pack_colors(known)) if known else np.ones(packed.shape, dtype=bool)
            hidden |= outside & (packed != marker[0])
        return hidden & (rgba[..., 3] > 0)

    def render_filtered(self) -> Image.Image:
        """Return the template with every disabled color made transparent."""

        rgba = np.array(self.image, dtype=np.uint8)
        if self._disabled:
            rgba[self._hidden_mask(rgba), 3] = 0
        return Image.fromarray(rgba)

    def build_chunks(self) -> Dict[TileCoord, TemplateChunk]:
        """Split the filtered template along tile boundaries."""

        rendered = self.render_filtered()
        bounds = self.bounds
        chunks: Dict[TileCoord, TemplateChunk] = {}
        for tile_x, tile_y in bounds.tile_span(self.tile_size):
            origin_x = tile_x * self.tile_size
            origin_y = tile_y * self.tile_size
            left = max(bounds.min_x, origin_x)
            top = max(bounds.min_y, origin_y)
            right = min(bounds.max_x + 1, origin_x + self.tile_size)
            bottom = min(bounds.max_y + 1, origin_y + self.tile_size)
            if right <= left or bottom <= top:
                continue
            box = (left - bounds.min_x, top - bounds.min_y, right - bounds.min_x, bottom - bounds.min_y)
            chunks[(tile_x, tile_y)] = TemplateChunk(
                tile=(tile_x, tile_y),
                offset=(left - origin_x, top - origin_y),
                image=rendered.crop(box),
            )
        logger.debug("Template %s rendered into %s chunk(s)", self.name, len(chunks))
        return chunks

    async def apply_color_filter_to_existing_tiles(self) -> Dict[TileCoord, TemplateChunk]:
        try:
            return await asyncio.to_thread(self.build_chunks)
        except (ValueError, OSError, MemoryError) as exc:
            raise RenderRegenerationError(f"Failed to apply color filter to {self.name}") from exc
