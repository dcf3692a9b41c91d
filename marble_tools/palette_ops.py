"""Template color palette: keys, entries and pixel analysis."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Literal, Mapping, Tuple

import numpy as np
from PIL import Image


logger = logging.getLogger(__name__)

ColorTuple = Tuple[int, int, int]
ColorKind = Literal["rgb", "other", "transparent"]

OTHER_KEY = "other"
TRANSPARENT_KEY = "#deface"
TRANSPARENT_RGB: ColorTuple = (0xDE, 0xFA, 0xCE)
OTHER_SWATCH = "#777777"


class PaletteError(RuntimeError):
    """Raised when palette processing fails."""


@dataclass(frozen=True, slots=True)
class ColorKey:
    """Identity of one palette slot.

    Either a concrete RGB color, the ``other`` pool for colors outside the
    allowed palette, or the ``#deface`` transparency marker.
    """

    kind: ColorKind
    rgb: ColorTuple | None = None

    @classmethod
    def from_rgb(cls, r: int, g: int, b: int) -> "ColorKey":
        for channel in (r, g, b):
            if not 0 <= int(channel) <= 255:
                raise PaletteError(f"Color channel out of range: {channel}")
        return cls("rgb", (int(r), int(g), int(b)))

    @classmethod
    def other(cls) -> "ColorKey":
        return cls("other")

    @classmethod
    def transparent(cls) -> "ColorKey":
        return cls("transparent")

    @classmethod
    def parse(cls, raw: "str | ColorKey") -> "ColorKey":
        if isinstance(raw, ColorKey):
            return raw
        text = str(raw).strip().lower()
        if text == OTHER_KEY:
            return cls.other()
        if text == TRANSPARENT_KEY:
            return cls.transparent()
        parts = [part.strip() for part in text.split(",")]
        if len(parts) != 3:
            raise PaletteError(f"Invalid color key: {raw!r}")
        try:
            r, g, b = (int(part) for part in parts)
        except ValueError:
            raise PaletteError(f"Invalid color key: {raw!r}") from None
        return cls.from_rgb(r, g, b)

    def swatch(self) -> str:
        """CSS-style hex color used to preview the entry."""

        if self.kind == "other":
            return OTHER_SWATCH
        if self.kind == "transparent":
            return TRANSPARENT_KEY
        r, g, b = self.rgb  # type: ignore[misc]
        return f"#{r:02x}{g:02x}{b:02x}"

    def __str__(self) -> str:
        if self.kind == "other":
            return OTHER_KEY
        if self.kind == "transparent":
            return TRANSPARENT_KEY
        r, g, b = self.rgb  # type: ignore[misc]
        return f"{r},{g},{b}"


@dataclass(slots=True)
class PaletteEntry:
    count: int
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "enabled": self.enabled}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PaletteEntry":
        try:
            count = max(0, int(payload.get("count", 0) or 0))
        except (TypeError, ValueError):
            count = 0
        return cls(count=count, enabled=payload.get("enabled", True) is not False)


class ColorPalette:
    """Ordered mapping of :class:`ColorKey` to :class:`PaletteEntry`."""

    def __init__(self, entries: Mapping[ColorKey, PaletteEntry] | None = None) -> None:
        self._entries: Dict[ColorKey, PaletteEntry] = dict(entries or {})

    def entries(self) -> Mapping[ColorKey, PaletteEntry]:
        return MappingProxyType(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ColorKey]:
        return iter(self._entries)

    def __contains__(self, key: object) -> bool:
        try:
            return ColorKey.parse(key) in self._entries  # type: ignore[arg-type]
        except PaletteError:
            return False

    def get(self, key: "str | ColorKey") -> PaletteEntry | None:
        return self._entries.get(ColorKey.parse(key))

    def set_enabled(self, key: "str | ColorKey", enabled: bool) -> PaletteEntry:
        """Toggle ``key``; unseen keys are added with a zero count."""

        color = ColorKey.parse(key)
        entry = self._entries.get(color)
        if entry is None:
            entry = PaletteEntry(count=0, enabled=True)
            self._entries[color] = entry
            logger.debug("Palette entry created for unseen key %s", color)
        entry.enabled = bool(enabled)
        return entry

    def disabled_colors(self) -> frozenset[ColorKey]:
        return frozenset(key for key, entry in self._entries.items() if not entry.enabled)

    def rgb_colors(self) -> List[ColorTuple]:
        return [key.rgb for key in self._entries if key.kind == "rgb" and key.rgb is not None]

    def sorted_entries(self) -> List[Tuple[ColorKey, PaletteEntry]]:
        # sorted() is stable, equal counts keep their insertion order
        return sorted(self._entries.items(), key=lambda kv: kv[1].count, reverse=True)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {str(key): entry.to_dict() for key, entry in self._entries.items()}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ColorPalette":
        entries: Dict[ColorKey, PaletteEntry] = {}
        for raw_key, raw_entry in payload.items():
            try:
                key = ColorKey.parse(raw_key)
            except PaletteError:
                logger.warning("Skipping invalid palette key %r", raw_key)
                continue
            if not isinstance(raw_entry, Mapping):
                logger.warning("Skipping palette key %s with non-object entry", raw_key)
                continue
            entries[key] = PaletteEntry.from_dict(raw_entry)
        return cls(entries)


def format_entry_label(key: ColorKey, entry: PaletteEntry) -> str:
    return f"{key} • {entry.count:,}"


def pack_rgb(rgb: np.ndarray) -> np.ndarray:
    rgb = rgb.astype(np.uint32)
    return (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]


def pack_colors(colors: Iterable[ColorTuple]) -> np.ndarray:
    return np.array([(r << 16) | (g << 8) | b for r, g, b in colors], dtype=np.uint32)


def analyze_palette(
    image: Image.Image, allowed_colors: Iterable[ColorTuple] | None = None
) -> ColorPalette:
    """Count visible pixels per color.

    ``#deface`` pixels go to the transparency marker. When ``allowed_colors``
    is given, every other color outside it is pooled under ``other``.
    """

    rgba = np.asarray(image.convert("RGBA"))
    visible = rgba[..., 3] > 0
    packed = pack_rgb(rgba[..., :3])[visible]
    values, counts = np.unique(packed, return_counts=True)

    marker = (TRANSPARENT_RGB[0] << 16) | (TRANSPARENT_RGB[1] << 8) | TRANSPARENT_RGB[2]
    allowed = None if allowed_colors is None else set(pack_colors(allowed_colors).tolist())
    tallies: Dict[ColorKey, int] = {}
    for value, count in zip(values.tolist(), counts.tolist()):
        if value == marker:
            key = ColorKey.transparent()
        elif allowed is not None and value not in allowed:
            key = ColorKey.other()
        else:
            key = ColorKey.from_rgb((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)
        tallies[key] = tallies.get(key, 0) + count

    ordered = sorted(tallies.items(), key=lambda kv: kv[1], reverse=True)
    logger.debug("Analyzed palette size=%s colors=%s", image.size, len(ordered))
    return ColorPalette({key: PaletteEntry(count=count) for key, count in ordered})


def read_act_palette(path: Path) -> List[ColorTuple]:
    """Load an Adobe ACT palette file (<=256 colors)."""

    data = path.read_bytes()
    if len(data) % 3 != 0 and len(data) != 772:
        raise PaletteError("ACT palette length must be divisible by 3")
    count = 256
    if len(data) == 772:
        # trailing 4 bytes: big-endian color count then transparent index
        count = min(256, int.from_bytes(data[768:770], "big")) or 256
    colors: List[ColorTuple] = []
    for i in range(0, min(len(data) - len(data) % 3, count * 3), 3):
        colors.append((data[i], data[i + 1], data[i + 2]))
    return colors
