"""Command-line interface for area captures and template color filters."""
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Dict, List

import httpx

from .color_filter import ColorFilterEngine
from .config import MarbleSettings
from .coords import selection_from_values
from .errors import MarbleError, ValidationError
from .gallery import fetch_gallery, import_gallery_message
from .logging_utils import setup_debug_logging
from .mosaic import capture_area, save_capture
from .palette_ops import ColorKey, PaletteError, format_entry_label, read_act_palette
from .storage import (
    JsonFileStore,
    KeyValueStore,
    get_coords,
    get_overlay_state,
    get_tile_refresh_paused,
    load_template_palette,
    save_coords,
    save_overlay_state,
    save_tile_refresh_paused,
)
from .template import Template, TemplateChunk


class ConsoleReporter:
    def handle_display_status(self, message: str) -> None:
        print(f"[OK] {message}")

    def handle_display_error(self, message: str) -> None:
        print(f"[FAIL] {message}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Wplace area capture and template palette utilities")
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="JSON store for palettes and remembered coordinates (defaults to MARBLETOOLS_STORE)",
    )
    parser.add_argument("--tile-size", type=int, default=None, help="Tile edge length in pixels")
    parser.add_argument("--debug", action="store_true", help="Write a debug log (see MARBLETOOLS_DEBUG_LOG)")
    commands = parser.add_subparsers(dest="command", required=True)

    capture = commands.add_parser("capture", help="Stitch the tiles covering an area into one PNG")
    capture.add_argument(
        "coords",
        nargs=8,
        metavar="N",
        help="Corner coordinates: TX1 TY1 PX1 PY1 TX2 TY2 PX2 PY2",
    )
    capture.add_argument("--server", default=None, help="Tile server base URL")
    capture.add_argument("--out", type=Path, default=Path("."), help="Destination folder")

    palette = commands.add_parser("palette", help="Show or toggle a template's colors")
    palette.add_argument("template", type=Path, help="Template image")
    palette.add_argument(
        "--coords",
        nargs=4,
        type=int,
        required=True,
        metavar=("TX", "TY", "PX", "PY"),
        help="Tile/pixel of the template's top-left corner",
    )
    palette.add_argument("--enable", action="append", default=[], metavar="KEY", help="Color key to enable")
    palette.add_argument("--disable", action="append", default=[], metavar="KEY", help="Color key to disable")
    palette.add_argument(
        "--palette-act",
        type=Path,
        default=None,
        help="ACT palette of allowed colors; anything else counts as 'other'",
    )
    palette.add_argument("--chunks", type=Path, default=None, help="Write rendered chunks to this folder")

    gallery = commands.add_parser("gallery", help="Import coordinates from a gallery page or message")
    gallery.add_argument("url", nargs="?", default=None, help="Gallery page URL")
    gallery.add_argument(
        "--message",
        type=Path,
        default=None,
        help="JSON file holding a gallery-import message instead of a page URL",
    )
    gallery.add_argument("--image-out", type=Path, default=None, help="Save the template image here")

    tiles = commands.add_parser("tiles", help="Pause or resume tile refresh")
    tiles.add_argument("action", choices=("pause", "resume", "toggle", "status"))

    state = commands.add_parser("state", help="Show or update the remembered overlay state")
    state.add_argument("--position", nargs=2, type=int, default=None, metavar=("X", "Y"))
    minimized = state.add_mutually_exclusive_group()
    minimized.add_argument("--minimize", dest="minimized", action="store_true", default=None)
    minimized.add_argument("--restore", dest="minimized", action="store_false", default=None)
    return parser


async def _run_capture(
    args: argparse.Namespace, settings: MarbleSettings, store: KeyValueStore, reporter: ConsoleReporter
) -> int:
    selection = selection_from_values(args.coords, settings.tile_size)
    result = await capture_area(
        selection,
        settings.tile_size,
        args.server or settings.tile_server_base,
        timeout=settings.request_timeout,
    )
    output_path = save_capture(result, args.out)
    tx, ty, px, py = selection.first.to_tile_pixel(settings.tile_size)
    save_coords(store, tx=tx, ty=ty, px=px, py=py)
    reporter.handle_display_status(f"Downloaded area image! {output_path}")
    return 0


def _write_chunks(template: Template, chunks: Dict[tuple, TemplateChunk], out_dir: Path) -> List[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for (tile_x, tile_y), chunk in sorted(chunks.items()):
        px, py = chunk.offset
        path = out_dir / f"{template.name}_{tile_x:04d},{tile_y:04d}_{px},{py}.png"
        chunk.image.save(path)
        written.append(path)
    return written


async def _run_palette(
    args: argparse.Namespace, settings: MarbleSettings, store: KeyValueStore, reporter: ConsoleReporter
) -> int:
    enable = [ColorKey.parse(key) for key in args.enable]
    disable = [ColorKey.parse(key) for key in args.disable]
    allowed = read_act_palette(args.palette_act) if args.palette_act else None
    template = Template.open(args.template, args.coords, settings.tile_size, allowed_colors=allowed)
    stored = load_template_palette(store, template.storage_key)
    if stored is not None:
        template.color_palette = stored
        template.set_disabled_colors(stored.disabled_colors())
    if args.chunks is not None:
        template.chunked = template.build_chunks()

    engine = ColorFilterEngine(
        store,
        on_status=reporter.handle_display_status,
        on_error=reporter.handle_display_error,
    )
    ok = True
    for key in disable:
        ok = await engine.toggle(template, key, False) and ok
    for key in enable:
        ok = await engine.toggle(template, key, True) and ok

    for key, entry in template.color_palette.sorted_entries():
        mark = "x" if entry.enabled else " "
        print(f"[{mark}] {key.swatch()}  {format_entry_label(key, entry)}")
    if args.chunks is not None and template.chunked is not None:
        written = _write_chunks(template, template.chunked, args.chunks)
        reporter.handle_display_status(f"Wrote {len(written)} chunk(s) to {args.chunks}")
    return 0 if ok else 1


def _read_message(path: Path) -> dict:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ValidationError(f"Gallery message {path} is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError(f"Gallery message {path} must be a JSON object")
    return payload


async def _run_gallery(
    args: argparse.Namespace, settings: MarbleSettings, store: KeyValueStore, reporter: ConsoleReporter
) -> int:
    load_image = args.image_out is not None
    async with httpx.AsyncClient(timeout=settings.request_timeout, follow_redirects=True) as client:
        if args.message is not None:
            imported = await import_gallery_message(_read_message(args.message), client, load_image=load_image)
            if imported is None:
                reporter.handle_display_error("Message is not a gallery import.")
                return 1
        else:
            imported = await fetch_gallery(args.url, client, load_image=load_image)
    if imported.coords is None:
        reporter.handle_display_error("Could not parse coordinates from the gallery page.")
    else:
        tx, ty, px, py = imported.coords
        save_coords(store, tx=tx, ty=ty, px=px, py=py)
        reporter.handle_display_status(f"Parsed coordinates from gallery page: {tx},{ty},{px},{py}")
    if args.image_out is not None and imported.image:
        args.image_out.parent.mkdir(parents=True, exist_ok=True)
        args.image_out.write_bytes(imported.image)
        reporter.handle_display_status(f"Loaded image from gallery. {args.image_out}")
    return 0 if imported.coords is not None else 1


async def _run_tiles(
    args: argparse.Namespace, settings: MarbleSettings, store: KeyValueStore, reporter: ConsoleReporter
) -> int:
    paused = get_tile_refresh_paused(store)
    if args.action != "status":
        paused = {"pause": True, "resume": False, "toggle": not paused}[args.action]
        save_tile_refresh_paused(store, paused)
    reporter.handle_display_status("Tile refresh paused" if paused else "Tile refresh resumed")
    return 0


async def _run_state(
    args: argparse.Namespace, settings: MarbleSettings, store: KeyValueStore, reporter: ConsoleReporter
) -> int:
    updates = {}
    if args.position is not None:
        updates["x"], updates["y"] = args.position
    if args.minimized is not None:
        updates["minimized"] = args.minimized
    overlay = save_overlay_state(store, **updates) if updates else get_overlay_state(store)
    coords = get_coords(store)
    position = f"{overlay['x']},{overlay['y']}" if "x" in overlay and "y" in overlay else "default"
    print(f"overlay: position={position} minimized={'yes' if overlay['minimized'] else 'no'}")
    print("coords: " + (",".join(str(coords.get(k, "?")) for k in ("tx", "ty", "px", "py")) if coords else "none"))
    print(f"tile refresh: {'paused' if get_tile_refresh_paused(store) else 'running'}")
    if updates:
        reporter.handle_display_status("Overlay state saved")
    return 0


_COMMANDS = {
    "capture": _run_capture,
    "palette": _run_palette,
    "gallery": _run_gallery,
    "tiles": _run_tiles,
    "state": _run_state,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "gallery" and (args.url is None) == (args.message is None):
        parser.error("gallery needs either a URL or --message FILE")

    try:
        settings = MarbleSettings.from_env()
        if args.tile_size is not None:
            settings.tile_size = args.tile_size
    except ValidationError as exc:
        parser.error(str(exc))
    if args.store is not None:
        settings.store_path = args.store
    if args.debug:
        settings.debug = True
    setup_debug_logging(settings)

    store = JsonFileStore(settings.store_path)
    reporter = ConsoleReporter()
    try:
        return asyncio.run(_COMMANDS[args.command](args, settings, store, reporter))
    except (MarbleError, PaletteError) as exc:
        reporter.handle_display_error(str(exc))
    except OSError as exc:
        reporter.handle_display_error(f"File error: {exc.strerror or exc}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
