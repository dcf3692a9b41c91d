"""Durable string key-value storage and the fixed keys kept in it."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Protocol

from .palette_ops import ColorPalette


logger = logging.getLogger(__name__)

TEMPLATES_KEY = "bmTemplates"
COORDS_KEY = "bmCoords"
OVERLAY_STATE_KEY = "bmOverlayState"
TILE_REFRESH_PAUSED_KEY = "bmTileRefreshPaused"

STORE_SCHEMA_VERSION = 1
_COORD_FIELDS = ("tx", "ty", "px", "py")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryStore:
    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values: Dict[str, str] = dict(values or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = str(value)


class JsonFileStore:
    """String values persisted in a single JSON document.

    Every ``set`` rewrites the document through a temporary file so a crash
    never leaves a half-written store behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._values: Dict[str, str] | None = None

    def _load(self) -> Dict[str, str]:
        if self._values is not None:
            return self._values
        values: Dict[str, str] = {}
        if self.path.exists():
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable store %s: %s", self.path, exc)
                payload = {}
            raw_values = payload.get("values", {}) if isinstance(payload, dict) else {}
            if isinstance(raw_values, dict):
                for key, value in raw_values.items():
                    if isinstance(key, str) and isinstance(value, str):
                        values[key] = value
        self._values = values
        return values

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._load()
        values[key] = str(value)
        payload = {
            "schema_version": STORE_SCHEMA_VERSION,
            "updated_at": _utc_now_iso(),
            "values": values,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.debug("Stored key=%s bytes=%s path=%s", key, len(value), self.path)


def _read_json(store: KeyValueStore, key: str) -> Dict[str, Any]:
    raw = store.get(key)
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Stored value for %s is not valid JSON; ignoring", key)
        return {}
    return payload if isinstance(payload, dict) else {}


def load_templates_json(store: KeyValueStore) -> Dict[str, Any]:
    payload = _read_json(store, TEMPLATES_KEY)
    templates = payload.get("templates")
    if not isinstance(templates, dict):
        payload["templates"] = {}
    return payload


def save_template_palette(store: KeyValueStore, storage_key: str, palette: ColorPalette) -> None:
    """Write ``palette`` into the templates blob under ``storage_key``."""

    payload = load_templates_json(store)
    record = payload["templates"].get(storage_key)
    if not isinstance(record, dict):
        record = {}
    record["palette"] = palette.to_dict()
    payload["templates"][storage_key] = record
    store.set(TEMPLATES_KEY, json.dumps(payload))


def load_template_palette(store: KeyValueStore, storage_key: str) -> ColorPalette | None:
    record = load_templates_json(store)["templates"].get(storage_key)
    if not isinstance(record, dict) or not isinstance(record.get("palette"), dict):
        return None
    return ColorPalette.from_dict(record["palette"])


def get_coords(store: KeyValueStore) -> Dict[str, int]:
    payload = _read_json(store, COORDS_KEY)
    coords: Dict[str, int] = {}
    for name in _COORD_FIELDS:
        value = payload.get(name)
        if isinstance(value, int) and not isinstance(value, bool):
            coords[name] = value
    return coords


def save_coords(store: KeyValueStore, **fields: int) -> Dict[str, int]:
    """Merge ``tx``/``ty``/``px``/``py`` into the remembered coordinates."""

    coords = get_coords(store)
    for name, value in fields.items():
        if name not in _COORD_FIELDS:
            raise KeyError(name)
        coords[name] = int(value)
    store.set(COORDS_KEY, json.dumps(coords))
    return coords


def get_overlay_state(store: KeyValueStore) -> Dict[str, Any]:
    payload = _read_json(store, OVERLAY_STATE_KEY)
    state: Dict[str, Any] = {"minimized": bool(payload.get("minimized", False))}
    for axis in ("x", "y"):
        value = payload.get(axis)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            state[axis] = value
    return state


def save_overlay_state(store: KeyValueStore, **fields: Any) -> Dict[str, Any]:
    state = get_overlay_state(store)
    state.update({k: v for k, v in fields.items() if k in {"x", "y", "minimized"}})
    store.set(OVERLAY_STATE_KEY, json.dumps(state))
    return state


def get_tile_refresh_paused(store: KeyValueStore) -> bool:
    return store.get(TILE_REFRESH_PAUSED_KEY) == "true"


def save_tile_refresh_paused(store: KeyValueStore, paused: bool) -> None:
    store.set(TILE_REFRESH_PAUSED_KEY, "true" if paused else "false")
