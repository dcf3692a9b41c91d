"""Session settings read from ``MARBLETOOLS_*`` environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .coords import DEFAULT_TILE_SIZE, ensure_tile_size
from .errors import ValidationError
from .tile_fetch import DEFAULT_TIMEOUT

DEFAULT_DEBUG_LOG = "marble_tools_debug.log"
_FALSE_VALUES = {"", "0", "false", "no", "off"}


def _default_store_path() -> Path:
    return Path.home() / ".marble_tools" / "store.json"


def _default_debug_log_path() -> Path:
    return Path.cwd() / DEFAULT_DEBUG_LOG


@dataclass(slots=True)
class MarbleSettings:
    tile_server_base: str = ""
    tile_size: int = DEFAULT_TILE_SIZE
    store_path: Path = field(default_factory=_default_store_path)
    request_timeout: float = DEFAULT_TIMEOUT
    debug: bool = False
    debug_log_path: Path = field(default_factory=_default_debug_log_path)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MarbleSettings":
        env = os.environ if environ is None else environ
        settings = cls()
        settings.tile_server_base = env.get("MARBLETOOLS_TILE_SERVER", "").strip()
        raw_size = env.get("MARBLETOOLS_TILE_SIZE")
        if raw_size:
            try:
                settings.tile_size = ensure_tile_size(int(raw_size))
            except ValueError:
                raise ValidationError(f"MARBLETOOLS_TILE_SIZE must be an integer, got {raw_size!r}") from None
        raw_store = env.get("MARBLETOOLS_STORE")
        if raw_store:
            settings.store_path = Path(raw_store).expanduser()
        raw_timeout = env.get("MARBLETOOLS_TIMEOUT")
        if raw_timeout:
            try:
                settings.request_timeout = float(raw_timeout)
            except ValueError:
                raise ValidationError(f"MARBLETOOLS_TIMEOUT must be a number, got {raw_timeout!r}") from None
            if settings.request_timeout <= 0:
                raise ValidationError("MARBLETOOLS_TIMEOUT must be positive")
        settings.debug = env.get("MARBLETOOLS_DEBUG", "").strip().lower() not in _FALSE_VALUES
        raw_log = env.get("MARBLETOOLS_DEBUG_LOG", "").strip()
        if raw_log:
            log_path = Path(raw_log).expanduser()
            settings.debug_log_path = log_path if log_path.is_absolute() else Path.cwd() / log_path
        return settings
