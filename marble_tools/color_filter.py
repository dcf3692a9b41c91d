"""Apply palette toggles to a template's rendered chunks."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Protocol

from .coords import TileCoord
from .errors import RenderRegenerationError
from .palette_ops import ColorKey, ColorPalette, PaletteError
from .storage import KeyValueStore, save_template_palette
from .template import TemplateChunk


logger = logging.getLogger(__name__)

MessageCallback = Callable[[str], None]


class FilterableTemplate(Protocol):
    name: str
    storage_key: str
    color_palette: ColorPalette
    chunked: Dict[TileCoord, TemplateChunk] | None

    def set_disabled_colors(self, keys) -> None:
        ...

    async def apply_color_filter_to_existing_tiles(self) -> Dict[TileCoord, TemplateChunk]:
        ...


class ColorFilterEngine:
    """Keep a template's rendered output in step with its palette toggles.

    The palette is persisted before any rendering starts, so a failed
    regeneration never loses the user's choice. Nothing raised while
    rendering escapes :meth:`toggle` or :meth:`apply_filter`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        on_status: MessageCallback | None = None,
        on_error: MessageCallback | None = None,
        refresh_display: Callable[[], None] | None = None,
    ) -> None:
        self._store = store
        self._on_status = on_status
        self._on_error = on_error
        self._refresh_display = refresh_display

    def _status(self, message: str) -> None:
        if self._on_status is not None:
            self._on_status(message)

    def _error(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)

    async def toggle(self, template: FilterableTemplate, key: "ColorKey | str", enabled: bool) -> bool:
        try:
            template.color_palette.set_enabled(key, enabled)
        except PaletteError as exc:
            logger.warning("Ignoring toggle on %s: %s", template.storage_key, exc)
            self._error(str(exc))
            return False
        return await self.apply_filter(template)

    def persist(self, template: FilterableTemplate) -> bool:
        try:
            save_template_palette(self._store, template.storage_key, template.color_palette)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to persist palette for %s: %s", template.storage_key, exc, exc_info=exc)
            self._error("Failed to save color filter")
            return False
        return True

    async def apply_filter(self, template: FilterableTemplate) -> bool:
        """Push the disabled set into ``template`` and rebuild its chunks.

        Returns ``False`` when persistence or regeneration failed.
        """

        disabled = template.color_palette.disabled_colors()
        logger.debug("Applying filter template=%s disabled=%s", template.storage_key, len(disabled))
        persisted = self.persist(template)
        try:
            template.set_disabled_colors(sorted(disabled, key=str))
            if template.chunked is None:
                return persisted
            template.chunked = await template.apply_color_filter_to_existing_tiles()
        except RenderRegenerationError as exc:
            logger.error("%s", exc, exc_info=exc)
            return False
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to apply color filter to %s", template.name, exc_info=exc)
            return False
        if self._refresh_display is not None:
            self._refresh_display()
        self._status(f"Color filter applied ({len(disabled)} disabled)")
        return persisted
