"""Exceptions surfaced to the user as short status messages."""
from __future__ import annotations


class MarbleError(RuntimeError):
    """Base class for failures reported back through the display callbacks."""

    default_message = "Operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class ValidationError(MarbleError):
    """Raised when user input is malformed; nothing was fetched or stored."""

    default_message = "Coordinates are malformed!"


class TileFetchError(MarbleError):
    """Raised when a tile could not be loaded through any transport."""

    def __init__(self, tile_x: int, tile_y: int, message: str | None = None) -> None:
        self.tile_x = tile_x
        self.tile_y = tile_y
        super().__init__(message or f"Failed to load tile {tile_x},{tile_y}")


class RenderRegenerationError(MarbleError):
    """Raised when filtered template chunks could not be rebuilt."""

    default_message = "Failed to apply color filter"
