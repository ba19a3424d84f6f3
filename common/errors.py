from __future__ import annotations

from typing import Optional


class InvalidInput(ValueError):
    """
    Client-caused, non-retryable validation failure.

    Attributes:
        field: the field/token that failed (e.g. "latitude", "size", "x").
        param: request parameter the value came from, filled in by the
               parser's top-level entry points (e.g. "center", "markers").
    """

    def __init__(self, message: str, field: Optional[str] = None, param: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.param = param


class InvalidFormat(InvalidInput):
    pass


class SizeExceedsBounds(InvalidInput):
    pass


class UnknownMarkerSize(InvalidInput):
    pass


class UnknownMarkerColor(InvalidInput):
    pass


class InvalidColorHex(InvalidInput):
    pass


class UnparsableMarkerToken(InvalidInput):
    pass


class MissingPlaceholder(InvalidInput):
    pass


class RenderFailure(RuntimeError):
    """The render engine could not produce an image. Never cached."""


class CacheIOFailure(OSError):
    """Directory creation or write error while persisting a rendered map."""


class CacheReadFailure(OSError):
    """A fresh entry vanished or became unreadable between stat and read."""
