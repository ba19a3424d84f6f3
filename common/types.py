from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Tuple

from common.errors import InvalidFormat, InvalidInput


@dataclass(frozen=True, slots=True)
class Point:
    """WGS84 position in degrees."""
    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.lat):
            raise InvalidFormat("latitude is not a finite number", field="latitude")
        if not math.isfinite(self.lon):
            raise InvalidFormat("longitude is not a finite number", field="longitude")
        if not (-90.0 <= self.lat <= 90.0):
            raise InvalidFormat(f"latitude {self.lat} out of range [-90,90]", field="latitude")
        if not (-180.0 <= self.lon <= 180.0):
            raise InvalidFormat(f"longitude {self.lon} out of range [-180,180]", field="longitude")

    def canonical(self) -> str:
        return f"[{self.lat:.7f}, {self.lon:.7f}]"


@dataclass(frozen=True, slots=True)
class RGBA:
    r: int
    g: int
    b: int
    a: int = 255

    def __post_init__(self) -> None:
        for name in ("r", "g", "b", "a"):
            v = getattr(self, name)
            if not isinstance(v, int) or not (0 <= v <= 255):
                raise InvalidInput(f"color channel {name}={v!r} must be an integer in 0..255", field="color")

    def to_bgr(self) -> Tuple[int, int, int]:
        # OpenCV channel order
        return (self.b, self.g, self.r)


@dataclass(frozen=True, slots=True)
class Marker:
    """
    A pin drawn on the map.

    Attributes:
        position: where the pin tip points.
        color: fill color (8-bit RGBA).
        size: pin size in pixels (see mapcache.params.MARKER_SIZES).
    """
    position: Point
    color: RGBA
    size: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.size) or self.size <= 0:
            raise InvalidInput(f"marker size {self.size!r} must be > 0", field="size")

    def canonical(self) -> str:
        c = self.color
        return f"{self.position.canonical()}|{self.size:.0f}|{c.r},{c.g},{c.b},{c.a}"


@dataclass(frozen=True, slots=True)
class OverlaySpec:
    """
    Tile layer drawn over the base map.

    pattern: raw user pattern with {0}/{1}/{2} placeholders (zoom/x/y); feeds the cache key.
    url_template: same pattern rewritten to {z}/{x}/{y} for the renderer.
    name: sha256 of url_template, for display/debugging only.
    """
    pattern: str
    url_template: str
    name: str
    tile_size: int = 256


@dataclass(frozen=True, slots=True)
class MapRequest:
    """
    Canonical, validated description of one map image.

    Marker and overlay order is significant and preserved as given.
    Size bounds are applied by the parser, which owns the configured limits.
    """
    center: Point
    zoom: int
    width: int
    height: int
    markers: Tuple[Marker, ...] = field(default_factory=tuple)
    overlays: Tuple[OverlaySpec, ...] = field(default_factory=tuple)
    disable_attribution: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.zoom, bool) or not isinstance(self.zoom, int) or self.zoom < 0:
            raise InvalidFormat(f"zoom must be a non-negative integer, got {self.zoom!r}", field="zoom")
        if self.width <= 0:
            raise InvalidFormat(f"width must be > 0, got {self.width}", field="width")
        if self.height <= 0:
            raise InvalidFormat(f"height must be > 0, got {self.height}", field="height")
        # frozen: coerce lists handed in by callers
        object.__setattr__(self, "markers", tuple(self.markers))
        object.__setattr__(self, "overlays", tuple(self.overlays))

    def to_meta(self) -> dict:
        """Loggable summary (no overlay URLs)."""
        return {
            "center": [self.center.lat, self.center.lon],
            "zoom": self.zoom,
            "size": f"{self.width}x{self.height}",
            "markers": len(self.markers),
            "overlays": [o.name[:12] for o in self.overlays],
            "disable_attribution": self.disable_attribution,
        }
