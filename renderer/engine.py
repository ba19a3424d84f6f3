from __future__ import annotations

"""
Static map renderer: the render engine behind mapcache.RenderCache.

Fetches slippy-map tiles with requests, decodes them with OpenCV, composes the
viewport on a numpy canvas, draws overlays/markers/attribution and returns PNG bytes.

Usage:
    engine = StaticMapRenderer()  # OpenStreetMap tiles
    png = engine.render(map_request)
"""

import logging
from typing import Dict, Optional, Tuple

import cv2
import numpy as np
import requests

from common.geo import covering_tiles, latlon_to_pixel, viewport, world_size
from common.types import MapRequest, Marker
from mapcache.version import __version__


log = logging.getLogger(__name__)

DEFAULT_TILE_URL = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
DEFAULT_ATTRIBUTION = "(c) OpenStreetMap contributors"
DEFAULT_USER_AGENT = f"Mozilla/5.0+(compatible; staticmap/{__version__})"

_Tile = np.ndarray  # (tile_size, tile_size, 4) uint8 BGRA


class StaticMapRenderer:
    def __init__(
        self,
        tile_url: str = DEFAULT_TILE_URL,
        *,
        tile_size: int = 256,
        max_zoom: int = 19,
        user_agent: Optional[str] = None,
        attribution: str = DEFAULT_ATTRIBUTION,
        timeout: float = 10.0,
        background: Tuple[int, int, int] = (224, 224, 224),
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            tile_url: base layer URL template with {z}/{x}/{y}
            tile_size: pixel size of base layer tiles; overlay tiles are scaled to it
            max_zoom: highest zoom the base layer serves
            user_agent: sent to tile servers (most public servers require one)
            attribution: text drawn bottom-right unless a request disables it
            timeout: per-tile HTTP timeout in seconds
            background: BGR fill for areas without tiles (beyond the poles)
            session: optional requests.Session for connection reuse
        """
        self.tile_url = tile_url
        self.tile_size = int(tile_size)
        self.max_zoom = int(max_zoom)
        self.attribution = attribution
        self.timeout = float(timeout)
        self.background = background
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent or DEFAULT_USER_AGENT})

    # ----------------------------
    # Public API
    # ----------------------------
    def render(self, request: MapRequest) -> bytes:
        """Render `request` and return PNG bytes. Raises RuntimeError on any failure."""
        canvas = self.render_array(request)
        ok, buf = cv2.imencode(".png", canvas)
        if not ok:
            raise RuntimeError("encoding to PNG failed")
        return buf.tobytes()

    def render_array(self, request: MapRequest) -> np.ndarray:
        """Render to a (height, width, 3) BGR uint8 array."""
        if request.zoom > self.max_zoom:
            raise RuntimeError(f"zoom {request.zoom} exceeds maximum {self.max_zoom}")

        canvas = np.empty((request.height, request.width, 3), dtype=np.uint8)
        canvas[:] = self.background

        x0, y0 = viewport(
            request.center.lat, request.center.lon, request.zoom, request.width, request.height, self.tile_size
        )
        self._draw_layer(canvas, self.tile_url, request.zoom, x0, y0)
        for overlay in request.overlays:
            self._draw_layer(canvas, overlay.url_template, request.zoom, x0, y0)
        for marker in request.markers:
            self._draw_marker(canvas, marker, request.zoom, x0, y0)
        if not request.disable_attribution and self.attribution:
            self._draw_attribution(canvas, self.attribution)
        return canvas

    # ----------------------------
    # Tiles
    # ----------------------------
    def tile_url_for(self, template: str, z: int, x: int, y: int) -> str:
        # str.replace keeps any other braces in the template ({s}, query strings) intact
        return template.replace("{z}", str(z)).replace("{x}", str(x)).replace("{y}", str(y))

    def fetch_tile(self, template: str, z: int, x: int, y: int) -> _Tile:
        url = self.tile_url_for(template, z, x, y)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise RuntimeError(f"fetching tile {url}: {e}") from e
        if r.status_code != 200 or not r.content:
            raise RuntimeError(f"fetching tile {url}: HTTP {r.status_code}")

        img = cv2.imdecode(np.frombuffer(r.content, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
        if img is None:
            raise RuntimeError(f"tile {url} is not a decodable image")
        return self._as_bgra(img)

    def _as_bgra(self, img: np.ndarray) -> _Tile:
        if img.dtype != np.uint8:
            img = cv2.convertScaleAbs(img, alpha=255.0 / max(1.0, float(img.max())))
        if img.ndim == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
        elif img.shape[2] == 3:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
        if img.shape[0] != self.tile_size or img.shape[1] != self.tile_size:
            img = cv2.resize(img, (self.tile_size, self.tile_size), interpolation=cv2.INTER_LINEAR)
        return img

    def _draw_layer(self, canvas: np.ndarray, template: str, zoom: int, x0: float, y0: float) -> None:
        h, w = canvas.shape[:2]
        fetched: Dict[Tuple[int, int], _Tile] = {}
        for tx, ty, px, py in covering_tiles(x0, y0, w, h, zoom, self.tile_size):
            tile = fetched.get((tx, ty))
            if tile is None:
                tile = self.fetch_tile(template, zoom, tx, ty)
                fetched[(tx, ty)] = tile
            _blend(canvas, tile, px, py)
        log.debug("layer drawn", extra={"template": template, "tiles": len(fetched), "zoom": zoom})

    # ----------------------------
    # Markers & attribution
    # ----------------------------
    def _draw_marker(self, canvas: np.ndarray, marker: Marker, zoom: int, x0: float, y0: float) -> None:
        h, w = canvas.shape[:2]
        world = world_size(zoom, self.tile_size)
        mx, my = latlon_to_pixel(marker.position.lat, marker.position.lon, zoom, self.tile_size)
        mx -= x0
        my -= y0
        # pick the copy of the world closest to the viewport
        if mx < 0:
            mx += world * round(-mx / world)
        elif mx > w:
            mx -= world * round((mx - w) / world)

        size = float(marker.size)
        radius = size / 2.0
        cx, cy = mx, my - size * 1.2
        if mx + size < 0 or mx - size > w or my < 0 or cy - radius > h:
            return

        layer = canvas.copy()
        fill = marker.color.to_bgr()
        edge = tuple(int(c * 0.6) for c in fill)
        tip = (int(round(mx)), int(round(my)))
        left = (int(round(cx - radius * 0.8)), int(round(cy + radius * 0.6)))
        right = (int(round(cx + radius * 0.8)), int(round(cy + radius * 0.6)))
        center = (int(round(cx)), int(round(cy)))
        cv2.fillPoly(layer, [np.array([tip, left, right], dtype=np.int32)], fill, lineType=cv2.LINE_AA)
        cv2.circle(layer, center, int(round(radius)), fill, -1, lineType=cv2.LINE_AA)
        cv2.circle(layer, center, int(round(radius)), edge, 1, lineType=cv2.LINE_AA)
        cv2.circle(layer, center, max(1, int(round(radius / 3))), edge, -1, lineType=cv2.LINE_AA)

        alpha = marker.color.a / 255.0
        if alpha >= 1.0:
            canvas[:] = layer
        elif alpha > 0.0:
            canvas[:] = cv2.addWeighted(layer, alpha, canvas, 1.0 - alpha, 0)

    def _draw_attribution(self, canvas: np.ndarray, text: str) -> None:
        h, w = canvas.shape[:2]
        font, scale, thick = cv2.FONT_HERSHEY_SIMPLEX, 0.35, 1
        (tw, th), base = cv2.getTextSize(text, font, scale, thick)
        pad = 3
        x1, y1 = max(0, w - tw - 2 * pad), max(0, h - th - base - 2 * pad)
        box = canvas[y1:h, x1:w].copy()
        cv2.rectangle(box, (0, 0), (box.shape[1], box.shape[0]), (255, 255, 255), -1)
        canvas[y1:h, x1:w] = cv2.addWeighted(box, 0.6, canvas[y1:h, x1:w], 0.4, 0)
        cv2.putText(canvas, text, (x1 + pad, h - base - pad), font, scale, (60, 60, 60), thick, cv2.LINE_AA)


def _blend(canvas: np.ndarray, tile: _Tile, px: int, py: int) -> None:
    """Alpha-composite a BGRA tile onto the BGR canvas with its top-left at (px, py)."""
    h, w = canvas.shape[:2]
    th, tw = tile.shape[:2]
    cx0, cy0 = max(0, px), max(0, py)
    cx1, cy1 = min(w, px + tw), min(h, py + th)
    if cx1 <= cx0 or cy1 <= cy0:
        return
    src = tile[cy0 - py:cy1 - py, cx0 - px:cx1 - px]
    dst = canvas[cy0:cy1, cx0:cx1]
    alpha = src[..., 3:4].astype(np.float32) / 255.0
    dst[:] = (src[..., :3].astype(np.float32) * alpha + dst.astype(np.float32) * (1.0 - alpha)).round().astype(np.uint8)
