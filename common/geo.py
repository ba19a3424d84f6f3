from __future__ import annotations

import math
from typing import Iterator, Tuple


# Web Mercator is undefined at the poles; tiles stop at this latitude.
MAX_MERCATOR_LAT = 85.0511287798066


# -------------------------
# Web Mercator (world pixel space, top-left origin)
# -------------------------
def world_size(zoom: int, tile_size: int = 256) -> float:
    """World size in pixels at given zoom."""
    return float(tile_size) * (2 ** int(zoom))


def lon_to_x(lon: float, world: float) -> float:
    return (lon + 180.0) / 360.0 * world


def lat_to_y(lat: float, world: float) -> float:
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    s = math.sin(math.radians(lat))
    y = 0.5 - math.log((1 + s) / (1 - s)) / (4 * math.pi)
    return y * world


def x_to_lon(x: float, world: float) -> float:
    return x / world * 360.0 - 180.0


def y_to_lat(y: float, world: float) -> float:
    n = math.pi - 2.0 * math.pi * (y / world)
    return math.degrees(math.atan(math.sinh(n)))


def latlon_to_pixel(lat: float, lon: float, zoom: int, tile_size: int = 256) -> Tuple[float, float]:
    """(lat, lon) -> world pixel (x, y) at `zoom`."""
    world = world_size(zoom, tile_size)
    return lon_to_x(lon, world), lat_to_y(lat, world)


def viewport(
    lat: float, lon: float, zoom: int, width: int, height: int, tile_size: int = 256
) -> Tuple[float, float]:
    """World pixel coordinates of the top-left corner of a width x height image centered on (lat, lon)."""
    cx, cy = latlon_to_pixel(lat, lon, zoom, tile_size)
    return cx - width / 2.0, cy - height / 2.0


def covering_tiles(
    x0: float, y0: float, width: int, height: int, zoom: int, tile_size: int = 256
) -> Iterator[Tuple[int, int, int, int]]:
    """
    Yield (tx, ty, px, py) for each tile touching the viewport whose top-left
    world pixel is (x0, y0). (tx, ty) is the wrapped tile index, (px, py) the
    tile's offset inside the output image. Rows above/below the world are skipped;
    columns wrap around the antimeridian.
    """
    n = 2 ** int(zoom)
    tx_min = math.floor(x0 / tile_size)
    tx_max = math.floor((x0 + width - 1) / tile_size)
    ty_min = math.floor(y0 / tile_size)
    ty_max = math.floor((y0 + height - 1) / tile_size)
    for ty in range(ty_min, ty_max + 1):
        if ty < 0 or ty >= n:
            continue
        for tx in range(tx_min, tx_max + 1):
            px = int(round(tx * tile_size - x0))
            py = int(round(ty * tile_size - y0))
            yield tx % n, ty, px, py
