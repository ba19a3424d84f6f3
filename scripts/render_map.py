#!/usr/bin/env python3
"""
Render one map through the render cache and write it to a PNG file.

Takes the same parameters as GET /map.png, so a cache entry written here is
served by the HTTP service (same cache dir, same build version).

Examples:
  python scripts/render_map.py --center 52.5,13.4 --zoom 12 --size 600x300 -o berlin.png
  python scripts/render_map.py --center 52.5,13.4 --zoom 12 --size 600x300 \
      --marker "color:blue|size:tiny|52.5,13.4|52.52,13.41" --no-attribution -o pins.png
"""
from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.config import load_settings
from common.errors import InvalidInput, RenderFailure
from mapcache import ParameterParser, RenderCache, derive_key
from renderer import StaticMapRenderer


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--center", required=True, help="lat,lon")
    ap.add_argument("--zoom", required=True, help="Zoom level")
    ap.add_argument("--size", required=True, help="WxH, e.g. 600x300")
    ap.add_argument("--marker", action="append", default=[], help="Marker string, e.g. color:blue|52.5,13.4 (repeatable)")
    ap.add_argument("--overlay", action="append", default=[], help="Overlay pattern with {0}/{1}/{2} (repeatable)")
    ap.add_argument("--no-attribution", action="store_true")
    ap.add_argument("--config", default=None, help="YAML config file")
    ap.add_argument("-o", "--out", default="map.png", help="Output PNG path")
    args = ap.parse_args()

    settings = load_settings(args.config)
    max_w, max_h = ParameterParser().parse_size(settings.max_size)
    parser = ParameterParser(max_width=max_w, max_height=max_h)
    params = {
        "center": args.center,
        "zoom": args.zoom,
        "size": args.size,
        "markers": args.marker,
        "overlays": args.overlay,
        "no-attribution": "true" if args.no_attribution else "",
    }
    try:
        req = parser.parse_query(params)
    except InvalidInput as e:
        print(f"[error] invalid '{e.param}': {e}", file=sys.stderr)
        return 2

    engine = StaticMapRenderer(settings.tile_url, user_agent=settings.user_agent or None)
    cache = RenderCache(settings.cache_dir, settings.ttl_seconds, engine.render)
    key = derive_key(req)

    t0 = time.time()
    try:
        result = cache.get(key, req)
    except RenderFailure as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1
    latency_ms = int((time.time() - t0) * 1000)

    Path(args.out).write_bytes(result.data)
    print(f"[ok] {'HIT' if result.hit else 'MISS'} key={key} bytes={len(result.data)} latency_ms={latency_ms} -> {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
