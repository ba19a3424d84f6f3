#!/usr/bin/env python3
"""
Opt-in eviction for the render cache.

The service never deletes cached maps: stale entries are only overwritten when
requested again, so the cache directory keeps growing. Run this from cron (or by
hand) to delete entries older than a given age.

Examples:
  python scripts/prune_cache.py --max-age 168h
  python scripts/prune_cache.py --cache-dir /var/cache/staticmap --max-age 48h
"""
from __future__ import annotations

import argparse
import os
import sys

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.config import load_settings
from common.logging_setup import setup_logging
from common.utils import parse_duration
from mapcache import RenderCache


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None, help="YAML config file")
    ap.add_argument("--cache-dir", default=None, help="Cache directory (default from config)")
    ap.add_argument("--max-age", default=None, help="Delete entries older than this (default: force_cache)")
    args = ap.parse_args()

    settings = load_settings(args.config)
    setup_logging(settings.log_level, force=True)
    cache = RenderCache(args.cache_dir or settings.cache_dir, settings.ttl_seconds)
    max_age = parse_duration(args.max_age) if args.max_age else None
    try:
        removed = cache.prune(max_age)
    except ValueError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 2
    print(f"[ok] removed {removed} entries from {cache.root}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
