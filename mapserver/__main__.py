from __future__ import annotations

"""
Run the static map server.

Examples:
  python -m mapserver
  python -m mapserver --listen 127.0.0.1:8000 --cache-dir /var/cache/staticmap --force-cache 12h
  STATICMAP_MAX_SIZE=2048x2048 python -m mapserver --config config/params.yaml
"""

import argparse
import sys
from typing import List, Optional

import uvicorn

from common.config import load_settings
from common.errors import InvalidInput
from common.logging_setup import get_logger, setup_logging
from mapcache.version import __version__
from mapserver.server import create_app


log = get_logger("mapserver")


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="mapserver", description="Static map rendering service")
    ap.add_argument("--config", default=None, help="YAML config file (default config/params.yaml)")
    ap.add_argument("--cache-dir", dest="cache_dir", default=None, help="Directory to save the cached images to")
    ap.add_argument("--force-cache", dest="force_cache", default=None, help="Cache maps for this duration (e.g. 24h, 0 = off)")
    ap.add_argument("--listen", default=None, help="IP/Port to listen on (e.g. :3000)")
    ap.add_argument("--max-size", dest="max_size", default=None, help="Maximum map size requestable (0x0 = unbounded)")
    ap.add_argument("--rate-limit", dest="rate_limit", type=float, default=None, help="Requests allowed per client per interval")
    ap.add_argument("--rate-limit-time", dest="rate_limit_time", default=None, help="Rate limit interval (e.g. 1s)")
    ap.add_argument("--tile-url", dest="tile_url", default=None, help="Base layer tile URL with {z}/{x}/{y}")
    ap.add_argument("--log-level", dest="log_level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    ap.add_argument("--version", action="store_true", help="Print version information and exit")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    if args.version:
        print(f"staticmap {__version__}")
        return 0

    overrides = {k: v for k, v in vars(args).items() if k not in ("config", "version")}
    try:
        settings = load_settings(args.config).merged(overrides)
        setup_logging(settings.log_level, force=True)
        host, port = settings.host_port
        app = create_app(settings)
    except (InvalidInput, ValueError, OSError) as e:
        log.error("initializing app: %s", e)
        return 1

    log.info("staticmap started", extra={"version": __version__, "listen": f"{host}:{port}", "cache_dir": settings.cache_dir})
    # log_config=None: uvicorn's loggers propagate to our JSON root handler
    uvicorn.run(app, host=host, port=port, log_config=None, access_log=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
