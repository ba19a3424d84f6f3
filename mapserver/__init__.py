"""
mapserver: HTTP boundary for the static map service

- GET/POST /map.png: parse -> derive key -> RenderCache -> PNG (X-Cache: HIT|MISS)
- /status health probe
- Per-client rate limiting and JSON access logging

Run:
    python -m mapserver --listen :3000
"""
from .server import create_app

__all__ = ["create_app"]
