from __future__ import annotations

import math
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from common.config import Settings
from common.errors import InvalidInput, RenderFailure
from common.logging_setup import get_logger
from common.types import MapRequest
from common.utils import SlidingWindowLimiter
from mapcache import ParameterParser, RenderCache, derive_key
from mapcache.cache import RenderFn
from mapcache.version import __version__
from renderer import StaticMapRenderer


log = get_logger("mapserver")


def client_id(request: Request) -> str:
    """Rate-limit identity: X-Forwarded-For (first hop), X-Real-IP, then the socket peer."""
    fwd = request.headers.get("x-forwarded-for")
    if fwd and fwd.split(",")[0].strip():
        return fwd.split(",")[0].strip()
    real = request.headers.get("x-real-ip")
    if real and real.strip():
        return real.strip()
    return request.client.host if request.client else "unknown"


def create_app(settings: Settings, render: Optional[RenderFn] = None) -> FastAPI:
    """
    Build the HTTP app around one parser and one render cache.

    Endpoints:
      GET  /status   -> "I'm fine"
      GET  /map.png  -> query parameters (center, zoom, size, markers*, overlays*, no-attribution)
      POST /map.png  -> JSON envelope (see mapcache.params)

    `render` replaces the tile renderer (tests, alternative engines).
    """
    max_w, max_h = ParameterParser().parse_size(settings.max_size)
    parser = ParameterParser(max_width=max_w, max_height=max_h)
    if render is None:
        render = StaticMapRenderer(settings.tile_url, user_agent=settings.user_agent or None).render
    cache = RenderCache(settings.cache_dir, settings.ttl_seconds, render)
    limit = math.ceil(settings.rate_limit) if settings.rate_limit > 0 else 0
    limiter = SlidingWindowLimiter(limit=limit, window=settings.rate_window_seconds)

    app = FastAPI(title="staticmap", version=__version__)
    app.state.settings = settings
    app.state.parser = parser
    app.state.cache = cache
    app.state.limiter = limiter

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        t0 = time.perf_counter()
        response = await call_next(request)
        log.info(
            "%s %s %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={"client": client_id(request), "ms": int((time.perf_counter() - t0) * 1e3)},
        )
        return response

    def _limited(request: Request) -> Optional[Response]:
        if limiter.allow(client_id(request)):
            return None
        return PlainTextResponse("You have reached maximum request limit.", status_code=429)

    def _serve(map_req: MapRequest, request: Request) -> Response:
        key = derive_key(map_req)
        try:
            result = cache.get(key, map_req)
        except RenderFailure as e:
            log.error("map render failed: %s (Request: %s)", e, request.url, extra={"request": map_req.to_meta()})
            return PlainTextResponse(f"I experienced difficulties rendering your map: {e}", status_code=500)
        headers = {
            "Cache-Control": "public",
            "X-Cache": "HIT" if result.hit else "MISS",
        }
        return Response(content=result.data, media_type=result.content_type, headers=headers)

    @app.get("/status")
    def status():
        return PlainTextResponse("I'm fine")

    @app.get("/map.png")
    def get_map(request: Request):
        limited = _limited(request)
        if limited is not None:
            return limited
        try:
            map_req = parser.parse_query(request.query_params)
        except InvalidInput as e:
            return PlainTextResponse(f"Unable to parse '{e.param}' parameter: {e}", status_code=400)
        return _serve(map_req, request)

    @app.post("/map.png")
    async def post_map(request: Request):
        limited = _limited(request)
        if limited is not None:
            return limited
        body = await request.body()
        try:
            map_req = parser.parse_json(body)
        except InvalidInput as e:
            return PlainTextResponse(f"Unable to process input: {e}", status_code=400)
        # blocking render/disk I/O off the event loop; it finishes even if the client goes away
        return await run_in_threadpool(_serve, map_req, request)

    return app
