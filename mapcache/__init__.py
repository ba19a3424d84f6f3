"""
mapcache: request normalization and content-addressable render cache

- ParameterParser: raw GET query / POST JSON -> validated MapRequest (fail-fast)
- derive_key: MapRequest -> 64-char sha256 hex, sensitive to every field and the build version
- RenderCache: lookup-or-populate against {root}/{key[:2]}/{key}.png with atomic persistence

Usage:
    parser = ParameterParser(max_width=1024, max_height=1024)
    req = parser.parse_query({"center": "52.5,13.4", "zoom": "12", "size": "600x300"})
    cache = RenderCache("cache", ttl=86400, render=StaticMapRenderer().render)
    result = cache.get(derive_key(req), req)
"""
from .cache import CacheResult, RenderCache
from .cache_key import canonical_string, derive_key
from .params import ParameterParser
from .version import BUILD_VERSION, __version__

__all__ = [
    "BUILD_VERSION",
    "CacheResult",
    "ParameterParser",
    "RenderCache",
    "__version__",
    "canonical_string",
    "derive_key",
]
