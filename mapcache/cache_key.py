from __future__ import annotations

import hashlib
from typing import Optional

from common.types import MapRequest
from mapcache.version import BUILD_VERSION


def _sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def canonical_string(request: MapRequest, version: Optional[str] = None) -> str:
    """
    Fixed-order text form of everything that influences the rendered image:

        {version}:::{center}|{zoom}|{marker+marker+...}|{w}x{h}|{true|false}|{sha256(overlay::overlay)}

    Markers keep their request order; reordering them yields a different key.
    """
    markers = "+".join(m.canonical() for m in request.markers)
    overlays = _sha256_hex("::".join(o.pattern for o in request.overlays))
    return "{}:::{}|{}|{}|{}x{}|{}|{}".format(
        BUILD_VERSION if version is None else version,
        request.center.canonical(),
        request.zoom,
        markers,
        request.width,
        request.height,
        "true" if request.disable_attribution else "false",
        overlays,
    )


def derive_key(request: MapRequest, version: Optional[str] = None) -> str:
    """64-char sha256 hex digest of canonical_string(); stable across processes."""
    return _sha256_hex(canonical_string(request, version))
