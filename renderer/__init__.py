"""
Render engine: turns a validated MapRequest into PNG bytes

- Base layer + overlay tiles fetched over HTTP (requests), decoded/composited with OpenCV
- Markers drawn as pins in request order, attribution bottom-right unless disabled
- Failures raise RuntimeError; mapcache.RenderCache reports them as RenderFailure
"""
from .engine import StaticMapRenderer

__all__ = ["StaticMapRenderer"]
