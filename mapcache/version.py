import os

__version__ = "0.3.0"

# Tag mixed into every cache key; bump (or set STATICMAP_BUILD) when rendering output changes.
BUILD_VERSION = os.environ.get("STATICMAP_BUILD") or __version__
