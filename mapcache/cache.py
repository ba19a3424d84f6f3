from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from common.errors import CacheIOFailure, CacheReadFailure, RenderFailure
from common.types import MapRequest
from mapcache.cache_key import derive_key


log = logging.getLogger(__name__)

RenderFn = Callable[[MapRequest], bytes]

_KEY_RE = re.compile(r"[0-9a-f]{8,128}")


@dataclass(frozen=True)
class CacheResult:
    data: bytes
    content_type: str
    key: str
    hit: bool


class _KeyLocks:
    """Refcounted per-key locks; entries disappear once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class RenderCache:
    """
    Filesystem render cache keyed by request digest.

        root/
          └─ {key[:2]}/
              └─ {key}.png

    The file's mtime is the only metadata: an entry is fresh while mtime + ttl
    lies in the future. Stale entries are overwritten on their next miss and are
    otherwise never removed; the store grows without bound unless prune() is run.

    Params:
        root: cache directory (created lazily)
        ttl: freshness window in seconds; <= 0 disables caching (always render, never persist)
        render: default render function, MapRequest -> encoded image bytes
        coalesce: serialize concurrent misses on the same key inside this process
    """

    def __init__(
        self,
        root: Union[str, Path],
        ttl: float,
        render: Optional[RenderFn] = None,
        *,
        shard_chars: int = 2,
        extension: str = "png",
        content_type: str = "image/png",
        coalesce: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.root = Path(root)
        self.ttl = float(ttl)
        self.render = render
        self.shard_chars = int(shard_chars)
        self.extension = extension
        self.content_type = content_type
        self.coalesce = coalesce
        self._clock = clock
        self._inflight = _KeyLocks()

    # -------- public API --------

    def path_for(self, key: str) -> Path:
        if not _KEY_RE.fullmatch(key):
            raise ValueError(f"cache key must be lowercase hex, got {key!r}")
        return self.root / key[: self.shard_chars] / f"{key}.{self.extension}"

    def get(self, key: str, request: MapRequest, render: Optional[RenderFn] = None) -> CacheResult:
        """
        Return the cached image for `key` if fresh, else render `request`, persist and return it.

        Raises RenderFailure if rendering fails. Persist errors are logged only.
        """
        render = render or self.render
        if render is None:
            raise ValueError("no render function configured")
        path = self.path_for(key)

        data = self._read_fresh(path)
        if data is not None:
            log.debug("cache hit", extra={"key": key})
            return CacheResult(data=data, content_type=self.content_type, key=key, hit=True)

        if self.ttl <= 0 or not self.coalesce:
            return self._populate(key, path, request, render)

        with self._inflight.hold(key):
            # someone else may have filled it while we waited
            data = self._read_fresh(path)
            if data is not None:
                log.debug("cache hit after wait", extra={"key": key})
                return CacheResult(data=data, content_type=self.content_type, key=key, hit=True)
            return self._populate(key, path, request, render)

    def get_for(self, request: MapRequest, render: Optional[RenderFn] = None) -> CacheResult:
        return self.get(derive_key(request), request, render)

    def prune(self, max_age: Optional[float] = None) -> int:
        """
        Opt-in sweep: delete entries (and orphaned temp files) whose mtime is older
        than `max_age` seconds (default: ttl). Never called by get(). Returns count removed.
        """
        age = self.ttl if max_age is None else float(max_age)
        if age <= 0:
            raise ValueError("prune needs a positive max_age (or a positive ttl)")
        if not self.root.is_dir():
            return 0
        cutoff = self._clock() - age
        removed = 0
        for shard in self.root.iterdir():
            if not shard.is_dir():
                continue
            for f in shard.iterdir():
                if not (f.name.endswith("." + self.extension) or f.name.endswith(".tmp")):
                    continue
                try:
                    if f.stat().st_mtime < cutoff:
                        f.unlink()
                        removed += 1
                except FileNotFoundError:
                    continue
        log.info("cache pruned", extra={"root": str(self.root), "removed": removed, "max_age_s": age})
        return removed

    # -------- internals --------

    def _read_fresh(self, path: Path) -> Optional[bytes]:
        if self.ttl <= 0:
            return None
        try:
            st = path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.info("cache stat failed, re-rendering: %s", e)
            return None
        if st.st_mtime + self.ttl <= self._clock():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            # vanished or unreadable between stat and open: treat as a miss
            err = CacheReadFailure(f"reading {path}: {e}")
            log.info("cache read failed, re-rendering: %s", err)
            return None

    def _populate(self, key: str, path: Path, request: MapRequest, render: RenderFn) -> CacheResult:
        t0 = time.perf_counter()
        try:
            data = render(request)
        except RenderFailure:
            raise
        except Exception as e:
            raise RenderFailure(f"rendering map: {e}") from e
        if not data:
            raise RenderFailure("render returned no image data")
        data = bytes(data)
        log.debug(
            "cache miss rendered",
            extra={"key": key, "bytes": len(data), "render_ms": int((time.perf_counter() - t0) * 1e3)},
        )

        if self.ttl > 0:
            try:
                self._persist(path, data)
            except CacheIOFailure as e:
                log.warning("persisting cached map failed: %s", e, extra={"key": key})
        return CacheResult(data=data, content_type=self.content_type, key=key, hit=False)

    def _persist(self, path: Path, data: bytes) -> None:
        """Write to a temp file in the shard directory, then rename over the final path."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOFailure(f"creating {path.parent}: {e}") from e

        tmp: Optional[str] = None
        try:
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp, 0o644)
            os.replace(tmp, path)
            tmp = None
        except OSError as e:
            raise CacheIOFailure(f"writing {path}: {e}") from e
        finally:
            if tmp is not None:
                try:
                    os.unlink(tmp)
                except OSError as e:
                    log.debug("removing temp file %s failed: %s", tmp, e)
