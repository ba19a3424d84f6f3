from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from common.utils import parse_duration


DEFAULT_CONFIG_PATH = "config/params.yaml"
ENV_PREFIX = "STATICMAP_"

# params.yaml section/key -> Settings field
_YAML_KEYS: Dict[Tuple[str, str], str] = {
    ("cache", "dir"): "cache_dir",
    ("cache", "force_cache"): "force_cache",
    ("server", "listen"): "listen",
    ("server", "rate_limit"): "rate_limit",
    ("server", "rate_limit_time"): "rate_limit_time",
    ("map", "max_size"): "max_size",
    ("map", "tile_url"): "tile_url",
    ("map", "user_agent"): "user_agent",
    ("logging", "level"): "log_level",
}


@dataclass(frozen=True)
class Settings:
    """
    Service configuration.

    cache_dir:       directory to save the cached images to
    force_cache:     freshness window of a cached map ("24h"; 0 disables caching)
    listen:          host:port to listen on (":3000" = all interfaces)
    max_size:        maximum requestable map size ("0x0" = unbounded)
    rate_limit:      requests allowed per client per `rate_limit_time` (0 disables)
    rate_limit_time: rate limiting window
    tile_url:        base layer tile URL with {z}/{x}/{y}
    user_agent:      User-Agent sent to tile servers (empty = built-in)
    log_level:       root log level
    """
    cache_dir: str = "cache"
    force_cache: str = "24h"
    listen: str = ":3000"
    max_size: str = "1024x1024"
    rate_limit: float = 1.0
    rate_limit_time: str = "1s"
    tile_url: str = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
    user_agent: str = ""
    log_level: str = "INFO"

    @property
    def ttl_seconds(self) -> float:
        return parse_duration(self.force_cache)

    @property
    def rate_window_seconds(self) -> float:
        return parse_duration(self.rate_limit_time)

    @property
    def host_port(self) -> Tuple[str, int]:
        host, sep, port = self.listen.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"listen address {self.listen!r} not in format host:port")
        return (host or "0.0.0.0"), int(port)

    def merged(self, overrides: Mapping[str, Any]) -> "Settings":
        """Copy with non-None overrides applied (unknown keys rejected)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise KeyError(f"unknown settings: {sorted(unknown)}")
        return replace(self, **{k: _coerce(k, v) for k, v in overrides.items() if v is not None})


def _coerce(name: str, value: Any) -> Any:
    if name == "rate_limit":
        return float(value)
    return str(value)


def _from_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        doc = yaml.safe_load(f) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    out: Dict[str, Any] = {}
    for (section, key), name in _YAML_KEYS.items():
        sec = doc.get(section) or {}
        if isinstance(sec, dict) and key in sec:
            out[name] = sec[key]
    return out


def _from_env(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in fields(Settings):
        key = ENV_PREFIX + f.name.upper()
        if key in env and env[key] != "":
            out[f.name] = env[key]
    return out


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Defaults -> YAML file -> STATICMAP_* environment.
    A missing config file is not an error (defaults are used).
    """
    env = os.environ if env is None else env
    cfg_path = Path(path or env.get(ENV_PREFIX + "CONFIG") or DEFAULT_CONFIG_PATH)
    settings = Settings()
    if cfg_path.exists():
        settings = settings.merged(_from_yaml(cfg_path))
    settings = settings.merged(_from_env(env))
    # fail early on malformed durations
    _ = settings.ttl_seconds
    _ = settings.rate_window_seconds
    return settings
