from __future__ import annotations

"""
Parameter parsing: raw, attacker-controllable strings/JSON -> validated MapRequest.

GET form:
    center=52.5,13.4&zoom=12&size=600x300
    &markers=color:blue|size:tiny|52.5,13.4|52.6,13.5   (repeatable)
    &overlays=https://tiles.example/{0}/{1}/{2}.png      (repeatable)
    &no-attribution=true

POST form (JSON):
    {"center": {"lat": 52.5, "lon": 13.4}, "zoom": 12, "width": 600, "height": 300,
     "markers": [{"size": "tiny", "color": "blue", "coord": {"lat": 52.5, "lon": 13.4}}],
     "overlays": ["https://tiles.example/{0}/{1}/{2}.png"], "disable_attribution": false}

Every failure raises an InvalidInput subclass; nothing partial is ever returned.
"""

import hashlib
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from common.errors import (
    InvalidColorHex,
    InvalidFormat,
    InvalidInput,
    MissingPlaceholder,
    SizeExceedsBounds,
    UnknownMarkerColor,
    UnknownMarkerSize,
    UnparsableMarkerToken,
)
from common.types import RGBA, MapRequest, Marker, OverlaySpec, Point


MARKER_SIZES: Dict[str, float] = {
    "tiny": 10.0,
    "mid": 15.0,
    "small": 20.0,
}

MARKER_COLORS: Dict[str, RGBA] = {
    "black": RGBA(145, 145, 145, 255),
    "brown": RGBA(178, 154, 123, 255),
    "green": RGBA(168, 196, 68, 255),
    "purple": RGBA(177, 150, 191, 255),
    "yellow": RGBA(237, 201, 107, 255),
    "blue": RGBA(163, 196, 253, 255),
    "gray": RGBA(204, 204, 204, 255),
    "orange": RGBA(229, 165, 68, 255),
    "red": RGBA(246, 118, 112, 255),
    "white": RGBA(245, 244, 241, 255),
}

DEFAULT_MARKER_SIZE = "small"
DEFAULT_MARKER_COLOR = "red"

# raw placeholder -> (engine placeholder, field name reported when missing)
OVERLAY_PLACEHOLDERS: Tuple[Tuple[str, str, str], ...] = (
    ("{0}", "{z}", "zoom"),
    ("{1}", "{x}", "x"),
    ("{2}", "{y}", "y"),
)
OVERLAY_TILE_SIZE = 256

_FLOAT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$", re.ASCII)
_SIZE_RE = re.compile(r"^(\d+)x(\d+)$", re.ASCII)
_INT_RE = re.compile(r"^\d+$", re.ASCII)
_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$", re.ASCII)


# -------------------------
# POST envelope
# -------------------------
class JsonPoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lat: float
    lon: float


class JsonMarker(BaseModel):
    model_config = ConfigDict(extra="ignore")

    size: str = ""
    color: str = ""
    coord: JsonPoint

    def to_raw(self) -> str:
        """Equivalent GET marker string, so both forms share one state machine."""
        parts: List[str] = []
        if self.size:
            parts.append(f"size:{self.size}")
        if self.color:
            parts.append(f"color:{self.color}")
        # repr() round-trips floats exactly
        parts.append(f"{self.coord.lat!r},{self.coord.lon!r}")
        return "|".join(parts)


class MapEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    center: JsonPoint
    zoom: int
    width: int
    height: int
    markers: List[JsonMarker] = Field(default_factory=list)
    disable_attribution: bool = False
    overlays: List[str] = Field(default_factory=list)


# -------------------------
# Marker state machine
# -------------------------
@dataclass
class _MarkerState:
    """Size/color applied to the next coordinate token of one raw marker string."""
    size: float
    color: RGBA

    @classmethod
    def initial(cls) -> "_MarkerState":
        return cls(size=MARKER_SIZES[DEFAULT_MARKER_SIZE], color=MARKER_COLORS[DEFAULT_MARKER_COLOR])


def parse_hex_color(hex_digits: str) -> RGBA:
    """'rrggbb' or 'rrggbbaa' -> RGBA."""
    if not _HEX_RE.fullmatch(hex_digits):
        raise InvalidColorHex(f"invalid hex color {hex_digits!r} (expected 6 or 8 hex digits)", field="color")
    vals = [int(hex_digits[i:i + 2], 16) for i in range(0, len(hex_digits), 2)]
    if len(vals) == 3:
        vals.append(255)
    return RGBA(*vals)


@contextmanager
def _param(name: str) -> Iterator[None]:
    """Tag InvalidInput raised inside the block with the request parameter it came from."""
    try:
        yield
    except InvalidInput as e:
        if e.param is None:
            e.param = name
        raise


def _get_all(params: Any, name: str) -> List[str]:
    if hasattr(params, "getlist"):
        return list(params.getlist(name))
    v = params.get(name)
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return [str(x) for x in v]
    return [str(v)]


def _get_one(params: Any, name: str) -> str:
    vals = _get_all(params, name)
    return vals[0] if vals else ""


class ParameterParser:
    """
    Turns loosely-structured request parameters into a MapRequest.

    Params:
        max_width, max_height: size bounds; enforced only when both are > 0
                               (0 on either axis = unbounded).
    """

    def __init__(self, max_width: int = 0, max_height: int = 0):
        self.max_width = int(max_width)
        self.max_height = int(max_height)

    @property
    def bounded(self) -> bool:
        return self.max_width > 0 and self.max_height > 0

    # ----------------------------
    # Field parsers
    # ----------------------------
    def parse_point(self, s: Optional[str], field: str = "coordinate") -> Point:
        if not s:
            raise InvalidFormat(f"no {field} given", field=field)
        parts = s.split(",")
        if len(parts) != 2:
            raise InvalidFormat(f"{field} {s!r} not in format lat,lon", field=field)
        lat_s, lon_s = parts
        if not _FLOAT_RE.fullmatch(lat_s):
            raise InvalidFormat(f"latitude {lat_s!r} not parseable as float", field="latitude")
        if not _FLOAT_RE.fullmatch(lon_s):
            raise InvalidFormat(f"longitude {lon_s!r} not parseable as float", field="longitude")
        return Point(float(lat_s), float(lon_s))

    def parse_zoom(self, s: Optional[str]) -> int:
        if not s or not _INT_RE.fullmatch(s):
            raise InvalidFormat(f"zoom {s!r} is not a non-negative integer", field="zoom")
        return int(s)

    def parse_size(self, s: Optional[str]) -> Tuple[int, int]:
        """
        'WxH' -> (W, H). "0x0" passes here; MapRequest rejects zero dimensions,
        while config uses it to mean "unbounded".
        """
        if not s:
            raise InvalidFormat("no size given", field="size")
        m = _SIZE_RE.fullmatch(s)
        if not m:
            raise InvalidFormat(f"size {s!r} not in format 600x300", field="size")
        w, h = int(m.group(1)), int(m.group(2))
        self.check_bounds(w, h)
        return w, h

    def check_bounds(self, width: int, height: int) -> None:
        if self.bounded and (width > self.max_width or height > self.max_height):
            raise SizeExceedsBounds(
                f"map size exceeds allowed bounds of {self.max_width}x{self.max_height}", field="size"
            )

    def parse_markers(self, raw_list: Optional[Iterable[str]]) -> List[Marker]:
        """
        Each raw string is a '|'-separated token sequence processed left to right.
        size:/color: tokens update the state used by the coordinate tokens after them;
        the state resets to small/red at the start of every raw string.
        """
        result: List[Marker] = []
        for raw in raw_list or ():
            state = _MarkerState.initial()
            for token in raw.split("|"):
                if token.startswith("size:"):
                    name = token[len("size:"):]
                    if name not in MARKER_SIZES:
                        raise UnknownMarkerSize(f"bad marker size {name!r}", field="size")
                    state.size = MARKER_SIZES[name]
                elif token.startswith("color:0x"):
                    state.color = parse_hex_color(token[len("color:0x"):])
                elif token.startswith("color:"):
                    name = token[len("color:"):]
                    if name not in MARKER_COLORS:
                        raise UnknownMarkerColor(f"bad color name {name!r}", field="color")
                    state.color = MARKER_COLORS[name]
                else:
                    try:
                        pos = self.parse_point(token)
                    except InvalidFormat as e:
                        raise UnparsableMarkerToken(
                            f"unparsable chunk found in marker: {token!r}", field=token
                        ) from e
                    result.append(Marker(position=pos, color=state.color, size=state.size))
        return result

    def parse_overlays(self, patterns: Optional[Iterable[str]]) -> List[OverlaySpec]:
        result: List[OverlaySpec] = []
        for pat in patterns or ():
            for raw, _, name in OVERLAY_PLACEHOLDERS:
                if raw not in pat:
                    raise MissingPlaceholder(f"placeholder {raw} ({name}) not found in pattern {pat!r}", field=name)
            template = pat
            for raw, engine, _ in OVERLAY_PLACEHOLDERS:
                template = template.replace(raw, engine)
            result.append(
                OverlaySpec(
                    pattern=pat,
                    url_template=template,
                    name=hashlib.sha256(template.encode("utf-8")).hexdigest(),
                    tile_size=OVERLAY_TILE_SIZE,
                )
            )
        return result

    # ----------------------------
    # Request parsers
    # ----------------------------
    def parse_query(self, params: Union[Mapping[str, Any], Any]) -> MapRequest:
        """
        GET parameters -> MapRequest. `params` may be a plain mapping (values str or list)
        or a multi-dict with getlist() (e.g. starlette QueryParams).
        """
        with _param("center"):
            center = self.parse_point(_get_one(params, "center"), field="center")
        with _param("zoom"):
            zoom = self.parse_zoom(_get_one(params, "zoom"))
        with _param("size"):
            width, height = self.parse_size(_get_one(params, "size"))
        with _param("markers"):
            markers = self.parse_markers(_get_all(params, "markers"))
        with _param("overlays"):
            overlays = self.parse_overlays(_get_all(params, "overlays"))
        with _param("size"):
            return MapRequest(
                center=center,
                zoom=zoom,
                width=width,
                height=height,
                markers=tuple(markers),
                overlays=tuple(overlays),
                disable_attribution=_get_one(params, "no-attribution") == "true",
            )

    def parse_json(self, body: Union[bytes, str, Mapping[str, Any]]) -> MapRequest:
        """POST body (raw JSON or already-decoded dict) -> MapRequest."""
        try:
            if isinstance(body, (bytes, str)):
                env = MapEnvelope.model_validate_json(body)
            else:
                env = MapEnvelope.model_validate(body)
        except ValidationError as e:
            raise InvalidFormat(_summarize(e), field="body", param="body") from e
        return self.from_envelope(env)

    def from_envelope(self, env: MapEnvelope) -> MapRequest:
        with _param("center"):
            center = Point(env.center.lat, env.center.lon)
        with _param("size"):
            self.check_bounds(env.width, env.height)
        with _param("markers"):
            markers = self.parse_markers([m.to_raw() for m in env.markers])
        with _param("overlays"):
            overlays = self.parse_overlays(env.overlays)
        with _param("body"):
            return MapRequest(
                center=center,
                zoom=env.zoom,
                width=env.width,
                height=env.height,
                markers=tuple(markers),
                overlays=tuple(overlays),
                disable_attribution=env.disable_attribution,
            )


def _summarize(e: ValidationError) -> str:
    errs = e.errors()
    if not errs:
        return "invalid JSON body"
    first = errs[0]
    loc = ".".join(str(p) for p in first.get("loc", ())) or "body"
    return f"{loc}: {first.get('msg', 'invalid value')}"
