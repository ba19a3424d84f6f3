"""
Unit tests for the parameter parser
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

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
from common.types import RGBA, Point
from mapcache.params import MARKER_COLORS, MARKER_SIZES, ParameterParser, parse_hex_color


@pytest.fixture
def parser():
    return ParameterParser()


class TestParsePoint:
    def test_valid(self, parser):
        assert parser.parse_point("52.5,13.4") == Point(52.5, 13.4)

    def test_negative_and_exponent(self, parser):
        p = parser.parse_point("-33.9,1.5e2")
        assert p.lat == -33.9
        assert p.lon == 150.0

    @pytest.mark.parametrize("raw", ["52.5", "52.5,13.4,1", "", "52.5;13.4"])
    def test_bad_shape(self, parser, raw):
        with pytest.raises(InvalidFormat):
            parser.parse_point(raw)

    def test_bad_latitude_named(self, parser):
        with pytest.raises(InvalidFormat) as ei:
            parser.parse_point("abc,13.4")
        assert ei.value.field == "latitude"

    def test_bad_longitude_named(self, parser):
        with pytest.raises(InvalidFormat) as ei:
            parser.parse_point("52.5,east")
        assert ei.value.field == "longitude"

    @pytest.mark.parametrize("raw", ["nan,1", "1,inf", " 52.5,13.4", "52.5,13.4\n", "1_0,2"])
    def test_strict_numbers(self, parser, raw):
        with pytest.raises(InvalidFormat):
            parser.parse_point(raw)

    def test_out_of_range(self, parser):
        with pytest.raises(InvalidFormat) as ei:
            parser.parse_point("91,0")
        assert ei.value.field == "latitude"
        with pytest.raises(InvalidFormat) as ei:
            parser.parse_point("0,-180.5")
        assert ei.value.field == "longitude"


class TestParseSize:
    def test_valid(self, parser):
        assert parser.parse_size("600x300") == (600, 300)

    @pytest.mark.parametrize("raw", ["600", "600x", "x300", "600X300", "600x300x2", "-1x300", "6.5x3", ""])
    def test_bad_shape(self, parser, raw):
        with pytest.raises(InvalidFormat):
            parser.parse_size(raw)

    def test_zero_accepted(self, parser):
        assert parser.parse_size("0x0") == (0, 0)

    def test_bounds_enforced(self):
        p = ParameterParser(max_width=1024, max_height=768)
        assert p.parse_size("1024x768") == (1024, 768)
        with pytest.raises(SizeExceedsBounds, match="1024x768"):
            p.parse_size("1025x10")
        with pytest.raises(SizeExceedsBounds):
            p.parse_size("10x769")

    def test_zero_bound_means_unbounded(self):
        assert ParameterParser(max_width=0, max_height=0).parse_size("99999x99999") == (99999, 99999)
        # a zero on either axis disables the check entirely
        assert ParameterParser(max_width=100, max_height=0).parse_size("5000x5000") == (5000, 5000)


class TestParseMarkers:
    def test_state_applies_to_later_coordinates(self, parser):
        markers = parser.parse_markers(["color:blue|size:tiny|52.5,13.4|13.5,14.4"])
        assert len(markers) == 2
        for m in markers:
            assert m.color == MARKER_COLORS["blue"]
            assert m.size == MARKER_SIZES["tiny"]
        assert markers[0].position == Point(52.5, 13.4)
        assert markers[1].position == Point(13.5, 14.4)

    def test_defaults(self, parser):
        (m,) = parser.parse_markers(["1,2"])
        assert m.color == MARKER_COLORS["red"]
        assert m.size == MARKER_SIZES["small"]

    def test_state_changes_midway(self, parser):
        a, b = parser.parse_markers(["1,1|color:green|size:mid|2,2"])
        assert (a.color, a.size) == (MARKER_COLORS["red"], MARKER_SIZES["small"])
        assert (b.color, b.size) == (MARKER_COLORS["green"], MARKER_SIZES["mid"])

    def test_state_resets_per_raw_string(self, parser):
        a, b = parser.parse_markers(["color:blue|size:tiny|1,1", "2,2"])
        assert a.color == MARKER_COLORS["blue"]
        assert b.color == MARKER_COLORS["red"]
        assert b.size == MARKER_SIZES["small"]

    def test_order_preserved(self, parser):
        markers = parser.parse_markers(["3,3|1,1", "2,2"])
        assert [m.position.lat for m in markers] == [3.0, 1.0, 2.0]

    def test_style_only_string_is_inert(self, parser):
        assert parser.parse_markers(["color:blue|size:tiny"]) == []

    def test_none_and_empty(self, parser):
        assert parser.parse_markers(None) == []
        assert parser.parse_markers([]) == []

    def test_hex_colors(self, parser):
        a, b = parser.parse_markers(["color:0xff0080|1,1|color:0x00ff0080|2,2"])
        assert a.color == RGBA(255, 0, 128, 255)
        assert b.color == RGBA(0, 255, 0, 128)

    def test_unknown_size(self, parser):
        with pytest.raises(UnknownMarkerSize, match="huge"):
            parser.parse_markers(["size:huge|1,1"])

    def test_unknown_color(self, parser):
        with pytest.raises(UnknownMarkerColor, match="pink"):
            parser.parse_markers(["color:pink|1,1"])

    @pytest.mark.parametrize("hexpart", ["fff", "gg0000", "ff00000", "ff0000ff00"])
    def test_invalid_hex(self, parser, hexpart):
        with pytest.raises(InvalidColorHex):
            parser.parse_markers([f"color:0x{hexpart}|1,1"])

    def test_unparsable_token_named(self, parser):
        with pytest.raises(UnparsableMarkerToken) as ei:
            parser.parse_markers(["color:blue|somewhere"])
        assert "somewhere" in str(ei.value)
        assert ei.value.field == "somewhere"

    def test_empty_token_is_unparsable(self, parser):
        with pytest.raises(UnparsableMarkerToken):
            parser.parse_markers(["1,1||2,2"])

    def test_fail_fast_returns_nothing(self, parser):
        with pytest.raises(InvalidInput):
            parser.parse_markers(["1,1", "2,2|size:nope"])


class TestParseOverlays:
    def test_valid(self, parser):
        (o,) = parser.parse_overlays(["https://t.example/{0}/{1}/{2}.png"])
        assert o.pattern == "https://t.example/{0}/{1}/{2}.png"
        assert o.url_template == "https://t.example/{z}/{x}/{y}.png"
        assert len(o.name) == 64
        assert o.tile_size == 256

    def test_name_is_stable(self, parser):
        a = parser.parse_overlays(["https://t.example/{0}/{1}/{2}.png"])[0]
        b = parser.parse_overlays(["https://t.example/{0}/{1}/{2}.png"])[0]
        c = parser.parse_overlays(["https://u.example/{0}/{1}/{2}.png"])[0]
        assert a.name == b.name
        assert a.name != c.name

    @pytest.mark.parametrize(
        "pattern,missing",
        [
            ("https://t.example/{1}/{2}.png", "zoom"),
            ("https://t.example/{0}/{2}.png", "x"),
            ("https://t.example/{0}/{1}.png", "y"),
        ],
    )
    def test_missing_placeholder_named(self, parser, pattern, missing):
        with pytest.raises(MissingPlaceholder) as ei:
            parser.parse_overlays([pattern])
        assert ei.value.field == missing
        assert missing in str(ei.value)

    def test_order_preserved(self, parser):
        out = parser.parse_overlays(["a/{0}/{1}/{2}", "b/{0}/{1}/{2}"])
        assert [o.pattern[0] for o in out] == ["a", "b"]


class TestParseQuery:
    def test_full_request(self):
        p = ParameterParser(max_width=1024, max_height=1024)
        req = p.parse_query(
            {
                "center": "52.5,13.4",
                "zoom": "12",
                "size": "600x300",
                "markers": ["color:blue|52.5,13.4", "53,14"],
                "overlays": ["https://t.example/{0}/{1}/{2}.png"],
                "no-attribution": "true",
            }
        )
        assert req.center == Point(52.5, 13.4)
        assert req.zoom == 12
        assert (req.width, req.height) == (600, 300)
        assert len(req.markers) == 2
        assert len(req.overlays) == 1
        assert req.disable_attribution is True

    def test_minimal_request(self, parser):
        req = parser.parse_query({"center": "0,0", "zoom": "0", "size": "256x256"})
        assert req.markers == ()
        assert req.overlays == ()
        assert req.disable_attribution is False

    def test_attribution_flag_must_be_true(self, parser):
        req = parser.parse_query({"center": "0,0", "zoom": "1", "size": "10x10", "no-attribution": "1"})
        assert req.disable_attribution is False

    @pytest.mark.parametrize(
        "params,param",
        [
            ({"zoom": "1", "size": "10x10"}, "center"),
            ({"center": "0,0", "zoom": "-1", "size": "10x10"}, "zoom"),
            ({"center": "0,0", "zoom": "one", "size": "10x10"}, "zoom"),
            ({"center": "0,0", "zoom": "1", "size": "10"}, "size"),
            ({"center": "0,0", "zoom": "1", "size": "0x10"}, "size"),
            ({"center": "0,0", "zoom": "1", "size": "10x10", "markers": "size:xl|1,1"}, "markers"),
            ({"center": "0,0", "zoom": "1", "size": "10x10", "overlays": "x/{0}"}, "overlays"),
        ],
    )
    def test_errors_name_parameter(self, parser, params, param):
        with pytest.raises(InvalidInput) as ei:
            parser.parse_query(params)
        assert ei.value.param == param

    def test_multidict(self, parser):
        class MultiDict(dict):
            def getlist(self, name):
                v = self.get(name)
                return v if isinstance(v, list) else ([v] if v is not None else [])

        req = parser.parse_query(MultiDict(center=["1,2"], zoom=["3"], size=["4x5"], markers=["1,1", "2,2"]))
        assert len(req.markers) == 2


class TestParseJson:
    BODY = {
        "center": {"lat": 52.5, "lon": 13.4},
        "zoom": 12,
        "width": 600,
        "height": 300,
        "markers": [
            {"size": "tiny", "color": "blue", "coord": {"lat": 52.5, "lon": 13.4}},
            {"color": "0x00ff00", "coord": {"lat": 52.51, "lon": 13.41}},
            {"coord": {"lat": 52.123456789, "lon": 13.0}},
        ],
        "overlays": ["https://t.example/{0}/{1}/{2}.png"],
        "disable_attribution": True,
    }

    def test_dict_body(self, parser):
        req = parser.parse_json(self.BODY)
        assert req.center == Point(52.5, 13.4)
        assert (req.width, req.height) == (600, 300)
        a, b, c = req.markers
        assert (a.color, a.size) == (MARKER_COLORS["blue"], MARKER_SIZES["tiny"])
        assert (b.color, b.size) == (parse_hex_color("00ff00"), MARKER_SIZES["small"])
        assert c.color == MARKER_COLORS["red"]
        # coordinates are not truncated on the way through the marker grammar
        assert c.position.lat == 52.123456789
        assert req.overlays[0].url_template == "https://t.example/{z}/{x}/{y}.png"
        assert req.disable_attribution is True

    def test_json_bytes_equal_query_form(self, parser):
        import json

        body = {"center": {"lat": 1.5, "lon": 2.5}, "zoom": 3, "width": 40, "height": 50,
                "markers": [{"size": "mid", "color": "green", "coord": {"lat": 1.0, "lon": 2.0}}]}
        from_json = parser.parse_json(json.dumps(body).encode())
        from_query = parser.parse_query(
            {"center": "1.5,2.5", "zoom": "3", "size": "40x50", "markers": ["size:mid|color:green|1.0,2.0"]}
        )
        assert from_json == from_query

    @pytest.mark.parametrize("body", [b"", b"not json", b"{}", b'{"center": {"lat": 1}, "zoom": 1, "width": 1, "height": 1}'])
    def test_invalid_body(self, parser, body):
        with pytest.raises(InvalidFormat) as ei:
            parser.parse_json(body)
        assert ei.value.param == "body"

    def test_bounds_apply_to_json(self):
        p = ParameterParser(max_width=100, max_height=100)
        body = dict(self.BODY, width=101, height=50)
        with pytest.raises(SizeExceedsBounds):
            p.parse_json(body)

    def test_unbounded_json(self):
        body = dict(TestParseJson.BODY, width=5000, height=5000)
        assert ParameterParser().parse_json(body).width == 5000

    def test_bad_marker_color(self, parser):
        body = dict(self.BODY, markers=[{"color": "pink", "coord": {"lat": 1, "lon": 1}}])
        with pytest.raises(UnknownMarkerColor) as ei:
            parser.parse_json(body)
        assert ei.value.param == "markers"

    def test_zero_width_rejected(self, parser):
        with pytest.raises(InvalidFormat):
            parser.parse_json(dict(self.BODY, width=0))

    def test_out_of_range_center(self, parser):
        with pytest.raises(InvalidFormat) as ei:
            parser.parse_json(dict(self.BODY, center={"lat": 100, "lon": 0}))
        assert ei.value.param == "center"
