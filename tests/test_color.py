"""Tests for HSB / RGB / hex conversions."""

from __future__ import annotations

import pytest

from habdash.controls.color import (
    HSB,
    hex_to_hsb,
    hex_to_rgb,
    hsb_to_rgb,
    rgb_to_hex,
    rgb_to_hsb,
)
from habdash.errors import ParseError

pytestmark = pytest.mark.unit


class TestHSB:
    def test_parse(self):
        assert HSB.parse("120,50,80") == HSB(120, 50, 80)
        assert HSB.parse(" 240.4 , 100 , 0 ") == HSB(240, 100, 0)

    def test_parse_clamps_and_wraps(self):
        assert HSB.parse("370,150,-5") == HSB(10, 100, 0)

    @pytest.mark.parametrize("state", ["", "1,2", "a,b,c", "1,2,3,4"])
    def test_parse_rejects(self, state):
        with pytest.raises(ParseError):
            HSB.parse(state)

    def test_to_command(self):
        assert HSB(0, 100, 100).to_command() == "0, 100, 100"


class TestConversions:
    @pytest.mark.parametrize(
        ("hsb", "rgb"),
        [
            (HSB(0, 100, 100), (255, 0, 0)),
            (HSB(120, 100, 100), (0, 255, 0)),
            (HSB(240, 100, 100), (0, 0, 255)),
            (HSB(60, 100, 100), (255, 255, 0)),
            (HSB(0, 0, 100), (255, 255, 255)),
            (HSB(0, 0, 0), (0, 0, 0)),
        ],
    )
    def test_primary_colors(self, hsb, rgb):
        assert hsb_to_rgb(hsb) == rgb
        assert rgb_to_hsb(*rgb) == hsb

    def test_hex(self):
        assert rgb_to_hex((255, 128, 0)) == "#ff8000"
        assert hex_to_rgb("#FF8000") == (255, 128, 0)
        assert hex_to_rgb("ff8000") == (255, 128, 0)
        assert hex_to_rgb("#f80") == (255, 136, 0)

    def test_hex_to_hsb(self):
        assert hex_to_hsb("#00ff00") == HSB(120, 100, 100)
        assert HSB(120, 100, 100).to_hex() == "#00ff00"

    @pytest.mark.parametrize("value", ["", "#12345", "#gggggg", "blue"])
    def test_bad_hex(self, value):
        with pytest.raises(ParseError):
            hex_to_rgb(value)

    def test_rgb_out_of_range(self):
        with pytest.raises(ParseError):
            rgb_to_hsb(256, 0, 0)
