"""HSB / RGB / hex color conversions.

The controller speaks HSB (``"H,S,B"`` with H in 0–359 and S, B in 0–100);
users usually think in hex or RGB. Hex ↔ RGB is exact. HSB ↔ RGB round-trips
exactly for colors representable on the integer HSB grid.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from habdash.errors import ParseError

_HEX_PATTERN = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$")


def _clamp(value: float, low: int, high: int) -> int:
    return int(max(low, min(high, round(value))))


@dataclass(frozen=True)
class HSB:
    """Hue (0–359), saturation (0–100) and brightness (0–100)."""

    hue: int
    saturation: int
    brightness: int

    @classmethod
    def clamped(cls, hue: float, saturation: float, brightness: float) -> HSB:
        return cls(
            hue=int(round(hue)) % 360,
            saturation=_clamp(saturation, 0, 100),
            brightness=_clamp(brightness, 0, 100),
        )

    @classmethod
    def parse(cls, state: str) -> HSB:
        """Parse a controller color state such as ``"120,50,80"``."""
        parts = [p.strip() for p in state.split(",")]
        if len(parts) != 3:
            raise ParseError(f"Color state must have three components: {state!r}")
        try:
            hue, saturation, brightness = (float(p) for p in parts)
        except ValueError as exc:
            raise ParseError(f"Color state has non-numeric components: {state!r}") from exc
        return cls.clamped(hue, saturation, brightness)

    def to_command(self) -> str:
        return f"{self.hue}, {self.saturation}, {self.brightness}"

    def to_rgb(self) -> tuple[int, int, int]:
        return hsb_to_rgb(self)

    def to_hex(self) -> str:
        return rgb_to_hex(hsb_to_rgb(self))


def hsb_to_rgb(color: HSB) -> tuple[int, int, int]:
    saturation = color.saturation / 100.0
    value = color.brightness / 100.0
    chroma = value * saturation
    sector = (color.hue % 360) / 60.0
    x = chroma * (1 - abs(sector % 2 - 1))
    if sector < 1:
        r1, g1, b1 = chroma, x, 0.0
    elif sector < 2:
        r1, g1, b1 = x, chroma, 0.0
    elif sector < 3:
        r1, g1, b1 = 0.0, chroma, x
    elif sector < 4:
        r1, g1, b1 = 0.0, x, chroma
    elif sector < 5:
        r1, g1, b1 = x, 0.0, chroma
    else:
        r1, g1, b1 = chroma, 0.0, x
    m = value - chroma
    return (
        _clamp((r1 + m) * 255, 0, 255),
        _clamp((g1 + m) * 255, 0, 255),
        _clamp((b1 + m) * 255, 0, 255),
    )


def rgb_to_hsb(red: int, green: int, blue: int) -> HSB:
    for component in (red, green, blue):
        if not 0 <= component <= 255:
            raise ParseError(f"RGB component out of range 0-255: {component}")
    r, g, b = red / 255.0, green / 255.0, blue / 255.0
    high = max(r, g, b)
    low = min(r, g, b)
    delta = high - low

    if delta == 0:
        hue = 0.0
    elif high == r:
        hue = 60 * (((g - b) / delta) % 6)
    elif high == g:
        hue = 60 * ((b - r) / delta + 2)
    else:
        hue = 60 * ((r - g) / delta + 4)

    saturation = 0.0 if high == 0 else delta / high
    return HSB.clamped(hue, saturation * 100, high * 100)


def rgb_to_hex(rgb: tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    match = _HEX_PATTERN.match(value.strip())
    if match is None:
        raise ParseError(f"Not a hex color: {value!r}")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def hex_to_hsb(value: str) -> HSB:
    return rgb_to_hsb(*hex_to_rgb(value))
