"""Per-kind rendering of item states.

:func:`describe_state` handles every :class:`~habdash.models.ItemKind`. A
malformed state never raises: the returned :class:`ItemDisplay` carries the
``ParseError`` so the caller can annotate that one item and move on.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Any

from habdash.controls.color import HSB
from habdash.controls.widgets import parse_percent
from habdash.errors import ParseError
from habdash.history import parse_value
from habdash.models import Item, ItemKind

NO_VALUE = "no value"
_EMPTY_STATES = frozenset({"NULL", "UNDEF", ""})
_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?;base64,(?P<data>.*)$", re.S)


@dataclass
class ItemDisplay:
    """What a list row or detail header shows for one item.

    ``details`` holds the kind-specific decoded fields (``on``, ``percent``,
    ``hsb``/``hex``, ``latitude``/``longitude``/``altitude``,
    ``mime_type``/``size_bytes``, ``value``/``unit``).
    """

    kind: ItemKind
    text: str
    details: dict[str, Any] = field(default_factory=dict)
    error: ParseError | None = None


def parse_location(state: str) -> tuple[float, float, float | None]:
    """Decode ``"lat,lon[,alt]"``."""
    parts = [p.strip() for p in state.split(",")]
    if len(parts) not in (2, 3):
        raise ParseError(f"Location must be 'lat,lon[,alt]': {state!r}")
    try:
        numbers = [float(p) for p in parts]
    except ValueError as exc:
        raise ParseError(f"Location has non-numeric components: {state!r}") from exc
    latitude, longitude = numbers[0], numbers[1]
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise ParseError(f"Location out of range: {state!r}")
    return latitude, longitude, numbers[2] if len(numbers) == 3 else None


def parse_image(state: str) -> tuple[str, bytes]:
    """Decode a ``data:<mime>;base64,<payload>`` image state."""
    match = _DATA_URL.match(state.strip())
    if match is None:
        raise ParseError("Image state is not a base64 data URL")
    try:
        payload = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ParseError("Image state has invalid base64 payload") from exc
    return match.group("mime") or "application/octet-stream", payload


def _describe(item: Item) -> ItemDisplay:
    kind = item.kind
    state = item.state.strip()

    if kind is ItemKind.SWITCH:
        on = state.upper() == "ON"
        if state.upper() not in ("ON", "OFF"):
            raise ParseError(f"Switch state must be ON or OFF: {state!r}")
        return ItemDisplay(kind, "ON" if on else "OFF", {"on": on})

    if kind in (ItemKind.DIMMER, ItemKind.ROLLERSHUTTER):
        percent = parse_percent(state)
        return ItemDisplay(kind, f"{percent}%", {"percent": percent})

    if kind is ItemKind.COLOR:
        color = HSB.parse(state)
        return ItemDisplay(
            kind,
            color.to_hex(),
            {"hsb": color, "hex": color.to_hex(), "rgb": color.to_rgb()},
        )

    if kind is ItemKind.LOCATION:
        latitude, longitude, altitude = parse_location(state)
        text = f"{latitude:.5f}, {longitude:.5f}"
        if altitude is not None:
            text += f" ({altitude:g} m)"
        return ItemDisplay(
            kind,
            text,
            {"latitude": latitude, "longitude": longitude, "altitude": altitude},
        )

    if kind is ItemKind.IMAGE:
        mime_type, payload = parse_image(state)
        return ItemDisplay(
            kind,
            f"{mime_type} image ({len(payload)} bytes)",
            {"mime_type": mime_type, "size_bytes": len(payload)},
        )

    if kind is ItemKind.NUMBER:
        value = parse_value(state)
        if value is None:
            raise ParseError(f"Number state is not numeric: {state!r}")
        unit = state[len(state.split(" ", 1)[0]) :].strip() or None
        return ItemDisplay(kind, state, {"value": value, "unit": unit})

    # String, Contact, DateTime and unknown kinds show the raw state.
    return ItemDisplay(kind, state)


def describe_state(item: Item) -> ItemDisplay:
    """Render *item*'s state for its kind, capturing parse errors inline."""
    if item.state.strip() in _EMPTY_STATES:
        return ItemDisplay(item.kind, NO_VALUE)
    try:
        return _describe(item)
    except ParseError as exc:
        return ItemDisplay(item.kind, item.state, error=exc)
