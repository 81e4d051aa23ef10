"""Device control widgets and their supporting primitives."""

from habdash.controls.color import HSB, hex_to_hsb, hex_to_rgb, hsb_to_rgb, rgb_to_hex, rgb_to_hsb
from habdash.controls.timer import CancellableTimer
from habdash.controls.widgets import (
    ColorControl,
    ControlState,
    ControlWidget,
    DimmerControl,
    InvalidTransitionError,
    SwitchControl,
    create_control,
)

__all__ = [
    "HSB",
    "CancellableTimer",
    "ColorControl",
    "ControlState",
    "ControlWidget",
    "DimmerControl",
    "InvalidTransitionError",
    "SwitchControl",
    "create_control",
    "hex_to_hsb",
    "hex_to_rgb",
    "hsb_to_rgb",
    "rgb_to_hex",
    "rgb_to_hsb",
]
