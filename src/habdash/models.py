"""Payload models for the controller's REST boundary.

Add-ons, things, channels and items are parsed into pydantic models so the
rest of the dashboard never handles raw JSON. Items carry a tagged variant,
:class:`ItemKind`, derived from their ``type`` field; every component that
renders or controls an item dispatches on it, with ``ItemKind.OTHER`` as the
fallback for types the dashboard does not know.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN_ADDON_TYPE = "unknown"


class ServiceId(enum.StrEnum):
    """The three add-on listing services merged into one catalog."""

    KARAF = "karaf"
    MARKETPLACE = "marketplace"
    JAR = "jar"


ADDON_SERVICES: tuple[ServiceId, ...] = (ServiceId.KARAF, ServiceId.MARKETPLACE, ServiceId.JAR)


class ItemKind(enum.StrEnum):
    """Tagged variant of an item, keyed by the base of its ``type`` field."""

    SWITCH = "Switch"
    DIMMER = "Dimmer"
    COLOR = "Color"
    ROLLERSHUTTER = "Rollershutter"
    LOCATION = "Location"
    IMAGE = "Image"
    NUMBER = "Number"
    STRING = "String"
    CONTACT = "Contact"
    DATETIME = "DateTime"
    OTHER = "Other"


def classify_item_type(item_type: str | None) -> ItemKind:
    """Map an item ``type`` such as ``"Number:Temperature"`` to its kind."""
    if not item_type:
        return ItemKind.OTHER
    base = item_type.split(":", 1)[0]
    try:
        kind = ItemKind(base)
    except ValueError:
        return ItemKind.OTHER
    return kind


# ---------------------------------------------------------------------------
# Add-ons
# ---------------------------------------------------------------------------


class AddonRecord(BaseModel):
    """One add-on as reported by a listing service.

    Identity is ``(id, type)``; see :attr:`key`.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    type: str = UNKNOWN_ADDON_TYPE
    label: str = ""
    installed: bool = False
    source: ServiceId | None = None
    version: str | None = None
    description: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return UNKNOWN_ADDON_TYPE
        return str(value)

    @field_validator("label", mode="before")
    @classmethod
    def _label_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def key(self) -> str:
        return f"{self.id}:{self.type or UNKNOWN_ADDON_TYPE}"

    @property
    def display_name(self) -> str:
        return self.label or self.id


# ---------------------------------------------------------------------------
# Things and channels
# ---------------------------------------------------------------------------


class Channel(BaseModel):
    """A typed capability of a thing, linked to zero or more items."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    uid: str = ""
    label: str = ""
    linked_items: frozenset[str] = Field(default_factory=frozenset, alias="linkedItems")

    @field_validator("linked_items", mode="before")
    @classmethod
    def _as_set(cls, value: Any) -> frozenset[str]:
        if value is None:
            return frozenset()
        return frozenset(str(v) for v in value)


class Thing(BaseModel):
    """A logical device instance exposed by a binding."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    uid: str = Field(default="", alias="UID")
    label: str = ""
    thing_type_uid: str = Field(default="", alias="thingTypeUID")
    channels: tuple[Channel, ...] = ()

    @field_validator("channels", mode="before")
    @classmethod
    def _channels(cls, value: Any) -> Any:
        return () if value is None else value

    @property
    def linked_item_names(self) -> set[str]:
        names: set[str] = set()
        for channel in self.channels:
            names.update(channel.linked_items)
        return names


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class Item(BaseModel):
    """An addressable, typed piece of controller state."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = Field(min_length=1)
    label: str = ""
    state: str = "NULL"
    type: str = ""

    @field_validator("label", "state", "type", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def kind(self) -> ItemKind:
        return classify_item_type(self.type)

    @property
    def unit_dimension(self) -> str | None:
        """Dimension of a ``Number:<dimension>`` item, e.g. ``"Temperature"``."""
        if self.kind is ItemKind.NUMBER and ":" in self.type:
            return self.type.split(":", 1)[1]
        return None

    def with_state(self, state: str) -> Item:
        return self.model_copy(update={"state": state})


class HistoryPoint(BaseModel):
    """One chart sample: epoch milliseconds and a float value."""

    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    value: float


def parse_addons(payload: Any, source: ServiceId) -> list[AddonRecord]:
    """Parse a listing response, tagging every record with its service."""
    if not isinstance(payload, list):
        return []
    records: list[AddonRecord] = []
    for raw in payload:
        if not isinstance(raw, dict) or not raw.get("id"):
            continue
        records.append(AddonRecord.model_validate({**raw, "source": source}))
    return records


def parse_things(payload: Any) -> list[Thing]:
    if not isinstance(payload, list):
        return []
    return [Thing.model_validate(raw) for raw in payload if isinstance(raw, dict)]


def parse_items(payload: Any) -> list[Item]:
    if not isinstance(payload, list):
        return []
    return [
        Item.model_validate(raw) for raw in payload if isinstance(raw, dict) and raw.get("name")
    ]
