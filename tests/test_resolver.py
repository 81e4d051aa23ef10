"""Tests for binding item resolution and item filters."""

from __future__ import annotations

import pytest

from habdash.errors import UpstreamError
from habdash.models import Item, Thing, parse_items, parse_things
from habdash.resolver import (
    ItemFilter,
    fetch_binding_items,
    item_types,
    matching_things,
    resolve_items,
    wildcard_to_regex,
)

pytestmark = pytest.mark.unit


def _thing(type_uid: str, *linked: str) -> Thing:
    return Thing.model_validate(
        {
            "UID": f"{type_uid}:1",
            "thingTypeUID": type_uid,
            "channels": [{"uid": f"{type_uid}:1:ch", "linkedItems": list(linked)}],
        }
    )


def _item(name: str, item_type: str = "Switch", label: str = "") -> Item:
    return Item(name=name, type=item_type, label=label)


class TestResolve:
    def test_items_linked_to_matching_things(self):
        things = [_thing("hue:bulb", "Bulb1", "Bulb2"), _thing("zwave:device", "Plug")]
        items = [_item("Plug"), _item("Bulb2"), _item("Bulb1"), _item("Unlinked")]
        resolved = resolve_items("hue", things, items)
        assert [i.name for i in resolved] == ["Bulb2", "Bulb1"]

    def test_prefix_is_case_insensitive(self):
        things = [_thing("Hue:Bulb", "Bulb1")]
        assert [t.uid for t in matching_things("hue", things)] == ["Hue:Bulb:1"]

    def test_prefix_requires_colon(self):
        # "huetooth:x" must not count as a "hue" thing.
        things = [_thing("huetooth:x", "Other")]
        assert resolve_items("hue", things, [_item("Other")]) == []

    def test_name_similarity_is_not_membership(self):
        items = [_item("hue_bulb"), _item("Hue_Lamp")]
        assert resolve_items("hue", [], items) == []

    def test_item_linked_twice_appears_once(self):
        things = [_thing("hue:bulb", "Bulb1"), _thing("hue:bridge", "Bulb1")]
        assert [i.name for i in resolve_items("hue", things, [_item("Bulb1")])] == ["Bulb1"]

    def test_missing_channels_and_links(self):
        things = parse_things(
            [{"UID": "hue:a:1", "thingTypeUID": "hue:a", "channels": None},
             {"UID": "hue:b:1", "thingTypeUID": "hue:b",
              "channels": [{"uid": "c", "linkedItems": None}]}]
        )
        assert resolve_items("hue", things, [_item("Bulb1")]) == []

    async def test_fetch_binding_items(self, gateway, controller):
        controller.add_thing("astro:sun", "astro:sun", {"elevation": ["Sun_Elevation"]})
        controller.add_item("Sun_Elevation", "Number:Angle", "12.3 °")
        controller.add_item("Kitchen_Light", "Switch", "ON")

        items = await fetch_binding_items(gateway, "astro")

        assert [i.name for i in items] == ["Sun_Elevation"]
        paths = [r.url.path for r in controller.requests]
        assert paths == ["/rest/things", "/rest/items"]

    async def test_fetch_propagates_errors(self, gateway, controller):
        controller.failures["/rest/things"] = (500, "boom")
        with pytest.raises(UpstreamError):
            await fetch_binding_items(gateway, "astro")


class TestWildcard:
    @pytest.mark.parametrize(
        ("pattern", "text", "expected"),
        [
            ("kit*", "Kitchen_Light", True),
            ("kit*", "Big_Kitchen", False),
            ("*light", "Kitchen_Light", True),
            ("k*n", "Kitchen", True),
            ("light", "Kitchen_Light_2", True),
            ("a.b", "axb", False),
            ("a.b", "a.b", True),
            ("(x)", "pre(x)post", True),
            ("*", "", True),
        ],
    )
    def test_matching(self, pattern, text, expected):
        assert bool(wildcard_to_regex(pattern).match(text)) is expected


class TestItemFilter:
    @pytest.fixture
    def items(self) -> list[Item]:
        return parse_items(
            [
                {"name": "Kitchen_Light", "type": "Switch", "label": "Ceiling"},
                {"name": "Kitchen_Temp", "type": "Number:Temperature", "label": "Kitchen"},
                {"name": "Hall_Dimmer", "type": "Dimmer", "label": "Kitchen door"},
                {"type": "Switch"},
            ]
        )

    def test_no_filters(self, items):
        assert ItemFilter().apply(items) == items
        assert len(items) == 3

    def test_type_filter_is_exact(self, items):
        names = [i.name for i in ItemFilter(type_filter="Number").apply(items)]
        assert names == []
        names = [i.name for i in ItemFilter(type_filter="Number:Temperature").apply(items)]
        assert names == ["Kitchen_Temp"]

    def test_pattern_matches_label(self, items):
        names = [i.name for i in ItemFilter(pattern="kitchen*").apply(items)]
        assert names == ["Kitchen_Light", "Kitchen_Temp", "Hall_Dimmer"]

    def test_combined(self, items):
        names = [i.name for i in ItemFilter("Switch", "*light").apply(items)]
        assert names == ["Kitchen_Light"]

    def test_item_types(self, items):
        assert item_types(items) == ["Dimmer", "Number:Temperature", "Switch"]
