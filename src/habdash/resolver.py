"""Binding item resolution and item filtering.

An item belongs to an add-on when it is linked to a channel of a thing whose
``thingTypeUID`` starts with ``<addon id>:`` (case-insensitive). Name
resemblance alone never makes an item part of a binding.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from habdash.models import Item, Thing

if TYPE_CHECKING:
    from habdash.gateway import RestGatewayClient

logger = logging.getLogger(__name__)


def matching_things(addon_id: str, things: Iterable[Thing]) -> list[Thing]:
    prefix = f"{addon_id}:".lower()
    return [t for t in things if t.thing_type_uid.lower().startswith(prefix)]


def resolve_items(addon_id: str, things: Sequence[Thing], items: Sequence[Item]) -> list[Item]:
    """Return the items linked to any channel of the add-on's things.

    Item order follows *items*. An add-on without things yields ``[]``.
    """
    linked: set[str] = set()
    for thing in matching_things(addon_id, things):
        linked.update(thing.linked_item_names)
    return [item for item in items if item.name in linked]


async def fetch_binding_items(gateway: RestGatewayClient, addon_id: str) -> list[Item]:
    """Fetch things, then items, and resolve the add-on's item set."""
    things = await gateway.list_things()
    items = await gateway.list_items()
    resolved = resolve_items(addon_id, things, items)
    logger.info(
        "Resolved %d item(s) for %s from %d thing(s)",
        len(resolved),
        addon_id,
        len(matching_things(addon_id, things)),
    )
    return resolved


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def wildcard_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a user wildcard pattern into an anchored, case-insensitive regex.

    ``*`` matches zero or more characters; everything else is literal. A
    pattern without ``*`` is treated as ``*pattern*``.
    """
    if "*" not in pattern:
        pattern = f"*{pattern}*"
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(f"^{body}$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class ItemFilter:
    """Type-equality and wildcard name/label filter.

    Empty values disable the corresponding filter.
    """

    type_filter: str = ""
    pattern: str = ""

    def matches(self, item: Item) -> bool:
        if self.type_filter and item.type != self.type_filter:
            return False
        if self.pattern:
            regex = wildcard_to_regex(self.pattern)
            return bool(regex.match(item.name) or regex.match(item.label))
        return True

    def apply(self, items: Iterable[Item]) -> list[Item]:
        if not self.type_filter and not self.pattern:
            return list(items)
        return [item for item in items if self.matches(item)]


def item_types(items: Iterable[Item]) -> list[str]:
    return sorted({item.type for item in items if item.type})
