"""Add-on catalog: merge the three listing services into one typed catalog.

The same add-on is frequently reported by more than one service (e.g. the
distribution's karaf features and the marketplace). Records are deduplicated
by ``id:type``. ``installed`` is the logical OR across every source that
reported the record; all other fields follow the last source that reported it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from habdash.models import ADDON_SERVICES, UNKNOWN_ADDON_TYPE, AddonRecord, ServiceId

if TYPE_CHECKING:
    from habdash.gateway import RestGatewayClient

logger = logging.getLogger(__name__)

PREFERRED_ADDON_TYPE = "binding"


@dataclass
class AddonCatalog:
    """Deduplicated add-on catalog plus the state of its type filter.

    Attributes
    ----------
    records:
        Identity key (``id:type``) → merged record, in first-seen order.
    types:
        Sorted distinct add-on types, for the type filter.
    active_type:
        The currently selected type.
    """

    records: dict[str, AddonRecord] = field(default_factory=dict)
    types: list[str] = field(default_factory=list)
    active_type: str = UNKNOWN_ADDON_TYPE

    def __len__(self) -> int:
        return len(self.records)

    def visible(self, addon_type: str | None = None) -> list[AddonRecord]:
        """Installed add-ons of *addon_type* (default: the active type)."""
        wanted = addon_type or self.active_type
        return [r for r in self.records.values() if r.type == wanted and r.installed]

    def find(self, addon_id: str) -> AddonRecord | None:
        for record in self.visible():
            if record.id == addon_id:
                return record
        return None

    def with_active_type(self, addon_type: str) -> AddonCatalog:
        if addon_type not in self.types:
            raise ValueError(f"Unknown add-on type {addon_type!r}; expected one of {self.types}")
        return AddonCatalog(records=dict(self.records), types=list(self.types), active_type=addon_type)


def _merge_record(existing: AddonRecord | None, incoming: AddonRecord) -> AddonRecord:
    if existing is None:
        return incoming.model_copy()
    return incoming.model_copy(update={"installed": existing.installed or incoming.installed})


def default_active_type(types: Sequence[str]) -> str:
    if PREFERRED_ADDON_TYPE in types:
        return PREFERRED_ADDON_TYPE
    return types[0] if types else UNKNOWN_ADDON_TYPE


def merge_addons(
    listings: Sequence[tuple[ServiceId, Sequence[AddonRecord]]],
    base: AddonCatalog | None = None,
) -> AddonCatalog:
    """Merge add-on listings into one catalog.

    Parameters
    ----------
    listings:
        ``(service, records)`` pairs, merged in order.
    base:
        Optional catalog to merge into. Merging a catalog's own records
        into it again leaves it unchanged.

    Returns
    -------
    AddonCatalog
        A new catalog; *base* is not modified.
    """
    merged: dict[str, AddonRecord] = dict(base.records) if base is not None else {}
    for service, records in listings:
        for record in records:
            if record.source is None:
                record = record.model_copy(update={"source": service})
            merged[record.key] = _merge_record(merged.get(record.key), record)

    types = sorted({r.type for r in merged.values() if r.type})
    catalog = AddonCatalog(records=merged, types=types, active_type=default_active_type(types))
    logger.debug(
        "Merged %d add-on records into %d entries (types=%s)",
        sum(len(records) for _, records in listings),
        len(merged),
        types,
    )
    return catalog


async def fetch_catalog(gateway: RestGatewayClient) -> AddonCatalog:
    """Fetch all three listings concurrently and merge them.

    The merge happens only after every listing succeeded: the first failure
    is re-raised and no partial catalog is built. Every listing is awaited
    to completion, so a second failure is collected rather than lost.
    """
    results = await asyncio.gather(
        *(gateway.list_addons(service) for service in ADDON_SERVICES),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        for service, result in zip(ADDON_SERVICES, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Add-on listing %s failed: %s", service, result)
        raise failures[0]
    catalog = merge_addons(list(zip(ADDON_SERVICES, results, strict=True)))
    logger.info(
        "Add-on catalog ready: %d add-ons, %d installed",
        len(catalog),
        sum(1 for r in catalog.records.values() if r.installed),
    )
    return catalog
