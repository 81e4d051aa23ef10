"""Time-windowed history for charting numeric items.

A window selector (``1h`` … ``14d``) becomes the absolute interval
``[now - duration, now]``. Raw persistence points are parsed, clamped to the
interval, sorted, and given a synthetic leading point at the window start so
the chart always has a defined left edge.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from habdash.errors import ParseError
from habdash.models import HistoryPoint, Item, ItemKind

if TYPE_CHECKING:
    from habdash.gateway import RestGatewayClient

logger = logging.getLogger(__name__)

# Leading decimal number of a state such as "21.5 °C" or "-3e2 W".
_LEADING_FLOAT = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")


class HistoryWindow(enum.StrEnum):
    """Relative chart windows offered to the user."""

    HOUR_1 = "1h"
    HOURS_6 = "6h"
    HOURS_12 = "12h"
    DAY_1 = "1d"
    DAYS_3 = "3d"
    DAYS_7 = "7d"
    DAYS_14 = "14d"

    @property
    def duration(self) -> timedelta:
        return _WINDOW_DURATIONS[self]

    @property
    def duration_ms(self) -> int:
        return int(self.duration.total_seconds() * 1000)


_WINDOW_DURATIONS: dict[HistoryWindow, timedelta] = {
    HistoryWindow.HOUR_1: timedelta(hours=1),
    HistoryWindow.HOURS_6: timedelta(hours=6),
    HistoryWindow.HOURS_12: timedelta(hours=12),
    HistoryWindow.DAY_1: timedelta(days=1),
    HistoryWindow.DAYS_3: timedelta(days=3),
    HistoryWindow.DAYS_7: timedelta(days=7),
    HistoryWindow.DAYS_14: timedelta(days=14),
}

DEFAULT_WINDOW = HistoryWindow.DAYS_14


def supports_history(item: Item) -> bool:
    """Only numeric items (``Number`` and ``Number:<dimension>``) are charted."""
    return item.kind is ItemKind.NUMBER


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(round(moment.timestamp() * 1000))


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def window_bounds(window: HistoryWindow | str, now: datetime) -> tuple[int, int]:
    """Return ``(start_ms, end_ms)`` for *window* ending at *now*."""
    window = HistoryWindow(window)
    end_ms = to_epoch_ms(now)
    return end_ms - window.duration_ms, end_ms


def parse_value(state: Any) -> float | None:
    """Leading float of a state; ``None`` when the state has no number."""
    if isinstance(state, bool):
        return None
    if isinstance(state, int | float):
        return float(state)
    if not isinstance(state, str):
        return None
    match = _LEADING_FLOAT.match(state)
    return float(match.group(1)) if match else None


def parse_timestamp(raw: Any) -> int:
    """Epoch milliseconds from a number or an ISO-8601 string."""
    if isinstance(raw, bool):
        raise ParseError(f"Invalid history timestamp: {raw!r}")
    if isinstance(raw, int | float):
        return int(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_epoch_ms(datetime.fromisoformat(text))
        except ValueError as exc:
            raise ParseError(f"Invalid history timestamp: {raw!r}") from exc
    raise ParseError(f"Invalid history timestamp: {raw!r}")


def normalize_history(
    raw_points: Iterable[Any], start_ms: int, end_ms: int
) -> list[HistoryPoint]:
    """Parse, clamp to ``[start_ms, end_ms]``, sort, and anchor at the start.

    Points without a numeric state are skipped. The sort is stable, so
    duplicate timestamps keep their source order.
    """
    points: list[HistoryPoint] = []
    for raw in raw_points:
        if not isinstance(raw, dict):
            raise ParseError(f"History point must be an object: {raw!r}")
        timestamp_ms = parse_timestamp(raw.get("time"))
        value = parse_value(raw.get("state"))
        if value is None:
            logger.debug("Skipping non-numeric history state %r", raw.get("state"))
            continue
        if start_ms <= timestamp_ms <= end_ms:
            points.append(HistoryPoint(timestamp_ms=timestamp_ms, value=value))

    points.sort(key=lambda p: p.timestamp_ms)

    if points and points[0].timestamp_ms != start_ms:
        points.insert(0, HistoryPoint(timestamp_ms=start_ms, value=points[0].value))
    return points


async def fetch_history(
    gateway: RestGatewayClient,
    item_name: str,
    window: HistoryWindow | str = DEFAULT_WINDOW,
    now: datetime | None = None,
) -> list[HistoryPoint]:
    """Fetch and normalize the series for *item_name* over *window*.

    Raises
    ------
    ParseError
        If the payload is not an object or its ``data`` is not a list.
    """
    now = now or datetime.now(UTC)
    start_ms, end_ms = window_bounds(window, now)
    payload = await gateway.get_history(item_name, from_epoch_ms(start_ms), from_epoch_ms(end_ms))
    if not isinstance(payload, dict):
        raise ParseError(f"History payload for {item_name} must be a JSON object")
    data = payload.get("data", [])
    if data is None:
        data = []
    if not isinstance(data, list):
        raise ParseError(f"History data for {item_name} must be a list")

    series = normalize_history(data, start_ms, end_ms)
    logger.debug(
        "History for %s (%s): %d raw point(s) -> %d",
        item_name,
        HistoryWindow(window),
        len(data),
        len(series),
    )
    return series
