"""Control widgets: local interaction vs. remote state, reconciled by confirmation.

Each widget runs a small state machine::

    IDLE ──begin──▶ DRAGGING ──end──▶ COMMITTING ──sent──▶ CONFIRMING ──▶ IDLE
      │                                    ▲                    │
      └──────────── toggle/set ────────────┘     (match or retries exhausted)

- ``DRAGGING``: the local intent is displayed; remote updates are ignored and
  nothing goes over the network.
- ``COMMITTING``: the last intent is POSTed as a command.
- ``CONFIRMING``: the item is polled (``confirm_attempts`` times,
  ``confirm_interval`` apart) until its state matches the command.
- Any failure while committing or confirming returns the widget to ``IDLE``
  with :attr:`ControlWidget.error` set; it is never raised to the caller.

The widget is disabled while ``COMMITTING`` or ``CONFIRMING``, so at most one
command per widget is ever in flight. A closed widget ignores late results.
"""

from __future__ import annotations

import abc
import asyncio
import enum
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar

from structlog.contextvars import bound_contextvars

from habdash.config import ControlSettings
from habdash.controls.color import HSB, hex_to_hsb, rgb_to_hsb
from habdash.controls.timer import CancellableTimer
from habdash.errors import CommandFailed, DashboardError, ParseError
from habdash.models import Item, ItemKind

if TYPE_CHECKING:
    from habdash.gateway import RestGatewayClient

logger = logging.getLogger(__name__)

# States that carry no value on the controller side.
EMPTY_STATES = frozenset({"NULL", "UNDEF", ""})


def clamp_percent(value: float) -> int:
    return max(0, min(100, int(round(value))))


def parse_percent(state: str) -> int:
    """Decode a Dimmer/Rollershutter state into 0-100."""
    token = state.strip().upper()
    # Dimmers report ON/OFF after a switch-style command.
    if token == "ON":
        return 100
    if token == "OFF":
        return 0
    try:
        return clamp_percent(float(token))
    except ValueError as exc:
        raise ParseError(f"Dimmer state is not numeric: {state!r}") from exc


class ControlState(enum.StrEnum):
    """Lifecycle of a single widget interaction."""

    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"
    CONFIRMING = "confirming"


VALID_TRANSITIONS: dict[ControlState, set[ControlState]] = {
    ControlState.IDLE: {ControlState.DRAGGING, ControlState.COMMITTING},
    ControlState.DRAGGING: {ControlState.COMMITTING, ControlState.IDLE},
    ControlState.COMMITTING: {ControlState.CONFIRMING, ControlState.IDLE},
    ControlState.CONFIRMING: {ControlState.IDLE},
}


class InvalidTransitionError(Exception):
    """Raised when a widget is driven through an illegal state change."""


class ControlWidget(abc.ABC):
    """Base widget sharing the send-and-confirm command protocol.

    Parameters
    ----------
    item:
        The item controlled; its current state seeds the display.
    gateway:
        REST client used for commands and confirmation polls.
    settings:
        Confirmation and debounce timing.
    on_change:
        Optional callback invoked after every state transition or display
        change (the UI re-render hook).
    """

    kinds: ClassVar[tuple[ItemKind, ...]] = ()

    def __init__(
        self,
        item: Item,
        gateway: RestGatewayClient,
        settings: ControlSettings | None = None,
        *,
        on_change: Callable[[ControlWidget], None] | None = None,
    ) -> None:
        self.item_name = item.name
        self.item_type = item.type
        self._gateway = gateway
        self._settings = settings or ControlSettings()
        self._on_change = on_change
        self._state = ControlState.IDLE
        self._remote_state = item.state
        self._intent: Any = None
        self._error: DashboardError | None = None
        self._closed = False
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def parse_state(self, state: str) -> Any:
        """Decode a remote state string; raise ParseError when malformed."""

    @abc.abstractmethod
    def encode(self, value: Any) -> str:
        """Encode a value as the literal command string."""

    @abc.abstractmethod
    def normalize(self, value: Any) -> Any:
        """Coerce a user-supplied value into the widget's value domain."""

    def states_match(self, command: str, state: str) -> bool:
        try:
            return self.parse_state(state) == self.parse_state(command)
        except ParseError:
            return False

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControlState:
        return self._state

    @property
    def enabled(self) -> bool:
        return not self._closed and self._state not in (
            ControlState.COMMITTING,
            ControlState.CONFIRMING,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> DashboardError | None:
        """Last command failure, cleared when a new interaction starts."""
        return self._error

    @property
    def remote_state(self) -> str:
        return self._remote_state

    @property
    def intent(self) -> Any:
        return self._intent

    @property
    def value(self) -> Any:
        """The displayed value: the local intent if any, else the remote state."""
        if self._intent is not None:
            return self._intent
        if self._remote_state.strip() in EMPTY_STATES:
            return None
        try:
            return self.parse_state(self._remote_state)
        except ParseError:
            return None

    @property
    def state_error(self) -> ParseError | None:
        """Parse failure of the current remote state, shown inline."""
        if self._remote_state.strip() in EMPTY_STATES:
            return None
        try:
            self.parse_state(self._remote_state)
        except ParseError as exc:
            return exc
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, new_state: ControlState) -> None:
        if new_state not in VALID_TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"{self.item_name}: invalid transition {self._state} -> {new_state}"
            )
        logger.debug("%s: %s -> %s", self.item_name, self._state, new_state)
        self._state = new_state
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None and not self._closed:
            self._on_change(self)

    def begin_interaction(self) -> bool:
        """Enter ``DRAGGING``. Returns False when the widget is disabled."""
        if not self.enabled:
            logger.debug("%s: interaction ignored while %s", self.item_name, self._state)
            return False
        if self._state is ControlState.DRAGGING:
            return True
        self._error = None
        self._transition(ControlState.DRAGGING)
        return True

    def update_intent(self, value: Any) -> bool:
        """Record an in-progress value; starts an interaction if needed."""
        if not self.begin_interaction():
            return False
        self._intent = self.normalize(value)
        self._notify()
        return True

    def end_interaction(self) -> asyncio.Task[None] | None:
        """Commit the last intent. Returns the command task, if one started."""
        if self._state is not ControlState.DRAGGING:
            return None
        if self._intent is None:
            self._transition(ControlState.IDLE)
            return None
        return self._commit(self._intent)

    def cancel_interaction(self) -> None:
        """Abandon a drag without sending anything."""
        if self._state is ControlState.DRAGGING:
            self._intent = None
            self._transition(ControlState.IDLE)

    def apply_remote_state(self, state: str) -> None:
        """Accept a pushed/refreshed remote state unless the user is dragging."""
        if self._closed:
            return
        if self._state is ControlState.DRAGGING:
            logger.debug("%s: remote update %r suppressed while dragging", self.item_name, state)
            return
        self._remote_state = state
        self._notify()

    async def send(self, value: Any) -> None:
        """Commit *value* immediately and wait until the widget is idle again."""
        if not self.enabled:
            return
        self._error = None
        task = self._commit(self.normalize(value))
        await task

    async def wait_idle(self) -> None:
        if self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    def close(self) -> None:
        """Tear the widget down; in-flight results are ignored from now on."""
        self._closed = True
        logger.debug("%s: widget closed", self.item_name)

    # ------------------------------------------------------------------
    # Command protocol
    # ------------------------------------------------------------------

    def _commit(self, value: Any) -> asyncio.Task[None]:
        self._intent = value
        self._transition(ControlState.COMMITTING)
        command = self.encode(value)
        self._task = asyncio.create_task(self._run_command(command))
        return self._task

    async def _run_command(self, command: str) -> None:
        with bound_contextvars(item=self.item_name, command=command):
            try:
                await self._send_and_confirm(command)
            finally:
                # Whatever escaped, the widget must be usable again.
                if not self._closed and self._state is not ControlState.IDLE:
                    logger.error("%s: command %r aborted unexpectedly", self.item_name, command)
                    self._intent = None
                    self._transition(ControlState.IDLE)

    async def _send_and_confirm(self, command: str) -> None:
        try:
            await self._gateway.send_command(self.item_name, command)
        except DashboardError as exc:
            if self._closed:
                return
            logger.warning("%s: command %r rejected: %s", self.item_name, command, exc)
            self._fail(CommandFailed(self.item_name, command, exc))
            return

        if self._closed:
            return
        self._transition(ControlState.CONFIRMING)

        attempts = self._settings.confirm_attempts
        try:
            for attempt in range(1, attempts + 1):
                await asyncio.sleep(self._settings.confirm_interval)
                if self._closed:
                    return
                item = await self._gateway.get_item(self.item_name)
                if self._closed:
                    return
                self._remote_state = item.state
                if self.states_match(command, item.state):
                    logger.debug(
                        "%s: confirmed %r after %d poll(s)", self.item_name, command, attempt
                    )
                    break
            else:
                logger.info(
                    "%s: state %r did not converge to %r after %d polls",
                    self.item_name,
                    self._remote_state,
                    command,
                    attempts,
                )
        except DashboardError as exc:
            if self._closed:
                return
            logger.warning("%s: confirmation failed: %s", self.item_name, exc)
            self._fail(exc)
            return

        self._intent = None
        self._transition(ControlState.IDLE)

    def _fail(self, exc: DashboardError) -> None:
        self._error = exc
        self._intent = None
        self._transition(ControlState.IDLE)


class SwitchControl(ControlWidget):
    """On/off control; commands are the literal tokens ``ON`` and ``OFF``."""

    kinds = (ItemKind.SWITCH,)

    def parse_state(self, state: str) -> bool:
        token = state.strip().upper()
        if token == "ON":
            return True
        if token == "OFF":
            return False
        raise ParseError(f"Switch state must be ON or OFF: {state!r}")

    def encode(self, value: bool) -> str:
        return "ON" if value else "OFF"

    def normalize(self, value: Any) -> bool:
        if isinstance(value, str):
            return self.parse_state(value)
        return bool(value)

    def toggle(self) -> asyncio.Task[None] | None:
        if not self.enabled or self._state is not ControlState.IDLE:
            return None
        self._error = None
        return self._commit(not bool(self.value))

    def set(self, on: bool) -> asyncio.Task[None] | None:
        if not self.enabled or self._state is not ControlState.IDLE:
            return None
        self._error = None
        return self._commit(bool(on))


class DimmerControl(ControlWidget):
    """Bounded 0–100 control. Dragging is local; only release sends."""

    kinds = (ItemKind.DIMMER, ItemKind.ROLLERSHUTTER)

    def parse_state(self, state: str) -> int:
        return parse_percent(state)

    def encode(self, value: int) -> str:
        return str(int(value))

    def normalize(self, value: Any) -> int:
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError as exc:
                raise ParseError(f"Dimmer value is not numeric: {value!r}") from exc
        return clamp_percent(value)


class ColorControl(ControlWidget):
    """HSB color control with debounced commits.

    Every change restarts a ``color_debounce`` timer; the command is sent
    when the timer fires or when the interaction ends, whichever is first.
    """

    kinds = (ItemKind.COLOR,)

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._debounce = CancellableTimer(self._settings.color_debounce, self._debounce_fired)

    def parse_state(self, state: str) -> HSB:
        return HSB.parse(state)

    def encode(self, value: HSB) -> str:
        return value.to_command()

    def normalize(self, value: Any) -> HSB:
        if isinstance(value, HSB):
            return value
        if isinstance(value, str):
            return hex_to_hsb(value) if value.strip().startswith("#") else HSB.parse(value)
        if isinstance(value, tuple) and len(value) == 3:
            return rgb_to_hsb(*value)
        raise ParseError(f"Unsupported color value: {value!r}")

    @property
    def hex(self) -> str | None:
        color = self.value
        return color.to_hex() if isinstance(color, HSB) else None

    @property
    def rgb(self) -> tuple[int, int, int] | None:
        color = self.value
        return color.to_rgb() if isinstance(color, HSB) else None

    @property
    def debounce_pending(self) -> bool:
        return self._debounce.pending

    def update_intent(self, value: Any) -> bool:
        if not super().update_intent(value):
            return False
        self._debounce.restart()
        return True

    def end_interaction(self) -> asyncio.Task[None] | None:
        self._debounce.cancel()
        return super().end_interaction()

    def cancel_interaction(self) -> None:
        self._debounce.cancel()
        super().cancel_interaction()

    async def send(self, value: Any) -> None:
        self._debounce.cancel()
        await super().send(value)

    def close(self) -> None:
        self._debounce.cancel()
        super().close()

    def _debounce_fired(self) -> None:
        if self._closed or self._state is not ControlState.DRAGGING or self._intent is None:
            return
        logger.debug("%s: debounce elapsed, committing %s", self.item_name, self._intent)
        self._commit(self._intent)


_CONTROL_CLASSES: tuple[type[ControlWidget], ...] = (SwitchControl, DimmerControl, ColorControl)


def create_control(
    item: Item,
    gateway: RestGatewayClient,
    settings: ControlSettings | None = None,
    *,
    on_change: Callable[[ControlWidget], None] | None = None,
) -> ControlWidget | None:
    """Build the widget for *item*'s kind; ``None`` for read-only kinds."""
    kind = item.kind
    for cls in _CONTROL_CLASSES:
        if kind in cls.kinds:
            return cls(item, gateway, settings, on_change=on_change)
    return None
