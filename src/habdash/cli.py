"""CLI for habdash: browse add-ons, their items and history, and control devices."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click

from habdash import __version__
from habdash.config import ConfigError, DashboardConfig, load_config
from habdash.controls.color import HSB, hex_to_hsb, rgb_to_hsb
from habdash.controls.widgets import ColorControl, ControlWidget, DimmerControl, SwitchControl
from habdash.core.logging import configure_logging
from habdash.credential_store import LocalCredentialStore
from habdash.display import describe_state
from habdash.errors import DashboardError, ParseError
from habdash.history import HistoryWindow, fetch_history, from_epoch_ms, supports_history
from habdash.session import DashboardSession

_WINDOW_CHOICES = [w.value for w in HistoryWindow]


def _session(config: DashboardConfig) -> DashboardSession:
    return DashboardSession(config, LocalCredentialStore(config.resolved_state_path))


def _run(coro_fn: Callable[[], Awaitable[Any]]) -> Any:
    """Run *coro_fn* and turn dashboard errors into a clean non-zero exit."""
    try:
        return asyncio.run(coro_fn())
    except DashboardError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def parse_color_value(value: str) -> HSB:
    """Accept ``#rrggbb``, ``rgb:r,g,b`` or ``h,s,b``."""
    text = value.strip()
    if text.startswith("#"):
        return hex_to_hsb(text)
    if text.lower().startswith("rgb:"):
        parts = text[4:].split(",")
        if len(parts) != 3:
            raise ParseError(f"RGB value must have three components: {value!r}")
        try:
            red, green, blue = (int(p.strip()) for p in parts)
        except ValueError as exc:
            raise ParseError(f"RGB value has non-integer components: {value!r}") from exc
        return rgb_to_hsb(red, green, blue)
    return HSB.parse(text)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to habdash.toml",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """habdash: openHAB add-on dashboard."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=log_level or config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
        origin=config.api_base_url,
    )
    ctx.obj = config


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--identity", prompt="E-mail", help="Account identity")
@click.option("--secret", prompt="Password", hide_input=True, help="Account password")
@click.option("--token", prompt="API token", hide_input=True, help="Controller API token")
@click.pass_obj
def login(config: DashboardConfig, identity: str, secret: str, token: str) -> None:
    """Store credentials for the controller."""

    async def _login() -> None:
        async with _session(config) as session:
            await session.update_credentials(identity=identity, secret=secret, device_token=token)

    _run(_login)
    click.echo(f"Credentials saved to {config.resolved_state_path}")


@cli.command()
@click.pass_obj
def logout(config: DashboardConfig) -> None:
    """Clear stored credentials."""

    async def _logout() -> None:
        async with _session(config) as session:
            await session.logout()

    _run(_logout)
    click.echo("Logged out.")


@cli.command()
@click.pass_obj
def status(config: DashboardConfig) -> None:
    """Show the gateway URL and login state."""
    credential = LocalCredentialStore(config.resolved_state_path).load()
    click.echo(f"Gateway:  {config.api_base_url}")
    if credential.is_complete:
        click.echo(f"Identity: {credential.identity}")
        click.echo(f"Token:    {credential.token_prefix()}")
    else:
        click.echo(f"Not logged in (missing: {', '.join(credential.missing_fields())})")


# ---------------------------------------------------------------------------
# Browsing
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--type", "addon_type", default=None, help="Add-on type (default: binding)")
@click.pass_obj
def addons(config: DashboardConfig, addon_type: str | None) -> None:
    """List installed add-ons of one type."""

    async def _addons() -> None:
        async with _session(config) as session:
            catalog = await session.refresh_catalog()
            if addon_type:
                try:
                    catalog = session.select_type(addon_type)
                except ValueError as exc:
                    raise click.BadParameter(str(exc), param_hint="--type") from exc
            click.echo(f"Types: {', '.join(catalog.types) or '(none)'}")
            visible = catalog.visible()
            if not visible:
                click.echo(f"No installed add-ons of type {catalog.active_type}.")
                return
            click.echo(f"{'ID':<24} {'Source':<12} {'Label'}")
            click.echo("-" * 72)
            for record in visible:
                source = record.source.value if record.source else ""
                click.echo(f"{record.id:<24} {source:<12} {record.display_name}")

    _run(_addons)


@cli.command()
@click.argument("addon_id")
@click.option("--addon-type", default=None, help="Add-on type the id belongs to")
@click.option("--type", "item_type", default="", help="Only items of this exact type")
@click.option("--filter", "pattern", default="", help="Wildcard name/label filter (e.g. 'kit*')")
@click.pass_obj
def items(
    config: DashboardConfig,
    addon_id: str,
    addon_type: str | None,
    item_type: str,
    pattern: str,
) -> None:
    """List the items linked to an add-on's things."""

    async def _items() -> None:
        async with _session(config) as session:
            await session.refresh_catalog()
            try:
                if addon_type:
                    session.select_type(addon_type)
                view = await session.select_addon(addon_id)
            except ValueError as exc:
                raise click.BadParameter(str(exc), param_hint="--addon-type") from exc
            except KeyError as exc:
                raise click.BadParameter(str(exc.args[0]), param_hint="ADDON_ID") from exc
            if view.error is not None:
                raise view.error
            view.set_type_filter(item_type)
            view.set_name_filter(pattern)
            visible = view.visible_items()
            if not visible:
                click.echo(f"No items found for {addon_id}.")
                return
            click.echo(f"{'Name':<36} {'Type':<22} {'State'}")
            click.echo("-" * 80)
            for item in visible:
                shown = describe_state(item)
                marker = " (!)" if shown.error else ""
                click.echo(f"{item.name:<36} {item.type:<22} {shown.text}{marker}")

    _run(_items)


@cli.command()
@click.argument("item_name")
@click.pass_obj
def show(config: DashboardConfig, item_name: str) -> None:
    """Show one item's decoded state."""

    async def _show() -> None:
        async with _session(config) as session:
            item = await session.gateway().get_item(item_name)
            shown = describe_state(item)
            click.echo(f"{item.name} ({item.type})")
            if item.label:
                click.echo(f"  label: {item.label}")
            click.echo(f"  state: {shown.text}")
            for key, value in shown.details.items():
                click.echo(f"  {key}: {value}")
            if shown.error is not None:
                click.echo(f"  error: {shown.error}")

    _run(_show)


@cli.command()
@click.argument("item_name")
@click.option(
    "--range",
    "window",
    type=click.Choice(_WINDOW_CHOICES),
    default=None,
    help="History window (default from config)",
)
@click.pass_obj
def history(config: DashboardConfig, item_name: str, window: str | None) -> None:
    """Print the historical series of a numeric item."""

    async def _history() -> None:
        async with _session(config) as session:
            item = await session.gateway().get_item(item_name)
            if not supports_history(item):
                click.echo(f"{item.name} is a {item.type or 'untyped'} item; no history chart.")
                return
            chosen = window or config.default_history_window
            series = await fetch_history(session.gateway(), item.name, chosen, datetime.now(UTC))
            if not series:
                click.echo("No data for this range.")
                return
            for point in series:
                stamp = from_epoch_ms(point.timestamp_ms).strftime("%m/%d %H:%M")
                click.echo(f"{stamp}  {point.value:g}")

    _run(_history)


# ---------------------------------------------------------------------------
# Control
# ---------------------------------------------------------------------------


async def _drive(
    config: DashboardConfig,
    item_name: str,
    expected: type[ControlWidget],
    value: Any,
) -> ControlWidget:
    async with _session(config) as session:
        gateway = session.gateway()
        item = await gateway.get_item(item_name)
        if item.kind not in expected.kinds:
            raise click.BadParameter(
                f"{item.name} is a {item.type or 'untyped'} item", param_hint="ITEM_NAME"
            )
        widget = expected(item, gateway, config.controls)
        try:
            await widget.send(value)
        finally:
            widget.close()
        return widget


def _report(widget: ControlWidget) -> None:
    if widget.error is not None:
        click.echo(f"Error: {widget.error}", err=True)
        sys.exit(1)
    click.echo(f"{widget.item_name}: {widget.remote_state}")


@cli.command()
@click.argument("item_name")
@click.argument("position", type=click.Choice(["on", "off"], case_sensitive=False))
@click.pass_obj
def switch(config: DashboardConfig, item_name: str, position: str) -> None:
    """Turn a Switch item on or off."""
    widget = _run(lambda: _drive(config, item_name, SwitchControl, position.lower() == "on"))
    _report(widget)


@cli.command()
@click.argument("item_name")
@click.argument("percent", type=int)
@click.pass_obj
def dim(config: DashboardConfig, item_name: str, percent: int) -> None:
    """Set a Dimmer (or Rollershutter) item to PERCENT (clamped to 0-100)."""
    widget = _run(lambda: _drive(config, item_name, DimmerControl, percent))
    _report(widget)


@cli.command()
@click.argument("item_name")
@click.argument("value")
@click.pass_obj
def color(config: DashboardConfig, item_name: str, value: str) -> None:
    """Set a Color item from '#rrggbb', 'rgb:r,g,b' or 'h,s,b'."""
    try:
        hsb = parse_color_value(value)
    except ParseError as exc:
        raise click.BadParameter(str(exc), param_hint="VALUE") from exc
    widget = _run(lambda: _drive(config, item_name, ColorControl, hsb))
    _report(widget)


if __name__ == "__main__":
    cli()
