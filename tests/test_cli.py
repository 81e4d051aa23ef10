"""Tests for the habdash CLI, driven through click's CliRunner."""

from __future__ import annotations

import logging
import time

import httpx
import pytest
import structlog
from click.testing import CliRunner

from habdash import cli as cli_module
from habdash.cli import cli, parse_color_value
from habdash.config import API_BASE_URL_ENV
from habdash.controls.color import HSB
from habdash.credential_store import LocalCredentialStore
from habdash.errors import ParseError
from habdash.session import DashboardSession
from tests.conftest import BASE_URL

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging(monkeypatch):
    monkeypatch.delenv(API_BASE_URL_ENV, raising=False)
    yield
    structlog.contextvars.clear_contextvars()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "habdash.toml"
    path.write_text(
        f"""
[dashboard]
api_base_url = "{BASE_URL}"
state_path = "{tmp_path / 'state.json'}"

[dashboard.controls]
confirm_attempts = 3
confirm_interval_ms = 1
color_debounce_ms = 10
"""
    )
    return path


@pytest.fixture
def logged_in(tmp_path, credential):
    LocalCredentialStore(tmp_path / "state.json").save(credential)


@pytest.fixture
def home(controller, monkeypatch):
    """Route every CLI session through the fake controller."""
    controller.addons["karaf"] = [
        {"id": "hue", "type": "binding", "label": "Philips Hue", "installed": True},
        {"id": "basicui", "type": "ui", "label": "Basic UI", "installed": True},
    ]
    controller.add_thing("hue:0210:1", "hue:0210", {"color": ["Bulb_Color"]})
    controller.add_thing("hue:0100:1", "hue:0100", {"switch": ["Bulb_Power"]})
    controller.add_item("Bulb_Color", "Color", "0,100,100", "Bulb")
    controller.add_item("Bulb_Power", "Switch", "ON", "Bulb power")
    controller.add_item("Outdoor_Temp", "Number:Temperature", "12.5 °C", "Outdoor")

    def _session(config):
        client = httpx.AsyncClient(transport=httpx.MockTransport(controller.handler))
        store = LocalCredentialStore(config.resolved_state_path)
        return DashboardSession(config, store, http_client=client)

    monkeypatch.setattr(cli_module, "_session", _session)
    return controller


def _invoke(config_path, *args, **kwargs):
    runner = CliRunner()
    return runner.invoke(
        cli, ["--config", str(config_path), "--log-level", "ERROR", *args], **kwargs
    )


class TestCredentials:
    def test_status_logged_out(self, config_path):
        result = _invoke(config_path, "status")
        assert result.exit_code == 0
        assert "Not logged in (missing: oh_email, oh_password, oh_token)" in result.output

    def test_login_then_status(self, config_path, tmp_path, home):
        result = _invoke(
            config_path,
            "login",
            input="me@example.com\nhunter2\noh.dash.abcdef123456\n",
        )
        assert result.exit_code == 0, result.output
        stored = LocalCredentialStore(tmp_path / "state.json").load()
        assert stored.device_token == "oh.dash.abcdef123456"

        result = _invoke(config_path, "status")
        assert "Identity: me@example.com" in result.output
        assert "oh.dash...." in result.output
        assert "hunter2" not in result.output

    def test_logout(self, config_path, tmp_path, logged_in, home):
        result = _invoke(config_path, "logout")
        assert result.exit_code == 0
        assert not LocalCredentialStore(tmp_path / "state.json").load().is_complete

    def test_commands_need_login(self, config_path, home):
        result = _invoke(config_path, "addons")
        assert result.exit_code == 1
        assert "Not logged in" in result.output


class TestBrowsing:
    def test_addons(self, config_path, logged_in, home):
        result = _invoke(config_path, "addons")
        assert result.exit_code == 0, result.output
        assert "Types: binding, ui" in result.output
        assert "Philips Hue" in result.output
        assert "Basic UI" not in result.output

    def test_addons_other_type(self, config_path, logged_in, home):
        result = _invoke(config_path, "addons", "--type", "ui")
        assert "Basic UI" in result.output
        assert "Philips Hue" not in result.output

    def test_addons_unknown_type(self, config_path, logged_in, home):
        result = _invoke(config_path, "addons", "--type", "voice")
        assert result.exit_code == 2

    def test_upstream_error(self, config_path, logged_in, home):
        home.failures["/rest/addons"] = (401, "Authentication required")
        result = _invoke(config_path, "addons")
        assert result.exit_code == 1
        assert "Error: Authentication required" in result.output

    def test_items(self, config_path, logged_in, home):
        result = _invoke(config_path, "items", "hue")
        assert result.exit_code == 0, result.output
        assert "Bulb_Color" in result.output
        assert "Bulb_Power" in result.output
        assert "Outdoor_Temp" not in result.output

    def test_items_filtered(self, config_path, logged_in, home):
        result = _invoke(config_path, "items", "hue", "--filter", "*power")
        assert "Bulb_Power" in result.output
        assert "Bulb_Color" not in result.output

    def test_items_unknown_addon(self, config_path, logged_in, home):
        result = _invoke(config_path, "items", "zwave")
        assert result.exit_code == 2

    def test_show(self, config_path, logged_in, home):
        result = _invoke(config_path, "show", "Bulb_Color")
        assert result.exit_code == 0, result.output
        assert "state: #ff0000" in result.output

    def test_history(self, config_path, logged_in, home):
        now_ms = int(time.time() * 1000)
        home.history["Outdoor_Temp"] = {"data": [{"time": now_ms - 600_000, "state": "11.5"}]}
        result = _invoke(config_path, "history", "Outdoor_Temp", "--range", "1h")
        assert result.exit_code == 0, result.output
        lines = [line for line in result.output.splitlines() if line.strip()]
        assert len(lines) == 2
        assert all(line.endswith("11.5") for line in lines)

    def test_history_not_numeric(self, config_path, logged_in, home):
        result = _invoke(config_path, "history", "Bulb_Power")
        assert "no history chart" in result.output


class TestControl:
    def test_switch(self, config_path, logged_in, home):
        result = _invoke(config_path, "switch", "Bulb_Power", "off")
        assert result.exit_code == 0, result.output
        assert home.commands() == [("Bulb_Power", "OFF")]
        assert "Bulb_Power: OFF" in result.output

    def test_dim_wrong_kind(self, config_path, logged_in, home):
        result = _invoke(config_path, "dim", "Bulb_Power", "50")
        assert result.exit_code == 2
        assert home.commands() == []

    def test_color(self, config_path, logged_in, home):
        result = _invoke(config_path, "color", "Bulb_Color", "#00ff00")
        assert result.exit_code == 0, result.output
        assert home.commands() == [("Bulb_Color", "120, 100, 100")]

    def test_rejected_command(self, config_path, logged_in, home):
        home.command_failures["Bulb_Power"] = (500, "Handler failed")
        result = _invoke(config_path, "switch", "Bulb_Power", "off")
        assert result.exit_code == 1
        assert "Handler failed" in result.output
        assert home.polls("Bulb_Power") == 1


class TestParseColorValue:
    def test_forms(self):
        assert parse_color_value("#ff0000") == HSB(0, 100, 100)
        assert parse_color_value("rgb:0,0,255") == HSB(240, 100, 100)
        assert parse_color_value("60,50,50") == HSB(60, 50, 50)

    @pytest.mark.parametrize("value", ["rgb:1,2", "rgb:a,b,c", "purple"])
    def test_rejects(self, value):
        with pytest.raises(ParseError):
            parse_color_value(value)
