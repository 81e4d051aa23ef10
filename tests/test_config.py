"""Tests for dashboard config loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from habdash.config import (
    API_BASE_URL_ENV,
    DEFAULT_API_BASE_URL,
    ConfigError,
    ControlSettings,
    load_config,
    parse_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv(API_BASE_URL_ENV, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "habdash.toml"
    path.write_text(text)
    return path


class TestDefaults:
    def test_no_file_gives_defaults(self):
        config = load_config(None)
        assert config.api_base_url == DEFAULT_API_BASE_URL
        assert config.default_history_window == "14d"
        assert config.controls == ControlSettings()
        assert config.logging.level == "INFO"
        assert config.logging.format == "text"

    def test_control_settings_in_seconds(self):
        settings = ControlSettings()
        assert settings.confirm_attempts == 5
        assert settings.confirm_interval == pytest.approx(0.4)
        assert settings.color_debounce == pytest.approx(0.5)

    def test_state_path_is_expanded(self):
        config = load_config(None)
        assert "~" not in str(config.resolved_state_path)


class TestLoadConfig:
    def test_full_file(self, tmp_path):
        path = _write(
            tmp_path,
            """
[dashboard]
api_base_url = "https://proxy.example.com/"
state_path = "/tmp/habdash-state.json"
request_timeout_s = 5

[dashboard.history]
default_window = "1d"

[dashboard.controls]
confirm_attempts = 3
confirm_interval_ms = 250
color_debounce_ms = 300

[dashboard.logging]
level = "debug"
format = "json"
log_root = "/tmp/habdash-logs"
""",
        )
        config = load_config(path)
        assert config.api_base_url == "https://proxy.example.com"
        assert config.state_path == "/tmp/habdash-state.json"
        assert config.request_timeout_s == 5.0
        assert config.default_history_window == "1d"
        assert config.controls == ControlSettings(3, 250, 300)
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.logging.log_root == "/tmp/habdash-logs"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(_write(tmp_path, "[dashboard\napi_base_url ="))

    def test_env_override_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(API_BASE_URL_ENV, "http://override:9000")
        path = _write(tmp_path, '[dashboard]\napi_base_url = "http://file:3001"\n')
        assert load_config(path).api_base_url == "http://override:9000"


class TestValidation:
    def test_rejects_non_http_url(self):
        with pytest.raises(ConfigError, match="api_base_url"):
            parse_config({"dashboard": {"api_base_url": "ftp://nas"}})

    def test_rejects_unknown_window(self):
        with pytest.raises(ConfigError, match="default_window"):
            parse_config({"dashboard": {"history": {"default_window": "2w"}}})

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ConfigError, match="request_timeout_s"):
            parse_config({"dashboard": {"request_timeout_s": 0}})

    @pytest.mark.parametrize("value", [0, -1, "many"])
    def test_rejects_bad_confirm_attempts(self, value):
        with pytest.raises(ConfigError, match="confirm_attempts"):
            parse_config({"dashboard": {"controls": {"confirm_attempts": value}}})

    def test_rejects_unknown_log_format(self):
        with pytest.raises(ConfigError, match="format"):
            parse_config({"dashboard": {"logging": {"format": "xml"}}})

    def test_dashboard_must_be_table(self):
        with pytest.raises(ConfigError, match="table"):
            parse_config({"dashboard": "yes"})


class TestEnvVars:
    def test_resolves_nested(self, monkeypatch):
        monkeypatch.setenv("PROXY_HOST", "proxy.lan")
        resolved = resolve_env_vars({"a": ["http://${PROXY_HOST}:3001"], "b": 3})
        assert resolved == {"a": ["http://proxy.lan:3001"], "b": 3}

    def test_missing_var_raises(self, monkeypatch):
        monkeypatch.delenv("HABDASH_UNSET_VAR", raising=False)
        with pytest.raises(ConfigError, match="HABDASH_UNSET_VAR"):
            resolve_env_vars("${HABDASH_UNSET_VAR}")

    def test_url_from_env_reference(self, monkeypatch):
        monkeypatch.setenv("PROXY_URL", "http://10.0.0.5:3001")
        config = parse_config({"dashboard": {"api_base_url": "${PROXY_URL}"}})
        assert config.api_base_url == "http://10.0.0.5:3001"
