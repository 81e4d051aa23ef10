"""Dashboard configuration loading and validation.

Reads ``habdash.toml``, resolves ``${VAR}`` references, and returns a
validated :class:`DashboardConfig` dataclass. Every field has a default, so a
dashboard can run without any config file at all.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Local REST proxy started next to the dashboard.
DEFAULT_API_BASE_URL = "http://localhost:3001"
DEFAULT_STATE_PATH = "~/.config/habdash/state.json"
DEFAULT_HISTORY_WINDOW = "14d"
API_BASE_URL_ENV = "HABDASH_API_BASE_URL"

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_HISTORY_WINDOWS = ("1h", "6h", "12h", "1d", "3d", "7d", "14d")


class ConfigError(Exception):
    """Raised when dashboard configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [dashboard.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ControlSettings:
    """Timing of the command/confirmation protocol from [dashboard.controls].

    confirm_attempts bounds the number of state polls after a command;
    confirm_interval_ms is the fixed delay before each poll.
    color_debounce_ms is the quiet period before a color change is sent.
    """

    confirm_attempts: int = 5
    confirm_interval_ms: int = 400
    color_debounce_ms: int = 500

    @property
    def confirm_interval(self) -> float:
        return self.confirm_interval_ms / 1000.0

    @property
    def color_debounce(self) -> float:
        return self.color_debounce_ms / 1000.0


@dataclass
class DashboardConfig:
    """Parsed and validated dashboard configuration."""

    api_base_url: str = DEFAULT_API_BASE_URL
    state_path: str = DEFAULT_STATE_PATH
    request_timeout_s: float = 20.0
    default_history_window: str = DEFAULT_HISTORY_WINDOW
    controls: ControlSettings = field(default_factory=ControlSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def resolved_state_path(self) -> Path:
        return Path(self.state_path).expanduser()


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaves pass through unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be an integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a positive integer.")
    return value


def _parse_controls(section: dict[str, Any]) -> ControlSettings:
    path = "dashboard.controls"
    return ControlSettings(
        confirm_attempts=_positive_int(section, "confirm_attempts", 5, path),
        confirm_interval_ms=_positive_int(section, "confirm_interval_ms", 400, path),
        color_debounce_ms=_positive_int(section, "color_debounce_ms", 500, path),
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(
            f"Invalid dashboard.logging.format: {fmt!r}. Must be 'text' or 'json'."
        )
    log_root = section.get("log_root")
    return LoggingConfig(
        level=level,
        format=fmt,
        log_root=str(log_root) if log_root else None,
    )


def parse_config(data: dict[str, Any]) -> DashboardConfig:
    """Validate an already-decoded config mapping."""
    data = resolve_env_vars(data)

    section = data.get("dashboard", {})
    if not isinstance(section, dict):
        raise ConfigError("[dashboard] must be a TOML table")

    api_base_url = str(section.get("api_base_url", DEFAULT_API_BASE_URL)).strip()
    env_override = os.environ.get(API_BASE_URL_ENV)
    if env_override:
        api_base_url = env_override.strip()
    if not api_base_url.startswith(("http://", "https://")):
        raise ConfigError(
            f"Invalid dashboard.api_base_url: {api_base_url!r}. Must be an http(s) URL."
        )

    state_path = str(section.get("state_path", DEFAULT_STATE_PATH)).strip()
    if not state_path:
        raise ConfigError("dashboard.state_path must be a non-empty string")

    try:
        request_timeout_s = float(section.get("request_timeout_s", 20.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError("dashboard.request_timeout_s must be a number") from exc
    if request_timeout_s <= 0:
        raise ConfigError("dashboard.request_timeout_s must be positive")

    history_section = section.get("history", {})
    window = str(history_section.get("default_window", DEFAULT_HISTORY_WINDOW))
    if window not in _HISTORY_WINDOWS:
        raise ConfigError(
            f"Invalid dashboard.history.default_window: {window!r}. "
            f"Expected one of: {', '.join(_HISTORY_WINDOWS)}"
        )

    return DashboardConfig(
        api_base_url=api_base_url.rstrip("/"),
        state_path=state_path,
        request_timeout_s=request_timeout_s,
        default_history_window=window,
        controls=_parse_controls(section.get("controls", {})),
        logging=_parse_logging(section.get("logging", {})),
    )


def load_config(config_path: Path | None = None) -> DashboardConfig:
    """Load and validate a ``habdash.toml``.

    Parameters
    ----------
    config_path:
        Path to the TOML file. ``None`` returns the defaults (still honouring
        the ``HABDASH_API_BASE_URL`` override).

    Raises
    ------
    ConfigError
        If the named file is missing, contains invalid TOML, or fails validation.
    """
    if config_path is None:
        return parse_config({})

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = tomllib.loads(config_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc

    return parse_config(data)
