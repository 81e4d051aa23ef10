"""Persistent credential store backed by a local key-value state file.

Holds exactly three strings under fixed keys:

- ``oh_email``: identity for HTTP Basic auth
- ``oh_password``: secret for HTTP Basic auth
- ``oh_token``: device API token sent as ``X-OPENHAB-TOKEN``

Values are read on startup, written immediately on every update, and cleared
atomically on logout. Every write replaces the whole file via a temporary
file and ``os.replace`` so a crash never leaves a half-written store.

Usage::

    store = LocalCredentialStore(Path("~/.config/habdash/state.json"))
    store.save(Credential("me@example.com", "hunter2", "oh.token..."))
    credential = store.load()
    if not credential.is_complete:
        raise MissingCredentials(credential.missing_fields())

Note: raw secret values are NEVER exposed by ``__repr__``.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from habdash.errors import MissingCredentials

logger = logging.getLogger(__name__)

KEY_IDENTITY = "oh_email"
KEY_SECRET = "oh_password"
KEY_DEVICE_TOKEN = "oh_token"
CREDENTIAL_KEYS = (KEY_IDENTITY, KEY_SECRET, KEY_DEVICE_TOKEN)


# ---------------------------------------------------------------------------
# Credential dataclass
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Credential:
    """The three values every outbound request is authenticated with.

    Attributes
    ----------
    identity:
        Account identity (e-mail) for HTTP Basic auth.
    secret:
        Account password for HTTP Basic auth.
    device_token:
        Controller API token, sent in the ``X-OPENHAB-TOKEN`` header.
    """

    identity: str = ""
    secret: str = ""
    device_token: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.identity and self.secret and self.device_token)

    def missing_fields(self) -> list[str]:
        return [
            key
            for key, value in zip(
                CREDENTIAL_KEYS, (self.identity, self.secret, self.device_token), strict=True
            )
            if not value
        ]

    def require(self) -> Credential:
        """Return self, or raise :class:`MissingCredentials` if incomplete."""
        if not self.is_complete:
            raise MissingCredentials(self.missing_fields())
        return self

    def basic_auth_header(self) -> str:
        raw = f"{self.identity}:{self.secret}".encode()
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def token_prefix(self) -> str:
        return f"{self.device_token[:8]}..." if self.device_token else ""

    def __repr__(self) -> str:
        return (
            f"Credential(identity={self.identity!r}, "
            f"secret={'***' if self.secret else ''!r}, "
            f"device_token={self.token_prefix()!r})"
        )


# ---------------------------------------------------------------------------
# Store protocol and implementations
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """Protocol for credential persistence backends."""

    def load(self) -> Credential: ...

    def save(self, credential: Credential) -> None: ...

    def clear(self) -> None: ...


class MemoryCredentialStore:
    """Process-local store, used when nothing should touch the disk."""

    def __init__(self, credential: Credential | None = None) -> None:
        self._credential = credential or Credential()

    def load(self) -> Credential:
        return self._credential

    def save(self, credential: Credential) -> None:
        self._credential = credential

    def clear(self) -> None:
        self._credential = Credential()


class LocalCredentialStore:
    """JSON-file store mirroring a browser's per-origin key-value storage.

    Unknown keys already present in the file are preserved on save so the
    state file can be shared with other settings.

    Parameters
    ----------
    path:
        Location of the state file. Parent directories are created on first
        write.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            logger.warning("Credential state file %s is not valid JSON; ignoring it", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Credential state file %s is not a JSON object; ignoring it", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write_all(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".habdash-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self) -> Credential:
        data = self._read_all()
        return Credential(
            identity=data.get(KEY_IDENTITY, ""),
            secret=data.get(KEY_SECRET, ""),
            device_token=data.get(KEY_DEVICE_TOKEN, ""),
        )

    def save(self, credential: Credential) -> None:
        data = self._read_all()
        data.update(
            {
                KEY_IDENTITY: credential.identity,
                KEY_SECRET: credential.secret,
                KEY_DEVICE_TOKEN: credential.device_token,
            }
        )
        self._write_all(data)
        logger.debug(
            "Saved credentials for %s (token prefix=%s)",
            credential.identity or "<none>",
            credential.token_prefix(),
        )

    def clear(self) -> None:
        """Remove all three keys in a single write."""
        data = self._read_all()
        for key in CREDENTIAL_KEYS:
            data.pop(key, None)
        self._write_all(data)
        logger.info("Cleared stored credentials")
