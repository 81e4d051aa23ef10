"""Shared fixtures for the habdash test suite.

``FakeController`` stands in for the REST proxy: it serves add-on listings,
things, items and persistence data from in-memory fixtures through an
``httpx.MockTransport`` and records every request it sees.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

import httpx
import pytest

from habdash.config import ControlSettings, DashboardConfig
from habdash.credential_store import Credential, MemoryCredentialStore
from habdash.gateway import RestGatewayClient

BASE_URL = "http://proxy.test"


@dataclass
class FakeController:
    """In-memory controller behind the REST proxy."""

    addons: dict[str, list[dict[str, Any]]] = field(
        default_factory=lambda: {"karaf": [], "marketplace": [], "jar": []}
    )
    things: list[dict[str, Any]] = field(default_factory=list)
    items: dict[str, dict[str, Any]] = field(default_factory=dict)
    history: dict[str, Any] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    # path prefix -> (status, body) to fail with
    failures: dict[str, tuple[int, str]] = field(default_factory=dict)
    # path prefixes that fail at transport level
    unreachable: set[str] = field(default_factory=set)
    # maps (item name, command) to the state the item ends up in
    apply_command: Callable[[str, str], str | None] = lambda _name, command: command
    # item name -> states reported by successive GETs of that item
    poll_states: dict[str, list[str]] = field(default_factory=dict)
    # item name -> (status, body) returned for commands only
    command_failures: dict[str, tuple[int, str]] = field(default_factory=dict)

    def add_item(self, name: str, item_type: str, state: str = "NULL", label: str = "") -> None:
        self.items[name] = {"name": name, "type": item_type, "state": state, "label": label}

    def add_thing(self, uid: str, thing_type: str, channels: dict[str, list[str]]) -> None:
        self.things.append(
            {
                "UID": uid,
                "thingTypeUID": thing_type,
                "label": uid,
                "channels": [
                    {"uid": f"{uid}:{ch}", "linkedItems": linked} for ch, linked in channels.items()
                ],
            }
        )

    def commands(self) -> list[tuple[str, str]]:
        return [
            (unquote(r.url.path.rsplit("/", 1)[1]), r.content.decode())
            for r in self.requests
            if r.method == "POST"
        ]

    def polls(self, name: str) -> int:
        return sum(
            1
            for r in self.requests
            if r.method == "GET" and unquote(r.url.path) == f"/rest/items/{name}"
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = unquote(request.url.path)

        for prefix in self.unreachable:
            if path.startswith(prefix):
                raise httpx.ConnectError("Connection refused", request=request)
        for prefix, (status, body) in self.failures.items():
            if path.startswith(prefix):
                return httpx.Response(status, text=body)

        if path == "/rest/addons":
            service = request.url.params.get("serviceId", "")
            return httpx.Response(200, json=self.addons.get(service, []))
        if path == "/rest/things":
            return httpx.Response(200, json=self.things)
        if path == "/rest/items":
            return httpx.Response(200, json=list(self.items.values()))
        if path.startswith("/rest/items/"):
            name = path[len("/rest/items/") :]
            if name not in self.items:
                return httpx.Response(404, text=f"Item {name} does not exist!")
            if request.method == "POST":
                if name in self.command_failures:
                    status, body = self.command_failures[name]
                    return httpx.Response(status, text=body)
                new_state = self.apply_command(name, request.content.decode())
                if new_state is not None:
                    self.items[name]["state"] = new_state
                return httpx.Response(200)
            if self.poll_states.get(name):
                self.items[name]["state"] = self.poll_states[name].pop(0)
            return httpx.Response(200, json=self.items[name])
        if path.startswith("/rest/persistence/items/"):
            name = path[len("/rest/persistence/items/") :]
            payload = self.history.get(name, {"name": name, "data": []})
            if isinstance(payload, str):
                return httpx.Response(200, text=payload)
            return httpx.Response(200, content=json.dumps(payload).encode())
        return httpx.Response(404, text=f"No route for {path}")


@pytest.fixture
def controller() -> FakeController:
    return FakeController()


@pytest.fixture
async def http_client(controller: FakeController) -> AsyncIterator[httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(controller.handler))
    yield client
    await client.aclose()


@pytest.fixture
def credential() -> Credential:
    return Credential(
        identity="me@example.com", secret="hunter2", device_token="oh.dash.abcdef123456"
    )


@pytest.fixture
def gateway(credential: Credential, http_client: httpx.AsyncClient) -> RestGatewayClient:
    return RestGatewayClient(BASE_URL, credential, http_client=http_client)


@pytest.fixture
def fast_settings() -> ControlSettings:
    """Short timings so confirmation and debounce tests run quickly."""
    return ControlSettings(confirm_attempts=5, confirm_interval_ms=5, color_debounce_ms=50)


@pytest.fixture
def dashboard_config(fast_settings: ControlSettings) -> DashboardConfig:
    return DashboardConfig(api_base_url=BASE_URL, controls=fast_settings)


@pytest.fixture
def memory_store(credential: Credential) -> MemoryCredentialStore:
    return MemoryCredentialStore(credential)
