"""REST gateway client: the single door to the controller.

Every request carries ``Authorization: Basic <base64(identity:secret)>``,
``X-OPENHAB-TOKEN: <device token>`` and ``Accept: application/json``.
Responses are classified into the dashboard's error taxonomy:

- transport failure (connect refused, DNS, TLS, timeout) → ``CrossOriginBlocked``
- non-2xx status → ``UpstreamError`` carrying the body text
- undecodable body or JSON → ``ParseError``
- any other request failure (e.g. too many redirects) → ``UpstreamError``
  with ``status_code`` 0

Endpoints:

=================  ======  =============================================
list add-ons       GET     /rest/addons?serviceId={karaf|marketplace|jar}
list things        GET     /rest/things
list items         GET     /rest/items
get item           GET     /rest/items/{name}
send command       POST    /rest/items/{name}   (text/plain body)
historical series  GET     /rest/persistence/items/{name}
=================  ======  =============================================
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from habdash.credential_store import Credential
from habdash.errors import CrossOriginBlocked, ParseError, UpstreamError
from habdash.models import (
    AddonRecord,
    Item,
    ServiceId,
    Thing,
    parse_addons,
    parse_items,
    parse_things,
)

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-OPENHAB-TOKEN"
_DEFAULT_TIMEOUT_S = 20.0


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _item_path(name: str) -> str:
    return f"/rest/items/{quote(name, safe='')}"


def _validated(parser: Callable[..., list[Any]], payload: Any, what: str, *args: Any) -> list[Any]:
    try:
        return parser(payload, *args)
    except ValidationError as exc:
        raise ParseError(f"Malformed {what}: {exc}") from exc


class RestGatewayClient:
    """Authenticated async client for the controller's REST boundary.

    Credentials are captured at construction and treated as immutable for
    the client's lifetime; a credential change means building a new client.

    Parameters
    ----------
    base_url:
        Root URL of the REST proxy (e.g. ``http://localhost:3001``).
    credential:
        Complete credential; raises ``MissingCredentials`` otherwise.
    timeout:
        Per-request timeout in seconds.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` (tests pass one with a
        ``MockTransport``). A client passed in is not closed by :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str,
        credential: Credential,
        *,
        timeout: float = _DEFAULT_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._credential = credential.require()
        self._base_url = base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)))
        )
        self._tracer = trace.get_tracer("habdash")
        logger.debug(
            "RestGatewayClient: base_url=%s identity=%s token prefix=%s",
            self._base_url,
            self._credential.identity,
            self._credential.token_prefix(),
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "Authorization": self._credential.basic_auth_header(),
            TOKEN_HEADER: self._credential.device_token,
            "Accept": "application/json",
        }
        headers.update(extra)
        return headers

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        content: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        with self._tracer.start_as_current_span("habdash.gateway.request") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.route", path)
            try:
                response = await self._http_client.request(
                    method,
                    url,
                    params=params,
                    content=content,
                    headers=self._headers(**(headers or {})),
                )
            except httpx.TransportError as exc:
                logger.warning("Gateway %s %s failed at transport level: %s", method, path, exc)
                raise CrossOriginBlocked(url, exc) from exc
            except httpx.DecodingError as exc:
                logger.warning("Gateway %s %s sent an undecodable body: %s", method, path, exc)
                raise ParseError(f"Undecodable response body from {path}: {exc}") from exc
            except httpx.RequestError as exc:
                # Redirect loops and other protocol-level failures with no usable status.
                logger.warning("Gateway %s %s failed: %s", method, path, exc)
                raise UpstreamError(status_code=0, body=str(exc), url=url) from exc

            span.set_attribute("http.status_code", response.status_code)
            if response.status_code < 200 or response.status_code >= 300:
                body = response.text
                logger.warning(
                    "Gateway %s %s returned %d: %s", method, path, response.status_code, body[:200]
                )
                raise UpstreamError(status_code=response.status_code, body=body, url=url)
            return response

    async def _get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        response = await self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON payload from {path}") from exc

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def list_addons(self, service: ServiceId) -> list[AddonRecord]:
        payload = await self._get_json("/rest/addons", params={"serviceId": service.value})
        records = _validated(parse_addons, payload, f"add-on listing ({service})", service)
        logger.debug("Fetched %d add-ons from %s", len(records), service)
        return records

    async def list_things(self) -> list[Thing]:
        return _validated(parse_things, await self._get_json("/rest/things"), "thing listing")

    async def list_items(self) -> list[Item]:
        return _validated(parse_items, await self._get_json("/rest/items"), "item listing")

    async def get_item(self, name: str) -> Item:
        payload = await self._get_json(_item_path(name))
        if not isinstance(payload, dict):
            raise ParseError(f"Item payload for {name} must be a JSON object")
        try:
            return Item.model_validate({"name": name, **payload})
        except ValidationError as exc:
            raise ParseError(f"Malformed item payload for {name}: {exc}") from exc

    async def send_command(self, name: str, command: str) -> None:
        logger.info("Sending command %r to %s", command, name)
        await self._request(
            "POST",
            _item_path(name),
            content=command,
            headers={"Content-Type": "text/plain"},
        )

    async def get_history(self, name: str, start: datetime, end: datetime) -> Any:
        """Return the raw persistence payload (``{"data": [{time, state}, ...]}``)."""
        params = {
            "starttime": format_timestamp(start),
            "endtime": format_timestamp(end),
            "boundary": "true",
            "itemState": "true",
        }
        return await self._get_json(f"/rest/persistence/items/{quote(name, safe='')}", params=params)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
