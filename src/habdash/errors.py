"""Error taxonomy for the dashboard.

Every failure the dashboard can surface is a :class:`DashboardError`.
Catalog- and resolution-level errors replace the corresponding view;
widget-level errors (``ParseError``, ``CommandFailed``) are attached to the
affected widget only and never propagate.
"""

from __future__ import annotations

CROSS_ORIGIN_MESSAGE = (
    "Cross-origin access blocked: the controller does not allow direct access "
    "from this client. Run the local REST proxy and point api_base_url (or "
    "HABDASH_API_BASE_URL) at it."
)


class DashboardError(Exception):
    """Base class for all dashboard errors."""


class MissingCredentials(DashboardError):
    """Raised when identity, secret or device token is absent."""

    def __init__(self, missing: list[str] | None = None) -> None:
        self.missing = list(missing or [])
        detail = f" (missing: {', '.join(self.missing)})" if self.missing else ""
        super().__init__(f"Not logged in{detail}")


class CrossOriginBlocked(DashboardError):
    """Network-level failure reaching the REST boundary.

    Distinct from an HTTP error response: the request never produced one.
    """

    def __init__(self, url: str, cause: Exception | None = None) -> None:
        self.url = url
        self.cause = cause
        super().__init__(CROSS_ORIGIN_MESSAGE)


class UpstreamError(DashboardError):
    """Raised for a non-2xx HTTP response; carries the body text."""

    def __init__(self, *, status_code: int, body: str, url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(body or f"Upstream request failed ({status_code})")


class ParseError(DashboardError):
    """Raised when a history, location, color or image state is malformed."""


class CommandFailed(DashboardError):
    """Raised when a command POST is rejected."""

    def __init__(self, item_name: str, command: str, cause: Exception | None = None) -> None:
        self.item_name = item_name
        self.command = command
        self.cause = cause
        reason = f": {cause}" if cause is not None else ""
        super().__init__(f"Command {command!r} for {item_name} failed{reason}")
