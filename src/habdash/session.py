"""The dashboard session: single owner of credentials, catalog and views.

Everything that depends on the credentials hangs off one
:class:`DashboardSession`. Changing or clearing the credentials invalidates
all of it at once: the gateway is rebuilt, the catalog is dropped, and the
open view is closed together with its widgets. Views own their item set,
selected item, filters and widgets; switching add-on discards the old view
rather than hiding it.

Requests are never cancelled. Instead every async operation checks, after it
resumes, that the object it is about to update is still current: the
session's epoch for catalog loads, the view's ``closed`` flag for item
resolution, and a per-detail request counter for history loads.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from habdash.catalog import AddonCatalog, fetch_catalog
from habdash.config import DashboardConfig
from habdash.controls.widgets import ControlWidget, create_control
from habdash.credential_store import Credential, CredentialStore
from habdash.display import ItemDisplay, describe_state
from habdash.errors import DashboardError
from habdash.gateway import RestGatewayClient
from habdash.history import HistoryWindow, fetch_history, supports_history
from habdash.models import AddonRecord, HistoryPoint, Item
from habdash.resolver import ItemFilter, fetch_binding_items, item_types

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Item detail
# ---------------------------------------------------------------------------


class ItemDetail:
    """Detail view of one item: display, control widget and history chart."""

    def __init__(self, item: Item, gateway: RestGatewayClient, config: DashboardConfig) -> None:
        self.item = item
        self._gateway = gateway
        self.display: ItemDisplay = describe_state(item)
        self.control: ControlWidget | None = create_control(item, gateway, config.controls)
        self.window = HistoryWindow(config.default_history_window)
        self.history: list[HistoryPoint] = []
        self.history_error: DashboardError | None = None
        self._history_request = 0
        self._closed = False

    @property
    def supports_history(self) -> bool:
        return supports_history(self.item)

    @property
    def closed(self) -> bool:
        return self._closed

    async def load_history(
        self,
        window: HistoryWindow | str | None = None,
        now: datetime | None = None,
    ) -> list[HistoryPoint]:
        """(Re)load the chart for *window*; the previous series is discarded first."""
        if window is not None:
            self.window = HistoryWindow(window)
        self.history = []
        self.history_error = None
        if not self.supports_history:
            return []

        self._history_request += 1
        request = self._history_request
        try:
            series = await fetch_history(self._gateway, self.item.name, self.window, now)
        except DashboardError as exc:
            if self._closed or request != self._history_request:
                return []
            logger.warning("Could not load history for %s: %s", self.item.name, exc)
            self.history_error = exc
            return []

        if self._closed or request != self._history_request:
            logger.debug("Dropping stale history response for %s", self.item.name)
            return []
        self.history = series
        return series

    def close(self) -> None:
        self._closed = True
        if self.control is not None:
            self.control.close()


# ---------------------------------------------------------------------------
# Binding view
# ---------------------------------------------------------------------------


class BindingView:
    """Items of one selected add-on, with filters and the selected item."""

    def __init__(self, addon: AddonRecord, gateway: RestGatewayClient, config: DashboardConfig):
        self.addon = addon
        self._gateway = gateway
        self._config = config
        self.items: list[Item] = []
        self.error: DashboardError | None = None
        self.loading = True
        self.type_filter = ""
        self.name_filter = ""
        self.detail: ItemDetail | None = None
        self._closed = False

    @property
    def addon_id(self) -> str:
        return self.addon.id

    @property
    def closed(self) -> bool:
        return self._closed

    def visible_items(self) -> list[Item]:
        return ItemFilter(self.type_filter, self.name_filter).apply(self.items)

    def item_types(self) -> list[str]:
        return item_types(self.items)

    def set_type_filter(self, item_type: str) -> None:
        self.type_filter = item_type

    def set_name_filter(self, pattern: str) -> None:
        self.name_filter = pattern

    def select_item(self, name: str) -> ItemDetail:
        for item in self.items:
            if item.name == name:
                break
        else:
            raise KeyError(f"Item {name!r} is not part of {self.addon_id}")
        self.back()
        self.detail = ItemDetail(item, self._gateway, self._config)
        return self.detail

    def back(self) -> None:
        if self.detail is not None:
            self.detail.close()
            self.detail = None

    def close(self) -> None:
        self._closed = True
        self.back()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class DashboardSession:
    """Owns credentials, the gateway, the add-on catalog and the current view.

    Parameters
    ----------
    config:
        Dashboard configuration.
    store:
        Credential persistence; read once at construction.
    http_client:
        Optional ``httpx.AsyncClient`` handed to every gateway built by the
        session (tests pass one backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: DashboardConfig,
        store: CredentialStore,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._store = store
        self._http_client = http_client
        self._credential = store.load()
        self._gateway: RestGatewayClient | None = None
        self._epoch = 0
        self.catalog: AddonCatalog | None = None
        self.catalog_error: DashboardError | None = None
        self.view: BindingView | None = None

    async def __aenter__(self) -> DashboardSession:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def is_authenticated(self) -> bool:
        return self._credential.is_complete

    def gateway(self) -> RestGatewayClient:
        """Return the gateway for the current credentials, building it if needed.

        Raises
        ------
        MissingCredentials
            When any of the three credential values is absent.
        """
        if self._gateway is None:
            self._gateway = RestGatewayClient(
                self.config.api_base_url,
                self._credential.require(),
                timeout=self.config.request_timeout_s,
                http_client=self._http_client,
            )
        return self._gateway

    async def update_credentials(
        self,
        *,
        identity: str | None = None,
        secret: str | None = None,
        device_token: str | None = None,
    ) -> None:
        """Persist changed credential values and invalidate everything derived."""
        updates = {
            k: v
            for k, v in (
                ("identity", identity),
                ("secret", secret),
                ("device_token", device_token),
            )
            if v is not None
        }
        credential = replace(self._credential, **updates)
        self._store.save(credential)
        if credential != self._credential:
            self._credential = credential
            await self.invalidate()

    async def logout(self) -> None:
        self._store.clear()
        self._credential = Credential()
        await self.invalidate()
        logger.info("Logged out")

    async def invalidate(self) -> None:
        """Drop the catalog, close the view and widgets, rebuild the gateway lazily."""
        self._epoch += 1
        self.catalog = None
        self.catalog_error = None
        self._close_view()
        if self._gateway is not None:
            gateway, self._gateway = self._gateway, None
            await gateway.aclose()
        logger.debug("Session invalidated (epoch=%d)", self._epoch)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def refresh_catalog(self) -> AddonCatalog:
        """Rebuild the add-on catalog. Errors are recorded, then re-raised."""
        epoch = self._epoch
        gateway = self.gateway()
        try:
            catalog = await fetch_catalog(gateway)
        except DashboardError as exc:
            if epoch == self._epoch:
                self.catalog = None
                self.catalog_error = exc
            raise

        if epoch != self._epoch:
            logger.debug("Dropping catalog fetched before credentials changed")
            return catalog
        self.catalog = catalog
        self.catalog_error = None
        if self.view is not None and catalog.find(self.view.addon_id) is None:
            self._close_view()
        return catalog

    def select_type(self, addon_type: str) -> AddonCatalog:
        if self.catalog is None:
            raise RuntimeError("Add-on catalog not loaded; call refresh_catalog() first")
        self.catalog = self.catalog.with_active_type(addon_type)
        if self.view is not None and self.catalog.find(self.view.addon_id) is None:
            self._close_view()
        return self.catalog

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _close_view(self) -> None:
        if self.view is not None:
            self.view.close()
            self.view = None

    async def select_addon(self, addon_id: str) -> BindingView:
        """Discard the current view and resolve the items of *addon_id*.

        Resolution errors are recorded on the returned view (``view.error``)
        instead of being raised.
        """
        if self.catalog is None:
            raise RuntimeError("Add-on catalog not loaded; call refresh_catalog() first")
        addon = self.catalog.find(addon_id)
        if addon is None:
            raise KeyError(f"Add-on {addon_id!r} is not an installed {self.catalog.active_type}")

        gateway = self.gateway()
        self._close_view()
        view = BindingView(addon, gateway, self.config)
        self.view = view

        try:
            items = await fetch_binding_items(gateway, addon_id)
        except DashboardError as exc:
            if not view.closed:
                logger.warning("Could not resolve items for %s: %s", addon_id, exc)
                view.error = exc
                view.loading = False
            return view

        if view.closed:
            logger.debug("Dropping item set for %s; view was replaced", addon_id)
            return view
        view.items = items
        view.loading = False
        return view

    async def aclose(self) -> None:
        self._close_view()
        if self._gateway is not None:
            gateway, self._gateway = self._gateway, None
            await gateway.aclose()
