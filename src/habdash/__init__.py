"""habdash, an openHAB add-on dashboard: catalog, binding items, controls and history."""

__version__ = "0.1.0"
