"""RepoNest integration bootstrap.

This module initializes the integration, loads the library through the
lifecycle manager, and wires services and WebSocket commands to it.
"""

from __future__ import annotations

import logging

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EVENT_HOMEASSISTANT_STOP
from homeassistant.core import Event, HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady
from homeassistant.helpers import config_validation as cv

from . import services as services_mod
from . import ws as ws_mod
from .const import DOMAIN
from .manager import STATE_READY, LibraryManager
from .models import RepoLibrary
from .storage import LibraryStore
from .tree import collect_issues, get_counts

LOGGER = logging.getLogger(__name__)


# This integration is config-entry only; no YAML configuration is accepted.
CONFIG_SCHEMA = cv.config_entry_only_config_schema(DOMAIN)


async def async_setup(hass: HomeAssistant, _config: dict) -> bool:
    """Set up the RepoNest domain at Home Assistant startup.

    Initializes an empty domain bucket in hass.data with no side effects.
    """
    hass.data.setdefault(DOMAIN, {})
    return True


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up RepoNest from a config entry."""
    bucket = hass.data.setdefault(DOMAIN, {})

    store = LibraryStore(hass)
    manager = LibraryManager(store, create_task=hass.async_create_task)
    state = await manager.async_load()
    if state != STATE_READY:
        LOGGER.error(
            "Library could not be loaded during setup",
            extra={
                "domain": DOMAIN,
                "op": "setup_storage",
                "schema_version": store.schema_version,
                "failure": manager.failure,
            },
        )
        raise ConfigEntryNotReady(f"library load failed ({manager.failure})")

    _log_library_health(manager.require_library(), schema_version=store.schema_version)
    bucket["store"] = store
    bucket["manager"] = manager

    async def _flush_on_stop(_event: Event) -> None:
        await manager.async_flush()

    entry.async_on_unload(hass.bus.async_listen_once(EVENT_HOMEASSISTANT_STOP, _flush_on_stop))

    # Register services
    services_mod.setup(hass)

    # Register WebSocket commands
    ws_mod.setup(hass)

    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry.

    Flushes pending changes, removes services and clears registration flags.
    WebSocket commands stay registered and report an uninitialized library
    until the entry is set up again.
    """

    bucket = hass.data.get(DOMAIN) or {}

    # Ensure any pending changes are persisted before unload
    manager: LibraryManager | None = bucket.pop("manager", None)
    if manager is not None:
        await manager.async_shutdown()

    services_mod.unload(hass)
    bucket.pop("ws_registered", None)
    bucket.pop("store", None)

    return True


def _log_library_health(library: RepoLibrary, *, schema_version: int) -> None:
    """Log a library summary after load; warn when invariants are broken."""

    counts = get_counts(library)
    issues = collect_issues(library)
    level = logging.WARNING if issues else logging.DEBUG
    LOGGER.log(
        level,
        "Library health: schema_version=%s folders=%s repos=%s issues=%s",
        schema_version,
        counts["folders_total"],
        counts["repos_total"],
        issues,
        extra={
            "domain": DOMAIN,
            "op": "setup_storage_health",
            "schema_version": schema_version,
            "folders_count": counts["folders_total"],
            "repos_count": counts["repos_total"],
        },
    )
