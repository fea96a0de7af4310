"""Service registration and handlers for RepoNest.

Exposes Home Assistant services under the ``reponest`` domain to edit the
folder tree, bulk-delete a selection, import a library document and reset to
the seed. Input is validated with voluptuous and operations are delegated to
the ``LibraryManager`` stored in ``hass.data[DOMAIN]["manager"]``.

Errors from the domain layer (validation, parse, missing data, storage) are
logged with contextual fields and do not raise stack traces.
"""

from __future__ import annotations

import logging
from typing import Any

import voluptuous as vol
from homeassistant.core import HomeAssistant, ServiceCall

from .const import DOMAIN, ROOT_FOLDER_ID
from .exceptions import NoDataError, ParseError, StorageError, ValidationError
from .manager import LibraryManager

LOGGER = logging.getLogger(__name__)


# -----------------------------
# Validation schemas
# -----------------------------

SCHEMA_FOLDER_CREATE = vol.Schema(
    {
        vol.Optional("parent_id", default=ROOT_FOLDER_ID): str,
        vol.Required("name"): str,
        vol.Optional("folder_id"): str,
    }
)

SCHEMA_FOLDER_RENAME = vol.Schema({vol.Required("folder_id"): str, vol.Required("name"): str})

SCHEMA_FOLDER_DELETE = vol.Schema({vol.Required("folder_id"): str})

SCHEMA_REPO_CREATE = vol.Schema(
    {
        vol.Required("folder_id"): str,
        vol.Required("name"): str,
        vol.Required("url"): str,
        vol.Optional("repo_id"): str,
    }
)

SCHEMA_REPO_UPDATE = vol.Schema(
    {
        vol.Required("folder_id"): str,
        vol.Required("repo_id"): str,
        vol.Required("name"): str,
        vol.Required("url"): str,
    }
)

SCHEMA_REPO_DELETE = vol.Schema({vol.Required("folder_id"): str, vol.Required("repo_id"): str})

SCHEMA_BULK_DELETE = vol.Schema({vol.Required("keys"): [str]})

SCHEMA_IMPORT_LIBRARY = vol.Schema({vol.Required("document"): str})

SCHEMA_RESET_TO_SEED = vol.Schema({})

_HANDLED_ERRORS = (vol.Invalid, ValidationError, ParseError, NoDataError, StorageError)


# -----------------------------
# Internal helpers
# -----------------------------


def _get_manager(hass: HomeAssistant) -> LibraryManager:
    bucket = hass.data.get(DOMAIN) or {}
    manager = bucket.get("manager")
    if manager is None:
        raise StorageError("library manager not initialized; run integration setup")
    return manager


def _log_domain_error(op: str, context: dict[str, Any], exc: Exception) -> None:
    level = logging.WARNING
    if isinstance(exc, StorageError):
        level = logging.ERROR
    LOGGER.log(level, str(exc), extra={"domain": DOMAIN, "op": op, **context})


# -----------------------------
# Service handlers (exported for tests)
# -----------------------------


async def service_create_folder(hass: HomeAssistant, data: dict) -> None:
    op = "create_folder"
    try:
        payload = SCHEMA_FOLDER_CREATE(data)
        _get_manager(hass).create_folder(
            payload["parent_id"], payload["name"], folder_id=payload.get("folder_id")
        )
    except _HANDLED_ERRORS as exc:
        _log_domain_error(op, {"parent_id": data.get("parent_id")}, exc)


async def service_rename_folder(hass: HomeAssistant, data: dict) -> None:
    op = "rename_folder"
    try:
        payload = SCHEMA_FOLDER_RENAME(data)
        _get_manager(hass).rename_folder(payload["folder_id"], payload["name"])
    except _HANDLED_ERRORS as exc:
        _log_domain_error(op, {"folder_id": data.get("folder_id")}, exc)


async def service_delete_folder(hass: HomeAssistant, data: dict) -> None:
    op = "delete_folder"
    try:
        payload = SCHEMA_FOLDER_DELETE(data)
        _get_manager(hass).delete_folder(payload["folder_id"])
    except _HANDLED_ERRORS as exc:
        _log_domain_error(op, {"folder_id": data.get("folder_id")}, exc)


async def service_create_repo(hass: HomeAssistant, data: dict) -> None:
    op = "create_repo"
    try:
        payload = SCHEMA_REPO_CREATE(data)
        _get_manager(hass).create_repo(
            payload["folder_id"],
            payload["name"],
            payload["url"],
            repo_id=payload.get("repo_id"),
        )
    except _HANDLED_ERRORS as exc:
        _log_domain_error(op, {"folder_id": data.get("folder_id"), "url": data.get("url")}, exc)


async def service_update_repo(hass: HomeAssistant, data: dict) -> None:
    op = "update_repo"
    try:
        payload = SCHEMA_REPO_UPDATE(data)
        _get_manager(hass).update_repo(
            payload["folder_id"], payload["repo_id"], payload["name"], payload["url"]
        )
    except _HANDLED_ERRORS as exc:
        _log_domain_error(
            op, {"folder_id": data.get("folder_id"), "repo_id": data.get("repo_id")}, exc
        )


async def service_delete_repo(hass: HomeAssistant, data: dict) -> None:
    op = "delete_repo"
    try:
        payload = SCHEMA_REPO_DELETE(data)
        _get_manager(hass).delete_repo(payload["folder_id"], payload["repo_id"])
    except _HANDLED_ERRORS as exc:
        _log_domain_error(
            op, {"folder_id": data.get("folder_id"), "repo_id": data.get("repo_id")}, exc
        )


async def service_bulk_delete(hass: HomeAssistant, data: dict) -> None:
    op = "bulk_delete"
    try:
        payload = SCHEMA_BULK_DELETE(data)
        _get_manager(hass).bulk_delete(payload["keys"])
    except _HANDLED_ERRORS as exc:
        _log_domain_error(op, {"keys_count": len(data.get("keys") or [])}, exc)


async def service_import_library(hass: HomeAssistant, data: dict) -> None:
    op = "import_library"
    try:
        payload = SCHEMA_IMPORT_LIBRARY(data)
        _get_manager(hass).import_from_json(payload["document"])
    except _HANDLED_ERRORS as exc:
        _log_domain_error(op, {}, exc)


async def service_reset_to_seed(hass: HomeAssistant, data: dict) -> None:
    op = "reset_to_seed"
    try:
        SCHEMA_RESET_TO_SEED(data)
        await _get_manager(hass).async_reset_to_seed()
    except _HANDLED_ERRORS as exc:
        _log_domain_error(op, {}, exc)


# -----------------------------
# Registration
# -----------------------------

_SERVICES = {
    "create_folder": (service_create_folder, SCHEMA_FOLDER_CREATE),
    "rename_folder": (service_rename_folder, SCHEMA_FOLDER_RENAME),
    "delete_folder": (service_delete_folder, SCHEMA_FOLDER_DELETE),
    "create_repo": (service_create_repo, SCHEMA_REPO_CREATE),
    "update_repo": (service_update_repo, SCHEMA_REPO_UPDATE),
    "delete_repo": (service_delete_repo, SCHEMA_REPO_DELETE),
    "bulk_delete": (service_bulk_delete, SCHEMA_BULK_DELETE),
    "import_library": (service_import_library, SCHEMA_IMPORT_LIBRARY),
    "reset_to_seed": (service_reset_to_seed, SCHEMA_RESET_TO_SEED),
}


def _make_handler(hass: HomeAssistant, handler):
    async def _handle(call: ServiceCall) -> None:
        await handler(hass, dict(call.data))

    return _handle


def setup(hass: HomeAssistant) -> None:
    """Register reponest.* services on Home Assistant."""

    # Idempotent: avoid duplicate registration across reloads
    bucket = hass.data.setdefault(DOMAIN, {})
    if bucket.get("services_registered"):
        return

    # Home Assistant validates inputs against these schemas before invoking the
    # handler; the handlers validate again so they can be called directly.
    for service, (handler, schema) in _SERVICES.items():
        hass.services.async_register(DOMAIN, service, _make_handler(hass, handler), schema)

    bucket["services_registered"] = True


def unload(hass: HomeAssistant) -> None:
    """Remove reponest.* services from Home Assistant."""

    bucket = hass.data.get(DOMAIN) or {}
    for service in _SERVICES:
        hass.services.async_remove(DOMAIN, service)
    bucket.pop("services_registered", None)
