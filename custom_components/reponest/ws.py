"""WebSocket command handlers for RepoNest.

Implements library, folder and repo commands plus change subscriptions.
Adheres to the envelope: input {id, type, ...payload}, output result_message/error_message.
Mutation commands answer with the whole updated library and a ``changed`` flag;
a stale target leaves the library untouched and yields ``changed: false``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import voluptuous as vol
from homeassistant.components import websocket_api
from homeassistant.core import HomeAssistant

from .const import DOMAIN, INTEGRATION_VERSION, ROOT_FOLDER_ID
from .exceptions import NoDataError, NotFoundError, ParseError, StorageError, ValidationError
from .manager import LibraryManager
from .models import RepoLibrary, library_to_dict, new_node_id
from .storage import CURRENT_SCHEMA_VERSION
from .tree import collect_issues, get_counts

LOGGER = logging.getLogger(__name__)

_SUBSCRIPTION_TOPICS: frozenset[str] = frozenset({"library", "stats"})


def _manager(hass: HomeAssistant) -> LibraryManager:
    bucket = hass.data.get(DOMAIN) or {}
    manager = bucket.get("manager")
    if manager is None:
        raise StorageError("library manager not initialized; run integration setup")
    return manager


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, ParseError):
        return "parse_error"
    if isinstance(exc, NoDataError):
        return "no_data"
    if isinstance(exc, StorageError):
        return "storage_error"
    return "unknown_error"


def _ctx(op: str, **extra: Any) -> dict[str, Any]:
    """Build a structured logging context for WS operations.

    Ensures the `op` field is always present and merges any additional fields.
    """
    base: dict[str, Any] = {"op": op}
    if extra:
        base.update(extra)
    return base


def _error_message(_id: int, exc: Exception, *, context: dict[str, Any]):
    level = logging.WARNING
    if isinstance(exc, StorageError | NoDataError):
        level = logging.ERROR
    extra: dict[str, Any] = {"domain": DOMAIN, **context}
    if isinstance(exc, ValidationError):
        extra["validation_code"] = exc.code
    LOGGER.log(level, str(exc), extra=extra)
    return websocket_api.error_message(_id, _error_code(exc), str(exc))


# -----------------------------
# Unified exception handling for WS handlers
# -----------------------------

_WSHandler = Callable[[HomeAssistant, Any, dict], Awaitable[Any]]

# NotFoundError is never raised by mutations; kept for handlers that require a target
_GUARDED_ERRORS = (ValidationError, NotFoundError, ParseError, NoDataError, StorageError)


def _context_from_msg(op: str, msg: dict, fields: tuple[str, ...]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for field in fields:
        if field not in msg:
            continue
        key = field
        # Avoid the reserved LogRecord key 'name'
        if field == "name":
            key = "repo_name" if op.startswith("repo_") else "folder_name"
        payload[key] = msg.get(field)
    return _ctx(op, **payload)


def ws_guard(op: str, context_fields: tuple[str, ...] = ()) -> Callable[[_WSHandler], _WSHandler]:
    """Decorator to map known domain exceptions to unified WS errors.

    Builds a structured context from selected fields in the incoming message and
    sends a Home Assistant websocket error envelope with {code, message}.
    """

    def decorator(func: _WSHandler) -> _WSHandler:
        async def wrapper(hass: HomeAssistant, conn, msg):
            try:
                return await func(hass, conn, msg)
            except _GUARDED_ERRORS as exc:
                ctx = _context_from_msg(op, msg, context_fields)
                conn.send_message(_error_message(msg.get("id", 0), exc, context=ctx))
                return None

        return wrapper

    return decorator


# -----------------------------
# Serialization and events
# -----------------------------


def _now_ts() -> str:
    return datetime.now(UTC).isoformat()


def _serialize_library(library: RepoLibrary | None) -> dict[str, Any] | None:
    if library is None:
        return None
    return library_to_dict(library)


def _mutation_result(before: RepoLibrary, after: RepoLibrary, **extra: Any) -> dict[str, Any]:
    result: dict[str, Any] = {"changed": after is not before, "library": library_to_dict(after)}
    result.update(extra)
    return result


def _build_event(topic: str, library: RepoLibrary) -> dict[str, Any]:
    event: dict[str, Any] = {
        "domain": DOMAIN,
        "topic": topic,
        "action": "changed",
        "ts": _now_ts(),
        "counts": get_counts(library),
    }
    if topic == "library":
        event["library"] = library_to_dict(library)
    return event


# -----------------------------
# Utility commands
# -----------------------------


def _schema_version_from_hass(hass: HomeAssistant) -> int:
    bucket = hass.data.get(DOMAIN) or {}
    ver = getattr(bucket.get("store"), "schema_version", None)
    return ver if isinstance(ver, int) else int(CURRENT_SCHEMA_VERSION)


@websocket_api.websocket_command({vol.Required("type"): "reponest/version"})
@websocket_api.async_response
async def ws_version(hass: HomeAssistant, conn, msg):
    bucket = hass.data.get(DOMAIN) or {}
    manager = bucket.get("manager")
    library = manager.library if manager is not None else None
    result = {
        "integration_version": INTEGRATION_VERSION,
        "schema_version": _schema_version_from_hass(hass),
        "library_version": library.version if library is not None else None,
    }
    conn.send_message(websocket_api.result_message(msg.get("id", 0), result))


@websocket_api.websocket_command({vol.Required("type"): "reponest/stats"})
@websocket_api.async_response
@ws_guard("stats")
async def ws_stats(hass: HomeAssistant, conn, msg):
    counts = get_counts(_manager(hass).require_library())
    conn.send_message(websocket_api.result_message(msg.get("id", 0), counts))


@websocket_api.websocket_command({vol.Required("type"): "reponest/health"})
@websocket_api.async_response
@ws_guard("health")
async def ws_health(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    library = manager.library
    if manager.state != "ready" or library is None:
        result = {
            "healthy": False,
            "state": manager.state,
            "failure": manager.failure,
            "issues": ["library_not_ready"],
            "counts": None,
        }
    else:
        issues = collect_issues(library)
        result = {
            "healthy": not issues,
            "state": manager.state,
            "failure": None,
            "issues": issues,
            "counts": get_counts(library),
        }
    conn.send_message(websocket_api.result_message(msg.get("id", 0), result))


# -----------------------------
# Library commands
# -----------------------------


@websocket_api.websocket_command({vol.Required("type"): "reponest/library/get"})
@websocket_api.async_response
@ws_guard("library_get")
async def ws_library_get(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    result = {
        "state": manager.state,
        "failure": manager.failure,
        "library": _serialize_library(manager.library if manager.state == "ready" else None),
    }
    conn.send_message(websocket_api.result_message(msg.get("id", 0), result))


@websocket_api.websocket_command(
    {vol.Required("type"): "reponest/library/export", vol.Optional("indent", default=2): int}
)
@websocket_api.async_response
@ws_guard("library_export")
async def ws_library_export(hass: HomeAssistant, conn, msg):
    document = _manager(hass).export_json(indent=msg.get("indent", 2))
    conn.send_message(websocket_api.result_message(msg.get("id", 0), {"document": document}))


@websocket_api.websocket_command(
    {vol.Required("type"): "reponest/library/import", vol.Required("document"): str}
)
@websocket_api.async_response
@ws_guard("library_import")
async def ws_library_import(hass: HomeAssistant, conn, msg):
    library = _manager(hass).import_from_json(msg["document"])
    result = {"library": library_to_dict(library)}
    conn.send_message(websocket_api.result_message(msg.get("id", 0), result))


@websocket_api.websocket_command({vol.Required("type"): "reponest/library/reset"})
@websocket_api.async_response
@ws_guard("library_reset")
async def ws_library_reset(hass: HomeAssistant, conn, msg):
    library = await _manager(hass).async_reset_to_seed()
    result = {"library": library_to_dict(library)}
    conn.send_message(websocket_api.result_message(msg.get("id", 0), result))


# -----------------------------
# Folders
# -----------------------------


@websocket_api.websocket_command(
    {
        vol.Required("type"): "reponest/folder/create",
        vol.Optional("parent_id", default=ROOT_FOLDER_ID): str,
        vol.Required("name"): str,
    }
)
@websocket_api.async_response
@ws_guard("folder_create", ("parent_id", "name"))
async def ws_folder_create(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    before = manager.require_library()
    folder_id = new_node_id()
    after = manager.create_folder(msg["parent_id"], msg["name"], folder_id=folder_id)
    changed = after is not before
    result = _mutation_result(before, after, folder_id=folder_id if changed else None)
    conn.send_message(websocket_api.result_message(msg.get("id", 0), result))


@websocket_api.websocket_command(
    {
        vol.Required("type"): "reponest/folder/rename",
        vol.Required("folder_id"): str,
        vol.Required("name"): str,
    }
)
@websocket_api.async_response
@ws_guard("folder_rename", ("folder_id", "name"))
async def ws_folder_rename(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    before = manager.require_library()
    after = manager.rename_folder(msg["folder_id"], msg["name"])
    conn.send_message(
        websocket_api.result_message(msg.get("id", 0), _mutation_result(before, after))
    )


@websocket_api.websocket_command(
    {vol.Required("type"): "reponest/folder/delete", vol.Required("folder_id"): str}
)
@websocket_api.async_response
@ws_guard("folder_delete", ("folder_id",))
async def ws_folder_delete(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    before = manager.require_library()
    after = manager.delete_folder(msg["folder_id"])
    conn.send_message(
        websocket_api.result_message(msg.get("id", 0), _mutation_result(before, after))
    )


# -----------------------------
# Repos
# -----------------------------


@websocket_api.websocket_command(
    {
        vol.Required("type"): "reponest/repo/create",
        vol.Required("folder_id"): str,
        vol.Required("name"): str,
        vol.Required("url"): str,
    }
)
@websocket_api.async_response
@ws_guard("repo_create", ("folder_id", "name", "url"))
async def ws_repo_create(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    before = manager.require_library()
    repo_id = new_node_id()
    after = manager.create_repo(msg["folder_id"], msg["name"], msg["url"], repo_id=repo_id)
    changed = after is not before
    result = _mutation_result(before, after, repo_id=repo_id if changed else None)
    conn.send_message(websocket_api.result_message(msg.get("id", 0), result))


@websocket_api.websocket_command(
    {
        vol.Required("type"): "reponest/repo/update",
        vol.Required("folder_id"): str,
        vol.Required("repo_id"): str,
        vol.Required("name"): str,
        vol.Required("url"): str,
    }
)
@websocket_api.async_response
@ws_guard("repo_update", ("folder_id", "repo_id", "name", "url"))
async def ws_repo_update(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    before = manager.require_library()
    after = manager.update_repo(msg["folder_id"], msg["repo_id"], msg["name"], msg["url"])
    conn.send_message(
        websocket_api.result_message(msg.get("id", 0), _mutation_result(before, after))
    )


@websocket_api.websocket_command(
    {
        vol.Required("type"): "reponest/repo/delete",
        vol.Required("folder_id"): str,
        vol.Required("repo_id"): str,
    }
)
@websocket_api.async_response
@ws_guard("repo_delete", ("folder_id", "repo_id"))
async def ws_repo_delete(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    before = manager.require_library()
    after = manager.delete_repo(msg["folder_id"], msg["repo_id"])
    conn.send_message(
        websocket_api.result_message(msg.get("id", 0), _mutation_result(before, after))
    )


@websocket_api.websocket_command(
    {vol.Required("type"): "reponest/bulk_delete", vol.Required("keys"): [str]}
)
@websocket_api.async_response
@ws_guard("bulk_delete")
async def ws_bulk_delete(hass: HomeAssistant, conn, msg):
    manager = _manager(hass)
    before = manager.require_library()
    after = manager.bulk_delete(msg["keys"])
    conn.send_message(
        websocket_api.result_message(msg.get("id", 0), _mutation_result(before, after))
    )


# -----------------------------
# Subscription commands
# -----------------------------


@websocket_api.websocket_command(
    {vol.Required("type"): "reponest/subscribe", vol.Optional("topic", default="library"): str}
)
@websocket_api.async_response
@ws_guard("subscribe", ("topic",))
async def ws_subscribe(hass: HomeAssistant, conn, msg):
    topic = msg.get("topic", "library")
    if topic not in _SUBSCRIPTION_TOPICS:
        raise ValidationError("topic must be one of: library, stats")
    manager = _manager(hass)
    sub_id = msg.get("id", 0)

    def _forward(library: RepoLibrary) -> None:
        conn.send_message(websocket_api.event_message(sub_id, _build_event(topic, library)))

    # Home Assistant calls this on unsubscribe and when the connection closes
    conn.subscriptions[sub_id] = manager.async_add_listener(_forward)
    LOGGER.debug(
        "Subscribed",
        extra={"domain": DOMAIN, "op": "subscribe", "subscription_id": sub_id, "topic": topic},
    )
    conn.send_message(websocket_api.result_message(sub_id, None))


@websocket_api.websocket_command(
    {vol.Required("type"): "reponest/unsubscribe", vol.Required("subscription"): int}
)
@websocket_api.async_response
async def ws_unsubscribe(hass: HomeAssistant, conn, msg):
    sub_id = msg["subscription"]
    remove = conn.subscriptions.pop(sub_id, None)
    if remove is not None:
        remove()
    LOGGER.debug(
        "Unsubscribed",
        extra={
            "domain": DOMAIN,
            "op": "unsubscribe",
            "subscription_id": sub_id,
            "removed": remove is not None,
        },
    )
    conn.send_message(websocket_api.result_message(msg.get("id", 0), None))


# -----------------------------
# Registration
# -----------------------------


def setup(hass: HomeAssistant) -> None:
    # Idempotent: avoid duplicate registration across reloads
    bucket = hass.data.setdefault(DOMAIN, {})
    if bucket.get("ws_registered"):
        return

    handlers = [
        ws_version,
        ws_stats,
        ws_health,
        ws_library_get,
        ws_library_export,
        ws_library_import,
        ws_library_reset,
        ws_folder_create,
        ws_folder_rename,
        ws_folder_delete,
        ws_repo_create,
        ws_repo_update,
        ws_repo_delete,
        ws_bulk_delete,
        ws_subscribe,
        ws_unsubscribe,
    ]

    for h in handlers:
        websocket_api.async_register_command(hass, h)

    bucket["ws_registered"] = True
