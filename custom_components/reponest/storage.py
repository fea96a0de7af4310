"""Persistent storage for RepoNest.

Wraps Home Assistant's Store with schema-aware load/save and migrations, and
reads the bundled seed library shipped next to this module.

Data shape persisted (schema v1):
    {
        "schema_version": int,
        "library": {"version": int, "root": FolderNodeDict},
    }

Only raw dicts cross this boundary; decoding into models is left to the
library manager.
"""

from __future__ import annotations

import logging
import time
from copy import deepcopy
from pathlib import Path
from typing import Any, Final

from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.storage import Store
from homeassistant.util.json import load_json

from . import migrations
from .const import DOMAIN, SEED_FILENAME
from .exceptions import StorageError

_LOGGER = logging.getLogger(__name__)

# Current schema version for persisted payloads
CURRENT_SCHEMA_VERSION: Final[int] = 1

# Storage key under which the library is saved
STORAGE_KEY: Final[str] = "reponest_library"

# Default location of the seed library
SEED_PATH: Final[Path] = Path(__file__).parent / SEED_FILENAME


def _read_seed(path: Path) -> dict[str, Any] | None:
    """Read the seed document from disk; runs in the executor."""

    if not path.is_file():
        return None
    try:
        data = load_json(path)
    except HomeAssistantError as exc:
        raise StorageError(f"seed document {path.name} is not valid JSON") from exc
    if not isinstance(data, dict):
        raise StorageError(f"seed document {path.name} must be a JSON object")
    return data


class LibraryStore:
    """Schema-aware wrapper around Home Assistant's Store for the library.

    Exposed via ``hass.data[DOMAIN]["store"]`` and handed to the
    ``LibraryManager`` as its persistence collaborator.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        *,
        key: str = STORAGE_KEY,
        version: int = CURRENT_SCHEMA_VERSION,
        seed_path: Path | None = None,
    ) -> None:
        self._hass = hass
        self._store: Store[dict[str, Any]] = Store(hass, version, key)
        self._key = key
        self._schema_version = version
        self._seed_path = seed_path or SEED_PATH

    @property
    def schema_version(self) -> int:
        return self._schema_version

    @property
    def key(self) -> str:
        return self._key

    async def async_load_current(self) -> dict[str, Any] | None:
        """Return the persisted library document, or ``None`` on first run."""

        try:
            raw = await self._store.async_load()
        except HomeAssistantError as exc:
            _LOGGER.error(
                "Failed to read storage",
                extra={"domain": DOMAIN, "op": "load_current", "storage_key": self.key},
                exc_info=True,
            )
            raise StorageError("failed to read storage") from exc
        if raw is None:
            return None

        migrated = await self.async_migrate_if_needed(raw)
        library = migrated.get("library")
        if not isinstance(library, dict):
            _LOGGER.error(
                "Storage payload has no library document",
                extra={"domain": DOMAIN, "op": "load_current", "storage_key": self.key},
            )
            raise StorageError("storage payload missing library document")
        return deepcopy(library)

    async def async_load_seed(self) -> dict[str, Any] | None:
        """Return a fresh copy of the seed document, or ``None`` when absent."""

        seed = await self._hass.async_add_executor_job(_read_seed, self._seed_path)
        if seed is None:
            _LOGGER.warning(
                "Seed document not found",
                extra={"domain": DOMAIN, "op": "load_seed", "seed_path": str(self._seed_path)},
            )
        return seed

    async def async_save_current(self, document: dict[str, Any]) -> None:
        """Persist ``document`` as the current library."""

        payload = {"schema_version": self._schema_version, "library": document}
        start_time = time.monotonic()
        try:
            await self._store.async_save(payload)
        except Exception as exc:  # pragma: no cover - mapped at boundaries
            _LOGGER.error(
                "Failed to save library",
                extra={
                    "domain": DOMAIN,
                    "op": "save_current",
                    "storage_key": self.key,
                    "elapsed_ms": int((time.monotonic() - start_time) * 1000),
                },
                exc_info=True,
            )
            raise StorageError("failed to save library") from exc
        _LOGGER.debug(
            "Library saved",
            extra={
                "domain": DOMAIN,
                "op": "save_current",
                "storage_key": self.key,
                "elapsed_ms": int((time.monotonic() - start_time) * 1000),
            },
        )

    async def async_migrate_if_needed(self, raw: Any) -> dict[str, Any]:
        """Migrate ``raw`` payload to the current schema iff needed.

        If a migration occurs, persist the migrated payload back to storage.
        Returns the migrated (or original) payload.
        """

        if not isinstance(raw, dict):
            _LOGGER.error(
                "Corrupted storage payload: expected dict, got %s",
                type(raw).__name__,
                extra={
                    "domain": DOMAIN,
                    "op": "migrate",
                    "from_version": None,
                    "to_version": self._schema_version,
                    "storage_key": self.key,
                },
            )
            raise StorageError("corrupted storage payload: not a dict")

        from_version = raw.get("schema_version", 0)
        if not isinstance(from_version, int) or isinstance(from_version, bool):
            raise StorageError("corrupted storage payload: schema_version is not an integer")
        to_version = self._schema_version
        if from_version == to_version:
            return raw

        try:
            migrated = migrations.migrate(raw, from_version=from_version, to_version=to_version)
        except Exception as exc:  # pragma: no cover - exercised via tests
            # Leave the on-disk payload untouched
            _LOGGER.error(
                "Storage migration failed",
                extra={
                    "domain": DOMAIN,
                    "op": "migrate",
                    "from_version": from_version,
                    "to_version": to_version,
                    "storage_key": self.key,
                },
                exc_info=True,
            )
            raise StorageError("storage migration failed") from exc

        _LOGGER.info(
            "Storage migrated",
            extra={
                "domain": DOMAIN,
                "op": "migrate",
                "from_version": from_version,
                "to_version": to_version,
                "storage_key": self.key,
            },
        )
        await self._store.async_save(migrated)
        return migrated
