"""Tests for the RepoNest storage wrapper on top of Home Assistant's Store.

Scenarios:
- First run has no current document
- Save then load returns the same document inside the v1 envelope
- Unversioned payloads are migrated and written back
- Corrupted payloads raise StorageError with logged context
- The bundled seed is valid; a missing seed yields None, an invalid one raises
"""

from __future__ import annotations

import logging
from typing import Any

import pytest
from custom_components.reponest.const import DOMAIN
from custom_components.reponest.exceptions import StorageError
from custom_components.reponest.models import library_from_dict
from custom_components.reponest.storage import (
    CURRENT_SCHEMA_VERSION,
    STORAGE_KEY,
    LibraryStore,
)
from custom_components.reponest.tree import collect_issues


def _stored(data: Any) -> dict[str, Any]:
    return {"version": CURRENT_SCHEMA_VERSION, "minor_version": 1, "key": STORAGE_KEY, "data": data}


async def test_initial_load_returns_none(hass, hass_storage) -> None:
    store = LibraryStore(hass)

    assert await store.async_load_current() is None


async def test_save_then_load_roundtrip(hass, hass_storage, document) -> None:
    store = LibraryStore(hass)

    await store.async_save_current(document)
    loaded = await LibraryStore(hass).async_load_current()

    assert loaded == document
    assert hass_storage[STORAGE_KEY]["data"] == {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "library": document,
    }


async def test_load_returns_a_copy(hass, hass_storage, document) -> None:
    hass_storage[STORAGE_KEY] = _stored({"schema_version": 1, "library": document})
    store = LibraryStore(hass)

    first = await store.async_load_current()
    first["root"]["name"] = "changed"
    second = await store.async_load_current()

    assert second["root"]["name"] == "Root"


async def test_unversioned_payload_is_migrated(hass, hass_storage, document) -> None:
    hass_storage[STORAGE_KEY] = _stored(document)
    store = LibraryStore(hass)

    loaded = await store.async_load_current()

    assert loaded == document
    assert hass_storage[STORAGE_KEY]["data"]["schema_version"] == CURRENT_SCHEMA_VERSION
    assert hass_storage[STORAGE_KEY]["data"]["library"] == document


async def test_corrupted_payload_raises_with_context(hass, hass_storage, caplog) -> None:
    caplog.set_level(logging.ERROR)
    hass_storage[STORAGE_KEY] = _stored("oops")
    store = LibraryStore(hass)

    with pytest.raises(StorageError):
        await store.async_load_current()

    records = [
        rec
        for rec in caplog.records
        if getattr(rec, "op", None) == "migrate" and getattr(rec, "domain", None) == DOMAIN
    ]
    assert records
    assert records[0].storage_key == STORAGE_KEY
    assert records[0].to_version == store.schema_version


async def test_envelope_without_library_raises(hass, hass_storage) -> None:
    hass_storage[STORAGE_KEY] = _stored({"schema_version": 1, "library": None})

    with pytest.raises(StorageError):
        await LibraryStore(hass).async_load_current()


async def test_bundled_seed_is_a_healthy_library(hass) -> None:
    seed = await LibraryStore(hass).async_load_seed()

    assert seed is not None
    library = library_from_dict(seed)
    assert library.root.id == "root"
    assert collect_issues(library) == []


async def test_missing_seed_returns_none(hass, tmp_path) -> None:
    store = LibraryStore(hass, seed_path=tmp_path / "absent.json")

    assert await store.async_load_seed() is None


async def test_invalid_seed_raises(hass, tmp_path) -> None:
    path = tmp_path / "seed.json"
    path.write_text("{not json", encoding="utf-8")
    store = LibraryStore(hass, seed_path=path)

    with pytest.raises(StorageError):
        await store.async_load_seed()
