"""Shared fixtures for RepoNest tests.

Core modules (models, tree, mutations, manager) are exercised directly against
an in-memory persistence fake. Integration-level tests use Home Assistant's
own test harness (``hass``, ``hass_storage``, ``hass_ws_client``) provided by
pytest-homeassistant-custom-component.
"""

from __future__ import annotations

import asyncio
import sys
from copy import deepcopy
from pathlib import Path
from typing import Any

import pytest

# Ensure project root is on sys.path for module imports
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from custom_components.reponest import manager as manager_mod  # noqa: E402
from custom_components.reponest.const import DOMAIN  # noqa: E402
from custom_components.reponest.exceptions import StorageError  # noqa: E402
from pytest_homeassistant_custom_component.common import MockConfigEntry  # noqa: E402


def make_document(version: int = 1) -> dict[str, Any]:
    """Return a small library document with two levels of folders."""

    return {
        "version": version,
        "root": {
            "id": "root",
            "name": "Root",
            "folders": [
                {
                    "id": "work",
                    "name": "Work",
                    "folders": [
                        {
                            "id": "tools",
                            "name": "Tools",
                            "folders": [],
                            "repos": [
                                {
                                    "id": "r-lint",
                                    "name": "Linter",
                                    "url": "https://gitlab.com/t/lint",
                                }
                            ],
                        }
                    ],
                    "repos": [{"id": "r-app", "name": "App", "url": "https://github.com/u/app"}],
                },
                {"id": "play", "name": "Play", "folders": [], "repos": []},
            ],
            "repos": [{"id": "r-top", "name": "Top", "url": "https://github.com/u/top"}],
        },
    }


class FakeLibraryStore:
    """In-memory persistence collaborator for manager tests."""

    def __init__(
        self, current: dict[str, Any] | None = None, seed: dict[str, Any] | None = None
    ) -> None:
        self.current = deepcopy(current)
        self.seed = deepcopy(seed)
        self.saved: list[dict[str, Any]] = []
        self.fail_loads = False
        self.fail_saves = False
        self.load_gate: asyncio.Event | None = None
        self.save_gate: asyncio.Event | None = None
        self.saves_in_flight = 0
        self.max_saves_in_flight = 0

    async def async_load_current(self) -> dict[str, Any] | None:
        if self.load_gate is not None:
            await self.load_gate.wait()
        if self.fail_loads:
            raise StorageError("storage unavailable")
        return deepcopy(self.current)

    async def async_load_seed(self) -> dict[str, Any] | None:
        return deepcopy(self.seed)

    async def async_save_current(self, document: dict[str, Any]) -> None:
        self.saves_in_flight += 1
        self.max_saves_in_flight = max(self.max_saves_in_flight, self.saves_in_flight)
        try:
            if self.save_gate is not None:
                await self.save_gate.wait()
            if self.fail_saves:
                raise StorageError("disk full")
            self.saved.append(deepcopy(document))
            self.current = deepcopy(document)
        finally:
            self.saves_in_flight -= 1


@pytest.fixture
def document_factory():
    return make_document


@pytest.fixture
def store_factory():
    return FakeLibraryStore


@pytest.fixture
def document() -> dict[str, Any]:
    return make_document()


@pytest.fixture
def fake_store(document) -> FakeLibraryStore:
    return FakeLibraryStore(current=document, seed=make_document())


@pytest.fixture
def immediate_persist(monkeypatch):
    """Fixture that makes persistence immediate instead of debounced for faster tests."""
    monkeypatch.setattr(manager_mod, "PERSIST_DEBOUNCE_DELAY", 0)


@pytest.fixture
async def setup_integration(hass, enable_custom_integrations, immediate_persist):
    """Set up a RepoNest config entry and return it."""

    entry = MockConfigEntry(domain=DOMAIN, title="RepoNest", data={})
    entry.add_to_hass(hass)
    assert await hass.config_entries.async_setup(entry.entry_id)
    await hass.async_block_till_done()
    return entry
