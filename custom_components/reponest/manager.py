"""Lifecycle and persistence orchestration for the RepoNest library.

``LibraryManager`` owns the current ``RepoLibrary``. It loads it from the
persistence collaborator (falling back to the seed document on first run),
applies mutations through the pure functions in ``mutations``, replaces the
whole document on import or reset, and writes changes back in the background.

States move ``loading -> ready`` or ``loading -> failed``; a reset re-enters
``loading``. Every load, reset and import bumps a generation counter and a
load only lands if its generation is still current, so a slow load can never
clobber a document that was imported or reset while it was pending.

Persistence is coalesced: a single worker task waits ``persist_delay``
seconds, writes the latest document and repeats while newer changes arrived.
Writes are serialized by a lock so at most one is ever in flight. A failed
write is logged and dropped; the in-memory document stays authoritative.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any, Final, Literal, Protocol

from . import mutations
from .const import DOMAIN, SEED_LIBRARY_VERSION
from .exceptions import NoDataError, ParseError, RepoNestError, StorageError
from .models import (
    RepoLibrary,
    dumps_library,
    library_from_dict,
    library_to_dict,
    parse_library_json,
)

LOGGER = logging.getLogger(__name__)

# Debounce delay for persistence operations (seconds)
PERSIST_DEBOUNCE_DELAY: Final[float] = 1.0

LifecycleState = Literal["loading", "ready", "failed"]
FailureKind = Literal["no_data", "storage"]

STATE_LOADING: Final = "loading"
STATE_READY: Final = "ready"
STATE_FAILED: Final = "failed"

FAILURE_NO_DATA: Final = "no_data"
FAILURE_STORAGE: Final = "storage"

LibraryListener = Callable[[RepoLibrary], None]
TaskFactory = Callable[[Coroutine[Any, Any, None]], "asyncio.Future[None]"]


class LibraryStoreProtocol(Protocol):
    """Persistence collaborator used by the manager."""

    async def async_load_current(self) -> dict[str, Any] | None: ...

    async def async_load_seed(self) -> dict[str, Any] | None: ...

    async def async_save_current(self, document: dict[str, Any]) -> None: ...


class LibraryManager:
    """Owns the current library and its lifecycle."""

    def __init__(
        self,
        store: LibraryStoreProtocol,
        *,
        persist_delay: float | None = None,
        create_task: TaskFactory | None = None,
    ) -> None:
        self._store = store
        self._persist_delay = persist_delay
        self._create_task = create_task
        self._library: RepoLibrary | None = None
        self._state: LifecycleState = STATE_LOADING
        self._failure: FailureKind | None = None
        self._generation = 0
        self._dirty = False
        self._closed = False
        self._persist_task: asyncio.Future[None] | None = None
        self._write_lock = asyncio.Lock()
        self._listeners: list[LibraryListener] = []

    # -----------------------------
    # Introspection
    # -----------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def failure(self) -> FailureKind | None:
        return self._failure

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def library(self) -> RepoLibrary | None:
        return self._library

    @property
    def persist_pending(self) -> bool:
        """True while a change has not yet been handed to the store."""

        return self._dirty

    def require_library(self) -> RepoLibrary:
        """Return the current library or raise when it is not available."""

        if self._state != STATE_READY or self._library is None:
            raise StorageError(f"library not loaded (state={self._state})")
        return self._library

    # -----------------------------
    # Load, reset, import, export
    # -----------------------------

    def _begin_loading(self) -> int:
        self._generation += 1
        self._state = STATE_LOADING
        self._failure = None
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _fail(self, kind: FailureKind) -> None:
        self._state = STATE_FAILED
        self._failure = kind

    async def async_load(self) -> LifecycleState:
        """Load the persisted library, bootstrapping from the seed on first run."""

        generation = self._begin_loading()
        try:
            raw = await self._store.async_load_current()
            from_seed = raw is None
            if raw is None:
                raw = await self._store.async_load_seed()
            if raw is None:
                if self._is_current(generation):
                    LOGGER.error(
                        "Neither a persisted library nor a seed document exists",
                        extra={"domain": DOMAIN, "op": "load", "generation": generation},
                    )
                    self._fail(FAILURE_NO_DATA)
                return self._state
            library = library_from_dict(raw)
        except (StorageError, ParseError):
            if self._is_current(generation):
                LOGGER.error(
                    "Failed to load library",
                    extra={"domain": DOMAIN, "op": "load", "generation": generation},
                    exc_info=True,
                )
                self._fail(FAILURE_STORAGE)
            return self._state

        if from_seed:
            library.version = SEED_LIBRARY_VERSION
            if self._is_current(generation):
                await self._write_document(library, op="load_bootstrap")

        if not self._is_current(generation):
            LOGGER.debug(
                "Discarding stale load result",
                extra={
                    "domain": DOMAIN,
                    "op": "load",
                    "generation": generation,
                    "current_generation": self._generation,
                },
            )
            return self._state

        self._library = library
        self._state = STATE_READY
        LOGGER.debug(
            "Library loaded",
            extra={
                "domain": DOMAIN,
                "op": "load",
                "from_seed": from_seed,
                "generation": generation,
            },
        )
        self._notify()
        return self._state

    async def async_reset_to_seed(self) -> RepoLibrary:
        """Replace the current library with a fresh copy of the seed.

        Prior edits are discarded. Raises ``NoDataError`` when no seed exists
        (or the seed cannot be read), in which case the previous state is kept.
        """

        previous = (self._library, self._state, self._failure)
        generation = self._begin_loading()
        try:
            raw = await self._store.async_load_seed()
            if raw is None:
                raise NoDataError("no seed document available")
            library = library_from_dict(raw)
        except RepoNestError:
            if self._is_current(generation):
                self._library, self._state, self._failure = previous
            LOGGER.warning(
                "Reset to seed failed",
                extra={"domain": DOMAIN, "op": "reset", "generation": generation},
                exc_info=True,
            )
            raise

        if not self._is_current(generation):
            # Superseded by an import while the seed was being read
            return self.require_library()

        library.version = SEED_LIBRARY_VERSION
        self._library = library
        self._state = STATE_READY
        self._dirty = True
        LOGGER.info(
            "Library reset to seed",
            extra={"domain": DOMAIN, "op": "reset", "generation": generation},
        )
        self._notify()
        await self.async_flush()
        return library

    def import_from_json(self, text: str) -> RepoLibrary:
        """Replace the current library with the document in ``text``.

        Only the shape of the document is checked. On ``ParseError`` the current
        state is left untouched. A successful import supersedes a pending load.
        """

        try:
            library = parse_library_json(text)
        except ParseError as exc:
            LOGGER.warning(
                "Rejected library import: %s",
                exc,
                extra={"domain": DOMAIN, "op": "import"},
            )
            raise

        self._generation += 1
        self._library = library
        self._state = STATE_READY
        self._failure = None
        LOGGER.info(
            "Library imported",
            extra={"domain": DOMAIN, "op": "import", "version": library.version},
        )
        self._schedule_persist()
        self._notify()
        return library

    def export_json(self, *, indent: int | None = 2) -> str:
        """Serialize the current library to JSON text."""

        return dumps_library(self.require_library(), indent=indent)

    # -----------------------------
    # Mutations
    # -----------------------------

    def _apply(
        self, op: str, func: Callable[..., RepoLibrary], *args: Any, **kwargs: Any
    ) -> RepoLibrary:
        current = self.require_library()
        updated = func(current, *args, **kwargs)
        if updated is current:
            return current
        self._library = updated
        LOGGER.debug("Library changed", extra={"domain": DOMAIN, "op": op})
        self._schedule_persist()
        self._notify()
        return updated

    def create_folder(
        self, parent_id: str, name: str, *, folder_id: str | None = None
    ) -> RepoLibrary:
        return self._apply(
            "create_folder", mutations.create_folder, parent_id, name, folder_id=folder_id
        )

    def rename_folder(self, folder_id: str, new_name: str) -> RepoLibrary:
        return self._apply("rename_folder", mutations.rename_folder, folder_id, new_name)

    def delete_folder(self, folder_id: str) -> RepoLibrary:
        return self._apply("delete_folder", mutations.delete_folder, folder_id)

    def create_repo(
        self, folder_id: str, name: str, url: str, *, repo_id: str | None = None
    ) -> RepoLibrary:
        return self._apply(
            "create_repo", mutations.create_repo, folder_id, name, url, repo_id=repo_id
        )

    def update_repo(self, folder_id: str, repo_id: str, name: str, url: str) -> RepoLibrary:
        return self._apply("update_repo", mutations.update_repo, folder_id, repo_id, name, url)

    def delete_repo(self, folder_id: str, repo_id: str) -> RepoLibrary:
        return self._apply("delete_repo", mutations.delete_repo, folder_id, repo_id)

    def bulk_delete(self, selection_keys: Iterable[str]) -> RepoLibrary:
        return self._apply("bulk_delete", mutations.bulk_delete, list(selection_keys))

    # -----------------------------
    # Listeners
    # -----------------------------

    def async_add_listener(self, listener: LibraryListener) -> Callable[[], None]:
        """Call ``listener`` with the new library after every change.

        Returns a callable that removes the listener.
        """

        self._listeners.append(listener)

        def remove_listener() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove_listener

    def _notify(self) -> None:
        if self._library is None:
            return
        for listener in list(self._listeners):
            listener(self._library)

    # -----------------------------
    # Persistence
    # -----------------------------

    def _delay(self) -> float:
        if self._persist_delay is not None:
            return self._persist_delay
        return PERSIST_DEBOUNCE_DELAY

    def _schedule_persist(self) -> None:
        self._dirty = True
        if self._closed:
            return
        if self._persist_task is not None and not self._persist_task.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the change stays pending until the next flush
            return
        factory = self._create_task or asyncio.ensure_future
        self._persist_task = factory(self._persist_worker())
        LOGGER.debug(
            "Persist requested, debouncing",
            extra={"domain": DOMAIN, "op": "persist_debounce_request", "delay_s": self._delay()},
        )

    async def _persist_worker(self) -> None:
        while self._dirty:
            await asyncio.sleep(self._delay())
            await self._write_latest()

    async def _write_latest(self) -> None:
        async with self._write_lock:
            if not self._dirty or self._library is None:
                return
            self._dirty = False
            try:
                await self._save(self._library, op="persist")
            except asyncio.CancelledError:
                self._dirty = True
                raise

    async def _write_document(self, library: RepoLibrary, *, op: str) -> None:
        async with self._write_lock:
            await self._save(library, op=op)

    async def _save(self, library: RepoLibrary, *, op: str) -> None:
        generation = self._generation
        try:
            await self._store.async_save_current(library_to_dict(library))
        except StorageError:
            LOGGER.error(
                "Failed to persist library",
                extra={"domain": DOMAIN, "op": f"{op}_failed", "generation": generation},
                exc_info=True,
            )
            return
        LOGGER.debug(
            "Library persisted",
            extra={"domain": DOMAIN, "op": f"{op}_complete", "generation": generation},
        )

    async def _cancel_worker(self) -> None:
        task = self._persist_task
        self._persist_task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        LOGGER.debug(
            "Cancelled pending persist task",
            extra={"domain": DOMAIN, "op": "persist_debounce_cancel"},
        )

    async def async_flush(self) -> None:
        """Write any pending change now, bypassing the debounce."""

        await self._cancel_worker()
        await self._write_latest()

    async def async_shutdown(self) -> None:
        """Flush pending changes and stop background persistence."""

        self._closed = True
        await self.async_flush()
        self._listeners.clear()
