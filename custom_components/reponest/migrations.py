"""Schema migrations for RepoNest persistent storage.

Forward-only, idempotent migration steps over the storage envelope
``{"schema_version": int, "library": RepoLibraryDict}``. Each step receives
and returns the entire persisted payload and must tolerate being applied more
than once without changing the outcome.

The envelope version is independent of the library document's own
``version`` field, which belongs to the user and is never rewritten here.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any


def migrate(payload: dict[str, Any], *, from_version: int, to_version: int) -> dict[str, Any]:
    """Migrate ``payload`` from ``from_version`` to ``to_version``.

    Steps are applied sequentially: vN -> vN+1 -> ... -> vM.
    """

    if from_version > to_version:
        # Downgrades are not supported; return the original as-is
        return payload

    data: dict[str, Any] = deepcopy(payload)
    version = int(from_version)
    while version < to_version:
        next_version = version + 1
        step = globals().get(f"migrate_{version}_to_{next_version}")
        if callable(step):
            data = step(data)
        version = next_version

    data["schema_version"] = to_version
    return data


def migrate_0_to_1(payload: dict[str, Any]) -> dict[str, Any]:
    """Wrap a bare library document into the v1 envelope.

    Unversioned payloads are the library document itself
    (``{"version": ..., "root": ...}``). Payloads that already carry a
    ``library`` key are left alone.
    """

    data = deepcopy(payload) if isinstance(payload, dict) else {}
    if "library" in data:
        return data
    if "root" in data:
        library = {"version": data.pop("version", 1), "root": data.pop("root")}
        data["library"] = library
    return data
