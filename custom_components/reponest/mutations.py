"""Structural edits over a RepoNest library.

Every operation takes the current ``RepoLibrary`` and returns the next one.
Inputs are validated first, then the library is copied and the edit is
applied to the copy only, so the caller's value is never modified.

When the target folder or repo cannot be found the original object is
returned unchanged. That is the normal outcome for stale references (for
example a folder deleted earlier in the same batch) and is not an error.
Callers detect a change by identity: ``new is not old``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .const import DOMAIN, ROOT_FOLDER_ID
from .exceptions import ValidationError
from .models import (
    FolderNode,
    RepoItem,
    RepoLibrary,
    clone_library,
    new_node_id,
    parse_selection_keys,
    validate_name,
    validate_repo_url,
)
from .tree import collect_ids, find_folder, find_parent_folder, find_repo

LOGGER = logging.getLogger(__name__)


def _clone(library: RepoLibrary) -> RepoLibrary:
    return clone_library(library)


def _resolve_new_id(library: RepoLibrary, requested: str | None) -> str:
    """Return ``requested`` when unused, or a fresh id when none was given."""

    existing = collect_ids(library.root)
    if requested is not None:
        if not isinstance(requested, str) or not requested:
            raise ValidationError("id must be a non-empty string", code="invalid-id")
        if requested in existing:
            raise ValidationError(f"id {requested!r} is already in use", code="duplicate-id")
        return requested
    new_id = new_node_id()
    while new_id in existing:  # pragma: no cover - uuid4 collision
        new_id = new_node_id()
    return new_id


def _log_noop(op: str, **context: object) -> None:
    LOGGER.debug(
        "Target not found; library unchanged",
        extra={"domain": DOMAIN, "op": op, **context},
    )


# -----------------------------
# Folder operations
# -----------------------------


def create_folder(
    library: RepoLibrary, parent_id: str, name: str, *, folder_id: str | None = None
) -> RepoLibrary:
    """Append a new empty folder to ``parent_id``'s children."""

    trimmed = validate_name(name)
    new_id = _resolve_new_id(library, folder_id)

    clone = _clone(library)
    parent = find_folder(parent_id, clone.root)
    if parent is None:
        _log_noop("create_folder", parent_id=parent_id)
        return library
    parent.folders.append(FolderNode(id=new_id, name=trimmed))
    LOGGER.debug(
        "Folder created",
        extra={"domain": DOMAIN, "op": "create_folder", "folder_id": new_id},
    )
    return clone


def rename_folder(library: RepoLibrary, folder_id: str, new_name: str) -> RepoLibrary:
    """Rename a folder. The root folder is never renamed."""

    if folder_id == ROOT_FOLDER_ID:
        LOGGER.debug(
            "Refusing to rename the root folder",
            extra={"domain": DOMAIN, "op": "rename_folder", "folder_id": folder_id},
        )
        return library
    trimmed = validate_name(new_name)

    clone = _clone(library)
    folder = find_folder(folder_id, clone.root)
    if folder is None:
        _log_noop("rename_folder", folder_id=folder_id)
        return library
    folder.name = trimmed
    return clone


def delete_folder(library: RepoLibrary, folder_id: str) -> RepoLibrary:
    """Remove a folder and its whole subtree. The root folder is never deleted."""

    if folder_id == ROOT_FOLDER_ID:
        LOGGER.debug(
            "Refusing to delete the root folder",
            extra={"domain": DOMAIN, "op": "delete_folder", "folder_id": folder_id},
        )
        return library

    clone = _clone(library)
    if not _remove_folder(clone.root, folder_id):
        _log_noop("delete_folder", folder_id=folder_id)
        return library
    return clone


def _remove_folder(root: FolderNode, folder_id: str) -> bool:
    parent = find_parent_folder(folder_id, root)
    if parent is None:
        return False
    parent.folders = [child for child in parent.folders if child.id != folder_id]
    return True


# -----------------------------
# Repo operations
# -----------------------------


def create_repo(
    library: RepoLibrary,
    folder_id: str,
    name: str,
    url: str,
    *,
    repo_id: str | None = None,
) -> RepoLibrary:
    """Append a new repo link to ``folder_id``."""

    trimmed_name = validate_name(name)
    trimmed_url = validate_repo_url(url)
    new_id = _resolve_new_id(library, repo_id)

    clone = _clone(library)
    folder = find_folder(folder_id, clone.root)
    if folder is None:
        _log_noop("create_repo", folder_id=folder_id)
        return library
    folder.repos.append(RepoItem(id=new_id, name=trimmed_name, url=trimmed_url))
    LOGGER.debug(
        "Repo created",
        extra={"domain": DOMAIN, "op": "create_repo", "folder_id": folder_id, "repo_id": new_id},
    )
    return clone


def update_repo(
    library: RepoLibrary, folder_id: str, repo_id: str, name: str, url: str
) -> RepoLibrary:
    """Replace the name and URL of a repo that lives directly in ``folder_id``."""

    trimmed_name = validate_name(name)
    trimmed_url = validate_repo_url(url)

    clone = _clone(library)
    folder = find_folder(folder_id, clone.root)
    repo = find_repo(folder, repo_id) if folder is not None else None
    if repo is None:
        _log_noop("update_repo", folder_id=folder_id, repo_id=repo_id)
        return library
    repo.name = trimmed_name
    repo.url = trimmed_url
    return clone


def delete_repo(library: RepoLibrary, folder_id: str, repo_id: str) -> RepoLibrary:
    """Remove a repo from ``folder_id``."""

    clone = _clone(library)
    if not _remove_repo(clone.root, folder_id, repo_id):
        _log_noop("delete_repo", folder_id=folder_id, repo_id=repo_id)
        return library
    return clone


def _remove_repo(root: FolderNode, folder_id: str, repo_id: str) -> bool:
    folder = find_folder(folder_id, root)
    if folder is None or find_repo(folder, repo_id) is None:
        return False
    folder.repos = [repo for repo in folder.repos if repo.id != repo_id]
    return True


# -----------------------------
# Bulk operations
# -----------------------------


def bulk_delete(library: RepoLibrary, selection_keys: Iterable[str]) -> RepoLibrary:
    """Delete every folder and repo named by ``selection_keys``.

    Folder deletions run first, in selection order, and the root key is always
    skipped. Repo deletions then run against the pruned tree, so a repo that
    lived inside a deleted folder is already gone and its key is a no-op.
    """

    plan = parse_selection_keys(selection_keys)
    if plan.invalid:
        LOGGER.warning(
            "Ignoring malformed selection keys",
            extra={"domain": DOMAIN, "op": "bulk_delete", "invalid_keys": list(plan.invalid)},
        )

    clone = _clone(library)
    folders_removed = 0
    repos_removed = 0
    for folder_id in plan.folder_ids:
        if folder_id == ROOT_FOLDER_ID:
            continue
        if _remove_folder(clone.root, folder_id):
            folders_removed += 1
    for ref in plan.repo_refs:
        if _remove_repo(clone.root, ref.folder_id, ref.repo_id):
            repos_removed += 1

    LOGGER.debug(
        "Bulk delete applied",
        extra={
            "domain": DOMAIN,
            "op": "bulk_delete",
            "folders_removed": folders_removed,
            "repos_removed": repos_removed,
        },
    )
    if folders_removed == 0 and repos_removed == 0:
        return library
    return clone
