"""Typed models and validation helpers for RepoNest.

This module defines the persisted shapes for RepoItem, FolderNode and
RepoLibrary, the name/URL validators shared by every mutation entry point,
id generation, and the JSON codec for whole-library documents. It also
encodes and decodes the selection keys used by bulk deletion.

The intent is to keep these models framework-agnostic and free of I/O. Higher
layers (WebSocket/API, storage) are expected to compose these helpers.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .const import (
    ALLOWED_URL_PREFIXES,
    ROOT_FOLDER_ID,
    ROOT_FOLDER_NAME,
    SELECTION_FOLDER_PREFIX,
    SELECTION_REPO_PREFIX,
)
from .exceptions import ParseError, ValidationError


@dataclass
class RepoItem:
    """Persisted shape for a repository link."""

    id: str
    name: str
    url: str


@dataclass
class FolderNode:
    """Persisted shape for a folder; owns its child folders and repos."""

    id: str
    name: str
    folders: list[FolderNode] = field(default_factory=list)
    repos: list[RepoItem] = field(default_factory=list)


@dataclass
class RepoLibrary:
    """The whole persisted document: a version tag plus the root folder."""

    version: int
    root: FolderNode


@dataclass(frozen=True)
class RepoRef:
    """Reference to a repo inside a specific parent folder."""

    folder_id: str
    repo_id: str


@dataclass
class SelectionPlan:
    """Decoded selection keys, grouped by target kind.

    Attributes:
        folder_ids: Folder ids in first-seen order, without duplicates.
        repo_refs: (folder, repo) references in first-seen order.
        invalid: Keys that could not be decoded.
    """

    folder_ids: list[str] = field(default_factory=list)
    repo_refs: list[RepoRef] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)


def empty_library(*, version: int = 1, name: str = ROOT_FOLDER_NAME) -> RepoLibrary:
    """Return a new library holding only an empty root folder."""

    return RepoLibrary(version=version, root=FolderNode(id=ROOT_FOLDER_ID, name=name))


# -----------------------------
# Utility helpers
# -----------------------------


def new_node_id() -> str:
    """Generate an opaque, collision-resistant id for a folder or repo."""

    return uuid.uuid4().hex


def validate_name(name: Any) -> str:
    """Validate a folder or repo name and return the trimmed value."""

    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required and must be a non-empty string", code="empty-name")
    return name.strip()


def validate_repo_url(url: Any) -> str:
    """Validate a repository URL and return the trimmed value.

    Only the host prefix is checked; the rest of the URL is not parsed.
    """

    if not isinstance(url, str) or not url.strip():
        raise ValidationError("url is required", code="missing-url")
    trimmed = url.strip()
    if not trimmed.startswith(ALLOWED_URL_PREFIXES):
        raise ValidationError(
            "url must start with " + " or ".join(ALLOWED_URL_PREFIXES), code="bad-scheme"
        )
    return trimmed


# -----------------------------
# Selection keys
# -----------------------------


def folder_key(folder_id: str) -> str:
    return f"{SELECTION_FOLDER_PREFIX}:{folder_id}"


def repo_key(folder_id: str, repo_id: str) -> str:
    return f"{SELECTION_REPO_PREFIX}:{folder_id}:{repo_id}"


def parse_selection_keys(keys: Iterable[str]) -> SelectionPlan:
    """Decode ``folder:<id>`` and ``repo:<folder_id>:<repo_id>`` keys.

    Duplicates are dropped and first-seen order is preserved. The root folder
    key is kept here; callers decide whether it may be acted upon.
    """

    plan = SelectionPlan()
    seen_folders: set[str] = set()
    seen_repos: set[RepoRef] = set()
    for key in keys:
        if not isinstance(key, str):
            plan.invalid.append(str(key))
            continue
        kind, _, rest = key.partition(":")
        if kind == SELECTION_FOLDER_PREFIX and rest:
            if rest not in seen_folders:
                seen_folders.add(rest)
                plan.folder_ids.append(rest)
            continue
        if kind == SELECTION_REPO_PREFIX:
            folder_id, _, repo_id = rest.partition(":")
            if folder_id and repo_id:
                ref = RepoRef(folder_id=folder_id, repo_id=repo_id)
                if ref not in seen_repos:
                    seen_repos.add(ref)
                    plan.repo_refs.append(ref)
                continue
        plan.invalid.append(key)
    return plan


# -----------------------------
# Serialization
# -----------------------------


def repo_to_dict(repo: RepoItem) -> dict[str, Any]:
    return {"id": repo.id, "name": repo.name, "url": repo.url}


def _folder_shell(folder: FolderNode) -> dict[str, Any]:
    return {
        "id": folder.id,
        "name": folder.name,
        "folders": [],
        "repos": [repo_to_dict(repo) for repo in folder.repos],
    }


def folder_to_dict(folder: FolderNode) -> dict[str, Any]:
    """Serialize a folder and its subtree; iterative like ``folder_from_dict``."""

    top = _folder_shell(folder)
    stack: list[tuple[FolderNode, dict[str, Any]]] = [(folder, top)]
    while stack:
        node, out = stack.pop()
        for child in node.folders:
            child_out = _folder_shell(child)
            out["folders"].append(child_out)
            stack.append((child, child_out))
    return top


def clone_folder(folder: FolderNode) -> FolderNode:
    """Return an independent copy of ``folder`` and its subtree."""

    def _shallow(node: FolderNode) -> FolderNode:
        return FolderNode(
            id=node.id,
            name=node.name,
            repos=[RepoItem(id=r.id, name=r.name, url=r.url) for r in node.repos],
        )

    top = _shallow(folder)
    stack: list[tuple[FolderNode, FolderNode]] = [(folder, top)]
    while stack:
        src, dst = stack.pop()
        for child in src.folders:
            copy = _shallow(child)
            dst.folders.append(copy)
            stack.append((child, copy))
    return top


def clone_library(library: RepoLibrary) -> RepoLibrary:
    return RepoLibrary(version=library.version, root=clone_folder(library.root))


def library_to_dict(library: RepoLibrary) -> dict[str, Any]:
    """Serialize a library to the persisted JSON-compatible shape."""

    return {"version": int(library.version), "root": folder_to_dict(library.root)}


def _require(data: Any, key: str, kind: type, where: str) -> Any:
    if not isinstance(data, dict):
        raise ParseError(f"{where} must be an object")
    if key not in data:
        raise ParseError(f"{where} is missing '{key}'")
    value = data[key]
    # bool is an int subclass; a boolean version is not a version
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ParseError(f"{where}.{key} must be of type {kind.__name__}")
    return value


def repo_from_dict(data: Any, *, where: str = "repo") -> RepoItem:
    return RepoItem(
        id=_require(data, "id", str, where),
        name=_require(data, "name", str, where),
        url=_require(data, "url", str, where),
    )


def folder_from_dict(data: Any, *, where: str = "root") -> FolderNode:
    """Decode a folder and its subtree.

    Iterative so that deeply nested documents do not exhaust the recursion
    limit; children keep their document order.
    """

    top = FolderNode(id=_require(data, "id", str, where), name=_require(data, "name", str, where))
    stack: list[tuple[Any, FolderNode, str]] = [(data, top, where)]
    while stack:
        raw, node, path = stack.pop()
        for idx, raw_repo in enumerate(_require(raw, "repos", list, path)):
            node.repos.append(repo_from_dict(raw_repo, where=f"{path}.repos[{idx}]"))
        for idx, raw_child in enumerate(_require(raw, "folders", list, path)):
            child_path = f"{path}.folders[{idx}]"
            child = FolderNode(
                id=_require(raw_child, "id", str, child_path),
                name=_require(raw_child, "name", str, child_path),
            )
            node.folders.append(child)
            stack.append((raw_child, child, child_path))
    return top


def library_from_dict(data: Any) -> RepoLibrary:
    """Decode a persisted payload into a RepoLibrary.

    Only the shape is checked. Invariants such as id uniqueness or the root id
    are not enforced here; see ``tree.collect_issues``.
    """

    version = _require(data, "version", int, "library")
    root = folder_from_dict(_require(data, "root", dict, "library"), where="root")
    return RepoLibrary(version=version, root=root)


def _iter_json(value: Any, indent: int | None) -> Iterable[str]:
    """Yield JSON text for ``value`` in the layout ``json.dumps`` produces.

    Containers are expanded from an explicit stack so nesting depth is not
    bounded by the recursion limit. Scalars and keys go through ``json.dumps``.
    """

    def newline(level: int) -> str:
        return "" if indent is None else "\n" + " " * (indent * level)

    item_sep = ", " if indent is None else ","
    # Work items are either literal text or a (value, level) pair still to encode
    stack: list[str | tuple[Any, int]] = [(value, 0)]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            yield item
            continue
        obj, level = item
        if isinstance(obj, dict) and obj:
            work: list[str | tuple[Any, int]] = ["{"]
            for idx, (key, child) in enumerate(obj.items()):
                prefix = item_sep if idx else ""
                work.append(f"{prefix}{newline(level + 1)}{json.dumps(key, ensure_ascii=False)}: ")
                work.append((child, level + 1))
            work.append(newline(level) + "}")
        elif isinstance(obj, list) and obj:
            work = ["["]
            for idx, child in enumerate(obj):
                work.append((item_sep if idx else "") + newline(level + 1))
                work.append((child, level + 1))
            work.append(newline(level) + "]")
        else:
            yield json.dumps(obj, ensure_ascii=False)
            continue
        stack.extend(reversed(work))


def dumps_library(library: RepoLibrary, *, indent: int | None = 2) -> str:
    """Serialize a library to JSON text, matching ``json.dumps`` layout."""

    return "".join(_iter_json(library_to_dict(library), indent))


def parse_library_json(text: str) -> RepoLibrary:
    """Parse JSON text into a RepoLibrary, raising ParseError on failure."""

    if not isinstance(text, str):
        raise ParseError("library JSON must be a string")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ParseError(f"invalid JSON: {exc}") from exc
    except RecursionError as exc:
        raise ParseError("invalid JSON: document is nested too deeply") from exc
    return library_from_dict(data)
