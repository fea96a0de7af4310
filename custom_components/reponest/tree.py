"""Read-only queries over a RepoNest folder tree.

Lookups walk the tree depth-first in preorder: a node first, then each child
subtree from left to right. The walk uses an explicit stack so the order is
deterministic and deep trees do not hit the interpreter recursion limit.
"""

from __future__ import annotations

from collections.abc import Iterator

from .const import ALLOWED_URL_PREFIXES, ROOT_FOLDER_ID
from .models import FolderNode, RepoItem, RepoLibrary


def iter_folders(root: FolderNode) -> Iterator[FolderNode]:
    """Yield ``root`` and every descendant folder in preorder."""

    stack: list[FolderNode] = [root]
    while stack:
        node = stack.pop()
        yield node
        # Reverse so the leftmost child is visited first
        stack.extend(reversed(node.folders))


def find_folder(folder_id: str, root: FolderNode) -> FolderNode | None:
    """Return the first folder whose id matches, or ``None`` when absent."""

    for node in iter_folders(root):
        if node.id == folder_id:
            return node
    return None


def find_parent_folder(folder_id: str, root: FolderNode) -> FolderNode | None:
    """Return the folder whose ``folders`` directly contains ``folder_id``.

    The root has no parent, so looking it up yields ``None``.
    """

    for node in iter_folders(root):
        for child in node.folders:
            if child.id == folder_id:
                return node
    return None


def find_repo(folder: FolderNode, repo_id: str) -> RepoItem | None:
    for repo in folder.repos:
        if repo.id == repo_id:
            return repo
    return None


def collect_folder_ids(root: FolderNode) -> list[str]:
    """Return every folder id in preorder, ``root`` included."""

    return [node.id for node in iter_folders(root)]


def collect_repo_ids(root: FolderNode) -> list[str]:
    """Return every repo id reachable from ``root`` in preorder."""

    return [repo.id for node in iter_folders(root) for repo in node.repos]


def collect_ids(root: FolderNode) -> set[str]:
    """Return the set of all folder and repo ids under ``root``."""

    ids = set(collect_folder_ids(root))
    ids.update(collect_repo_ids(root))
    return ids


def get_counts(library: RepoLibrary) -> dict[str, int]:
    """Count folders (root excluded) and repos in a library."""

    folders = 0
    repos = 0
    for node in iter_folders(library.root):
        folders += 1
        repos += len(node.repos)
    return {"folders_total": folders - 1, "repos_total": repos}


def collect_issues(library: RepoLibrary) -> list[str]:  # noqa: PLR0912
    """List invariant violations found in ``library``.

    An empty list means the document is healthy. Imported documents are not
    validated on the way in, so this is the place to inspect them.
    """

    issues: list[str] = []
    if library.root.id != ROOT_FOLDER_ID:
        issues.append("root_id_mismatch")

    folder_ids = collect_folder_ids(library.root)
    if len(folder_ids) != len(set(folder_ids)):
        issues.append("duplicate_folder_ids")
    if folder_ids.count(ROOT_FOLDER_ID) > 1:
        issues.append("root_id_reused_by_child")

    repo_ids = collect_repo_ids(library.root)
    if len(repo_ids) != len(set(repo_ids)):
        issues.append("duplicate_repo_ids")

    untrimmed = False
    empty_names = False
    bad_urls = False
    for node in iter_folders(library.root):
        if node.name != node.name.strip():
            untrimmed = True
        if node is not library.root and not node.name.strip():
            empty_names = True
        for repo in node.repos:
            if repo.name != repo.name.strip() or repo.url != repo.url.strip():
                untrimmed = True
            if not repo.name.strip():
                empty_names = True
            if not repo.url.startswith(ALLOWED_URL_PREFIXES):
                bad_urls = True
    if untrimmed:
        issues.append("untrimmed_fields")
    if empty_names:
        issues.append("empty_names")
    if bad_urls:
        issues.append("repo_url_bad_scheme")
    return issues
