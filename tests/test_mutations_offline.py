"""Offline tests for the tree mutation engine.

Scenarios:
- Mutations never modify their input and return a new library on change
- Root folder cannot be renamed or deleted
- Deleting a folder removes its whole subtree
- Stale targets are silent no-ops that return the same object
- Validation errors are raised before any change
- Caller-supplied ids must be unused
- Ids stay unique across a sequence of edits
- Create, populate, then delete a folder starting from an empty library
- Deeply nested trees can be built, edited and serialized
"""

from __future__ import annotations

import copy

import pytest
from custom_components.reponest import mutations
from custom_components.reponest.exceptions import ValidationError
from custom_components.reponest.models import (
    dumps_library,
    empty_library,
    library_from_dict,
    library_to_dict,
)
from custom_components.reponest.tree import (
    collect_folder_ids,
    collect_ids,
    collect_repo_ids,
    find_folder,
)


@pytest.fixture
def library(document):
    return library_from_dict(document)


def test_create_folder_appends_trimmed_child(library) -> None:
    before = copy.deepcopy(library)

    updated = mutations.create_folder(library, "work", "  Docs  ")

    assert updated is not library
    assert library == before
    work = find_folder("work", updated.root)
    assert work is not None
    assert [f.name for f in work.folders] == ["Tools", "Docs"]
    assert work.folders[-1].folders == [] and work.folders[-1].repos == []


def test_create_folder_with_explicit_id(library) -> None:
    updated = mutations.create_folder(library, "root", "Docs", folder_id="docs")

    assert find_folder("docs", updated.root) is not None


def test_create_with_duplicate_id_is_rejected(library) -> None:
    with pytest.raises(ValidationError) as folder_dup:
        mutations.create_folder(library, "root", "Again", folder_id="work")
    assert folder_dup.value.code == "duplicate-id"

    with pytest.raises(ValidationError) as repo_dup:
        mutations.create_repo(
            library, "root", "Again", "https://github.com/u/again", repo_id="tools"
        )
    assert repo_dup.value.code == "duplicate-id"


def test_rename_folder(library) -> None:
    updated = mutations.rename_folder(library, "tools", " Utilities ")

    tools = find_folder("tools", updated.root)
    assert tools is not None and tools.name == "Utilities"
    assert find_folder("tools", library.root).name == "Tools"


def test_root_is_protected(library) -> None:
    assert mutations.rename_folder(library, "root", "Other") is library
    # Root check runs before name validation
    assert mutations.rename_folder(library, "root", "") is library
    assert mutations.delete_folder(library, "root") is library
    assert library.root.name == "Root"


def test_delete_folder_cascades(library) -> None:
    doomed_ids = set(collect_ids(find_folder("work", library.root)))

    updated = mutations.delete_folder(library, "work")

    assert [f.id for f in updated.root.folders] == ["play"]
    assert not doomed_ids & collect_ids(updated.root)
    assert "r-lint" in collect_repo_ids(library.root)


def test_delete_nested_folder_only_touches_its_parent(library) -> None:
    updated = mutations.delete_folder(library, "tools")

    assert collect_folder_ids(updated.root) == ["root", "work", "play"]
    assert collect_repo_ids(updated.root) == ["r-top", "r-app"]


def test_repo_lifecycle(library) -> None:
    created = mutations.create_repo(
        library, "play", " Game ", " https://gitlab.com/u/game ", repo_id="r-game"
    )
    play = find_folder("play", created.root)
    assert [(r.id, r.name, r.url) for r in play.repos] == [
        ("r-game", "Game", "https://gitlab.com/u/game")
    ]

    updated = mutations.update_repo(created, "play", "r-game", "Game 2", "https://github.com/u/g2")
    repo = find_folder("play", updated.root).repos[0]
    assert (repo.name, repo.url) == ("Game 2", "https://github.com/u/g2")

    removed = mutations.delete_repo(updated, "play", "r-game")
    assert find_folder("play", removed.root).repos == []


def test_update_repo_requires_the_right_parent(library) -> None:
    # r-lint lives in tools, not work
    assert mutations.update_repo(library, "work", "r-lint", "X", "https://github.com/x") is library


@pytest.mark.parametrize(
    ("op", "args"),
    [
        (mutations.create_folder, ("missing", "Docs")),
        (mutations.rename_folder, ("missing", "Docs")),
        (mutations.delete_folder, ("missing",)),
        (mutations.create_repo, ("missing", "R", "https://github.com/u/r")),
        (mutations.update_repo, ("work", "missing", "R", "https://github.com/u/r")),
        (mutations.delete_repo, ("work", "missing")),
        (mutations.delete_repo, ("missing", "r-app")),
    ],
)
def test_stale_targets_are_noops(library, op, args) -> None:
    snapshot = library_to_dict(library)

    result = op(library, *args)

    assert result is library
    assert library_to_dict(result) == snapshot


def test_delete_repo_twice_is_idempotent(library) -> None:
    first = mutations.delete_repo(library, "work", "r-app")
    second = mutations.delete_repo(first, "work", "r-app")

    assert first is not library
    assert second is first


def test_validation_gating(library) -> None:
    snapshot = library_to_dict(library)

    with pytest.raises(ValidationError) as empty_name:
        mutations.create_repo(library, "work", "", "https://github.com/x")
    assert empty_name.value.code == "empty-name"

    with pytest.raises(ValidationError) as bad_scheme:
        mutations.create_repo(library, "work", "n", "http://evil.com")
    assert bad_scheme.value.code == "bad-scheme"

    with pytest.raises(ValidationError) as missing_url:
        mutations.update_repo(library, "work", "r-app", "App", "  ")
    assert missing_url.value.code == "missing-url"

    with pytest.raises(ValidationError):
        mutations.create_folder(library, "root", "   ")
    with pytest.raises(ValidationError):
        mutations.rename_folder(library, "work", "")

    assert library_to_dict(library) == snapshot


def test_validation_runs_even_for_stale_targets(library) -> None:
    with pytest.raises(ValidationError):
        mutations.create_repo(library, "missing", "", "https://github.com/x")


def test_ids_stay_unique_across_edits(library) -> None:
    current = library
    for i in range(20):
        current = mutations.create_folder(current, "work" if i % 2 else "root", f"F{i}")
        current = mutations.create_repo(current, "tools", f"R{i}", f"https://github.com/u/{i}")
        if i % 5 == 0:
            current = mutations.delete_folder(current, current.root.folders[-1].id)

    folder_ids = collect_folder_ids(current.root)
    repo_ids = collect_repo_ids(current.root)
    assert len(folder_ids) == len(set(folder_ids))
    assert len(repo_ids) == len(set(repo_ids))
    assert not set(folder_ids) & set(repo_ids)


def test_create_populate_delete_from_empty_library() -> None:
    start = empty_library()

    with_folder = mutations.create_folder(start, "root", "Work")
    assert len(with_folder.root.folders) == 1
    work = with_folder.root.folders[0]
    assert work.name == "Work" and work.id != "root"

    with_repo = mutations.create_repo(with_folder, work.id, "App", "https://github.com/u/app")
    assert [r.name for r in find_folder(work.id, with_repo.root).repos] == ["App"]
    repo_id = find_folder(work.id, with_repo.root).repos[0].id

    emptied = mutations.delete_folder(with_repo, work.id)
    assert emptied.root.folders == []
    assert repo_id not in collect_ids(emptied.root)
    assert start.root.folders == []


def _deep_document(depth: int) -> dict:
    node: dict = {
        "id": f"f{depth}",
        "name": "leaf",
        "folders": [],
        "repos": [{"id": "r-leaf", "name": "Leaf", "url": "https://github.com/u/leaf"}],
    }
    for i in range(depth - 1, 0, -1):
        node = {"id": f"f{i}", "name": "n", "folders": [node], "repos": []}
    return {"version": 1, "root": {"id": "root", "name": "Root", "folders": [node], "repos": []}}


def test_create_folder_chain_400_deep() -> None:
    current = empty_library()
    parent_id = "root"
    for i in range(400):
        current = mutations.create_folder(current, parent_id, f"L{i}", folder_id=f"d{i}")
        parent_id = f"d{i}"

    assert find_folder("d399", current.root) is not None
    assert len(collect_folder_ids(current.root)) == 401
    text = dumps_library(current)
    assert dumps_library(library_from_dict(library_to_dict(current))) == text


def test_edit_and_serialize_3000_deep_library() -> None:
    library = library_from_dict(_deep_document(3000))

    renamed = mutations.rename_folder(library, "f3000", "Bottom")
    updated = mutations.update_repo(
        renamed, "f3000", "r-leaf", "Leaf 2", "https://gitlab.com/u/leaf"
    )
    trimmed = mutations.delete_folder(updated, "f2999")

    assert find_folder("f3000", library.root).name == "leaf"
    assert find_folder("f3000", updated.root).name == "Bottom"
    assert find_folder("f3000", updated.root).repos[0].url == "https://gitlab.com/u/leaf"
    assert find_folder("f2999", trimmed.root) is None
    assert find_folder("f2998", trimmed.root).folders == []

    text = dumps_library(updated, indent=None)
    assert dumps_library(library_from_dict(library_to_dict(updated)), indent=None) == text
    assert text.count('"folders": [{') == 3000
