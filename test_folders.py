"""
Tests for the folder tree: naming rules, moves, cycle prevention and
cascading deletes.
"""
import random

import pytest

from errors import Conflict, NotFound
from storage.folders import FolderTree, descendants
from storage.models import Folder


def _ancestors_terminate(doc):
    for folder in doc.folders.values():
        seen = {folder.folder_id}
        parent = folder.parent_id
        while parent is not None:
            assert parent not in seen, f"cycle through {parent}"
            assert parent in doc.folders
            seen.add(parent)
            parent = doc.folders[parent].parent_id


def test_sibling_names_are_unique(engine, account):
    acct = account.account_id
    a = engine.folders.create(acct, "A")
    with pytest.raises(Conflict):
        engine.folders.create(acct, "A")

    # same name under a different parent is fine
    nested = engine.folders.create(acct, "A", parent_id=a.folder_id)
    assert nested.parent_id == a.folder_id


def test_create_requires_existing_parent(engine, account):
    other = engine.accounts.get_or_create("tg:2002")
    foreign = engine.folders.create(other.account_id, "Theirs")

    with pytest.raises(NotFound):
        engine.folders.create(account.account_id, "X", parent_id="missing")
    with pytest.raises(NotFound):
        engine.folders.create(account.account_id, "X", parent_id=foreign.folder_id)


def test_create_rejects_blank_names(engine, account):
    with pytest.raises(ValueError):
        engine.folders.create(account.account_id, "   ")


def test_rename(engine, account):
    acct = account.account_id
    a = engine.folders.create(acct, "A")
    engine.folders.create(acct, "B")

    with pytest.raises(Conflict):
        engine.folders.update(a.folder_id, acct, new_name="B")

    renamed = engine.folders.update(a.folder_id, acct, new_name="Archive")
    assert renamed.name == "Archive"
    assert renamed.parent_id is None
    # renaming to the current name is a no-op, not a conflict
    assert engine.folders.update(a.folder_id, acct, new_name="Archive").name == "Archive"


def test_move_rules(engine, account):
    acct = account.account_id
    a = engine.folders.create(acct, "A")
    b = engine.folders.create(acct, "B", parent_id=a.folder_id)
    c = engine.folders.create(acct, "C", parent_id=b.folder_id)

    with pytest.raises(Conflict):
        engine.folders.update(a.folder_id, acct, new_parent_id=a.folder_id)
    with pytest.raises(Conflict):
        engine.folders.update(a.folder_id, acct, new_parent_id=c.folder_id)
    with pytest.raises(NotFound):
        engine.folders.update(a.folder_id, acct, new_parent_id="missing")

    moved = engine.folders.update(c.folder_id, acct, new_parent_id=None)
    assert moved.parent_id is None
    assert engine.folders.get(c.folder_id, acct).parent_id is None

    # leaving new_parent_id out keeps the parent
    kept = engine.folders.update(b.folder_id, acct, new_name="B2")
    assert kept.parent_id == a.folder_id


def test_move_checks_names_at_destination(engine, account):
    acct = account.account_id
    a = engine.folders.create(acct, "A")
    engine.folders.create(acct, "Same", parent_id=a.folder_id)
    loose = engine.folders.create(acct, "Same")

    with pytest.raises(Conflict):
        engine.folders.update(loose.folder_id, acct, new_parent_id=a.folder_id)


def test_random_moves_never_create_cycles(engine, account):
    acct = account.account_id
    rng = random.Random(1234)
    ids = [engine.folders.create(acct, f"f{i}").folder_id for i in range(12)]

    for step in range(150):
        target = rng.choice(ids)
        parent = rng.choice(ids + [None])
        try:
            engine.folders.update(target, acct, new_parent_id=parent)
        except Conflict:
            pass
        _ancestors_terminate(engine.index.load(acct))


def test_list_children_is_sorted(engine, account):
    acct = account.account_id
    for name in ("beta", "Alpha", "gamma"):
        engine.folders.create(acct, name)
    assert [f.name for f in engine.folders.list_children(acct)] == ["Alpha", "beta", "gamma"]
    with pytest.raises(NotFound):
        engine.folders.list_children(acct, "missing")


def test_tree_nests_folders_and_files(engine, account):
    acct = account.account_id
    a = engine.folders.create(acct, "A")
    b = engine.folders.create(acct, "B", parent_id=a.folder_id)
    record = engine.files.upload(acct, b"tree", "t.txt", folder_id=b.folder_id)

    tree = engine.folders.tree(acct)
    assert [n.folder.name for n in tree] == ["A"]
    assert [n.folder.name for n in tree[0].children] == ["B"]
    assert [f.file_id for f in tree[0].children[0].files] == [record.file_id]

    as_dict = tree[0].to_dict()
    assert as_dict["children"][0]["files"][0]["original_name"] == "t.txt"


def test_cascade_delete(engine, account, settings):
    acct = account.account_id
    a = engine.folders.create(acct, "A")
    b = engine.folders.create(acct, "B", parent_id=a.folder_id)
    c = engine.folders.create(acct, "C", parent_id=b.folder_id)
    keep = engine.folders.create(acct, "Keep")

    engine.files.upload(acct, b"1" * 10, "a.bin", folder_id=a.folder_id)
    engine.files.upload(acct, b"2" * 20, "c.bin", folder_id=c.folder_id)
    survivor = engine.files.upload(acct, b"3" * 5, "root.bin")
    kept_file = engine.files.upload(acct, b"4" * 7, "keep.bin", folder_id=keep.folder_id)
    assert engine.quota.snapshot(acct).used == 42

    assert engine.folders.delete(a.folder_id, acct) == 3

    doc = engine.index.load(acct)
    assert set(doc.folders) == {keep.folder_id}
    assert set(doc.files) == {survivor.file_id, kept_file.file_id}
    assert engine.quota.snapshot(acct).used == 12
    blobs = [p for p in settings.storage_path.rglob("*") if p.is_file()]
    assert len(blobs) == 2
    with pytest.raises(NotFound):
        engine.folders.delete(a.folder_id, acct)


def test_deep_hierarchy_is_handled_iteratively(engine, account):
    """Deeper than the interpreter's recursion limit."""
    acct = account.account_id
    depth = 1500
    with engine.index.transaction(acct) as doc:
        parent = None
        for i in range(depth):
            folder = Folder.new(acct, f"level{i}", parent, engine.files.clock())
            doc.folders[folder.folder_id] = folder
            parent = folder.folder_id
    top = engine.folders.list_children(acct)[0]

    assert len(descendants(engine.index.load(acct), top.folder_id)) == depth - 1
    with pytest.raises(Conflict):
        engine.folders.tree(acct)
    assert engine.folders.delete(top.folder_id, acct) == depth
    assert engine.index.load(acct).folders == {}


def test_tree_depth_limit_is_configurable(engine, account):
    acct = account.account_id
    a = engine.folders.create(acct, "A")
    b = engine.folders.create(acct, "B", parent_id=a.folder_id)
    engine.folders.create(acct, "C", parent_id=b.folder_id)

    shallow = FolderTree(engine.index, engine.files, clock=engine.files.clock, max_depth=2)
    with pytest.raises(Conflict):
        shallow.tree(acct)
    assert len(FolderTree(engine.index, engine.files, max_depth=3).tree(acct)) == 1
