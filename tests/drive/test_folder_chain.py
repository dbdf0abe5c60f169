"""文件夹链保障：逐级创建、幂等、占位对象与冲突。"""

import pytest

from app.packages.drive.core.exceptions import ConflictError
from app.packages.drive.core.tenancy import TenantScope
from app.packages.drive.crud.hierarchy_entry import hierarchy_entry_crud
from app.packages.drive.services.folder_chain import (
    FolderChainCache,
    FolderChainEnsurer,
    iter_prefixes,
)
from app.packages.drive.services.storage_adapter import BlobStorageAdapter, IncomingFile

SCOPE = TenantScope.of("drive", "E001")


def _ensurer(blob_store, markers=True):
    return FolderChainEnsurer(BlobStorageAdapter(blob_store), folder_markers=markers)


def test_iter_prefixes():
    assert iter_prefixes("A/B/C") == ["A", "A/B", "A/B/C"]
    assert iter_prefixes("") == []


def test_ensure_creates_every_prefix(db, blob_store):
    created = _ensurer(blob_store).ensure(db, SCOPE, "A/B/C")

    assert created == ["A", "A/B", "A/B/C"]
    for path, parent in [("A", ""), ("A/B", "A"), ("A/B/C", "A/B")]:
        entry = hierarchy_entry_crud.get_by_path(db, SCOPE, path)
        assert entry is not None
        assert entry.is_folder
        assert entry.parent_path == parent
        assert entry.storage_key == f"drive/E001/{path}/"
        assert entry.attributes == {"op": "autoFolder"}
        assert entry.size is None
    assert blob_store.keys() == ["drive/E001/A/", "drive/E001/A/B/", "drive/E001/A/B/C/"]


def test_ensure_is_idempotent(db, blob_store):
    ensurer = _ensurer(blob_store)
    ensurer.ensure(db, SCOPE, "A/B")
    puts_before = [c for c in blob_store.calls if c[0] == "put"]

    assert ensurer.ensure(db, SCOPE, "A/B") == []
    assert hierarchy_entry_crud.count_subtree(db, SCOPE, "A") == 2
    assert [c for c in blob_store.calls if c[0] == "put"] == puts_before


def test_ensure_empty_path_is_noop(db, blob_store):
    assert _ensurer(blob_store).ensure(db, SCOPE, "") == []
    assert blob_store.calls == []


def test_ensure_without_markers_writes_no_objects(db, blob_store):
    _ensurer(blob_store, markers=False).ensure(db, SCOPE, "A/B")
    assert blob_store.keys() == []
    assert hierarchy_entry_crud.get_folder(db, SCOPE, "A/B") is not None


def test_marker_failure_does_not_fail_ensure(db, blob_store):
    blob_store.fail_put.add("drive/E001/A/")
    created = _ensurer(blob_store).ensure(db, SCOPE, "A/B")
    assert created == ["A", "A/B"]
    assert blob_store.keys() == ["drive/E001/A/B/"]


def test_cache_skips_known_prefixes(db, blob_store):
    ensurer = _ensurer(blob_store)
    cache = FolderChainCache()
    ensurer.ensure(db, SCOPE, "A/B", cache)
    assert SCOPE.cache_key("A") in cache
    assert len(cache) == 2

    blob_store.calls.clear()
    ensurer.ensure(db, SCOPE, "A/B/C", cache)
    assert blob_store.calls == [("put", "drive/E001/A/B/C/")]


def test_file_in_the_chain_is_a_conflict(db, blob_store):
    adapter = BlobStorageAdapter(blob_store)
    adapter.put_file(SCOPE, "A", IncomingFile("A", b"x"))
    hierarchy_entry_crud.upsert_files(db, SCOPE, [{"path": "A", "size": 1, "mime_type": None}])

    with pytest.raises(ConflictError):
        _ensurer(blob_store).ensure(db, SCOPE, "A/B")
    assert hierarchy_entry_crud.get_by_path(db, SCOPE, "A/B") is None


def test_chains_are_tenant_scoped(db, blob_store):
    ensurer = _ensurer(blob_store)
    ensurer.ensure(db, SCOPE, "A")
    other = TenantScope.of("drive", "E002")
    assert ensurer.ensure(db, other, "A") == ["A"]
    assert hierarchy_entry_crud.get_by_path(db, other, "A").storage_key == "drive/E002/A/"
