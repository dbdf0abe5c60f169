"""上传：单文件、多文件、文件夹上传，以及部分失败与冲突。"""

import json

import pytest

from app.packages.drive.core.exceptions import ConflictError, StorageFailure, ValidationError
from app.packages.drive.core.tenancy import TenantScope
from app.packages.drive.crud.hierarchy_entry import hierarchy_entry_crud
from app.packages.drive.services.drive_service import parse_paths_input
from app.packages.drive.services.storage_adapter import IncomingFile

SCOPE = TenantScope.of("drive", "E001")


def _f(name, body=b"data"):
    return IncomingFile(filename=name, content=body)


def test_upload_one_creates_chain_and_entry(db, service, blob_store):
    resp = service.upload_one(db, root="drive", tenant="E001", path="Marketing/Creatives", file=_f("logo.png", b"png"))

    assert resp["code"] == 200
    uploaded = resp["data"]["uploaded"][0]
    assert uploaded["path"] == "Marketing/Creatives/logo.png"
    assert uploaded["type"] == "file"
    assert uploaded["size"] == 3
    assert uploaded["mimeType"] == "image/png"
    assert uploaded["storageKey"] == "drive/E001/Marketing/Creatives/logo.png"
    assert resp["data"]["createdFolders"] == ["Marketing", "Marketing/Creatives"]

    assert blob_store.objects["drive/E001/Marketing/Creatives/logo.png"] == b"png"
    for folder in ["Marketing", "Marketing/Creatives"]:
        assert hierarchy_entry_crud.get_folder(db, SCOPE, folder) is not None


def test_upload_one_overwrites_existing_file(db, service):
    service.upload_one(db, root="drive", tenant="E001", path="", file=_f("a.txt", b"1"))
    service.upload_one(db, root="drive", tenant="E001", path="", file=_f("a.txt", b"22"))

    entry = hierarchy_entry_crud.get_by_path(db, SCOPE, "a.txt")
    assert entry.size == 2
    assert hierarchy_entry_crud.count_subtree(db, SCOPE, "a.txt") == 1


def test_upload_one_onto_folder_is_conflict(db, service, blob_store):
    service.create_folder(db, root="drive", tenant="E001", path="", name="docs")
    blob_store.calls.clear()

    with pytest.raises(ConflictError):
        service.upload_one(db, root="drive", tenant="E001", path="", file=_f("docs"))
    assert [c for c in blob_store.calls if c[0] == "put"] == []


def test_upload_one_requires_filename(db, service):
    with pytest.raises(ValidationError):
        service.upload_one(db, root="drive", tenant="E001", path="", file=_f(""))


def test_upload_multiple_with_paths(db, service, blob_store):
    files = [_f("a.txt"), _f("b.txt"), _f("c.txt")]
    resp = service.upload_multiple(
        db, root="drive", tenant="E001", path="inbox", files=files, paths=["x/a.txt", "", "y/z/c.txt"]
    )

    paths = sorted(u["path"] for u in resp["data"]["uploaded"])
    assert paths == ["inbox/b.txt", "inbox/x/a.txt", "inbox/y/z/c.txt"]
    assert all(u["type"] == "multi_file_upload" for u in resp["data"]["uploaded"])
    for folder in ["inbox", "inbox/x", "inbox/y", "inbox/y/z"]:
        assert hierarchy_entry_crud.get_folder(db, SCOPE, folder) is not None
    assert "drive/E001/inbox/y/z/c.txt" in blob_store.objects


def test_upload_multiple_partial_failure(db, service, blob_store):
    blob_store.fail_put.add("drive/E001/b.txt")
    files = [_f("a.txt"), _f("b.txt"), _f("c.txt")]

    resp = service.upload_multiple(db, root="drive", tenant="E001", path="", files=files)

    assert resp["code"] == 200
    assert sorted(u["path"] for u in resp["data"]["uploaded"]) == ["a.txt", "c.txt"]
    assert resp["data"]["failed"] == [{"name": "b.txt", "path": "b.txt", "error": "写入对象失败"}]
    assert hierarchy_entry_crud.get_by_path(db, SCOPE, "b.txt") is None
    assert hierarchy_entry_crud.get_by_path(db, SCOPE, "a.txt") is not None


def test_upload_multiple_all_failed_raises(db, service, blob_store):
    blob_store.fail_put_when = lambda key: not key.endswith("/")
    with pytest.raises(StorageFailure) as exc_info:
        service.upload_multiple(db, root="drive", tenant="E001", path="", files=[_f("a.txt"), _f("b.txt")])
    assert len(exc_info.value.data["failed"]) == 2
    assert hierarchy_entry_crud.list_all(db, SCOPE) == []


def test_upload_multiple_length_mismatch(db, service, blob_store):
    with pytest.raises(ValidationError):
        service.upload_multiple(db, root="drive", tenant="E001", path="", files=[_f("a")], paths=["a", "b"])
    assert blob_store.calls == []


def test_upload_folder_example(db, service, blob_store):
    """典型场景：文件夹上传会先建好所有父目录，再写入文件。"""
    files = [_f("x.txt"), _f("y.txt")]
    resp = service.upload_folder(
        db, root="drive", tenant="E002", path="", files=files, paths=json.dumps(["Proj/a/x.txt", "Proj/b/y.txt"])
    )

    scope = TenantScope.of("drive", "E002")
    assert sorted(u["path"] for u in resp["data"]["uploaded"]) == ["Proj/a/x.txt", "Proj/b/y.txt"]
    assert all(u["type"] == "folder_upload" for u in resp["data"]["uploaded"])
    for folder in ["Proj", "Proj/a", "Proj/b"]:
        assert hierarchy_entry_crud.get_folder(db, scope, folder) is not None
    assert "drive/E002/Proj/a/x.txt" in blob_store.objects
    assert "drive/E002/Proj/b/y.txt" in blob_store.objects

    # 所有文件夹占位对象都先于文件写入
    puts = [key for op, key in blob_store.calls if op == "put"]
    first_file = min(i for i, k in enumerate(puts) if not k.endswith("/"))
    assert all(k.endswith("/") for k in puts[:first_file])
    assert {"drive/E002/Proj/", "drive/E002/Proj/a/", "drive/E002/Proj/b/"} <= set(puts[:first_file])


def test_upload_folder_falls_back_to_filenames(db, service):
    resp = service.upload_folder(db, root="drive", tenant="E001", path="base", files=[_f("one.txt")])
    assert resp["data"]["uploaded"][0]["path"] == "base/one.txt"


def test_upload_folder_rejects_empty_relative_path(db, service, blob_store):
    with pytest.raises(ValidationError):
        service.upload_folder(db, root="drive", tenant="E001", path="", files=[_f("a"), _f("b")], paths=["a", " / "])
    assert blob_store.calls == []
    assert hierarchy_entry_crud.list_all(db, SCOPE) == []


def test_upload_batch_rejects_duplicates(db, service):
    with pytest.raises(ValidationError):
        service.upload_folder(db, root="drive", tenant="E001", path="", files=[_f("a"), _f("b")], paths=["d/a", "d//a"])


def test_upload_batch_rejects_file_and_folder_with_same_path(db, service):
    with pytest.raises(ValidationError):
        service.upload_folder(db, root="drive", tenant="E001", path="", files=[_f("a"), _f("b")], paths=["d", "d/b"])


def test_upload_under_existing_file_is_conflict(db, service, blob_store):
    service.upload_one(db, root="drive", tenant="E001", path="", file=_f("report"))
    blob_store.calls.clear()
    with pytest.raises(ConflictError):
        service.upload_folder(db, root="drive", tenant="E001", path="", files=[_f("x")], paths=["report/x"])
    assert blob_store.calls == []


def test_upload_rejects_dot_dot(db, service):
    with pytest.raises(ValidationError):
        service.upload_folder(db, root="drive", tenant="E001", path="", files=[_f("x")], paths=["../x"])


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        ("", None),
        ([], None),
        (["a", "b/c"], ["a", "b/c"]),
        ('["a", "b/c"]', ["a", "b/c"]),
        (['["a", "b"]'], ["a", "b"]),
        ("single/path.txt", ["single/path.txt"]),
    ],
)
def test_parse_paths_input(raw, expected):
    assert parse_paths_input(raw) == expected


@pytest.mark.parametrize("raw", ["[1, 2]", "[not json", '["a", 3]'])
def test_parse_paths_input_rejects_bad_json(raw):
    with pytest.raises(ValidationError):
        parse_paths_input(raw)
