"""只读接口：列表、目录树、访问链接，以及租户隔离。"""

import pytest

from app.packages.drive.core.exceptions import NotFoundError, ValidationError
from app.packages.drive.services.storage_adapter import IncomingFile


def _upload(service, db, path, name, body=b"x", tenant="E001"):
    service.upload_one(db, root="drive", tenant=tenant, path=path, file=IncomingFile(name, body))


def test_list_children_sorted_by_name(db, service):
    _upload(service, db, "", "b.txt")
    _upload(service, db, "", "A.txt")
    service.create_folder(db, root="drive", tenant="E001", path="", name="c")
    _upload(service, db, "c", "inner.txt")

    resp = service.list_items(db, root="drive", tenant="E001", path="")
    assert [i["name"] for i in resp["data"]["items"]] == ["A.txt", "b.txt", "c"]
    assert resp["data"]["total"] == 3

    inner = service.list_items(db, root="drive", tenant="E001", path="c")
    assert [i["path"] for i in inner["data"]["items"]] == ["c/inner.txt"]


def test_list_sort_by_size_desc(db, service):
    _upload(service, db, "", "small", b"1")
    _upload(service, db, "", "big", b"12345")
    resp = service.list_items(db, root="drive", tenant="E001", path="", sort_by="size", order="desc")
    assert [i["name"] for i in resp["data"]["items"]] == ["big", "small"]


@pytest.mark.parametrize("sort_by, order", [("color", "asc"), ("name", "sideways")])
def test_list_rejects_bad_sort(db, service, sort_by, order):
    with pytest.raises(ValidationError):
        service.list_items(db, root="drive", tenant="E001", path="", sort_by=sort_by, order=order)


def test_list_missing_folder(db, service):
    with pytest.raises(NotFoundError):
        service.list_items(db, root="drive", tenant="E001", path="nowhere")


def test_tree_groups_children(db, service):
    _upload(service, db, "A/B", "deep.txt")
    _upload(service, db, "A", "mid.txt")
    _upload(service, db, "", "top.txt")

    data = service.tree(db, root="drive", tenant="E001")["data"]

    assert data["total"] == 5
    assert [f["name"] for f in data["files"]] == ["top.txt"]
    (a,) = data["root"]["children"]
    assert a["path"] == "A"
    assert [c["name"] for c in a["children"]] == ["B", "mid.txt"]
    b = a["children"][0]
    assert [c["path"] for c in b["children"]] == ["A/B/deep.txt"]


def test_tenants_are_isolated(db, service, blob_store):
    _upload(service, db, "shared", "mine.txt", tenant="E001")
    _upload(service, db, "shared", "theirs.txt", tenant="E002")

    e1 = service.tree(db, root="drive", tenant="E001")["data"]
    assert e1["total"] == 2
    assert e1["root"]["children"][0]["children"][0]["name"] == "mine.txt"

    service.delete(db, root="drive", tenant="E001", path="shared", kind="folder")
    e2 = service.list_items(db, root="drive", tenant="E002", path="shared")["data"]
    assert [i["name"] for i in e2["items"]] == ["theirs.txt"]
    assert "drive/E002/shared/theirs.txt" in blob_store.objects

    with pytest.raises(NotFoundError):
        service.rename(db, root="drive", tenant="E002", old_path="shared/mine.txt", new_name="x")


def test_missing_tenant_is_rejected(db, service):
    with pytest.raises(ValidationError):
        service.tree(db, root="drive", tenant="")


def test_presigned_url_defaults(db, service, settings):
    _upload(service, db, "docs", "a.pdf")
    data = service.presigned_url(db, root="drive", tenant="E001", path="docs/a.pdf")["data"]
    assert data["expiresIn"] == settings.drive_presign_expires == 300
    assert data["url"] == "https://blobs.test/drive/E001/docs/a.pdf?expires=300"
    assert data["storageKey"] == "drive/E001/docs/a.pdf"


def test_presigned_url_custom_expiry(db, service):
    _upload(service, db, "", "a.pdf")
    data = service.presigned_url(db, root="drive", tenant="E001", path="a.pdf", expires_in=60)["data"]
    assert data["url"].endswith("expires=60")


@pytest.mark.parametrize("expires", [0, -5, 7 * 24 * 3600 + 1])
def test_presigned_url_rejects_bad_expiry(db, service, expires):
    _upload(service, db, "", "a.pdf")
    with pytest.raises(ValidationError):
        service.presigned_url(db, root="drive", tenant="E001", path="a.pdf", expires_in=expires)


def test_presigned_url_for_folder_or_missing(db, service):
    service.create_folder(db, root="drive", tenant="E001", path="", name="dir")
    with pytest.raises(ValidationError):
        service.presigned_url(db, root="drive", tenant="E001", path="dir")
    with pytest.raises(NotFoundError):
        service.presigned_url(db, root="drive", tenant="E001", path="missing.txt")


def test_create_folder_is_idempotent(db, service):
    first = service.create_folder(db, root="drive", tenant="E001", path="a", name="b")
    assert first["data"]["created"] == ["a", "a/b"]
    again = service.create_folder(db, root="drive", tenant="E001", path="a", name="b")
    assert again["data"]["created"] == []
    assert again["data"]["entry"]["path"] == "a/b"
