"""租户作用域的单元测试。"""

import pytest

from app.packages.drive.core.exceptions import ValidationError
from app.packages.drive.core.tenancy import TenantScope
from app.packages.drive.services.storage_adapter import IncomingFile


def test_scope_normalizes_and_defaults_root():
    scope = TenantScope.of(None, " E001 ")
    assert scope.root == "drive"
    assert scope.tenant == "E001"
    assert scope.base_folder == "drive/E001"


def test_scope_uses_given_default_root():
    scope = TenantScope.of("", "E001", default_root="/vault/")
    assert scope.root == "vault"


@pytest.mark.parametrize("tenant", [None, "", "   ", "a/b", "..", "x" * 51])
def test_scope_rejects_bad_tenant(tenant):
    with pytest.raises(ValidationError):
        TenantScope.of("drive", tenant)


def test_scope_keys():
    scope = TenantScope.of("drive", "E001")
    assert scope.key_for("A/B", is_folder=True) == "drive/E001/A/B/"
    assert scope.key_for("A/b.txt", is_folder=False) == "drive/E001/A/b.txt"
    assert scope.cache_key("A") == "drive|E001|A"


@pytest.mark.parametrize("root", ["a/b", "..", "x" * 121])
def test_scope_rejects_bad_root(root):
    with pytest.raises(ValidationError):
        TenantScope.of(root, "E001")


def test_multi_segment_root_cannot_reach_other_partition(db, service, blob_store):
    service.upload_one(db, root="a", tenant="b", path="c", file=IncomingFile("secret.txt", b"s"))

    with pytest.raises(ValidationError):
        service.delete(db, root="a/b", tenant="c", path="secret.txt", kind="file")
    with pytest.raises(ValidationError):
        service.create_folder(db, root="a/b", tenant="c", path="", name="x")

    assert "a/b/c/secret.txt" in blob_store.objects
