"""存储/元数据漂移审计：对比某个作用域下的物理对象与元数据条目，只读、不做修复。

独立函数形式，便于在接口或运维脚本中直接调用。
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from app.packages.drive.core.config import get_settings
from app.packages.drive.core.constants import HTTP_STATUS_OK
from app.packages.drive.core.logger import log_event
from app.packages.drive.core.responses import create_response
from app.packages.drive.core.tenancy import TenantScope
from app.packages.drive.crud.hierarchy_entry import hierarchy_entry_crud
from app.packages.drive.services.blob_store import BlobStore
from app.packages.drive.services.storage_adapter import BlobStorageAdapter


def drift_report(db: Session, *, store: BlobStore, root: Optional[str], tenant: Optional[str]):
    """列出作用域内的不一致项。

    - ``missingObjects``：文件条目的 storage_key 在存储中不存在；
    - ``orphanObjects``：物理 key 不对应任何条目（已有文件夹的占位对象视为匹配）；
    - 缺少占位对象的文件夹不算漂移，占位对象本身是可选的。
    """
    scope = TenantScope.of(root, tenant, default_root=get_settings().drive_default_root)
    log_event("drive.drift.start", root=scope.root, tenant=scope.tenant)

    objects = BlobStorageAdapter(store).list_scope_objects(scope)
    physical = {o.key for o in objects}
    entries = hierarchy_entry_crud.list_all(db, scope)
    known = {e.storage_key for e in entries if e.storage_key}

    missing = sorted(
        e.path for e in entries if not e.is_folder and e.storage_key not in physical
    )
    orphans = sorted(k for k in physical if k not in known)

    payload = {
        "root": scope.root,
        "tenant": scope.tenant,
        "entries": len(entries),
        "objects": len(physical),
        "missingObjects": missing,
        "orphanObjects": orphans,
        "consistent": not missing and not orphans,
    }
    log_event("drive.drift.done", root=scope.root, tenant=scope.tenant, missing=len(missing), orphans=len(orphans))
    return create_response("漂移检查完成", payload, HTTP_STATUS_OK)
