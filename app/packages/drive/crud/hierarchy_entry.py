"""层级条目 CRUD：所有查询都先施加租户作用域，再按路径/父路径/前缀过滤。"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.packages.drive.core.enums import EntryTypeEnum, SortFieldEnum, SortOrderEnum
from app.packages.drive.core.tenancy import TenantScope, apply_tenant_scope
from app.packages.drive.crud.base import CRUDBase
from app.packages.drive.models.hierarchy_entry import HierarchyEntry
from app.packages.drive.utils.path_utils import name_of, parent_of, replace_prefix

# IN 子句分批大小，避免超长 SQL
_IN_CHUNK = 500


class CRUDHierarchyEntry(CRUDBase[HierarchyEntry]):
    def scoped(self, db: Session, scope: TenantScope):
        return apply_tenant_scope(self.query(db), HierarchyEntry, scope)

    def get_by_path(self, db: Session, scope: TenantScope, path: str) -> HierarchyEntry | None:
        return self.scoped(db, scope).filter(HierarchyEntry.path == path).first()

    def get_folder(self, db: Session, scope: TenantScope, path: str) -> HierarchyEntry | None:
        return (
            self.scoped(db, scope)
            .filter(HierarchyEntry.path == path)
            .filter(HierarchyEntry.type == EntryTypeEnum.FOLDER.value)
            .first()
        )

    def get_many_by_paths(self, db: Session, scope: TenantScope, paths: Iterable[str]) -> dict[str, HierarchyEntry]:
        wanted = sorted(set(paths))
        found: dict[str, HierarchyEntry] = {}
        for i in range(0, len(wanted), _IN_CHUNK):
            chunk = wanted[i : i + _IN_CHUNK]
            for row in self.scoped(db, scope).filter(HierarchyEntry.path.in_(chunk)).all():
                found[row.path] = row
        return found

    def list_children(
        self,
        db: Session,
        scope: TenantScope,
        parent_path: str,
        *,
        sort_by: SortFieldEnum = SortFieldEnum.NAME,
        order: SortOrderEnum = SortOrderEnum.ASC,
    ) -> List[HierarchyEntry]:
        columns = {
            SortFieldEnum.NAME: func.lower(HierarchyEntry.name),
            SortFieldEnum.TYPE: HierarchyEntry.type,
            SortFieldEnum.SIZE: HierarchyEntry.size,
            SortFieldEnum.CREATED_AT: HierarchyEntry.create_time,
            SortFieldEnum.UPDATED_AT: HierarchyEntry.update_time,
        }
        sort_col = columns[sort_by]
        asc = order == SortOrderEnum.ASC
        return (
            self.scoped(db, scope)
            .filter(HierarchyEntry.parent_path == parent_path)
            .order_by(sort_col.asc() if asc else sort_col.desc(), HierarchyEntry.path.asc())
            .all()
        )

    def list_all(self, db: Session, scope: TenantScope) -> List[HierarchyEntry]:
        return (
            self.scoped(db, scope)
            .order_by(HierarchyEntry.type.asc(), HierarchyEntry.name.asc())
            .all()
        )

    def subtree_query(self, db: Session, scope: TenantScope, prefix: str):
        """``path == prefix`` 或 ``path LIKE 'prefix/%'``（通配符已转义）。"""
        return self.scoped(db, scope).filter(
            or_(
                HierarchyEntry.path == prefix,
                HierarchyEntry.path.startswith(prefix + "/", autoescape=True),
            )
        )

    def get_subtree(self, db: Session, scope: TenantScope, prefix: str) -> List[HierarchyEntry]:
        return self.subtree_query(db, scope, prefix).all()

    def count_subtree(self, db: Session, scope: TenantScope, prefix: str) -> int:
        return self.subtree_query(db, scope, prefix).count()

    def create_folder(
        self,
        db: Session,
        scope: TenantScope,
        path: str,
        *,
        attributes: Optional[dict[str, Any]] = None,
    ) -> HierarchyEntry:
        return self.create(
            db,
            {
                "root": scope.root,
                "tenant": scope.tenant,
                "path": path,
                "parent_path": parent_of(path),
                "name": name_of(path),
                "type": EntryTypeEnum.FOLDER.value,
                "storage_key": scope.key_for(path, is_folder=True),
                "size": None,
                "mime_type": None,
                "attributes": attributes,
            },
        )

    def upsert_files(self, db: Session, scope: TenantScope, rows: List[dict[str, Any]]) -> int:
        """按 (root, tenant, path) 批量 upsert 文件条目，并在一次提交中完成。

        每个 row 需包含 path/type/size/mime_type/attributes；派生字段在此统一重算。
        """
        if not rows:
            return 0
        existing = self.get_many_by_paths(db, scope, (r["path"] for r in rows))
        for row in rows:
            path = row["path"]
            values = {
                "parent_path": parent_of(path),
                "name": name_of(path),
                "type": row.get("type") or EntryTypeEnum.FILE.value,
                "storage_key": scope.key_for(path, is_folder=False),
                "size": row.get("size"),
                "mime_type": row.get("mime_type"),
                "attributes": row.get("attributes"),
            }
            current = existing.get(path)
            if current is None:
                db.add(HierarchyEntry(root=scope.root, tenant=scope.tenant, path=path, **values))
            else:
                for k, v in values.items():
                    setattr(current, k, v)
                db.add(current)
        self._commit(db)
        return len(rows)

    def apply_path(self, entry: HierarchyEntry, scope: TenantScope, new_path: str) -> None:
        """修改 path 并同步重算 parent_path/name/storage_key。"""
        entry.path = new_path
        entry.parent_path = parent_of(new_path)
        entry.name = name_of(new_path)
        entry.storage_key = scope.key_for(new_path, is_folder=entry.is_folder)

    def move_one(self, db: Session, scope: TenantScope, entry: HierarchyEntry, new_path: str) -> HierarchyEntry:
        self.apply_path(entry, scope, new_path)
        return self.save(db, entry)

    def cascade_update_prefix(self, db: Session, scope: TenantScope, old_prefix: str, new_prefix: str) -> int:
        """把子树（含自身）中所有条目的 old_prefix 替换为 new_prefix，一次提交。"""
        affected = self.get_subtree(db, scope, old_prefix)
        for row in affected:
            self.apply_path(row, scope, replace_prefix(row.path, old_prefix, new_prefix))
            db.add(row)
        if affected:
            self._commit(db)
        return len(affected)

    def delete_subtree(self, db: Session, scope: TenantScope, prefix: str) -> int:
        deleted = self.subtree_query(db, scope, prefix).delete(synchronize_session=False)
        self._commit(db)
        return int(deleted or 0)


hierarchy_entry_crud = CRUDHierarchyEntry(HierarchyEntry)
