"""虚拟盘服务：在对象存储与元数据表之间执行层级操作，并约定两者之间的顺序与失败语义。

固定顺序：
1. 归一化输入路径，计算物理 key；
2. 校验（不存在/冲突/非法）全部在任何写入之前完成；
3. 保障目标的父文件夹链；
4. 先执行物理变更（上传/复制/删除）；
5. 物理变更成功后再修改元数据；若此时元数据写入失败，抛出 InconsistentStateError，不做回滚。
"""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.packages.drive.core.config import Settings, get_settings
from app.packages.drive.core.constants import HTTP_STATUS_OK, MAX_PRESIGN_EXPIRES
from app.packages.drive.core.enums import DeleteKindEnum, EntryTypeEnum, SortFieldEnum, SortOrderEnum
from app.packages.drive.core.exceptions import (
    ConflictError,
    InconsistentStateError,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from app.packages.drive.core.logger import log_event
from app.packages.drive.core.responses import create_response
from app.packages.drive.core.tenancy import TenantScope
from app.packages.drive.crud.hierarchy_entry import CRUDHierarchyEntry, hierarchy_entry_crud
from app.packages.drive.models.hierarchy_entry import HierarchyEntry
from app.packages.drive.services.blob_store import BlobStore
from app.packages.drive.services.folder_chain import FolderChainCache, FolderChainEnsurer, iter_prefixes
from app.packages.drive.services.storage_adapter import BlobStorageAdapter, IncomingFile
from app.packages.drive.utils.path_utils import (
    ensure_safe_path,
    is_same_or_descendant,
    join_path,
    norm_path,
    parent_of,
    relative_from_key,
)


def parse_paths_input(raw: Union[None, str, Sequence[str]]) -> Optional[List[str]]:
    """解析批量上传携带的相对路径列表。

    支持：``None``/空 → ``None``；字符串列表；JSON 数组字符串；
    只含一个 JSON 数组字符串的列表（multipart 表单只传了一个字段时的常见形态）。
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ValidationError("paths 不是合法的 JSON 数组", {"paths": raw}) from exc
            if not isinstance(parsed, list) or not all(isinstance(x, str) for x in parsed):
                raise ValidationError("paths 必须是字符串数组", {"paths": raw})
            return list(parsed)
        return [text]
    items = list(raw)
    if not items:
        return None
    if len(items) == 1 and isinstance(items[0], str) and items[0].strip().startswith("["):
        return parse_paths_input(items[0])
    if not all(isinstance(x, str) for x in items):
        raise ValidationError("paths 必须是字符串数组")
    return items


def _check_name(name: Optional[str]) -> str:
    """名称必须是单个非空路径段。"""
    n = ensure_safe_path(name)
    if not n or "/" in n:
        raise ValidationError("名称必须是非空的单级路径段", {"name": name})
    return n


class DriveService:
    def __init__(
        self,
        store: BlobStore,
        *,
        settings: Optional[Settings] = None,
        crud: CRUDHierarchyEntry = hierarchy_entry_crud,
    ):
        cfg = settings or get_settings()
        self.crud = crud
        self.adapter = BlobStorageAdapter(store, concurrency=cfg.drive_upload_concurrency)
        self.folders = FolderChainEnsurer(self.adapter, crud=crud, folder_markers=cfg.drive_folder_markers)
        self.default_root = cfg.drive_default_root
        self.presign_expires = cfg.drive_presign_expires

    def scope(self, root: Optional[str], tenant: Optional[str]) -> TenantScope:
        return TenantScope.of(root, tenant, default_root=self.default_root)

    def _get_entry(self, db: Session, scope: TenantScope, path: str) -> HierarchyEntry:
        entry = self.crud.get_by_path(db, scope, path) if path else None
        if entry is None:
            raise NotFoundError("条目不存在", {"path": path})
        return entry

    # ----------------------------
    # 查询（仅读元数据）
    # ----------------------------
    def list_items(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        path: Optional[str] = "",
        sort_by: str = SortFieldEnum.NAME.value,
        order: str = SortOrderEnum.ASC.value,
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        parent = ensure_safe_path(path)
        try:
            sort_field = SortFieldEnum(sort_by)
            sort_order = SortOrderEnum((order or "").lower())
        except ValueError as exc:
            raise ValidationError("不支持的排序参数", {"sortBy": sort_by, "order": order}) from exc
        if parent and self.crud.get_folder(db, scope, parent) is None:
            raise NotFoundError("文件夹不存在", {"path": parent})

        rows = self.crud.list_children(db, scope, parent, sort_by=sort_field, order=sort_order)
        payload = {
            "root": scope.root,
            "tenant": scope.tenant,
            "path": parent,
            "items": [r.to_dict() for r in rows],
            "total": len(rows),
        }
        return create_response("获取列表成功", payload, HTTP_STATUS_OK)

    def tree(self, db: Session, *, root: Optional[str], tenant: Optional[str]) -> Dict[str, Any]:
        """一次读取作用域内全部条目，按 parent_path 分组后组装成树。"""
        scope = self.scope(root, tenant)
        rows = self.crud.list_all(db, scope)

        by_parent: Dict[str, List[HierarchyEntry]] = defaultdict(list)
        for row in rows:
            by_parent[row.parent_path].append(row)

        def _sort_key(e: HierarchyEntry) -> Tuple[int, str]:
            return (0 if e.is_folder else 1, (e.name or "").lower())

        def _node(e: HierarchyEntry) -> Dict[str, Any]:
            node = e.to_dict()
            if e.is_folder:
                node["children"] = [_node(c) for c in sorted(by_parent.get(e.path, []), key=_sort_key)]
            return node

        top = sorted(by_parent.get("", []), key=_sort_key)
        payload = {
            "root": {
                "name": scope.root,
                "path": "",
                "type": EntryTypeEnum.FOLDER.value,
                "children": [_node(e) for e in top if e.is_folder],
            },
            "files": [e.to_dict() for e in top if not e.is_folder],
            "total": len(rows),
        }
        return create_response("获取目录树成功", payload, HTTP_STATUS_OK)

    # ----------------------------
    # 文件夹
    # ----------------------------
    def create_folder(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        path: Optional[str],
        name: str,
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        rel = join_path(ensure_safe_path(path), _check_name(name))
        log_event("drive.create_folder.start", root=scope.root, tenant=scope.tenant, path=rel)

        existing = self.crud.get_by_path(db, scope, rel)
        if existing is not None:
            if not existing.is_folder:
                raise ConflictError("同名文件已存在", {"path": rel})
            return create_response("文件夹已存在", {"entry": existing.to_dict(), "created": []}, HTTP_STATUS_OK)

        created = self.folders.ensure(db, scope, rel, FolderChainCache())
        entry = self.crud.get_folder(db, scope, rel)
        log_event("drive.create_folder.done", root=scope.root, tenant=scope.tenant, created=created)
        return create_response("创建文件夹成功", {"entry": entry.to_dict(), "created": created}, HTTP_STATUS_OK)

    # ----------------------------
    # 上传
    # ----------------------------
    def upload_one(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        path: Optional[str],
        file: IncomingFile,
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        rel = join_path(ensure_safe_path(path), _check_name(file.filename))
        log_event("drive.upload_one.start", root=scope.root, tenant=scope.tenant, path=rel)
        self._check_upload_targets(db, scope, [rel])

        created = self.folders.ensure(db, scope, parent_of(rel), FolderChainCache())
        key = self.adapter.put_file(scope, rel, file)
        row = self._file_row(rel, file, EntryTypeEnum.FILE, op="uploadOne", ctx_path=parent_of(rel))
        try:
            self.crud.upsert_files(db, scope, [row])
        except SQLAlchemyError as exc:
            log_event("drive.upload_one.metadata_failed", logging.ERROR, exc_info=True, key=key)
            raise InconsistentStateError("文件已写入存储，但元数据写入失败", {"uploaded": [key]}) from exc

        entry = self.crud.get_by_path(db, scope, rel)
        log_event("drive.upload_one.done", root=scope.root, tenant=scope.tenant, key=key)
        return create_response(
            "上传成功",
            {"uploaded": [entry.to_dict()], "failed": [], "createdFolders": created},
            HTTP_STATUS_OK,
        )

    def upload_multiple(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        path: Optional[str],
        files: List[IncomingFile],
        paths: Union[None, str, Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """多文件上传：``paths[i]`` 存在时覆盖第 i 个文件的文件名（可带子目录）。"""
        scope = self.scope(root, tenant)
        base = ensure_safe_path(path)
        rel_paths = parse_paths_input(paths)
        if not files:
            raise ValidationError("未选择任何文件")
        if rel_paths is not None and len(rel_paths) != len(files):
            raise ValidationError("文件数量与路径数量不一致", {"files": len(files), "paths": len(rel_paths)})

        items: List[Tuple[str, IncomingFile]] = []
        for i, f in enumerate(files):
            given = rel_paths[i] if rel_paths is not None else None
            if norm_path(given):
                rel = join_path(base, ensure_safe_path(given))
            else:
                rel = join_path(base, _check_name(f.filename))
            items.append((rel, f))
        return self._upload_batch(db, scope, items, EntryTypeEnum.MULTI_FILE_UPLOAD, op="uploadMultiple", ctx_path=base)

    def upload_folder(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        path: Optional[str],
        files: List[IncomingFile],
        paths: Union[None, str, Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """文件夹上传：相对路径以 ``paths`` 为准，缺省时回退到各文件的文件名。"""
        scope = self.scope(root, tenant)
        base = ensure_safe_path(path)
        rel_paths = parse_paths_input(paths)
        if not files:
            raise ValidationError("未选择任何文件")
        if rel_paths is None:
            rel_paths = [f.filename for f in files]
        if len(rel_paths) != len(files):
            raise ValidationError("文件数量与路径数量不一致", {"files": len(files), "paths": len(rel_paths)})

        items: List[Tuple[str, IncomingFile]] = []
        for given, f in zip(rel_paths, files):
            rel = ensure_safe_path(given)
            if not rel:
                raise ValidationError("文件相对路径不能为空", {"filename": f.filename})
            items.append((join_path(base, rel), f))
        return self._upload_batch(db, scope, items, EntryTypeEnum.FOLDER_UPLOAD, op="uploadFolder", ctx_path=base)

    def _check_upload_targets(self, db: Session, scope: TenantScope, rels: List[str]) -> None:
        """上传前的冲突检查：目标不能是文件夹，任一级父路径不能是文件。"""
        targets = set(rels)
        parents = {p for r in rels for p in iter_prefixes(parent_of(r))}
        clash = sorted(targets & parents)
        if clash:
            raise ValidationError("同一批次中的路径既是文件又是文件夹", {"paths": clash})

        existing = self.crud.get_many_by_paths(db, scope, targets | parents)
        for p, e in existing.items():
            if p in targets and e.is_folder:
                raise ConflictError("目标路径已存在同名文件夹", {"path": p})
            if p in parents and not e.is_folder:
                raise ConflictError("父路径已被文件占用", {"path": p})

    def _file_row(
        self,
        rel: str,
        f: IncomingFile,
        entry_type: EntryTypeEnum,
        *,
        op: str,
        ctx_path: str,
    ) -> Dict[str, Any]:
        return {
            "path": rel,
            "type": entry_type.value,
            "size": f.size,
            "mime_type": f.mime_type,
            "attributes": {"op": op, "ctxPath": ctx_path, "originalName": f.filename},
        }

    def _upload_batch(
        self,
        db: Session,
        scope: TenantScope,
        items: List[Tuple[str, IncomingFile]],
        entry_type: EntryTypeEnum,
        *,
        op: str,
        ctx_path: str,
    ) -> Dict[str, Any]:
        rels = [rel for rel, _ in items]
        dupes = sorted(r for r, n in Counter(rels).items() if n > 1)
        if dupes:
            raise ValidationError("同一批次中存在重复的文件路径", {"paths": dupes})
        log_event(f"drive.{op}.start", root=scope.root, tenant=scope.tenant, base=ctx_path, count=len(items))
        self._check_upload_targets(db, scope, rels)

        # 所有父文件夹链在任何文件写入之前就绪
        created = self.folders.ensure_many(db, scope, (parent_of(r) for r in rels), FolderChainCache())

        outcomes = self.adapter.put_many(scope, items)
        intended = set(rels)
        ok_rels = {
            relative_from_key(scope.base_folder, o.key) for o in outcomes if o.ok
        } & intended
        failed = [
            {"name": o.file.filename, "path": o.rel_path, "error": o.error}
            for o in outcomes
            if not o.ok
        ]
        rows = [
            self._file_row(o.rel_path, o.file, entry_type, op=op, ctx_path=ctx_path)
            for o in outcomes
            if o.ok and o.rel_path in ok_rels
        ]
        if not rows:
            log_event(f"drive.{op}.failed", logging.WARNING, root=scope.root, tenant=scope.tenant, failed=len(failed))
            raise StorageFailure("全部文件上传失败", {"uploaded": [], "failed": failed, "createdFolders": created})

        try:
            self.crud.upsert_files(db, scope, rows)
        except SQLAlchemyError as exc:
            log_event(f"drive.{op}.metadata_failed", logging.ERROR, exc_info=True, root=scope.root, tenant=scope.tenant)
            raise InconsistentStateError(
                "文件已写入存储，但元数据写入失败",
                {"uploaded": [scope.key_for(r["path"], is_folder=False) for r in rows], "failed": failed},
            ) from exc

        stored = self.crud.get_many_by_paths(db, scope, (r["path"] for r in rows))
        uploaded = [stored[r["path"]].to_dict() for r in rows if r["path"] in stored]
        log_event(f"drive.{op}.done", root=scope.root, tenant=scope.tenant, uploaded=len(uploaded), failed=len(failed))
        msg = "上传成功" if not failed else "部分文件上传失败"
        return create_response(msg, {"uploaded": uploaded, "failed": failed, "createdFolders": created}, HTTP_STATUS_OK)

    # ----------------------------
    # 重命名 / 移动
    # ----------------------------
    def rename(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        old_path: str,
        new_name: str,
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        old = ensure_safe_path(old_path)
        name = _check_name(new_name)
        entry = self._get_entry(db, scope, old)
        final = join_path(parent_of(old), name)
        if final == old:
            raise ConflictError("新名称与原名称相同", {"path": old})
        return self._relocate(db, scope, entry, final, op="rename")

    def move_file(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        source_path: str,
        target_path: Optional[str],
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        entry = self._get_entry(db, scope, ensure_safe_path(source_path))
        if entry.is_folder:
            raise ValidationError("源路径是文件夹，请使用文件夹移动", {"path": entry.path})
        final = self._resolve_move_target(db, scope, entry, target_path)
        return self._relocate(db, scope, entry, final, op="move_file")

    def move_folder(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        source_path: str,
        target_path: Optional[str],
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        entry = self._get_entry(db, scope, ensure_safe_path(source_path))
        if not entry.is_folder:
            raise ValidationError("源路径不是文件夹", {"path": entry.path})
        final = self._resolve_move_target(db, scope, entry, target_path)
        return self._relocate(db, scope, entry, final, op="move_folder")

    def _resolve_move_target(
        self,
        db: Session,
        scope: TenantScope,
        entry: HierarchyEntry,
        target_path: Optional[str],
    ) -> str:
        """移动目标的解析规则：

        - 目标为空：移到根目录，保留原名；
        - 目标是已存在的文件夹：放入其中（``target/name``）；
        - 其它情况：目标即新的完整路径（缺失的父级会被创建）。
        """
        target = ensure_safe_path(target_path)
        if not target:
            final = entry.name
        else:
            t_entry = self.crud.get_by_path(db, scope, target)
            if t_entry is not None and t_entry.is_folder:
                final = join_path(target, entry.name)
            else:
                final = target
        if final == entry.path:
            raise ConflictError("目标位置与源位置相同", {"path": final})
        if entry.is_folder and is_same_or_descendant(final, entry.path):
            raise ValidationError("不能将文件夹移动到自身或其子文件夹中", {"source": entry.path, "target": final})
        return final

    def _relocate(
        self,
        db: Session,
        scope: TenantScope,
        entry: HierarchyEntry,
        final: str,
        *,
        op: str,
    ) -> Dict[str, Any]:
        old = entry.path
        is_folder = entry.is_folder
        log_event(f"drive.{op}.start", root=scope.root, tenant=scope.tenant, src=old, dst=final)
        if self.crud.get_by_path(db, scope, final) is not None:
            raise ConflictError("目标路径已存在", {"path": final})
        # 父级中任何一段是文件都无法放入
        blocking = [
            p for p, e in self.crud.get_many_by_paths(db, scope, iter_prefixes(parent_of(final))).items()
            if not e.is_folder
        ]
        if blocking:
            raise ConflictError("目标父路径已被文件占用", {"path": blocking[0]})

        created = self.folders.ensure(db, scope, parent_of(final), FolderChainCache())

        if is_folder:
            physical = self.adapter.move_prefix(scope, old, final)
        else:
            physical = self.adapter.move_file(scope, old, final)

        try:
            if is_folder:
                updated = self.crud.cascade_update_prefix(db, scope, old, final)
            else:
                self.crud.move_one(db, scope, entry, final)
                updated = 1
        except SQLAlchemyError as exc:
            log_event(f"drive.{op}.metadata_failed", logging.ERROR, exc_info=True, src=old, dst=final)
            raise InconsistentStateError(
                "存储已完成移动，但元数据更新失败",
                {"from": old, "to": final, "storage": physical},
            ) from exc

        moved = self.crud.get_by_path(db, scope, final)
        log_event(f"drive.{op}.done", root=scope.root, tenant=scope.tenant, src=old, dst=final, entries=updated)
        msg = "重命名成功" if op == "rename" else "移动成功"
        payload = {
            "from": old,
            "to": final,
            "type": moved.type if moved is not None else None,
            "entry": moved.to_dict() if moved is not None else None,
            "entriesUpdated": updated,
            "createdFolders": created,
            "storage": physical,
        }
        return create_response(msg, payload, HTTP_STATUS_OK)

    # ----------------------------
    # 删除
    # ----------------------------
    def delete(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        path: str,
        kind: str,
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        try:
            delete_kind = DeleteKindEnum((kind or "").lower())
        except ValueError as exc:
            raise ValidationError("kind 只能是 file 或 folder", {"kind": kind}) from exc
        rel = ensure_safe_path(path)
        if not rel:
            raise ValidationError("不能删除根目录")
        entry = self._get_entry(db, scope, rel)
        if entry.is_folder != (delete_kind == DeleteKindEnum.FOLDER):
            raise ValidationError("删除类型与条目类型不一致", {"path": rel, "type": entry.type, "kind": delete_kind.value})
        log_event("drive.delete.start", root=scope.root, tenant=scope.tenant, path=rel, kind=delete_kind.value)

        if delete_kind == DeleteKindEnum.FILE:
            key = self.adapter.delete_file(scope, rel)
            physical: Dict[str, Any] = {"deleted": 1, "keys": [key]}
        else:
            physical = self.adapter.delete_prefix(scope, rel)

        try:
            if delete_kind == DeleteKindEnum.FILE:
                self.crud.hard_delete(db, entry)
                removed = 1
            else:
                removed = self.crud.delete_subtree(db, scope, rel)
        except SQLAlchemyError as exc:
            log_event("drive.delete.metadata_failed", logging.ERROR, exc_info=True, path=rel)
            raise InconsistentStateError(
                "存储对象已删除，但元数据删除失败", {"path": rel, "storage": physical}
            ) from exc

        log_event("drive.delete.done", root=scope.root, tenant=scope.tenant, path=rel, entries=removed)
        return create_response(
            "删除成功",
            {"path": rel, "type": delete_kind.value, "entriesDeleted": removed, "objectsDeleted": physical["deleted"]},
            HTTP_STATUS_OK,
        )

    # ----------------------------
    # 预签名访问
    # ----------------------------
    def presigned_url(
        self,
        db: Session,
        *,
        root: Optional[str],
        tenant: Optional[str],
        path: str,
        expires_in: Optional[int] = None,
    ) -> Dict[str, Any]:
        scope = self.scope(root, tenant)
        expires = self.presign_expires if expires_in is None else int(expires_in)
        if expires < 1 or expires > MAX_PRESIGN_EXPIRES:
            raise ValidationError("有效期超出范围", {"expiresIn": expires, "max": MAX_PRESIGN_EXPIRES})
        entry = self._get_entry(db, scope, ensure_safe_path(path))
        if entry.is_folder:
            raise ValidationError("文件夹不支持生成访问链接", {"path": entry.path})
        url = self.adapter.presigned_url(entry.storage_key, expires_in=expires, filename=entry.name)
        return create_response(
            "获取访问链接成功",
            {"url": url, "expiresIn": expires, "path": entry.path, "storageKey": entry.storage_key},
            HTTP_STATUS_OK,
        )
