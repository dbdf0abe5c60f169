"""对象存储适配层：把相对路径翻译成物理 key，并执行上传/复制/删除/列举/预签名。

- 物理 key 一律经由 ``TenantScope.key_for`` 生成，本模块不拼接字符串；
- 批量上传在有界线程池中并发执行，每个文件的成功/失败独立记录，一个失败不会中止其它文件；
- 文件夹移动/删除按前缀分页列举全部对象后再逐个处理。
"""

from __future__ import annotations

import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from app.packages.drive.core.exceptions import StorageFailure
from app.packages.drive.core.logger import log_event
from app.packages.drive.core.tenancy import TenantScope
from app.packages.drive.services.blob_store import BlobObject, BlobStore


@dataclass
class IncomingFile:
    """一个待上传文件：原始文件名 + 已读取的内容。"""

    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content or b"")

    @property
    def mime_type(self) -> str:
        if self.content_type and self.content_type != "application/octet-stream":
            return self.content_type
        mime, _ = mimetypes.guess_type(self.filename or "")
        return mime or self.content_type or "application/octet-stream"


@dataclass
class UploadOutcome:
    rel_path: str
    key: str
    file: IncomingFile
    ok: bool
    error: Optional[str] = None


class BlobStorageAdapter:
    def __init__(self, store: BlobStore, *, concurrency: int = 8):
        self.store = store
        self.concurrency = max(1, int(concurrency))

    # ----------------------------
    # 上传
    # ----------------------------
    def put_file(self, scope: TenantScope, rel_path: str, file: IncomingFile) -> str:
        key = scope.key_for(rel_path, is_folder=False)
        self.store.put_object(key=key, body=file.content, content_type=file.mime_type)
        return key

    def put_many(self, scope: TenantScope, items: List[Tuple[str, IncomingFile]]) -> List[UploadOutcome]:
        """并发写入多个文件，返回与输入同序的结果列表。"""
        outcomes: List[Optional[UploadOutcome]] = [None] * len(items)
        if not items:
            return []

        def _put(rel: str, f: IncomingFile) -> str:
            return self.put_file(scope, rel, f)

        workers = min(self.concurrency, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="drive-upload") as pool:
            futures = {pool.submit(_put, rel, f): idx for idx, (rel, f) in enumerate(items)}
            for fut in as_completed(futures):
                idx = futures[fut]
                rel, f = items[idx]
                key = scope.key_for(rel, is_folder=False)
                try:
                    outcomes[idx] = UploadOutcome(rel_path=rel, key=fut.result(), file=f, ok=True)
                except StorageFailure as exc:
                    outcomes[idx] = UploadOutcome(rel_path=rel, key=key, file=f, ok=False, error=exc.msg)
                except Exception as exc:  # noqa: BLE001 - 单个文件的任意失败都只记录
                    log_event("drive.upload.item_failed", logging.ERROR, exc_info=True, key=key)
                    outcomes[idx] = UploadOutcome(rel_path=rel, key=key, file=f, ok=False, error=str(exc))
        return [o for o in outcomes if o is not None]

    def put_folder_marker(self, scope: TenantScope, rel_path: str) -> bool:
        """写入 0 字节的 ``key/`` 占位对象；失败只记录日志。"""
        key = scope.key_for(rel_path, is_folder=True)
        try:
            self.store.put_object(key=key, body=b"", content_type="application/x-directory")
            return True
        except StorageFailure:
            log_event("drive.marker.failed", logging.WARNING, key=key)
            return False

    # ----------------------------
    # 移动
    # ----------------------------
    def move_file(self, scope: TenantScope, old_rel: str, new_rel: str) -> Dict[str, Any]:
        """复制到新 key 后删除旧 key；任一步失败都抛出 StorageFailure，调用方不得更新元数据。

        删除失败时新 key 上已有一份副本，``data.targetKey`` 指出它的位置。
        """
        src = scope.key_for(old_rel, is_folder=False)
        dst = scope.key_for(new_rel, is_folder=False)
        self.store.copy_object(source_key=src, target_key=dst)
        try:
            self.store.delete_object(key=src)
        except StorageFailure as exc:
            log_event("drive.move.delete_failed", logging.WARNING, key=src, copy=dst, error=exc.msg)
            raise StorageFailure(
                "删除源对象失败，移动未完成",
                {"sourceKey": src, "targetKey": dst, "error": exc.msg},
                key=src,
            ) from exc
        return {"sourceKey": src, "targetKey": dst}

    def move_prefix(self, scope: TenantScope, old_rel: str, new_rel: str) -> Dict[str, Any]:
        """把 ``old_rel/`` 前缀下的所有对象复制到 ``new_rel/`` 并删除原对象。

        全部复制成功才算完成：任一复制失败时不删除任何原对象，抛出 StorageFailure。
        物理上为空的文件夹会在新前缀写入占位对象。
        """
        old_prefix = scope.key_for(old_rel, is_folder=True)
        new_prefix = scope.key_for(new_rel, is_folder=True)
        keys = [obj.key for obj in self.store.list_objects(prefix=old_prefix)]

        copied: List[str] = []
        failed: List[Dict[str, str]] = []
        for key in keys:
            target = new_prefix + key[len(old_prefix):]
            try:
                self.store.copy_object(source_key=key, target_key=target)
                copied.append(target)
            except StorageFailure as exc:
                failed.append({"key": key, "error": exc.msg})
        if failed:
            raise StorageFailure(
                "文件夹复制未全部完成",
                {"sourcePrefix": old_prefix, "targetPrefix": new_prefix, "copied": copied, "failed": failed},
            )

        marker = False
        if not keys:
            marker = self.put_folder_marker(scope, new_rel)

        delete_failed = [{"key": k, "error": e} for k, e in self.store.delete_objects(keys=keys)]
        if delete_failed:
            log_event("drive.move_prefix.delete_failed", logging.WARNING, prefix=old_prefix, count=len(delete_failed))
        return {
            "sourcePrefix": old_prefix,
            "targetPrefix": new_prefix,
            "objectsMoved": len(copied),
            "markerCreated": marker,
            "deleteFailed": delete_failed,
        }

    # ----------------------------
    # 删除
    # ----------------------------
    def delete_file(self, scope: TenantScope, rel_path: str) -> str:
        key = scope.key_for(rel_path, is_folder=False)
        self.store.delete_object(key=key)
        return key

    def delete_prefix(self, scope: TenantScope, rel_path: str) -> Dict[str, Any]:
        """删除前缀下的全部对象（含占位对象），收集逐个失败并在有失败时抛出 StorageFailure。"""
        prefix = scope.key_for(rel_path, is_folder=True)
        keys = [obj.key for obj in self.store.list_objects(prefix=prefix)]
        if prefix not in keys:
            keys.append(prefix)
        failed = self.store.delete_objects(keys=keys)
        if failed:
            raise StorageFailure(
                "文件夹对象删除未全部完成",
                {
                    "prefix": prefix,
                    "deleted": len(keys) - len(failed),
                    "failed": [{"key": k, "error": e} for k, e in failed],
                },
            )
        return {"prefix": prefix, "deleted": len(keys)}

    # ----------------------------
    # 读取
    # ----------------------------
    def presigned_url(self, key: str, *, expires_in: int, filename: Optional[str] = None) -> str:
        return self.store.generate_presigned_url(key=key, expires_in=expires_in, filename=filename)

    def list_scope_objects(self, scope: TenantScope) -> List[BlobObject]:
        return list(self.store.list_objects(prefix=scope.base_folder + "/"))
