"""文件夹链保障：保证某条路径的每一级前缀都存在文件夹条目。

``ensure("A/B/C")`` 会依次检查 ``A``、``A/B``、``A/B/C``，缺失的逐级创建（可选写入占位对象）。
调用是幂等的：再次调用不会产生任何新条目或新对象。
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.packages.drive.core.exceptions import ConflictError
from app.packages.drive.core.logger import log_event
from app.packages.drive.core.tenancy import TenantScope
from app.packages.drive.crud.hierarchy_entry import CRUDHierarchyEntry, hierarchy_entry_crud
from app.packages.drive.services.storage_adapter import BlobStorageAdapter
from app.packages.drive.utils.path_utils import norm_path


class FolderChainCache:
    """单次操作内有效的“已确认存在”前缀集合，键为 ``root|tenant|prefix``。

    每次操作新建一个实例并沿调用链显式传递，不挂在任何长生命周期对象上。
    """

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def __contains__(self, item: str) -> bool:
        return item in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def add(self, item: str) -> None:
        self._seen.add(item)


def iter_prefixes(path: str) -> List[str]:
    """``"A/B/C" -> ["A", "A/B", "A/B/C"]``。"""
    parts = [p for p in norm_path(path).split("/") if p]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


class FolderChainEnsurer:
    def __init__(
        self,
        adapter: BlobStorageAdapter,
        *,
        crud: CRUDHierarchyEntry = hierarchy_entry_crud,
        folder_markers: bool = True,
    ):
        self.adapter = adapter
        self.crud = crud
        self.folder_markers = folder_markers

    def ensure(
        self,
        db: Session,
        scope: TenantScope,
        path: str,
        cache: Optional[FolderChainCache] = None,
    ) -> List[str]:
        """确保 ``path`` 的每一级前缀都是文件夹条目，返回本次新建的路径列表。

        - 空路径（根）直接返回；
        - 某一级前缀被文件占用时抛出 ConflictError；
        - 并发插入导致唯一约束冲突时回滚并重新读取，接受对方创建的文件夹。
        """
        cache = cache if cache is not None else FolderChainCache()
        created: List[str] = []
        for prefix in iter_prefixes(path):
            ck = scope.cache_key(prefix)
            if ck in cache:
                continue
            entry = self.crud.get_by_path(db, scope, prefix)
            if entry is None:
                if self.folder_markers:
                    self.adapter.put_folder_marker(scope, prefix)
                try:
                    self.crud.create_folder(db, scope, prefix, attributes={"op": "autoFolder"})
                    created.append(prefix)
                except IntegrityError:
                    log_event("drive.folder_chain.race", root=scope.root, tenant=scope.tenant, path=prefix)
                    entry = self.crud.get_by_path(db, scope, prefix)
                    if entry is None:
                        raise
            if entry is not None and not entry.is_folder:
                raise ConflictError("路径已被文件占用，无法创建文件夹", {"path": prefix})
            cache.add(ck)
        if created:
            log_event("drive.folder_chain.created", root=scope.root, tenant=scope.tenant, paths=created)
        return created

    def ensure_many(
        self,
        db: Session,
        scope: TenantScope,
        paths: Iterable[str],
        cache: Optional[FolderChainCache] = None,
    ) -> List[str]:
        """对多条路径（通常是一批文件的父目录）逐一保障，共享同一个缓存。"""
        cache = cache if cache is not None else FolderChainCache()
        created: List[str] = []
        for p in sorted({norm_path(x) for x in paths}):
            created.extend(self.ensure(db, scope, p, cache))
        return created
