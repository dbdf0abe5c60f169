"""租户作用域与查询助手。

目标：
- 每个操作都必须携带 `root`（虚拟盘名）与 `tenant`（分区键，如员工号）；
- 在 CRUD 层统一施加“按 root + tenant 隔离”的查询过滤，任何操作不得越界读写；
- 作用域对象显式地沿调用链传递，而不是放在全局上下文里。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Query

from app.packages.drive.core.constants import MAX_ROOT_LENGTH, MAX_TENANT_LENGTH, PATH_SEPARATOR
from app.packages.drive.core.exceptions import ValidationError
from app.packages.drive.utils.path_utils import base_folder, build_key, norm_path


def _check_segment(field: str, value: str, max_length: int) -> str:
    # root 与 tenant 各占物理 key 的一段；含分隔符会让不同分区落到同一前缀下
    if not value:
        raise ValidationError(f"{field} 不能为空")
    if PATH_SEPARATOR in value or value in {".", ".."}:
        raise ValidationError(f"{field} 必须是单个合法的路径段", {field: value})
    if len(value) > max_length:
        raise ValidationError(f"{field} 过长", {field: value})
    return value


@dataclass(frozen=True)
class TenantScope:
    root: str
    tenant: str

    @classmethod
    def of(cls, root: Optional[str], tenant: Optional[str], *, default_root: str = "drive") -> "TenantScope":
        """归一化并校验 root/tenant；租户缺失时抛出 ValidationError。"""
        r = _check_segment("root", norm_path(root) or norm_path(default_root), MAX_ROOT_LENGTH)
        t = _check_segment("tenant", norm_path(tenant), MAX_TENANT_LENGTH)
        return cls(root=r, tenant=t)

    @property
    def base_folder(self) -> str:
        """该作用域在对象存储中的物理前缀：``root/tenant``。"""
        return base_folder(self.root, self.tenant)

    def key_for(self, path: str, *, is_folder: bool) -> str:
        return build_key(self.root, self.tenant, path, is_folder)

    def cache_key(self, path: str) -> str:
        return f"{self.root}|{self.tenant}|{path}"


def apply_tenant_scope(query: Query, model: Any, scope: TenantScope) -> Query:
    """对传入查询按 root + tenant 维度加过滤。"""
    return query.filter(model.root == scope.root).filter(model.tenant == scope.tenant)
