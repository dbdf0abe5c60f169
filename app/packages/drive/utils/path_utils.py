"""Path utilities: normalize relative paths and derive physical storage keys.

These helpers centralize the rules used across drive_service/folder_chain/storage_adapter:
- Relative paths never start or end with '/', root is represented by empty string '';
- Backslashes are treated as separators, repeated separators collapse, '.' segments drop;
- Physical keys are always ``root/tenant/path`` with a trailing '/' for folders,
  and ``build_key`` is the only place that assembles them.
"""

from __future__ import annotations

from typing import Optional

from app.packages.drive.core.constants import MAX_NAME_LENGTH, MAX_PATH_LENGTH, PATH_SEPARATOR
from app.packages.drive.core.exceptions import ValidationError


def norm_path(p: Optional[str]) -> str:
    s = (p or "").strip().replace("\\", PATH_SEPARATOR)
    parts = [seg for seg in s.split(PATH_SEPARATOR) if seg.strip() and seg.strip() != "."]
    return PATH_SEPARATOR.join(seg.strip() for seg in parts)


def parent_of(p: Optional[str]) -> str:
    """``"A/B/C" -> "A/B"``；根级条目返回 ``""``。"""
    clean = norm_path(p)
    if PATH_SEPARATOR not in clean:
        return ""
    return clean.rsplit(PATH_SEPARATOR, 1)[0]


def name_of(p: Optional[str]) -> str:
    """``"A/B/C" -> "C"``。"""
    clean = norm_path(p)
    if not clean:
        return ""
    return clean.rsplit(PATH_SEPARATOR, 1)[-1]


def join_path(base: Optional[str], name: Optional[str]) -> str:
    b = norm_path(base)
    n = norm_path(name)
    if not b:
        return n
    if not n:
        return b
    return f"{b}{PATH_SEPARATOR}{n}"


def is_same_or_descendant(path: str, prefix: str) -> bool:
    """判断 ``path`` 是否等于 ``prefix`` 或位于其子树内（按段比较，不做字符串前缀误判）。"""
    p = norm_path(path)
    pre = norm_path(prefix)
    if not pre:
        return True
    return p == pre or p.startswith(pre + PATH_SEPARATOR)


def replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """把 ``path`` 中的 ``old_prefix`` 部分替换为 ``new_prefix``；不在子树内则原样返回。"""
    p = norm_path(path)
    old = norm_path(old_prefix)
    if p == old:
        return norm_path(new_prefix)
    if p.startswith(old + PATH_SEPARATOR):
        return join_path(new_prefix, p[len(old) + 1 :])
    return p


def ensure_safe_path(p: Optional[str]) -> str:
    """归一化并拒绝包含 ``..`` 段或超长的路径，返回归一化结果。"""
    clean = norm_path(p)
    segments = clean.split(PATH_SEPARATOR)
    if any(seg == ".." for seg in segments):
        raise ValidationError("非法路径：不允许包含 '..'", {"path": p})
    if len(clean) > MAX_PATH_LENGTH or any(len(seg) > MAX_NAME_LENGTH for seg in segments):
        raise ValidationError("路径或名称过长", {"path": p})
    return clean


def build_key(root: Optional[str], tenant: Optional[str], path: Optional[str], is_folder: bool) -> str:
    segments = [norm_path(root)]
    t = norm_path(tenant)
    if t:
        segments.append(t)
    rel = norm_path(path)
    if rel:
        segments.append(rel)
    full = PATH_SEPARATOR.join(seg for seg in segments if seg)
    if is_folder and not full.endswith(PATH_SEPARATOR):
        full += PATH_SEPARATOR
    return full


def base_folder(root: Optional[str], tenant: Optional[str]) -> str:
    return build_key(root, tenant, "", False)


def relative_from_key(base: str, key: Optional[str]) -> str:
    """由物理 key 反推相对路径：剥离 ``base/`` 前缀后归一化。"""
    k = (key or "").replace("\\", PATH_SEPARATOR).lstrip(PATH_SEPARATOR)
    if not k:
        return ""
    prefix = base.replace("\\", PATH_SEPARATOR).rstrip(PATH_SEPARATOR)
    prefix = prefix + PATH_SEPARATOR if prefix else ""
    if prefix and k.startswith(prefix):
        return norm_path(k[len(prefix) :])
    return norm_path(k)
