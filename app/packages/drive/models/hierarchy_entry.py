"""层级条目模型：文件夹与文件统一存放在一张表中，是导航的唯一事实来源。

存储规则：
- path：相对 root 的归一化路径，不以 '/' 开头或结尾；根目录本身不入库；
- parent_path：path 去掉最后一段，根级条目为 ''；
- name：path 的最后一段，只随 path 一起重算，从不单独设置；
- storage_key：``root/tenant/path``，文件夹带尾部 '/'；总可由 (root, tenant, path, type) 重算；
- 对于文件：size/mime_type 有意义；文件夹二者均为 NULL。
"""

import uuid
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.packages.drive.core.constants import (
    MAX_NAME_LENGTH,
    MAX_PATH_LENGTH,
    MAX_ROOT_LENGTH,
    MAX_TENANT_LENGTH,
)
from app.packages.drive.core.enums import EntryTypeEnum
from app.packages.drive.models.base import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid.uuid4())


class HierarchyEntry(TimestampMixin, Base):
    __tablename__ = "drive_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    root: Mapped[str] = mapped_column(String(MAX_ROOT_LENGTH), index=True, default="drive")
    tenant: Mapped[str] = mapped_column(String(MAX_TENANT_LENGTH), index=True, nullable=False)
    # 示例："Marketing"、"Marketing/Creatives/logo.png"
    path: Mapped[str] = mapped_column(String(MAX_PATH_LENGTH), index=True, default="")
    parent_path: Mapped[str] = mapped_column(String(MAX_PATH_LENGTH), index=True, default="")
    name: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH))
    type: Mapped[str] = mapped_column(String(32), default=EntryTypeEnum.FILE.value)
    storage_key: Mapped[Optional[str]] = mapped_column(String(2048), index=True, nullable=True)
    size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    attributes: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("root", "tenant", "path", name="uq_drive_entries_root_tenant_path"),
    )

    @property
    def is_folder(self) -> bool:
        return self.type == EntryTypeEnum.FOLDER.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "root": self.root,
            "tenant": self.tenant,
            "path": self.path,
            "parentPath": self.parent_path,
            "name": self.name,
            "type": self.type,
            "storageKey": self.storage_key,
            "size": self.size,
            "mimeType": self.mime_type,
            "attributes": self.attributes,
            **self.timestamps(),
        }
