"""虚拟盘 - 文件/文件夹 操作请求/响应模型。

请求字段沿用前端约定的 camelCase；``tenant`` 为必填，缺失时由 FastAPI 直接返回 422。
"""

from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ResponseEnvelope(BaseModel, Generic[T]):
    """系统统一的响应外层结构。"""

    msg: str
    data: Optional[T] = None
    code: int


class ScopedBody(BaseModel):
    root: Optional[str] = None  # 缺省为 DRIVE_DEFAULT_ROOT
    tenant: str = Field(..., min_length=1)


class FolderCreateBody(ScopedBody):
    path: Optional[str] = ""
    name: str = Field(..., min_length=1)


class RenameBody(ScopedBody):
    oldPath: str = Field(..., min_length=1)
    newName: str = Field(..., min_length=1)


class MoveBody(ScopedBody):
    sourcePath: str = Field(..., min_length=1)
    targetPath: Optional[str] = ""  # 为空表示移动到根目录


DriveListResponse = ResponseEnvelope[Dict[str, Any]]
DriveTreeResponse = ResponseEnvelope[Dict[str, Any]]
DriveMutationResponse = ResponseEnvelope[Any]
