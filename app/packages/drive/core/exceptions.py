"""异常处理模块：定义统一的业务异常与响应格式。

虚拟盘的错误分类：
- ValidationError：路径缺失/非法、文件与路径数量不匹配、缺少租户，任何写入之前拒绝；
- NotFoundError：元数据表中不存在引用的条目，任何写入之前拒绝；
- ConflictError：目标路径已被占用，任何物理写入之前拒绝；
- StorageFailure：对象存储拒绝读/写/列举/复制/删除；
- InconsistentStateError：物理操作已成功而元数据写入失败，不做自动回滚。
"""

from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.packages.drive.core.constants import (
    HTTP_STATUS_BAD_GATEWAY,
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_CONFLICT,
    HTTP_STATUS_INTERNAL_SERVER_ERROR,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_UNPROCESSABLE_ENTITY,
)
from app.packages.drive.core.logger import get_request_id, logger


class AppException(HTTPException):
    """携带统一响应结构的业务异常，方便在全局处理中转换响应体。"""

    def __init__(self, msg: str, code: int = HTTP_STATUS_BAD_REQUEST, data: Any = None) -> None:
        super().__init__(status_code=code, detail=msg)
        self.data = data

    @property
    def msg(self) -> str:
        return str(self.detail)


class ValidationError(AppException):
    def __init__(self, msg: str, data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_BAD_REQUEST, data)


class NotFoundError(AppException):
    def __init__(self, msg: str, data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_NOT_FOUND, data)


class ConflictError(AppException):
    def __init__(self, msg: str, data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_CONFLICT, data)


class StorageFailure(AppException):
    """对象存储操作失败；批量操作时 ``data`` 中携带逐个对象的成功/失败明细。"""

    def __init__(self, msg: str, data: Any = None, *, key: Optional[str] = None) -> None:
        super().__init__(msg, HTTP_STATUS_BAD_GATEWAY, data)
        self.key = key


class InconsistentStateError(AppException):
    """物理变更已完成但元数据变更失败。

    ``data`` 描述已完成的物理结果，调用方应据此重新发起一次纠正性的移动/级联操作。
    """

    def __init__(self, msg: str, data: Any = None) -> None:
        super().__init__(msg, HTTP_STATUS_INTERNAL_SERVER_ERROR, data)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - framework glue
    """将 FastAPI 的 ``HTTPException`` 转换为统一响应格式。"""
    payload = {"msg": exc.detail, "data": getattr(exc, "data", None), "code": exc.status_code}
    return JSONResponse(status_code=exc.status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover - framework glue
    """兜底处理：将未捕获异常转换为标准的 500 响应结构。"""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    payload = {
        "msg": "服务器内部错误",
        "data": {"requestId": get_request_id()},
        "code": HTTP_STATUS_INTERNAL_SERVER_ERROR,
    }
    return JSONResponse(status_code=HTTP_STATUS_INTERNAL_SERVER_ERROR, content=payload)


def _jsonable(obj: Any) -> Any:
    # pydantic v2 的错误上下文里可能带异常对象或 bytes 输入
    if isinstance(obj, Exception):
        return str(obj)
    if isinstance(obj, dict):
        return {key: _jsonable(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(item) for item in obj]
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    return obj


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # pragma: no cover - framework glue
    """请求参数校验失败（包括缺少 tenant）统一返回 422 信封。"""
    payload = {"msg": "请求参数验证失败", "data": _jsonable(exc.errors()), "code": HTTP_STATUS_UNPROCESSABLE_ENTITY}
    return JSONResponse(status_code=HTTP_STATUS_UNPROCESSABLE_ENTITY, content=payload)
