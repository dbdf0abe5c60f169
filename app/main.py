"""应用入口：按 ``APP_ACTIVE_PACKAGE`` 装配业务包，创建 FastAPI 实例。

启动顺序：日志 → 建表 → 预热对象存储客户端。对象存储配置错误（例如 S3 缺少 bucket）
会在启动阶段直接失败，而不是等到第一次上传。
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.middleware.request_id import HEADER_NAME, RequestIdMiddleware
from app.packages import get_active_package

package = get_active_package()
package.setup_logging()
settings = package.get_settings()
logger = package.logger


@asynccontextmanager
async def lifespan(_: FastAPI):
    package.init_db()
    package.warmup()
    logger.info(
        "SUCCESS - %s running at http://127.0.0.1:%s (package=%s, storage=%s)",
        settings.project_name,
        settings.app_port,
        package.name,
        settings.storage_type,
    )
    yield


app = FastAPI(title=settings.project_name, debug=settings.debug, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[HEADER_NAME],
)
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(HTTPException, package.http_exception_handler)
app.add_exception_handler(RequestValidationError, package.validation_exception_handler)
app.add_exception_handler(Exception, package.generic_exception_handler)


@app.get("/health")
async def health_check() -> dict:
    """探活接口：同时返回当前业务包与存储类型，便于排查部署配置。"""
    return package.create_response(
        "OK",
        {"status": "healthy", "package": package.name, "storage": settings.storage_type},
    )


app.include_router(package.api_router, prefix=settings.api_v1_str)
