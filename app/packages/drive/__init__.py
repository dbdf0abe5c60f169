"""虚拟盘业务包：基于对象存储 + 元数据表的层级文件系统。"""

from app.packages.types import AppPackage

from .api.v1 import api_router
from .core.config import get_settings
from .core.dependencies import get_blob_store
from .core.exceptions import (
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .core.logger import logger, setup_logging
from .core.responses import create_response
from .db.init_db import init_db

package = AppPackage(
    name="drive",
    api_router=api_router,
    get_settings=get_settings,
    setup_logging=setup_logging,
    logger=logger,
    init_db=init_db,
    warmup=get_blob_store,
    create_response=create_response,
    http_exception_handler=http_exception_handler,
    generic_exception_handler=generic_exception_handler,
    validation_exception_handler=validation_exception_handler,
)

__all__ = ["package", "api_router", "get_settings"]
