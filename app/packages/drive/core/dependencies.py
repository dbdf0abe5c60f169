"""依赖注入模块：封装 FastAPI 中复用度高的依赖函数。"""

from collections.abc import Generator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from app.packages.drive.core.config import get_settings
from app.packages.drive.db.session import SessionLocal
from app.packages.drive.services.blob_store import BlobStore, build_blob_store
from app.packages.drive.services.drive_service import DriveService


def get_db() -> Generator[Session, None, None]:
    """生成一个数据库会话，并在请求结束后自动关闭。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_blob_store() -> BlobStore:
    """进程内唯一的对象存储客户端，首次使用时按配置构造。"""
    return build_blob_store(get_settings())


def get_drive_service(store: BlobStore = Depends(get_blob_store)) -> DriveService:
    return DriveService(store, settings=get_settings())
