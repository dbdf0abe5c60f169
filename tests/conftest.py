"""测试夹具：为 pytest 提供数据库、内存对象存储与客户端的共享配置。"""

import os
import tempfile
from typing import Generator

_TMP_DIR = tempfile.mkdtemp(prefix="vdrive_tests_")
TEST_DB_PATH = os.path.join(_TMP_DIR, "test.db")
TEST_DATABASE_URL = f"sqlite:///{TEST_DB_PATH}"

# 必须在导入应用之前写入，get_settings() 会缓存首次读取的结果
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("STORAGE_TYPE", "LOCAL")
os.environ.setdefault("LOCAL_STORAGE_ROOT", os.path.join(_TMP_DIR, "storage"))
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_DIR, "log"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from app.main import app  # noqa: E402
from app.packages.drive.core.config import get_settings  # noqa: E402
from app.packages.drive.core.dependencies import get_blob_store, get_db  # noqa: E402
from app.packages.drive.db import session as db_session  # noqa: E402
from app.packages.drive.db.init_db import init_db  # noqa: E402
from app.packages.drive.models.base import Base  # noqa: E402
from app.packages.drive.models.hierarchy_entry import HierarchyEntry  # noqa: E402
from app.packages.drive.services.drive_service import DriveService  # noqa: E402
from fakes import FakeBlobStore  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_database() -> Generator[None, None, None]:
    """创建隔离的 SQLite 测试数据库，并在会话结束后清理。"""
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)

    engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db_session.engine = engine
    db_session.SessionLocal = TestingSessionLocal

    Base.metadata.create_all(bind=engine)
    init_db()
    yield

    engine.dispose()
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)


@pytest.fixture(autouse=True)
def clean_entries() -> Generator[None, None, None]:
    """每个用例结束后清空条目表，保证用例之间互不影响。"""
    yield
    with db_session.SessionLocal() as s:
        s.query(HierarchyEntry).delete()
        s.commit()


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """提供给测试用例使用的数据库会话。"""
    session = db_session.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture()
def settings():
    return get_settings()


@pytest.fixture()
def service(blob_store, settings) -> DriveService:
    return DriveService(blob_store, settings=settings)


@pytest.fixture()
def client(blob_store):
    """构建 FastAPI TestClient，并注入测试专用的数据库与对象存储依赖。"""
    def override_get_db() -> Generator[Session, None, None]:
        session = db_session.SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
