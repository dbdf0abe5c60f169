"""虚拟盘路由：列表/目录树/新建/上传/重命名/移动/删除/访问链接/漂移检查。

路由层只负责参数解析与文件读取，业务规则全部在 DriveService 中执行。
上传接口需要 ``await`` 读取文件内容，随后把同步的服务调用放入线程池，避免阻塞事件循环。
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.packages.drive.api.v1.schemas.drive import (
    DriveListResponse,
    DriveMutationResponse,
    DriveTreeResponse,
    FolderCreateBody,
    MoveBody,
    RenameBody,
)
from app.packages.drive.core.dependencies import get_blob_store, get_db, get_drive_service
from app.packages.drive.core.enums import DeleteKindEnum, SortFieldEnum, SortOrderEnum
from app.packages.drive.services import sync_service
from app.packages.drive.services.blob_store import BlobStore
from app.packages.drive.services.drive_service import DriveService
from app.packages.drive.services.storage_adapter import IncomingFile

router = APIRouter(prefix="/drive", tags=["drive"])


async def _read_files(files: List[UploadFile]) -> List[IncomingFile]:
    items: List[IncomingFile] = []
    for up in files:
        content = await up.read()
        items.append(IncomingFile(filename=up.filename or "", content=content, content_type=up.content_type))
    return items


# ----------------------------
# 查询
# ----------------------------
@router.get("/list", response_model=DriveListResponse)
def list_items(
    tenant: str = Query(..., min_length=1),
    root: Optional[str] = Query(None),
    path: Optional[str] = Query(""),
    sort_by: SortFieldEnum = Query(SortFieldEnum.NAME, alias="sortBy"),
    order: SortOrderEnum = Query(SortOrderEnum.ASC),
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.list_items(db, root=root, tenant=tenant, path=path, sort_by=sort_by.value, order=order.value)


@router.get("/tree", response_model=DriveTreeResponse)
def get_tree(
    tenant: str = Query(..., min_length=1),
    root: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.tree(db, root=root, tenant=tenant)


@router.get("/file-url", response_model=DriveMutationResponse)
def get_file_url(
    tenant: str = Query(..., min_length=1),
    path: str = Query(..., min_length=1),
    root: Optional[str] = Query(None),
    expires_in: Optional[int] = Query(None, alias="expiresIn"),
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.presigned_url(db, root=root, tenant=tenant, path=path, expires_in=expires_in)


@router.get("/drift", response_model=DriveMutationResponse)
def get_drift(
    tenant: str = Query(..., min_length=1),
    root: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    """只读对比存储与元数据，不做任何修复。"""
    return sync_service.drift_report(db, store=store, root=root, tenant=tenant)


# ----------------------------
# 新建 / 上传
# ----------------------------
@router.post("/folder", response_model=DriveMutationResponse)
def create_folder(
    body: FolderCreateBody,
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.create_folder(db, root=body.root, tenant=body.tenant, path=body.path, name=body.name)


@router.post("/upload", response_model=DriveMutationResponse)
async def upload_one(
    tenant: str = Query(..., min_length=1),
    root: Optional[str] = Query(None),
    path: Optional[str] = Query(""),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    items = await _read_files([file])
    return await run_in_threadpool(
        service.upload_one, db, root=root, tenant=tenant, path=path, file=items[0]
    )


@router.post("/upload/multiple", response_model=DriveMutationResponse)
async def upload_multiple(
    tenant: str = Query(..., min_length=1),
    root: Optional[str] = Query(None),
    path: Optional[str] = Query(""),
    files: List[UploadFile] = File(...),
    paths: Optional[List[str]] = Form(None),
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    items = await _read_files(files)
    return await run_in_threadpool(
        service.upload_multiple, db, root=root, tenant=tenant, path=path, files=items, paths=paths
    )


@router.post("/upload/folder", response_model=DriveMutationResponse)
async def upload_folder(
    tenant: str = Query(..., min_length=1),
    root: Optional[str] = Query(None),
    path: Optional[str] = Query(""),
    files: List[UploadFile] = File(...),
    paths: Optional[List[str]] = Form(None),
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    items = await _read_files(files)
    return await run_in_threadpool(
        service.upload_folder, db, root=root, tenant=tenant, path=path, files=items, paths=paths
    )


# ----------------------------
# 重命名 / 移动 / 删除
# ----------------------------
@router.patch("/rename", response_model=DriveMutationResponse)
def rename(
    body: RenameBody,
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.rename(db, root=body.root, tenant=body.tenant, old_path=body.oldPath, new_name=body.newName)


@router.patch("/move-file", response_model=DriveMutationResponse)
def move_file(
    body: MoveBody,
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.move_file(
        db, root=body.root, tenant=body.tenant, source_path=body.sourcePath, target_path=body.targetPath
    )


@router.patch("/move-folder", response_model=DriveMutationResponse)
def move_folder(
    body: MoveBody,
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.move_folder(
        db, root=body.root, tenant=body.tenant, source_path=body.sourcePath, target_path=body.targetPath
    )


@router.delete("", response_model=DriveMutationResponse)
def delete_entry(
    tenant: str = Query(..., min_length=1),
    path: str = Query(..., min_length=1),
    kind: DeleteKindEnum = Query(...),
    root: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    service: DriveService = Depends(get_drive_service),
):
    return service.delete(db, root=root, tenant=tenant, path=path, kind=kind.value)
