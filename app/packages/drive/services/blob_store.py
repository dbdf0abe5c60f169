"""对象存储抽象与实现：统一封装 S3 与本地文件系统的扁平 key 操作。

对象存储没有目录概念，这里只暴露 put/copy/delete/按前缀列举/预签名 五类操作；
层级语义由元数据表负责。实例在进程内构造一次，并显式注入到需要它的组件中。
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.packages.drive.core.config import Settings
from app.packages.drive.core.constants import DELETE_BATCH_SIZE
from app.packages.drive.core.exceptions import StorageFailure, ValidationError
from app.packages.drive.core.logger import logger


# ------------------------------------------
# 公共数据结构
# ------------------------------------------

@dataclass
class BlobObject:
    key: str
    size: int
    last_modified: Optional[datetime] = None


class BlobStore:
    """对象存储接口。实现方在失败时抛出 ``StorageFailure``。"""

    def put_object(self, *, key: str, body: bytes, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    def copy_object(self, *, source_key: str, target_key: str) -> None:
        raise NotImplementedError

    def delete_object(self, *, key: str) -> None:
        raise NotImplementedError

    def delete_objects(self, *, keys: List[str]) -> List[Tuple[str, str]]:
        """批量删除，返回失败的 ``(key, 错误信息)`` 列表；默认逐个删除。"""
        failed: List[Tuple[str, str]] = []
        for key in keys:
            try:
                self.delete_object(key=key)
            except StorageFailure as exc:
                failed.append((key, exc.msg))
        return failed

    def list_objects(self, *, prefix: str) -> Iterator[BlobObject]:
        """按前缀递归列举所有对象（实现方负责分页）。"""
        raise NotImplementedError

    def generate_presigned_url(self, *, key: str, expires_in: int, filename: Optional[str] = None) -> str:
        raise NotImplementedError


# ------------------------------------------
# 本地文件系统实现
# ------------------------------------------

# 以 '/' 结尾的 key（文件夹占位对象）在本地落成目录内的隐藏文件
_LOCAL_MARKER = ".folder"


class LocalBlobStore(BlobStore):
    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - 极端情况下可能失败
            raise StorageFailure(f"无法创建本地根目录: {exc}") from exc

    # 统一的安全路径拼接，防止路径遍历
    def _resolve(self, key: str) -> Path:
        rel = (key or "").strip().lstrip("/")
        if not rel:
            raise ValidationError("对象 key 不能为空")
        if rel.endswith("/"):
            rel = rel + _LOCAL_MARKER
        candidate = (self.root / rel).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as exc:
            raise ValidationError("非法路径: 越权访问") from exc
        return candidate

    def _key_of(self, file_path: Path) -> str:
        rel = file_path.relative_to(self.root).as_posix()
        if file_path.name == _LOCAL_MARKER:
            return rel[: -len(_LOCAL_MARKER)]
        return rel

    def put_object(self, *, key: str, body: bytes, content_type: Optional[str] = None) -> None:
        target = self._resolve(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                f.write(body or b"")
        except OSError as exc:
            logger.exception("Local put failed: %s", key)
            raise StorageFailure("写入对象失败", {"key": key, "error": str(exc)}, key=key) from exc

    def copy_object(self, *, source_key: str, target_key: str) -> None:
        src = self._resolve(source_key)
        dst = self._resolve(target_key)
        if not src.is_file():
            raise StorageFailure("源对象不存在", {"key": source_key}, key=source_key)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
        except OSError as exc:
            logger.exception("Local copy failed: %s -> %s", source_key, target_key)
            raise StorageFailure("复制对象失败", {"key": source_key, "error": str(exc)}, key=source_key) from exc

    def delete_object(self, *, key: str) -> None:
        target = self._resolve(key)
        try:
            # 与 S3 一致：删除不存在的对象视为成功
            if target.is_file():
                target.unlink()
        except OSError as exc:
            logger.exception("Local delete failed: %s", key)
            raise StorageFailure("删除对象失败", {"key": key, "error": str(exc)}, key=key) from exc

    def list_objects(self, *, prefix: str) -> Iterator[BlobObject]:
        pre = (prefix or "").lstrip("/")
        # 从前缀中最深的完整目录开始遍历，再按字符串前缀过滤
        start_rel = pre if pre.endswith("/") else (pre.rsplit("/", 1)[0] + "/" if "/" in pre else "")
        start = (self.root / start_rel).resolve() if start_rel else self.root
        if not start.is_dir():
            return
        try:
            for dirpath, _dirnames, filenames in os.walk(start):
                for filename in sorted(filenames):
                    file_path = Path(dirpath) / filename
                    key = self._key_of(file_path)
                    if not key.startswith(pre):
                        continue
                    stat = file_path.stat()
                    yield BlobObject(
                        key=key,
                        size=int(stat.st_size),
                        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
        except PermissionError as exc:
            raise StorageFailure("无法读取目录内容：权限不足", {"prefix": prefix}) from exc

    def generate_presigned_url(self, *, key: str, expires_in: int, filename: Optional[str] = None) -> str:
        # 本地存储无签名能力，返回文件 URI，仅供开发环境使用
        target = self._resolve(key)
        if not target.is_file():
            raise StorageFailure("对象不存在", {"key": key}, key=key)
        return target.as_uri()


# ------------------------------------------
# S3 实现（boto3）
# ------------------------------------------


class S3BlobStore(BlobStore):
    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        page_size: int = 1000,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.page_size = page_size
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            endpoint_url=endpoint_url,
            config=BotoConfig(signature_version="s3v4"),
        )

    def put_object(self, *, key: str, body: bytes, content_type: Optional[str] = None) -> None:
        params = {"Bucket": self.bucket, "Key": key, "Body": body or b""}
        if content_type:
            params["ContentType"] = content_type
        try:
            self._client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            logger.exception("S3 put failed: %s", key)
            raise StorageFailure("写入对象失败", {"key": key, "error": str(exc)}, key=key) from exc

    def copy_object(self, *, source_key: str, target_key: str) -> None:
        try:
            self._client.copy_object(
                Bucket=self.bucket,
                Key=target_key,
                CopySource={"Bucket": self.bucket, "Key": source_key},
            )
        except (ClientError, BotoCoreError) as exc:
            logger.exception("S3 copy failed: %s -> %s", source_key, target_key)
            raise StorageFailure("复制对象失败", {"key": source_key, "error": str(exc)}, key=source_key) from exc

    def delete_object(self, *, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            logger.exception("S3 delete failed: %s", key)
            raise StorageFailure("删除对象失败", {"key": key, "error": str(exc)}, key=key) from exc

    def delete_objects(self, *, keys: List[str]) -> List[Tuple[str, str]]:
        failed: List[Tuple[str, str]] = []
        # 批量删除（分批防止一次过多）
        for i in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[i : i + DELETE_BATCH_SIZE]
            if not batch:
                continue
            try:
                resp = self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                logger.exception("S3 batch delete failed (%s keys)", len(batch))
                failed.extend((k, str(exc)) for k in batch)
                continue
            for err in resp.get("Errors", []) or []:
                failed.append((err.get("Key", ""), err.get("Message") or err.get("Code") or "unknown"))
        return failed

    def list_objects(self, *, prefix: str) -> Iterator[BlobObject]:
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(
                Bucket=self.bucket,
                Prefix=prefix,
                PaginationConfig={"PageSize": self.page_size},
            ):
                for obj in page.get("Contents", []) or []:
                    key = obj.get("Key")
                    if not key:
                        continue
                    yield BlobObject(
                        key=key,
                        size=int(obj.get("Size") or 0),
                        last_modified=obj.get("LastModified"),
                    )
        except (ClientError, BotoCoreError) as exc:
            logger.exception("S3 list failed: %s", prefix)
            raise StorageFailure("列举对象失败", {"prefix": prefix, "error": str(exc)}) from exc

    def generate_presigned_url(self, *, key: str, expires_in: int, filename: Optional[str] = None) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if filename:
            params["ResponseContentDisposition"] = f"attachment; filename=\"{filename}\""
        try:
            return self._client.generate_presigned_url("get_object", Params=params, ExpiresIn=expires_in)
        except (ClientError, BotoCoreError) as exc:
            raise StorageFailure(f"预签名 URL 生成失败: {exc}", {"key": key}, key=key) from exc


def build_blob_store(settings: Settings) -> BlobStore:
    t = (settings.storage_type or "").upper()
    if t == "LOCAL":
        return LocalBlobStore(settings.local_storage_directory)
    if t == "S3":
        if not (settings.s3_bucket and settings.s3_region):
            raise ValidationError("S3 配置不完整（S3_BUCKET/S3_REGION）")
        return S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            endpoint_url=settings.s3_endpoint_url,
            page_size=settings.drive_list_page_size,
        )
    raise ValidationError("不支持的存储类型")
