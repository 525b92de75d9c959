import logging
import os
import shutil
from pathlib import Path as FsPath
from typing import Iterable, List, Optional, Protocol, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.orm import Session

from processflow.core.errors import StorageCleanupFailure

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_blob_releases"
_ROLLBACK_KEY = "rollback_blob_releases"

# delete_objects accepts at most this many keys per request
_S3_DELETE_BATCH = 1000


class BlobStoreNotConfigured(RuntimeError):
    pass


class BlobStore(Protocol):
    def remove(self, keys: Sequence[str]) -> None:
        ...

    def copy(self, source: str, destination: str) -> None:
        ...


class LocalBlobStore:
    """Directory-backed store for development and tests; keys are paths relative to the root."""

    def __init__(self, root: Optional[str] = None):
        self.root = FsPath(root or os.getenv("PROCESSFLOW_STORAGE_ROOT", "./storage")).resolve()

    def _resolve(self, key: str) -> FsPath:
        target = (self.root / str(key).lstrip("/")).resolve()
        if self.root not in target.parents:
            raise StorageCleanupFailure(f"Blob key escapes storage root: {key}")
        return target

    def remove(self, keys: Sequence[str]) -> None:
        failed = []
        for key in keys:
            try:
                self._resolve(key).unlink(missing_ok=True)
            except (OSError, StorageCleanupFailure):
                failed.append(key)
        if failed:
            raise StorageCleanupFailure(f"Failed to remove blobs: {', '.join(failed)}")

    def copy(self, source: str, destination: str) -> None:
        src = self._resolve(source)
        dst = self._resolve(destination)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)
        except OSError as exc:
            raise StorageCleanupFailure(f"Failed to copy blob {source}") from exc


def _create_s3_client():
    return boto3.session.Session().client(
        "s3",
        endpoint_url=os.getenv("PROCESSFLOW_S3_ENDPOINT") or None,
        region_name=os.getenv("PROCESSFLOW_S3_REGION") or None,
        aws_access_key_id=os.getenv("PROCESSFLOW_S3_ACCESS_KEY_ID") or None,
        aws_secret_access_key=os.getenv("PROCESSFLOW_S3_SECRET_ACCESS_KEY") or None,
        config=Config(signature_version="s3v4"),
    )


class S3BlobStore:
    """Object-storage backend (S3 or any S3-compatible endpoint such as R2 or MinIO)."""

    def __init__(self, bucket: str, client=None):
        if not str(bucket or "").strip():
            raise BlobStoreNotConfigured("PROCESSFLOW_S3_BUCKET is not set")
        self.bucket = str(bucket).strip()
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _create_s3_client()
        return self._client

    @staticmethod
    def _object_key(key: str) -> str:
        return str(key).lstrip("/")

    def remove(self, keys: Sequence[str]) -> None:
        object_keys = list(dict.fromkeys(self._object_key(k) for k in keys if k))
        failed: List[str] = []

        for start in range(0, len(object_keys), _S3_DELETE_BATCH):
            batch = object_keys[start:start + _S3_DELETE_BATCH]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as exc:
                raise StorageCleanupFailure(f"Failed to remove blobs: {', '.join(batch)}") from exc
            failed.extend(error.get("Key", "?") for error in response.get("Errors", []))

        if failed:
            raise StorageCleanupFailure(f"Failed to remove blobs: {', '.join(failed)}")

    def copy(self, source: str, destination: str) -> None:
        try:
            self.client.copy_object(
                Bucket=self.bucket,
                Key=self._object_key(destination),
                CopySource={"Bucket": self.bucket, "Key": self._object_key(source)},
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageCleanupFailure(f"Failed to copy blob {source}") from exc


def _backend_kind() -> str:
    kind = str(os.getenv("PROCESSFLOW_BLOB_BACKEND") or "local").strip().lower()
    if kind not in ("local", "s3"):
        raise BlobStoreNotConfigured(f"Unsupported blob backend: {kind}")
    return kind


def build_blob_store() -> BlobStore:
    if _backend_kind() == "s3":
        return S3BlobStore(os.getenv("PROCESSFLOW_S3_BUCKET", ""))
    return LocalBlobStore()


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = build_blob_store()
    return _blob_store


def set_blob_store(store: Optional[BlobStore]) -> None:
    global _blob_store
    _blob_store = store


def is_custom_icon(icon: Optional[str]) -> bool:
    """Only user uploads are ours to delete; catalog icons are shared."""
    if not icon:
        return False
    return ("uploads/" in icon and "icons/" in icon) or "step-icons/custom" in icon


def _queue(db: Session, info_key: str, keys: Iterable[Optional[str]]) -> None:
    queued: List[str] = db.info.setdefault(info_key, [])
    for key in keys:
        if key and key not in queued:
            queued.append(key)


def queue_release(db: Session, keys: Iterable[Optional[str]]) -> None:
    """Blobs to remove once the transaction commits."""
    _queue(db, _PENDING_KEY, keys)


def queue_rollback_release(db: Session, keys: Iterable[Optional[str]]) -> None:
    """Blobs written during the transaction; removed again if it rolls back."""
    _queue(db, _ROLLBACK_KEY, keys)


def _remove_logged(keys: List[str], store: Optional[BlobStore], message: str) -> List[str]:
    store = store or get_blob_store()
    try:
        store.remove(keys)
    except Exception:
        logger.exception("Blob cleanup failed", extra={"blob_keys": keys})
        return []

    logger.info(message, extra={"blob_keys": keys})
    return keys


def discard_pending(db: Session, store: Optional[BlobStore] = None) -> List[str]:
    """
    Forget the commit queue after a rollback and remove the blobs the
    rolled-back transaction had written. Storage failures are logged and swallowed.
    """
    db.info.pop(_PENDING_KEY, None)
    written = db.info.pop(_ROLLBACK_KEY, [])
    if not written:
        return []
    return _remove_logged(written, store, "Removed blobs of rolled back transaction")


def release_pending(db: Session, store: Optional[BlobStore] = None) -> List[str]:
    """
    Remove every blob queued on this session. Call only after commit.
    Storage failures are logged and swallowed.
    """
    db.info.pop(_ROLLBACK_KEY, None)
    keys = db.info.pop(_PENDING_KEY, [])
    if not keys:
        return []
    return _remove_logged(keys, store, "Released blobs")
