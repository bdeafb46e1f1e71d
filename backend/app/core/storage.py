"""Universal storage module supporting multiple backends.

Supports: local filesystem, S3, R2, MinIO, and other S3-compatible storage.
Every operation either succeeds or raises StorageError.
"""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".m3u8": "application/x-mpegURL",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".ts": "video/MP2T",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def guess_content_type(filename: str) -> str:
    """Map a file name to the MIME type stored with the object."""
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), DEFAULT_CONTENT_TYPE)


class StorageError(Exception):
    """Raised when a storage operation fails."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.message = message
        self.key = key
        super().__init__(message)


@dataclass
class StorageResult:
    """Result of a successful upload."""
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio, r2
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False


def _cdn_url(cdn_domain: str, key: str) -> str:
    if cdn_domain.startswith(("http://", "https://")):
        return f"{cdn_domain.rstrip('/')}/{key}"
    return f"https://{cdn_domain}/{key}"


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def upload(self, file_path: str, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        """Upload a file to storage, overwriting any existing object."""

    @abstractmethod
    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        """Upload a file object to storage."""

    @abstractmethod
    def download(self, key: str, destination: str) -> None:
        """Download an object to a local file."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing object is not an error."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if an object exists."""

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Get the public URL for an object."""

    @abstractmethod
    def presign_upload(self, key: str, content_type: str, expires_in: int) -> str:
        """Get a time-limited URL a client can PUT the object to."""

    @abstractmethod
    def list_files(self, prefix: str = "") -> list[str]:
        """List object keys under a prefix."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._root = self.base_path.resolve()
        self.cdn_domain = config.cdn_domain
        self.cdn_enabled = config.cdn_enabled

    def _get_full_path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise StorageError(f"Key escapes the storage root: {key}", key=key)
        return path

    def upload(self, file_path: str, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        dest_path = self._get_full_path(key)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, dest_path)
        except OSError as e:
            raise StorageError(f"Failed to upload {key}: {e}", key=key) from e
        return StorageResult(key=key, url=self.get_url(key), file_size=dest_path.stat().st_size)

    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        dest_path = self._get_full_path(key)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with open(dest_path, "wb") as f:
                shutil.copyfileobj(fileobj, f)
        except OSError as e:
            raise StorageError(f"Failed to upload {key}: {e}", key=key) from e
        return StorageResult(key=key, url=self.get_url(key), file_size=dest_path.stat().st_size)

    def download(self, key: str, destination: str) -> None:
        src_path = self._get_full_path(key)
        if not src_path.is_file():
            raise StorageError(f"Object not found: {key}", key=key)
        try:
            shutil.copyfile(src_path, destination)
        except OSError as e:
            raise StorageError(f"Failed to download {key}: {e}", key=key) from e

    def delete(self, key: str) -> None:
        try:
            self._get_full_path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}", key=key) from e

    def exists(self, key: str) -> bool:
        return self._get_full_path(key).is_file()

    def get_url(self, key: str) -> str:
        if self.cdn_enabled and self.cdn_domain:
            return _cdn_url(self.cdn_domain, key)
        return self._get_full_path(key).absolute().as_uri()

    def presign_upload(self, key: str, content_type: str, expires_in: int) -> str:
        # Nothing to sign on a local disk; callers write straight to the path.
        return self._get_full_path(key).absolute().as_uri()

    def list_files(self, prefix: str = "") -> list[str]:
        if not self.base_path.exists():
            return []
        files = []
        for path in self.base_path.rglob("*"):
            if path.is_file():
                rel_key = path.relative_to(self.base_path).as_posix()
                if rel_key.startswith(prefix):
                    files.append(rel_key)
        return sorted(files)


class S3Storage(StorageBackend):
    """S3/R2/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None

    def _get_client(self):
        """Get or create the boto3 S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "auto",
                "aws_access_key_id": self.config.access_key,
                "aws_secret_access_key": self.config.secret_key,
            }

            # R2, MinIO and other S3-compatible endpoints
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
                if not self.config.use_ssl:
                    client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)
        return self._client

    def upload(self, file_path: str, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        try:
            with open(file_path, "rb") as f:
                return self.upload_fileobj(f, key, content_type)
        except OSError as e:
            raise StorageError(f"Failed to read {file_path}: {e}", key=key) from e

    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        fileobj.seek(0, 2)
        file_size = fileobj.tell()
        fileobj.seek(0)
        try:
            response = self._get_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=fileobj,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key}: {e}", key=key) from e

        return StorageResult(
            key=key,
            url=self.get_url(key),
            file_size=file_size,
            etag=response.get("ETag", "").strip('"'),
        )

    def download(self, key: str, destination: str) -> None:
        try:
            self._get_client().download_file(self.config.bucket, key, destination)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to download {key}: {e}", key=key) from e

    def delete(self, key: str) -> None:
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {key}: {e}", key=key) from e

    def exists(self, key: str) -> bool:
        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Failed to stat {key}: {e}", key=key) from e

    def get_url(self, key: str) -> str:
        if self.config.cdn_enabled and self.config.cdn_domain:
            return _cdn_url(self.config.cdn_domain, key)
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    def presign_upload(self, key: str, content_type: str, expires_in: int) -> str:
        try:
            return self._get_client().generate_presigned_url(
                ClientMethod="put_object",
                Params={
                    "Bucket": self.config.bucket,
                    "Key": key,
                    "ContentType": content_type,
                },
                ExpiresIn=expires_in,
                HttpMethod="PUT",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to presign {key}: {e}", key=key) from e

    def list_files(self, prefix: str = "") -> list[str]:
        try:
            paginator = self._get_client().get_paginator("list_objects_v2")
            files = []
            for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    files.append(obj["Key"])
            return files
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list {prefix}: {e}", key=prefix) from e


class Storage:
    """Universal storage interface.

    Automatically selects the appropriate backend based on configuration.
    """

    _instance: Optional["Storage"] = None

    def __init__(self, config: Optional[StorageConfig] = None):
        """Initialize storage with configuration.

        Args:
            config: Storage configuration (uses settings if not provided)
        """
        if config is None:
            config = StorageConfig(
                backend=settings.STORAGE_BACKEND,
                bucket=settings.STORAGE_BUCKET,
                region=settings.STORAGE_REGION,
                access_key=settings.STORAGE_ACCESS_KEY,
                secret_key=settings.STORAGE_SECRET_KEY,
                endpoint_url=settings.STORAGE_ENDPOINT_URL,
                use_ssl=settings.STORAGE_USE_SSL,
                local_path=settings.LOCAL_STORAGE_PATH,
                cdn_domain=settings.CDN_DOMAIN,
                cdn_enabled=settings.CDN_ENABLED,
            )

        self.config = config
        self._backend = self._create_backend(config)

    def _create_backend(self, config: StorageConfig) -> StorageBackend:
        backend_type = config.backend.lower()

        if backend_type == "local":
            return LocalStorage(config)
        elif backend_type in ("s3", "minio", "aws", "r2"):
            return S3Storage(config)
        else:
            raise ValueError(f"Unsupported storage backend: {backend_type}")

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def upload(self, file_path: str, key: str, content_type: Optional[str] = None) -> StorageResult:
        """Upload a local file; the content type defaults to one inferred from the key."""
        return self._backend.upload(file_path, key, content_type or guess_content_type(key))

    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: Optional[str] = None) -> StorageResult:
        return self._backend.upload_fileobj(fileobj, key, content_type or guess_content_type(key))

    def upload_directory(
        self,
        local_dir: str,
        key_prefix: str,
        defer: Iterable[str] = (),
    ) -> list[StorageResult]:
        """Upload every regular file directly under a directory.

        Files are uploaded in name order, except that names listed in
        ``defer`` go last so that an index file only becomes visible once
        everything it references is in place.

        Args:
            local_dir: Directory to upload (not recursed)
            key_prefix: Key prefix; each file lands at ``key_prefix/<name>``
            defer: File names to upload after all others

        Returns:
            Results in upload order

        Raises:
            StorageError: On the first file that fails to upload
        """
        deferred = set(defer)
        files = sorted(p for p in Path(local_dir).iterdir() if p.is_file())
        ordered = [p for p in files if p.name not in deferred] + [p for p in files if p.name in deferred]

        prefix = key_prefix.rstrip("/")
        results = []
        for path in ordered:
            key = f"{prefix}/{path.name}"
            results.append(self.upload(str(path), key, guess_content_type(path.name)))
        logger.info(f"Uploaded {len(results)} files to {prefix}/")
        return results

    def download(self, key: str, destination: str) -> None:
        self._backend.download(key, destination)

    def delete(self, key: str) -> None:
        self._backend.delete(key)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a prefix.

        Args:
            prefix: Key prefix; an empty prefix deletes nothing

        Returns:
            Number of objects deleted
        """
        if not prefix:
            return 0
        keys = self._backend.list_files(prefix)
        for key in keys:
            self._backend.delete(key)
        return len(keys)

    def exists(self, key: str) -> bool:
        return self._backend.exists(key)

    def get_url(self, key: str) -> str:
        return self._backend.get_url(key)

    def presign(self, key: str, content_type: str, expires_in: Optional[int] = None) -> str:
        """Get a presigned PUT URL for a direct client upload."""
        return self._backend.presign_upload(
            key,
            content_type,
            expires_in or settings.PRESIGN_EXPIRE_SECONDS,
        )

    def list_files(self, prefix: str = "") -> list[str]:
        return self._backend.list_files(prefix)


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()


class StorageService:
    """Async storage wrapper running blocking backend calls in a thread."""

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    async def upload(self, file_path: str, key: str, content_type: Optional[str] = None) -> StorageResult:
        return await asyncio.to_thread(self.storage.upload, file_path, key, content_type)

    async def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: Optional[str] = None) -> StorageResult:
        return await asyncio.to_thread(self.storage.upload_fileobj, fileobj, key, content_type)

    async def upload_directory(
        self,
        local_dir: str,
        key_prefix: str,
        defer: Iterable[str] = (),
    ) -> list[StorageResult]:
        return await asyncio.to_thread(self.storage.upload_directory, local_dir, key_prefix, tuple(defer))

    async def download(self, key: str, destination: str) -> None:
        await asyncio.to_thread(self.storage.download, key, destination)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.storage.delete, key)

    async def delete_prefix(self, prefix: str) -> int:
        return await asyncio.to_thread(self.storage.delete_prefix, prefix)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self.storage.exists, key)

    async def list_files(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self.storage.list_files, prefix)

    def get_url(self, key: str) -> str:
        return self.storage.get_url(key)

    def presign(self, key: str, content_type: str, expires_in: Optional[int] = None) -> str:
        return self.storage.presign(key, content_type, expires_in)
