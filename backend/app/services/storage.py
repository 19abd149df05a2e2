from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.errors import StorageError

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class StoredObject:
    path: str
    url: str
    size: int


class StorageGateway(Protocol):
    provider: str

    async def store(self, data: bytes, name: str, container: str, content_type: str | None = None) -> StoredObject: ...

    async def fetch(self, path: str, container: str) -> bytes | None: ...

    async def delete(self, path: str, container: str) -> bool: ...

    async def temporary_url(self, path: str, container: str, ttl_minutes: int) -> str | None: ...

    async def exists(self, path: str, container: str) -> bool: ...


def _object_key(name: str, container: str) -> str:
    cleaned = name.strip("/")
    if not cleaned or ".." in cleaned.split("/"):
        raise StorageError(f"Invalid object name: {name!r}", retryable=False)
    return f"{container.strip('/')}/{cleaned}"


def _check_container(path: str, container: str) -> str:
    if not path.startswith(f"{container.strip('/')}/") or ".." in path.split("/"):
        raise StorageError(f"Path {path!r} is outside container {container!r}", retryable=False)
    return path


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "UnknownError"))


class R2StorageGateway:
    """S3-compatible object storage (Cloudflare R2) accessed through boto3."""

    provider = "r2"

    def __init__(
        self,
        bucket_name: str | None = settings.R2_BUCKET_NAME,
        client=None,
        public_base_url: str | None = settings.R2_PUBLIC_BASE_URL,
    ) -> None:
        if not bucket_name:
            raise ValueError("R2_BUCKET_NAME is required.")
        self.bucket_name = bucket_name
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _build_r2_client()
        return self._client

    def _public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return f"{_get_endpoint_url().rstrip('/')}/{self.bucket_name}/{quote(key)}"

    async def store(self, data: bytes, name: str, container: str, content_type: str | None = None) -> StoredObject:
        key = _object_key(name, container)
        params = {"Bucket": self.bucket_name, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        try:
            await asyncio.to_thread(self.client.put_object, **params)
        except ClientError as exc:
            error_code = _error_code(exc)
            if error_code == "AccessDenied":
                raise StorageError(
                    "Storage access denied. Check R2 token permissions and bucket name.",
                    retryable=False,
                ) from exc
            raise StorageError(f"Upload to storage failed: {error_code}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Upload to storage failed: {exc.__class__.__name__}") from exc

        return StoredObject(path=key, url=self._public_url(key), size=len(data))

    async def fetch(self, path: str, container: str) -> bytes | None:
        key = _check_container(path, container)
        try:
            response = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket_name, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_OBJECT_CODES:
                return None
            raise StorageError(f"Read from storage failed: {_error_code(exc)}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Read from storage failed: {exc.__class__.__name__}") from exc

    async def delete(self, path: str, container: str) -> bool:
        key = _check_container(path, container)
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("storage delete failed key=%s error=%s", key, exc)
            return False
        return True

    async def exists(self, path: str, container: str) -> bool:
        key = _check_container(path, container)
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as exc:
            if _error_code(exc) in _MISSING_OBJECT_CODES:
                return False
            raise StorageError(f"Storage lookup failed: {_error_code(exc)}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Storage lookup failed: {exc.__class__.__name__}") from exc

    async def temporary_url(self, path: str, container: str, ttl_minutes: int) -> str | None:
        if not await self.exists(path, container):
            return None
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                ClientMethod="get_object",
                Params={"Bucket": self.bucket_name, "Key": path},
                ExpiresIn=ttl_minutes * 60,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not sign storage URL: {exc.__class__.__name__}") from exc


class LocalStorageGateway:
    """Filesystem-backed storage with HMAC-signed temporary links served by the API."""

    provider = "local"

    def __init__(
        self,
        root: str | Path = settings.LOCAL_STORAGE_ROOT,
        base_url: str = settings.BACKEND_URL,
        url_secret: str = settings.STORAGE_URL_SECRET,
    ) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self._secret = url_secret.encode()

    def _file_path(self, key: str) -> Path:
        return self.root.joinpath(*key.split("/"))

    def _public_url(self, key: str) -> str:
        return f"{self.base_url}/files/{quote(key)}"

    def sign(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, key: str, expires: int, signature: str, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        if expires < current:
            return False
        return hmac.compare_digest(self.sign(key, expires), signature)

    def read_signed(self, key: str) -> Path | None:
        file_path = self._file_path(key)
        return file_path if file_path.is_file() else None

    async def store(self, data: bytes, name: str, container: str, content_type: str | None = None) -> StoredObject:
        key = _object_key(name, container)
        file_path = self._file_path(key)

        def _write() -> None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(f"Write to local storage failed: {exc.strerror or exc}") from exc
        return StoredObject(path=key, url=self._public_url(key), size=len(data))

    async def fetch(self, path: str, container: str) -> bytes | None:
        file_path = self._file_path(_check_container(path, container))
        try:
            return await asyncio.to_thread(file_path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Read from local storage failed: {exc.strerror or exc}") from exc

    async def delete(self, path: str, container: str) -> bool:
        file_path = self._file_path(_check_container(path, container))
        try:
            await asyncio.to_thread(file_path.unlink, missing_ok=True)
        except OSError as exc:
            logger.warning("storage delete failed path=%s error=%s", path, exc)
            return False
        return True

    async def exists(self, path: str, container: str) -> bool:
        file_path = self._file_path(_check_container(path, container))
        return await asyncio.to_thread(file_path.is_file)

    async def temporary_url(self, path: str, container: str, ttl_minutes: int) -> str | None:
        if not await self.exists(path, container):
            return None
        expires = int(time.time()) + ttl_minutes * 60
        signature = self.sign(path, expires)
        return f"{self._public_url(path)}?expires={expires}&signature={signature}"


def _get_endpoint_url() -> str:
    if settings.R2_ENDPOINT_URL:
        return settings.R2_ENDPOINT_URL
    if not settings.R2_ACCOUNT_ID:
        raise ValueError("R2_ACCOUNT_ID is required when R2_ENDPOINT_URL is not set.")
    return f"https://{settings.R2_ACCOUNT_ID}.r2.cloudflarestorage.com"


def _build_r2_client():
    if not settings.R2_ACCESS_KEY_ID or not settings.R2_SECRET_ACCESS_KEY:
        raise ValueError("R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY are required.")

    return boto3.client(
        "s3",
        endpoint_url=_get_endpoint_url(),
        aws_access_key_id=settings.R2_ACCESS_KEY_ID,
        aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
        region_name=settings.R2_REGION,
        config=Config(signature_version="s3v4"),
    )


def build_storage_gateway(provider: str = settings.STORAGE_PROVIDER) -> StorageGateway:
    if provider == "r2":
        return R2StorageGateway()
    if provider == "local":
        return LocalStorageGateway()
    raise ValueError(f"Unknown STORAGE_PROVIDER: {provider}")
