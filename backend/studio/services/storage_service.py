"""Artifact storage backends and the provider selector.

Backends are registered once at startup, in an order that doubles as the
fallback priority. ``StorageSelector.select`` tries the configured default
first, then every other backend in registration order, and uses the first
one whose availability probe passes.
"""

import asyncio
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from studio.config import Settings
from studio.exceptions import NoStorageProviderAvailableError, StudioError, UploadFailedError
from studio.schemas.storage import UploadOptions, UploadResult

logger = logging.getLogger(__name__)


def build_storage_key(filename: str) -> str:
    """``generated/{timestamp_ms}-{filename}`` with unsafe characters replaced."""
    safe_name = re.sub(r"[^A-Za-z0-9._-]", "_", filename) or "artifact"
    return f"generated/{int(time.time() * 1000)}-{safe_name}"


class StorageBackend(ABC):
    name: str

    @abstractmethod
    async def is_available(self) -> bool:
        """Probe readiness. Must be repeatable and free of side effects."""

    @abstractmethod
    async def upload(self, data: bytes, filename: str, options: UploadOptions) -> UploadResult: ...

    @abstractmethod
    async def download(self, storage_key: str) -> bytes: ...

    @abstractmethod
    def get_public_url(self, storage_key: str) -> str: ...


class LocalStorageService(StorageBackend):
    """Local file storage for development."""

    name = "local"

    def __init__(self, base_path: str, public_base_url: str = "http://localhost:8000") -> None:
        self.base_path = Path(base_path)
        self.public_base_url = public_base_url.rstrip("/")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Local storage path {self.base_path} is not usable: {e}")

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = (self.base_path / storage_key).resolve()
        if not full_path.is_relative_to(self.base_path.resolve()):
            raise ValueError(f"Storage key escapes the storage root: {storage_key}")
        return full_path

    async def is_available(self) -> bool:
        return self.base_path.is_dir() and os.access(self.base_path, os.W_OK)

    async def upload(self, data: bytes, filename: str, options: UploadOptions) -> UploadResult:
        storage_key = build_storage_key(filename)
        try:
            full_path = self._get_full_path(storage_key)
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as e:
            raise UploadFailedError(f"Local write failed: {e}")
        return UploadResult(
            public_url=self.get_public_url(storage_key),
            path=storage_key,
            size=len(data),
            provider=self.name,
            provider_metadata={"content_type": options.content_type},
        )

    async def download(self, storage_key: str) -> bytes:
        return self._get_full_path(storage_key).read_bytes()

    def get_public_url(self, storage_key: str) -> str:
        return f"{self.public_base_url}/api/storage/files/{storage_key}"

    def get_file_path(self, storage_key: str) -> Path:
        """Get the actual file path for serving."""
        return self._get_full_path(storage_key)


class GCSStorageService(StorageBackend):
    """Google Cloud Storage backend. The client is created on first use."""

    name = "gcs"

    def __init__(self, bucket_name: str, project_id: str = "") -> None:
        self.bucket_name = bucket_name
        self.project_id = project_id
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            if self.project_id:
                self._client = storage.Client(project=self.project_id)
            else:
                self._client = storage.Client()
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    async def is_available(self) -> bool:
        if not self.bucket_name:
            return False
        try:
            return await asyncio.to_thread(self.bucket.exists)
        except (gcs_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            logger.info(f"GCS bucket {self.bucket_name} unavailable: {e}")
            return False

    async def upload(self, data: bytes, filename: str, options: UploadOptions) -> UploadResult:
        storage_key = build_storage_key(filename)
        blob = self.bucket.blob(storage_key)
        blob.cache_control = f"public, max-age={options.cache_control}"
        if options.metadata:
            blob.metadata = options.metadata
        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=options.content_type)
        except (gcs_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise UploadFailedError(f"GCS upload failed: {e}")
        return UploadResult(
            public_url=self.get_public_url(storage_key),
            path=storage_key,
            size=len(data),
            provider=self.name,
            provider_metadata={"bucket": self.bucket_name},
        )

    async def download(self, storage_key: str) -> bytes:
        return await asyncio.to_thread(self.bucket.blob(storage_key).download_as_bytes)

    def get_public_url(self, storage_key: str) -> str:
        """Get the public URL for a stored file."""
        return f"https://storage.googleapis.com/{self.bucket_name}/{storage_key}"


class SupabaseStorageService(StorageBackend):
    """Supabase Storage through its REST API."""

    name = "supabase"

    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self._client = client
        self.timeout = timeout

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.service_key}", "apikey": self.service_key}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.url}/storage/v1/{path}"
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def is_available(self) -> bool:
        if not (self.url and self.service_key):
            return False
        try:
            response = await self._request("GET", f"bucket/{self.bucket}", headers=self._headers)
        except httpx.TransportError as e:
            logger.info(f"Supabase storage unreachable: {type(e).__name__}")
            return False
        return response.status_code == 200

    async def upload(self, data: bytes, filename: str, options: UploadOptions) -> UploadResult:
        storage_key = build_storage_key(filename)
        headers = {
            **self._headers,
            "Content-Type": options.content_type,
            "cache-control": f"max-age={options.cache_control}",
            "x-upsert": "false",
        }
        try:
            response = await self._request(
                "POST", f"object/{self.bucket}/{storage_key}", headers=headers, content=data
            )
        except httpx.TransportError as e:
            raise UploadFailedError(f"Supabase upload failed: {type(e).__name__}")
        if response.status_code not in (200, 201):
            logger.error(f"Supabase upload error: {response.status_code} {response.text[:300]}")
            raise UploadFailedError(f"Supabase upload returned HTTP {response.status_code}")
        return UploadResult(
            public_url=self.get_public_url(storage_key),
            path=storage_key,
            size=len(data),
            provider=self.name,
            provider_metadata={"bucket": self.bucket},
        )

    async def download(self, storage_key: str) -> bytes:
        response = await self._request("GET", f"object/authenticated/{self.bucket}/{storage_key}", headers=self._headers)
        response.raise_for_status()
        return response.content

    def get_public_url(self, storage_key: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{storage_key}"


class StorageSelector:
    """Registry of storage backends. Read-only once frozen at the end of startup."""

    def __init__(self) -> None:
        self._backends: dict[str, StorageBackend] = {}
        self._default: str | None = None
        self._frozen = False

    @property
    def default(self) -> str | None:
        return self._default

    def names(self) -> list[str]:
        return list(self._backends)

    def get(self, name: str) -> StorageBackend:
        try:
            return self._backends[name]
        except KeyError:
            raise ValueError(f"Storage provider not registered: {name}")

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("Storage registry is frozen; register providers at startup")

    def register(self, backend: StorageBackend) -> None:
        """Register a backend. The first one registered becomes the default."""
        self._check_mutable()
        if backend.name in self._backends:
            raise ValueError(f"Storage provider already registered: {backend.name}")
        self._backends[backend.name] = backend
        if self._default is None:
            self._default = backend.name

    def set_default(self, name: str) -> None:
        self._check_mutable()
        if name not in self._backends:
            raise ValueError(f"Storage provider not registered: {name}")
        self._default = name

    def freeze(self) -> None:
        self._frozen = True

    async def select(self) -> StorageBackend:
        if self._default is not None:
            default = self._backends[self._default]
            if await default.is_available():
                return default
            logger.warning(f"Default storage provider {self._default} unavailable, falling back")

        for name, backend in self._backends.items():
            if name == self._default:
                continue
            if await backend.is_available():
                logger.info(f"Using fallback storage provider {name}")
                return backend
        raise NoStorageProviderAvailableError()

    async def upload(
        self,
        data: bytes,
        filename: str,
        options: UploadOptions | None = None,
    ) -> UploadResult:
        backend = await self.select()
        try:
            return await backend.upload(data, filename, options or UploadOptions())
        except StudioError:
            raise
        except (OSError, ValueError, httpx.HTTPError) as e:
            raise UploadFailedError(f"{backend.name} upload failed: {e}")


def build_storage_selector(settings: Settings, client: httpx.AsyncClient | None = None) -> StorageSelector:
    factories = {
        "local": lambda: LocalStorageService(settings.local_storage_path, settings.public_base_url),
        "gcs": lambda: GCSStorageService(settings.gcs_bucket_name, settings.gcs_project_id),
        "supabase": lambda: SupabaseStorageService(
            settings.supabase_url, settings.supabase_service_key, settings.supabase_bucket, client
        ),
    }
    selector = StorageSelector()
    for name in settings.storage_provider_order:
        if name not in factories:
            raise ValueError(f"Unknown storage provider in configuration: {name}")
        selector.register(factories[name]())

    if settings.default_storage_provider in selector.names():
        selector.set_default(settings.default_storage_provider)
    else:
        logger.warning(
            f"Default storage provider {settings.default_storage_provider} is not registered; "
            f"using {selector.default}"
        )
    selector.freeze()
    return selector
