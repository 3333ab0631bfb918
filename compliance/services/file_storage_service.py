from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import httpx

from compliance.config import settings
from compliance.core.errors import StorageFailure


logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


@dataclass(frozen=True)
class StoredObject:
    path: str
    public_url: str


def build_object_path(*, user_id: str, item_id: int, filename: str) -> str:
    safe_name = _UNSAFE_NAME_CHARS.sub('_', filename or 'upload').strip('._') or 'upload'
    safe_user = _UNSAFE_NAME_CHARS.sub('_', str(user_id)) or 'anonymous'
    return f'{safe_user}/{int(item_id)}/{uuid.uuid4().hex}_{safe_name}'


class StorageBackend:
    def upload(self, path: str, content: bytes, content_type: str) -> StoredObject:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalStorageBackend(StorageBackend):
    def __init__(self, root_dir: str, public_base_url: str) -> None:
        self._root = Path(root_dir)
        self._public_base_url = public_base_url.rstrip('/')

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if self._root.resolve() not in target.parents:
            raise StorageFailure(f'Refusing to write outside storage root: {path}')
        return target

    def upload(self, path: str, content: bytes, content_type: str) -> StoredObject:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            raise StorageFailure(f'Failed to store {path}: {exc}') from exc
        return StoredObject(path=path, public_url=f'{self._public_base_url}/{quote(path)}')

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailure(f'Failed to delete {path}: {exc}') from exc


class SupabaseStorageBackend(StorageBackend):
    """Object storage speaking the Supabase storage REST API."""

    def __init__(self, base_url: str, service_key: str, bucket: str, timeout: float = 60.0) -> None:
        if not base_url or not service_key:
            raise StorageFailure('Supabase storage is not configured')
        self._base_url = base_url.rstrip('/')
        self._service_key = service_key
        self._bucket = bucket
        self._timeout = timeout

    def _headers(self, content_type: str | None = None) -> dict[str, str]:
        headers = {
            'Authorization': f'Bearer {self._service_key}',
            'apikey': self._service_key,
        }
        if content_type:
            headers['Content-Type'] = content_type
        return headers

    def public_url(self, path: str) -> str:
        return f'{self._base_url}/storage/v1/object/public/{self._bucket}/{quote(path)}'

    def upload(self, path: str, content: bytes, content_type: str) -> StoredObject:
        url = f'{self._base_url}/storage/v1/object/{self._bucket}/{quote(path)}'
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(url, headers=self._headers(content_type or 'application/octet-stream'), content=content)
        except httpx.HTTPError as exc:
            raise StorageFailure(f'Upload failed for {path}: {exc}') from exc
        if response.status_code >= 300:
            raise StorageFailure(f'Upload failed for {path}: {response.text[:300]}')
        return StoredObject(path=path, public_url=self.public_url(path))

    def delete(self, path: str) -> None:
        url = f'{self._base_url}/storage/v1/object/{self._bucket}'
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request('DELETE', url, headers=self._headers('application/json'), json={'prefixes': [path]})
        except httpx.HTTPError as exc:
            raise StorageFailure(f'Delete failed for {path}: {exc}') from exc
        if response.status_code >= 300 and response.status_code != 404:
            raise StorageFailure(f'Delete failed for {path}: {response.text[:300]}')


def _build_storage_backend() -> StorageBackend:
    if settings.storage_backend == 'supabase':
        return SupabaseStorageBackend(
            settings.supabase_url,
            settings.supabase_service_key,
            settings.storage_bucket,
            timeout=settings.storage_timeout_seconds,
        )
    return LocalStorageBackend(settings.storage_local_dir, settings.storage_public_base_url)


_backend: StorageBackend | None = None


def get_storage_backend() -> StorageBackend:
    global _backend
    if _backend is None:
        _backend = _build_storage_backend()
    return _backend


def set_storage_backend(backend: StorageBackend | None) -> None:
    global _backend
    _backend = backend


def discard_objects(paths: list[str], backend: StorageBackend | None = None) -> None:
    """Remove uploaded objects after a failed submission; failures are logged, the original error wins."""
    target = backend or get_storage_backend()
    for path in paths:
        try:
            target.delete(path)
        except StorageFailure:
            logger.exception('compliance_file_cleanup_failed path=%s', path)
