"""
Photo storage: upload validation plus the hosted bucket and an in-memory stand-in.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Dict, List, Optional, Protocol
import logging
import secrets
import string
import time

import httpx
from supabase import Client, StorageException

from models import StoredPhoto

logger = logging.getLogger(__name__)

BUCKET_NAME = "photos"
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
ALLOWED_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")

STORAGE_ERRORS = (StorageException, httpx.HTTPError)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class StorageError(Exception):
    """The storage backend rejected an operation."""


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None


def validate_file(content_type: Optional[str], size: Optional[int]) -> ValidationResult:
    """Check an upload against the size limit and the accepted image types."""
    if size is None or content_type is None:
        return ValidationResult(False, "No file provided")
    if size > MAX_FILE_SIZE:
        return ValidationResult(False, "File size must be less than 5MB")
    if content_type not in ALLOWED_TYPES:
        return ValidationResult(False, "File type not supported. Please use JPEG, PNG, WebP, or GIF")
    return ValidationResult(True)


def generate_file_name(original_name: str, user_id: Optional[str] = None) -> str:
    """Build a collision-resistant name: prefix, millisecond timestamp, random suffix, extension."""
    timestamp = int(time.time() * 1000)
    random_id = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(13))
    extension = "jpg"
    if "." in (original_name or ""):
        extension = original_name.rsplit(".", 1)[1].lower() or "jpg"
    prefix = f"user-{user_id}" if user_id else "photo"
    return f"{prefix}-{timestamp}-{random_id}.{extension}"


def storage_path(file_name: str, user_id: Optional[str] = None) -> str:
    return f"users/{user_id}/{file_name}" if user_id else f"public/{file_name}"


class PhotoStorage(Protocol):
    """Operations the API needs from object storage."""

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        ...

    def public_url(self, path: str) -> str:
        ...

    def delete(self, path: str) -> None:
        ...

    def list_user_photos(self, user_id: str) -> List[StoredPhoto]:
        ...


@dataclass
class InMemoryPhotoStorage:
    """Keeps uploads in process; used when the hosted backend is disabled."""

    base_url: str = "http://localhost:8000/storage"
    bucket: str = BUCKET_NAME
    stored_objects: Dict[str, StoredPhoto] = field(default_factory=dict)
    contents: Dict[str, bytes] = field(default_factory=dict)

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        if path in self.stored_objects:
            raise StorageError("The resource already exists")
        self.contents[path] = data
        self.stored_objects[path] = StoredPhoto(
            name=path.rsplit("/", 1)[-1],
            path=path,
            url=self.public_url(path),
            size=len(data),
            created_at=datetime.now(UTC).isoformat(),
            content_type=content_type,
        )
        return path

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{self.bucket}/{path}"

    def delete(self, path: str) -> None:
        if path not in self.stored_objects:
            raise StorageError(f"Object not found: {path}")
        del self.stored_objects[path]
        self.contents.pop(path, None)

    def list_user_photos(self, user_id: str) -> List[StoredPhoto]:
        prefix = f"users/{user_id}/"
        return [p for path, p in sorted(self.stored_objects.items()) if path.startswith(prefix)]


class SupabasePhotoStorage:
    """Photos kept in a hosted storage bucket with public URLs."""

    def __init__(self, client: Client, bucket: str = BUCKET_NAME):
        self.client = client
        self.bucket = bucket

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self._bucket().upload(
                path,
                data,
                {"content-type": content_type, "cache-control": "3600", "upsert": "false"},
            )
        except STORAGE_ERRORS as e:
            logger.error(f"Upload to {self.bucket}/{path} failed: {e}")
            raise StorageError(str(e)) from e
        return path

    def public_url(self, path: str) -> str:
        return self._bucket().get_public_url(path)

    def delete(self, path: str) -> None:
        try:
            self._bucket().remove([path])
        except STORAGE_ERRORS as e:
            logger.error(f"Delete of {self.bucket}/{path} failed: {e}")
            raise StorageError(str(e)) from e

    def list_user_photos(self, user_id: str) -> List[StoredPhoto]:
        folder = f"users/{user_id}"
        try:
            entries = self._bucket().list(folder, {"limit": 100, "offset": 0})
        except STORAGE_ERRORS as e:
            logger.error(f"Listing {self.bucket}/{folder} failed: {e}")
            raise StorageError(str(e)) from e
        photos = []
        for entry in entries or []:
            path = f"{folder}/{entry['name']}"
            photos.append(StoredPhoto(
                name=entry["name"],
                path=path,
                url=self.public_url(path),
                size=(entry.get("metadata") or {}).get("size", 0),
                created_at=entry.get("created_at") or "",
            ))
        return photos


@dataclass
class UploadResult:
    url: str
    path: str


class PhotoUploader:
    """Validates uploads and forwards them to the configured storage."""

    def __init__(self, storage: PhotoStorage):
        self.storage = storage

    def upload(self, file_name: str, data: bytes, content_type: str, user_id: Optional[str] = None) -> UploadResult:
        validation = validate_file(content_type, len(data))
        if not validation.valid:
            raise ValueError(validation.error)
        path = storage_path(generate_file_name(file_name, user_id), user_id)
        stored = self.storage.upload(path, data, content_type)
        logger.info(f"Photo stored at {stored} ({len(data)} bytes)")
        return UploadResult(url=self.storage.public_url(stored), path=stored)
