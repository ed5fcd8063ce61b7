"""Blob store access: storage keys, presigned upload targets, media reads."""
import secrets
import string
import time
from dataclasses import asdict, dataclass, field

from negosyo.config import settings
from negosyo.core.exceptions import ValidationError

UPLOAD_FOLDERS = ("images", "videos", "audio")
_KEY_ALPHABET = string.ascii_lowercase + string.digits

# Singleton storage instance
_storage = None


@dataclass(frozen=True)
class UploadTarget:
    upload_url: str
    storage_key: str
    headers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def get_storage():
    """Get or create the global storage instance.

    Uses Azure Blob Storage when AZURE_STORAGE_CONNECTION_STRING is set,
    otherwise falls back to the local filesystem store.
    """
    global _storage
    if _storage is None:
        if settings.azure_storage_connection_string:
            from negosyo.storage.azure_blob import AzureBlobStore
            _storage = AzureBlobStore(
                connection_string=settings.azure_storage_connection_string,
                container_name=settings.azure_storage_container,
                url_ttl_seconds=settings.blob_upload_url_ttl_seconds,
            )
        else:
            from negosyo.storage.local_blob import LocalBlobStore
            _storage = LocalBlobStore(
                root_dir=settings.local_blob_path,
                public_base_url=settings.public_base_url,
                url_ttl_seconds=settings.blob_upload_url_ttl_seconds,
            )
    return _storage


def reset_storage(store=None) -> None:
    """Swap the singleton; tests point it at a temporary directory."""
    global _storage
    _storage = store


def generate_storage_key(folder: str, filename: str, *, now_ms: int | None = None) -> str:
    """``{folder}/{epoch_ms}-{random}.{ext}``, keeping the caller's file extension."""
    if folder not in UPLOAD_FOLDERS:
        raise ValidationError(f"folder must be one of: {', '.join(UPLOAD_FOLDERS)}")
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
    if not ext.isalnum() or len(ext) > 8:
        raise ValidationError(f"Unsupported file extension: {ext}")
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(8))
    return f"{folder}/{stamp}-{suffix}.{ext}"


def request_upload_target(folder: str, filename: str, content_type: str) -> UploadTarget:
    key = generate_storage_key(folder, filename)
    upload_url, headers = get_storage().upload_target(key, content_type)
    return UploadTarget(upload_url=upload_url, storage_key=key, headers=headers)


def resolve_url(key: str) -> str:
    return get_storage().resolve_url(key)
