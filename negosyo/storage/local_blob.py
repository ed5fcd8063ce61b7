import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from jose import JWTError, jwt

from negosyo.config import settings

UPLOAD_TOKEN_SCOPE = "blob-upload"


class LocalBlobStore:
    """Filesystem blob store for development and tests.

    Keys map directly to paths under the root (``images/1712-ab12cd.jpg``).
    Upload targets point at the API's own files endpoint with a short-lived
    token bound to the key, standing in for an Azure SAS; the endpoint writes
    the PUT body here once. Any key that would resolve outside the root is
    refused.
    """

    def __init__(
        self,
        root_dir: str,
        public_base_url: str,
        *,
        signing_secret: str | None = None,
        url_ttl_seconds: int | None = None,
    ):
        self.root = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = signing_secret or settings.identity_jwt_secret
        self._algorithm = settings.identity_jwt_algorithm
        self._url_ttl_seconds = url_ttl_seconds or settings.blob_upload_url_ttl_seconds
        self.root.mkdir(parents=True, exist_ok=True)

    def upload_target(self, key: str, content_type: str) -> tuple[str, dict[str, str]]:
        return f"{self.resolve_url(key)}?token={self.create_upload_token(key)}", {"Content-Type": content_type}

    def resolve_url(self, key: str) -> str:
        return f"{self.public_base_url}/api/v1/files/{key}"

    def create_upload_token(self, key: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "scope": UPLOAD_TOKEN_SCOPE,
            "key": key,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + timedelta(seconds=self._url_ttl_seconds),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify_upload_token(self, token: str | None, key: str) -> bool:
        """True only for an unexpired token minted for exactly this key."""
        if not token:
            return False
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError:
            return False
        return payload.get("scope") == UPLOAD_TOKEN_SCOPE and payload.get("key") == key

    def put(self, key: str, data: bytes, content_type: str | None = None, *, overwrite: bool = True) -> str:
        """Write ``data`` under ``key``. With ``overwrite=False`` an existing blob raises FileExistsError."""
        path = self._safe_path(key)
        if path is None:
            raise ValueError(f"Invalid storage key: {key}")
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb" if overwrite else "xb") as fh:
            fh.write(data)
        return key

    def get(self, key: str) -> bytes | None:
        path = self._safe_path(key)
        if path is not None and path.is_file():
            return path.read_bytes()
        return None

    def size(self, key: str) -> int | None:
        path = self._safe_path(key)
        if path is not None and path.is_file():
            return path.stat().st_size
        return None

    def exists(self, key: str) -> bool:
        return self.size(key) is not None

    def delete(self, key: str) -> bool:
        path = self._safe_path(key)
        if path is not None and path.is_file():
            path.unlink()
            return True
        return False

    def _safe_path(self, key: str) -> Path | None:
        """Resolve a key and ensure it stays under the store root."""
        if not key or key.startswith("/") or "\\" in key:
            return None
        try:
            root_resolved = self.root.resolve()
            resolved = (self.root / key).resolve()
        except OSError:
            return None
        if root_resolved in resolved.parents:
            return resolved
        return None
