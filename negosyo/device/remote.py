"""Async client the device uses to reach the Negosyo API and the blob store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from negosyo.core.exceptions import NotFoundError, UploadError

logger = logging.getLogger(__name__)

# Large interview videos on slow mobile links.
UPLOAD_TIMEOUT_SECONDS = 1200.0


class RemoteError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class NegosyoClient:
    """Submission and upload calls needed by the sync reconciler.

    Pass ``http_client`` to share a client (or a test transport); otherwise
    use it as an async context manager.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        token: str | None = None,
        timeout: float = 30,
        *,
        upload_timeout: float = UPLOAD_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._upload_timeout = upload_timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> NegosyoClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Use 'async with NegosyoClient() as client:'")
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = await self.client.request(
            method, f"{self.base_url}{path}", headers=self._headers(), timeout=self._timeout, **kwargs,
        )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise RemoteError(resp.status_code, str(detail))
        return resp.json()

    # --- Submissions ---

    async def create_submission(self, form: dict[str, Any]) -> str:
        data = await self._request("POST", "/api/v1/submissions", json=form)
        return data["id"]

    async def update_submission(self, submission_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self._request("PATCH", f"/api/v1/submissions/{submission_id}", json=patch)
        except RemoteError as exc:
            if exc.status_code == 404:
                raise NotFoundError("Submission", submission_id) from exc
            raise

    # --- Uploads ---

    async def request_upload_target(self, folder: str, filename: str, content_type: str) -> dict[str, Any]:
        return await self._request(
            "POST", "/api/v1/files/upload-target",
            json={"folder": folder, "filename": filename, "content_type": content_type},
        )

    async def upload_file(self, local_path: str, *, folder: str, filename: str, content_type: str) -> str:
        """Upload one local file and return its storage key. Raises UploadError."""
        try:
            data = Path(local_path).read_bytes()
        except OSError as exc:
            raise UploadError(f"Cannot read {local_path}: {exc}", path=local_path) from exc

        try:
            target = await self.request_upload_target(folder, filename, content_type)
        except (httpx.HTTPError, RemoteError) as exc:
            raise UploadError(f"Could not get an upload target: {exc}", path=local_path) from exc

        headers = dict(target.get("headers") or {"Content-Type": content_type})
        try:
            resp = await self.client.put(
                target["upload_url"], content=data, headers=headers, timeout=self._upload_timeout,
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload failed: {exc}", path=local_path) from exc
        if not 200 <= resp.status_code < 300:
            raise UploadError(f"Upload rejected with HTTP {resp.status_code}", path=local_path)

        logger.debug("Uploaded %s -> %s (%d bytes)", local_path, target["storage_key"], len(data))
        return target["storage_key"]
