"""Media upload targets, plus the byte endpoints backing the local filesystem store.

With Azure configured, devices PUT straight to a SAS URL and never hit the
``/files/{key}`` routes; those only serve the local store used in
development and tests.
"""
import asyncio
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from negosyo.core.identity import Identity, current_identity
from negosyo.services import storage_service
from negosyo.storage.local_blob import LocalBlobStore

router = APIRouter(prefix="/files", tags=["files"])

_KEY_PATTERN = re.compile(r"^(images|videos|audio)/\d+-[a-z0-9]{8}\.[a-z0-9]{1,8}$")
_MAX_UPLOAD_BYTES = 512 * 1024 * 1024


class UploadTargetRequest(BaseModel):
    folder: str = Field(..., pattern="^(images|videos|audio)$")
    filename: str = Field(..., min_length=1, max_length=200)
    content_type: str = Field(..., min_length=3, max_length=100)


def _local_store() -> LocalBlobStore:
    store = storage_service.get_storage()
    if not isinstance(store, LocalBlobStore):
        raise HTTPException(status_code=404, detail="Direct file access is not enabled")
    return store


def _check_key(key: str) -> None:
    if not _KEY_PATTERN.match(key):
        raise HTTPException(status_code=400, detail="Invalid storage key")


@router.post("/upload-target")
async def request_upload_target(
    req: UploadTargetRequest,
    identity: Identity = Depends(current_identity),
):
    """One-time upload URL and the storage key the bytes will live under."""
    return storage_service.request_upload_target(req.folder, req.filename, req.content_type).to_dict()


@router.get("/url/{key:path}")
async def resolve_file_url(key: str, identity: Identity = Depends(current_identity)):
    _check_key(key)
    return {"key": key, "url": storage_service.resolve_url(key)}


@router.put("/{key:path}", status_code=201)
async def put_file(key: str, request: Request, token: Optional[str] = None):
    """Accept the bytes for a key handed out by ``/upload-target``, once."""
    _check_key(key)
    store = _local_store()
    if not store.verify_upload_token(token, key):
        raise HTTPException(status_code=403, detail="Upload URL is invalid or expired")
    data = await request.body()
    if len(data) > _MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    try:
        await asyncio.to_thread(store.put, key, data, request.headers.get("content-type"), overwrite=False)
    except FileExistsError:
        raise HTTPException(status_code=409, detail="File already uploaded")
    return {"key": key, "size": len(data)}


@router.get("/{key:path}")
async def get_file(key: str):
    _check_key(key)
    data = await asyncio.to_thread(_local_store().get, key)
    if data is None:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=data, media_type=_media_type(key))


def _media_type(key: str) -> str:
    ext = key.rsplit(".", 1)[-1]
    return {
        "jpg": "image/jpeg",
        "jpeg": "image/jpeg",
        "png": "image/png",
        "mp4": "video/mp4",
        "m4a": "audio/m4a",
    }.get(ext, "application/octet-stream")
