"""Interview transcription against a Whisper-compatible HTTP endpoint.

Outcomes are recorded on the submission rather than raised: a file over the
size limit (or an HTTP 413) is ``skipped``, any other problem is ``failed``
with a reason, and success stores the transcript as ``complete``.
"""

import asyncio
import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.config import settings
from negosyo.core.exceptions import TranscriptionError
from negosyo.models.submission import InterviewKind, TranscriptionStatus
from negosyo.services import storage_service
from negosyo.services.submission_service import get_submission_model, record_transcription

logger = logging.getLogger(__name__)

_FILENAMES = {InterviewKind.VIDEO: "interview.mp4", InterviewKind.AUDIO: "interview.m4a"}


def _too_large_message(kind: InterviewKind, size_mb: float | None = None) -> str:
    size = f" ({size_mb:.0f}MB)" if size_mb is not None else ""
    if kind == InterviewKind.VIDEO:
        return (
            f"Video file too large{size}. Try recording a shorter video "
            "or use audio-only interview for automatic transcription."
        )
    return f"Audio file too large{size}. Try recording a shorter interview."


async def transcribe_bytes(
    data: bytes,
    kind: InterviewKind,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> str:
    """Send media to the transcription endpoint. Raises TranscriptionError on any failure."""
    if not settings.transcription_api_key:
        raise TranscriptionError("not_configured", "Transcription service not configured")

    size_mb = len(data) / (1024 * 1024)
    if size_mb > settings.transcription_max_file_mb:
        raise TranscriptionError("too_large", _too_large_message(kind, size_mb))

    files = {"file": (_FILENAMES[kind], data)}
    form = {
        "model": settings.transcription_model,
        "language": settings.transcription_language,
        "response_format": "text",
    }
    headers = {"Authorization": f"Bearer {settings.transcription_api_key}"}
    try:
        if http_client is not None:
            response = await http_client.post(
                settings.transcription_api_url, files=files, data=form, headers=headers,
                timeout=settings.transcription_timeout_seconds,
            )
        else:
            async with httpx.AsyncClient(timeout=settings.transcription_timeout_seconds) as client:
                response = await client.post(settings.transcription_api_url, files=files, data=form, headers=headers)
    except httpx.HTTPError as exc:
        raise TranscriptionError("service_error", f"Transcription request failed: {exc}") from exc

    if response.status_code == 413:
        raise TranscriptionError("too_large", _too_large_message(kind))
    if not 200 <= response.status_code < 300:
        raise TranscriptionError("service_error", f"Transcription error: {response.status_code}")
    return response.text.strip()


async def transcribe_submission(
    db: AsyncSession,
    submission_id: str,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> TranscriptionStatus | None:
    """Transcribe the submission's interview, preferring the audio track, and record the outcome."""
    submission = await get_submission_model(db, submission_id, refresh=True)
    if submission.audio_key:
        key, kind = submission.audio_key, InterviewKind.AUDIO
    elif submission.video_key:
        key, kind = submission.video_key, InterviewKind.VIDEO
    else:
        logger.info("Submission %s has no interview media; nothing to transcribe", submission_id)
        return None

    try:
        store = storage_service.get_storage()
        # Blob calls are blocking (Azure SDK or disk); keep them off the event loop.
        size = await asyncio.to_thread(store.size, key)
        if size is None:
            raise TranscriptionError("service_error", "Could not retrieve media file")
        size_mb = size / (1024 * 1024)
        if size_mb > settings.transcription_max_file_mb:
            raise TranscriptionError("too_large", _too_large_message(kind, size_mb))
        data = await asyncio.to_thread(store.get, key)
        if data is None:
            raise TranscriptionError("service_error", "Could not retrieve media file")
        transcript = await transcribe_bytes(data, kind, http_client=http_client)
    except TranscriptionError as exc:
        status = TranscriptionStatus.SKIPPED if exc.kind == "too_large" else TranscriptionStatus.FAILED
        logger.warning("Transcription %s for submission %s: %s", status.value, submission_id, exc.reason)
        await record_transcription(db, submission_id, status, error=exc.reason)
        await db.commit()
        return status

    await record_transcription(db, submission_id, TranscriptionStatus.COMPLETE, transcript=transcript)
    await db.commit()
    logger.info("Transcribed submission %s (%d chars)", submission_id, len(transcript))
    return TranscriptionStatus.COMPLETE


async def handle_transcription_event(
    db: AsyncSession,
    event_id: str,
    payload: dict,
    http_client: httpx.AsyncClient | None = None,
) -> None:
    """Outbox handler. Soft failures are already recorded on the submission, so they count as delivered."""
    await transcribe_submission(db, payload["submission_id"], http_client=http_client)
