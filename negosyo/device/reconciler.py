"""Drains the device's staged data into the server once connectivity returns.

One pass runs three phases in order, because photos and the interview need
a resolved remote submission id:

1. info: create the draft (or patch the known one) and point at it;
2. photos: upload each staged photo, patch the keys that made it, and keep
   only the failed paths staged for the next reconnect;
3. interview: upload the recording (plus the parallel audio track for
   video) and patch the keys; the server prices the submission from
   them. An upload failure leaves it staged.

An unexpected error stops the pass. Phases that already finished stay
cleared, so a pass may sync only part of the data; the user gets one
summary naming what made it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Protocol

from negosyo.core.exceptions import NotFoundError, UploadError
from negosyo.device.pointer import PendingCreation, Remote
from negosyo.device.staging import (
    StagedInfo,
    StagedInterview,
    StagedPhotos,
    StagingKind,
    StagingStore,
)
from negosyo.models.submission import InterviewKind

logger = logging.getLogger(__name__)

# kind -> (folder, filename, content type)
_INTERVIEW_UPLOADS = {
    InterviewKind.VIDEO: ("videos", "interview.mp4", "video/mp4"),
    InterviewKind.AUDIO: ("audio", "interview.m4a", "audio/m4a"),
}
_PARALLEL_AUDIO_UPLOAD = ("audio", "interview-audio.m4a", "audio/m4a")


class SubmissionRemote(Protocol):
    async def create_submission(self, form: dict[str, Any]) -> str: ...

    async def update_submission(self, submission_id: str, patch: dict[str, Any]) -> dict[str, Any]: ...

    async def upload_file(self, local_path: str, *, folder: str, filename: str, content_type: str) -> str: ...


@dataclass
class SyncReport:
    submission_id: str | None = None
    info_synced: bool = False
    photos_uploaded: int = 0
    photos_failed: int = 0
    interview_synced: InterviewKind | None = None
    interview_failed: bool = False
    cancelled: bool = False
    error: str | None = None
    synced_parts: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not (self.photos_failed or self.interview_failed or self.cancelled or self.error)

    def summary(self) -> str | None:
        """One line for the user, or None when nothing happened worth telling."""
        lines = []
        if self.synced_parts:
            verb = "has" if len(self.synced_parts) == 1 else "have"
            lines.append(f"Your {', '.join(self.synced_parts)} {verb} been uploaded to the server.")
        if self.photos_failed:
            plural = "s" if self.photos_failed != 1 else ""
            lines.append(f"{self.photos_failed} photo{plural} will retry when you're back online.")
        if self.interview_failed:
            lines.append("Your interview will retry when you're back online.")
        return " ".join(lines) or None


class SyncReconciler:
    def __init__(
        self,
        store: StagingStore,
        remote: SubmissionRemote,
        *,
        notifier: Callable[[str, str], Any] | None = None,
    ):
        self.store = store
        self.remote = remote
        self.notifier = notifier
        self._in_flight = False
        self._task: asyncio.Task | None = None
        self._cancel_requested = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run(self) -> SyncReport | None:
        """Run one pass. Returns None, doing nothing, if a pass is already running."""
        if self._in_flight:
            logger.debug("Sync already in flight; ignoring trigger")
            return None
        self._in_flight = True
        self._cancel_requested = False
        report = SyncReport()
        self._task = asyncio.create_task(self._reconcile(report))
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            report.cancelled = True
            logger.info("Sync cancelled; staged data kept for the next reconnect")
        except NotFoundError as exc:
            report.error = str(exc.detail)
            logger.warning("Remote draft disappeared: %s", exc.detail)
            self.store.forget_remote_draft(exc.entity_id)
        except Exception as exc:
            report.error = str(exc)
            logger.exception("Sync pass failed; remaining staged data left for retry")
        finally:
            self._task = None
            self._in_flight = False

        self._notify(report)
        return report

    def cancel(self) -> bool:
        """Cancel the pass in flight (e.g. the user navigated away). Staged data stays."""
        if self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        self._task.cancel()
        return True

    async def _reconcile(self, report: SyncReport) -> None:
        info = self.store.load_staged(StagingKind.INFO)
        photos = self.store.load_staged(StagingKind.PHOTOS)
        interview = self.store.load_staged(StagingKind.INTERVIEW)
        pointer = self.store.get_pointer()
        if info is None and photos is None and interview is None and not isinstance(pointer, PendingCreation):
            return

        submission_id = await self._sync_info(info, report)
        if submission_id is None:
            pointer = self.store.get_pointer()
            submission_id = pointer.submission_id if isinstance(pointer, Remote) else None
        if submission_id is None:
            logger.warning("No submission id available; photos and interview stay staged")
            return
        report.submission_id = submission_id

        # Reloaded: info sync may have bound pending media to the new draft.
        photos = self.store.load_media_for(StagingKind.PHOTOS, submission_id)
        interview = self.store.load_media_for(StagingKind.INTERVIEW, submission_id)
        if photos is not None:
            await self._sync_photos(submission_id, photos, report)
        if interview is not None:
            await self._sync_interview(submission_id, interview, report)

    async def _sync_info(self, info: StagedInfo | None, report: SyncReport) -> str | None:
        pointer = self.store.get_pointer()
        if info is None:
            if not isinstance(pointer, PendingCreation):
                return None
            # Info record expired or was lost, but the pointer still holds the form.
            form = pointer.form
        else:
            form = info.form

        if isinstance(pointer, Remote):
            await self.remote.update_submission(pointer.submission_id, form)
            submission_id = pointer.submission_id
        else:
            submission_id = await self.remote.create_submission(form)
            logger.info("Created submission %s from staged info", submission_id)

        self.store.set_pointer(Remote(submission_id))
        self.store.adopt_pending_media(submission_id)
        self.store.clear_staged(StagingKind.INFO)
        report.info_synced = True
        report.synced_parts.append("business info")
        return submission_id

    async def _sync_photos(self, submission_id: str, staged: StagedPhotos, report: SyncReport) -> None:
        uploaded: list[str] = []
        failed: list[str] = []
        for index, path in enumerate(staged.local_paths):
            try:
                key = await self.remote.upload_file(
                    path, folder="images", filename=f"photo-{index}.jpg", content_type="image/jpeg",
                )
            except UploadError as exc:
                logger.warning("Photo %d failed to upload: %s", index, exc)
                failed.append(path)
                continue
            uploaded.append(key)

        keys = list(staged.already_uploaded_keys) + uploaded
        if uploaded:
            await self.remote.update_submission(submission_id, {"photos": keys})
            plural = "s" if len(uploaded) != 1 else ""
            report.synced_parts.append(f"{len(uploaded)} photo{plural}")

        if failed:
            # Keep the original timestamp so a photo that never uploads still expires.
            self.store.replace_staged(
                replace(staged, local_paths=failed, already_uploaded_keys=keys)
            )
        else:
            self.store.clear_staged(StagingKind.PHOTOS)
        report.photos_uploaded = len(uploaded)
        report.photos_failed = len(failed)

    async def _sync_interview(self, submission_id: str, staged: StagedInterview, report: SyncReport) -> None:
        kind = staged.interview_kind
        folder, filename, content_type = _INTERVIEW_UPLOADS[kind]
        try:
            key = await self.remote.upload_file(
                staged.path, folder=folder, filename=filename, content_type=content_type,
            )
        except UploadError as exc:
            logger.warning("Interview upload failed: %s", exc)
            report.interview_failed = True
            return

        patch: dict[str, Any] = {}
        if kind == InterviewKind.VIDEO:
            patch["video_key"] = key
            if staged.parallel_audio_path:
                folder, filename, content_type = _PARALLEL_AUDIO_UPLOAD
                try:
                    patch["audio_key"] = await self.remote.upload_file(
                        staged.parallel_audio_path, folder=folder, filename=filename, content_type=content_type,
                    )
                except UploadError as exc:
                    # Transcription falls back to the video track.
                    logger.warning("Parallel audio upload failed: %s", exc)
        else:
            patch["audio_key"] = key

        await self.remote.update_submission(submission_id, patch)
        self.store.clear_staged(StagingKind.INTERVIEW)
        report.interview_synced = kind
        report.synced_parts.append(f"{kind.value} interview")

    def _notify(self, report: SyncReport) -> None:
        message = report.summary()
        if message is None or self.notifier is None:
            return
        try:
            self.notifier("Data Synced", message)
        except Exception:
            logger.exception("Sync notifier failed")
