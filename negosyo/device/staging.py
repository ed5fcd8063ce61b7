"""Device-local staging of step data that has not reached the server yet.

Three independent record kinds are kept (business info, photos, interview),
one value per kind, last write wins. Because the keys are per kind and not
per draft, starting a second draft on the same device overwrites whatever
the first one had staged. Records older than ``ttl_seconds`` are discarded
on read.

Photo and interview records carry ``draft_ref``: the remote draft they were
staged for, or None while that draft has not been created. The reconciler
only uploads media whose reference matches the current pointer, so media
never follows the user into a different draft.

Writes from ``stage_*`` are debounced on the running event loop so a burst
of form edits becomes one persisted write. Reads see the pending value
immediately; ``flush()`` forces pending writes out. The current-submission
pointer is never debounced.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Protocol, Union

from negosyo.device.pointer import (
    NoActiveDraft,
    PendingCreation,
    Remote,
    SubmissionPointer,
    pointer_from_json,
    pointer_to_json,
    remote_id,
)
from negosyo.models.submission import InterviewKind

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5
DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60
POINTER_KEY = "current_submission"


class StagingKind(str, enum.Enum):
    INFO = "pending_info"
    PHOTOS = "pending_photos"
    INTERVIEW = "pending_interview"


@dataclass(frozen=True)
class StagedInfo:
    form: dict[str, Any]
    saved_at: float
    kind = StagingKind.INFO


@dataclass(frozen=True)
class StagedPhotos:
    local_paths: list[str]
    already_uploaded_keys: list[str] = field(default_factory=list)
    saved_at: float = 0.0
    draft_ref: str | None = None
    kind = StagingKind.PHOTOS


@dataclass(frozen=True)
class StagedInterview:
    path: str
    interview_kind: InterviewKind
    parallel_audio_path: str | None = None
    saved_at: float = 0.0
    draft_ref: str | None = None
    kind = StagingKind.INTERVIEW


StagedRecord = Union[StagedInfo, StagedPhotos, StagedInterview]
MediaRecord = Union[StagedPhotos, StagedInterview]
MEDIA_KINDS = (StagingKind.PHOTOS, StagingKind.INTERVIEW)


def _record_to_json(record: StagedRecord) -> dict[str, Any]:
    data = asdict(record)
    if isinstance(record, StagedInterview):
        data["interview_kind"] = record.interview_kind.value
    return data


def _record_from_json(kind: StagingKind, data: dict[str, Any]) -> StagedRecord:
    saved_at = float(data.get("saved_at") or 0)
    if kind == StagingKind.INFO:
        return StagedInfo(form=dict(data.get("form") or {}), saved_at=saved_at)
    if kind == StagingKind.PHOTOS:
        return StagedPhotos(
            local_paths=list(data.get("local_paths") or []),
            already_uploaded_keys=list(data.get("already_uploaded_keys") or []),
            saved_at=saved_at,
            draft_ref=data.get("draft_ref"),
        )
    return StagedInterview(
        path=data["path"],
        interview_kind=InterviewKind(data["interview_kind"]),
        parallel_audio_path=data.get("parallel_audio_path"),
        saved_at=saved_at,
        draft_ref=data.get("draft_ref"),
    )


class KeyValueStore(Protocol):
    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process store for tests; counts persisted writes."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.writes = 0

    def get(self, key: str) -> dict[str, Any] | None:
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        self.data[key] = json.dumps(value)
        self.writes += 1

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """One JSON file per key in a directory on the device."""

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning("Discarding unreadable staged file %s", path)
            path.unlink(missing_ok=True)
            return None

    def set(self, key: str, value: dict[str, Any]) -> None:
        # Write-then-rename so a crash never leaves half a record behind.
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class StagingStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        clock: Callable[[], float] = time.time,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ):
        self.kv = kv
        self.clock = clock
        self.debounce_seconds = debounce_seconds
        self.ttl_seconds = ttl_seconds
        self._pending: dict[StagingKind, StagedRecord] = {}
        self._timers: dict[StagingKind, asyncio.TimerHandle] = {}

    # -- writes ------------------------------------------------------------

    def stage_info(self, form: dict[str, Any]) -> StagedInfo:
        """Stage business info. With no remote draft yet, the pointer becomes PendingCreation."""
        record = StagedInfo(form=dict(form), saved_at=self.clock())
        self._schedule(record)
        return record

    def stage_photos(self, local_paths: list[str], already_uploaded_keys: list[str] | None = None) -> StagedPhotos:
        self._require_active_draft()
        record = StagedPhotos(
            local_paths=list(local_paths),
            already_uploaded_keys=list(already_uploaded_keys or []),
            saved_at=self.clock(),
            draft_ref=remote_id(self.get_pointer()),
        )
        self._schedule(record)
        return record

    def stage_interview(
        self,
        path: str,
        kind: InterviewKind | str,
        parallel_audio_path: str | None = None,
    ) -> StagedInterview:
        self._require_active_draft()
        interview_kind = InterviewKind(kind)
        if parallel_audio_path and interview_kind != InterviewKind.VIDEO:
            raise ValueError("A parallel audio track only accompanies a video interview")
        record = StagedInterview(
            path=path,
            interview_kind=interview_kind,
            parallel_audio_path=parallel_audio_path,
            saved_at=self.clock(),
            draft_ref=remote_id(self.get_pointer()),
        )
        self._schedule(record)
        return record

    def replace_staged(self, record: StagedRecord) -> None:
        """Persist a record now, bypassing the debounce (used by the reconciler)."""
        self._cancel_timer(record.kind)
        self._pending.pop(record.kind, None)
        self.kv.set(record.kind.value, _record_to_json(record))

    def flush(self) -> None:
        for kind in list(self._pending):
            self._write_pending(kind)

    def _require_active_draft(self) -> None:
        if StagingKind.INFO in self._pending:
            return
        if isinstance(self.get_pointer(), NoActiveDraft):
            raise ValueError("Stage business info before photos or an interview")

    def _schedule(self, record: StagedRecord) -> None:
        kind = record.kind
        self._pending[kind] = record
        self._cancel_timer(kind)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_pending(kind)
            return
        self._timers[kind] = loop.call_later(self.debounce_seconds, self._write_pending, kind)

    def _cancel_timer(self, kind: StagingKind) -> None:
        timer = self._timers.pop(kind, None)
        if timer is not None:
            timer.cancel()

    def _write_pending(self, kind: StagingKind) -> None:
        self._cancel_timer(kind)
        record = self._pending.pop(kind, None)
        if record is None:
            return
        self.kv.set(kind.value, _record_to_json(record))
        if isinstance(record, StagedInfo) and not isinstance(self.get_pointer(), Remote):
            self.set_pointer(PendingCreation(record.form))

    # -- reads -------------------------------------------------------------

    def load_staged(self, kind: StagingKind | str) -> StagedRecord | None:
        kind = StagingKind(kind)
        record = self._pending.get(kind)
        if record is None:
            data = self.kv.get(kind.value)
            if data is None:
                return None
            try:
                record = _record_from_json(kind, data)
            except (KeyError, TypeError, ValueError):
                logger.warning("Discarding malformed staged %s record", kind.value)
                self.clear_staged(kind)
                return None

        if self.clock() - record.saved_at > self.ttl_seconds:
            logger.info("Staged %s record expired; discarding", kind.value)
            self.clear_staged(kind)
            return None
        return record

    def clear_staged(self, kind: StagingKind | str) -> None:
        kind = StagingKind(kind)
        self._cancel_timer(kind)
        self._pending.pop(kind, None)
        self.kv.delete(kind.value)

    def has_staged(self) -> bool:
        return any(self.load_staged(kind) is not None for kind in StagingKind)

    # -- draft ownership ---------------------------------------------------

    def load_media_for(self, kind: StagingKind | str, submission_id: str) -> MediaRecord | None:
        """The staged photos or interview of ``submission_id``; a record staged for another draft is dropped."""
        record = self.load_staged(kind)
        if record is None or record.draft_ref == submission_id:
            return record
        logger.warning(
            "Discarding staged %s for draft %s; the active draft is %s",
            record.kind.value, record.draft_ref or "(not created)", submission_id,
        )
        self.clear_staged(record.kind)
        return None

    def adopt_pending_media(self, submission_id: str) -> None:
        """Bind media staged before the draft existed to the draft just created."""
        for kind in MEDIA_KINDS:
            record = self.load_staged(kind)
            if record is not None and record.draft_ref is None:
                self.replace_staged(replace(record, draft_ref=submission_id))

    def forget_remote_draft(self, submission_id: str) -> SubmissionPointer:
        """The server no longer has ``submission_id``; repoint the device and settle its media.

        With business info still staged the flow starts over as a new draft
        and the media moves with it. Without info nothing can recreate the
        draft, so its media is discarded rather than left with no pointer.
        """
        info = self.load_staged(StagingKind.INFO)
        for kind in MEDIA_KINDS:
            record = self.load_staged(kind)
            if record is None:
                continue
            if info is not None and record.draft_ref in (submission_id, None):
                self.replace_staged(replace(record, draft_ref=None))
            else:
                logger.info("Discarding staged %s of deleted draft %s", kind.value, submission_id)
                self.clear_staged(kind)
        pointer = PendingCreation(info.form) if info is not None else NoActiveDraft()
        self.set_pointer(pointer)
        return pointer

    # -- pointer -----------------------------------------------------------

    def get_pointer(self) -> SubmissionPointer:
        return pointer_from_json(self.kv.get(POINTER_KEY))

    def set_pointer(self, pointer: SubmissionPointer) -> None:
        if isinstance(pointer, NoActiveDraft):
            self.kv.delete(POINTER_KEY)
        else:
            self.kv.set(POINTER_KEY, pointer_to_json(pointer))

    def reset(self) -> None:
        """Forget the active flow entirely (after submit, or when the user discards it)."""
        for kind in StagingKind:
            self.clear_staged(kind)
        self.set_pointer(NoActiveDraft())
