"""Device staging store: per-kind records, debounced writes, TTL expiry, the pointer."""

import asyncio
import json

import pytest

from negosyo.device.pointer import (
    NoActiveDraft,
    PendingCreation,
    Remote,
    pointer_from_json,
    pointer_to_json,
    remote_id,
)
from negosyo.device.staging import (
    DEFAULT_TTL_SECONDS,
    POINTER_KEY,
    JsonFileStore,
    MemoryStore,
    StagedInterview,
    StagedPhotos,
    StagingKind,
    StagingStore,
)
from negosyo.models.submission import InterviewKind

FORM = {"business_name": "Kape ni Lola", "business_type": "cafe", "owner_name": "Lola Basyang"}


class FakeClock:
    def __init__(self, now: float = 1_760_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv():
    return MemoryStore()


@pytest.fixture
def store(kv, clock):
    return StagingStore(kv, clock=clock)


# ===================================================================
# Records (no running loop: writes go straight through)
# ===================================================================


class TestRecords:
    def test_info_round_trip(self, store):
        store.stage_info(FORM)
        loaded = store.load_staged(StagingKind.INFO)
        assert loaded.form == FORM

    def test_info_sets_pending_pointer(self, store):
        store.stage_info(FORM)
        assert store.get_pointer() == PendingCreation(FORM)

    def test_info_keeps_remote_pointer(self, store):
        store.set_pointer(Remote("sub-123"))
        store.stage_info({**FORM, "city": "Cebu"})
        assert store.get_pointer() == Remote("sub-123")

    def test_photos_need_active_draft(self, store):
        with pytest.raises(ValueError, match="business info"):
            store.stage_photos(["/tmp/a.jpg"])

    def test_interview_needs_active_draft(self, store):
        with pytest.raises(ValueError):
            store.stage_interview("/tmp/interview.mp4", "video")

    def test_photos_after_remote_pointer(self, store):
        store.set_pointer(Remote("sub-123"))
        store.stage_photos(["/tmp/a.jpg", "/tmp/b.jpg"], already_uploaded_keys=["images/1-aaaaaaaa.jpg"])
        loaded = store.load_staged("pending_photos")
        assert isinstance(loaded, StagedPhotos)
        assert loaded.local_paths == ["/tmp/a.jpg", "/tmp/b.jpg"]
        assert loaded.already_uploaded_keys == ["images/1-aaaaaaaa.jpg"]

    def test_interview_round_trip(self, store):
        store.stage_info(FORM)
        store.stage_interview("/tmp/interview.mp4", InterviewKind.VIDEO, parallel_audio_path="/tmp/track.m4a")
        loaded = store.load_staged(StagingKind.INTERVIEW)
        assert isinstance(loaded, StagedInterview)
        assert loaded.interview_kind == InterviewKind.VIDEO
        assert loaded.parallel_audio_path == "/tmp/track.m4a"

    def test_parallel_audio_only_with_video(self, store):
        store.stage_info(FORM)
        with pytest.raises(ValueError, match="parallel audio"):
            store.stage_interview("/tmp/interview.m4a", "audio", parallel_audio_path="/tmp/track.m4a")

    def test_last_write_wins(self, store):
        store.stage_info(FORM)
        store.stage_info({**FORM, "business_name": "Kape ni Lolo"})
        assert store.load_staged(StagingKind.INFO).form["business_name"] == "Kape ni Lolo"

    def test_clear_and_has_staged(self, store):
        assert store.has_staged() is False
        store.stage_info(FORM)
        assert store.has_staged() is True
        store.clear_staged(StagingKind.INFO)
        assert store.has_staged() is False

    def test_reset_forgets_everything(self, store, kv):
        store.stage_info(FORM)
        store.stage_photos(["/tmp/a.jpg"])
        store.reset()
        assert store.has_staged() is False
        assert isinstance(store.get_pointer(), NoActiveDraft)
        assert POINTER_KEY not in kv.data

    def test_malformed_record_discarded(self, store, kv, clock):
        kv.set(StagingKind.INTERVIEW.value, {"path": "/tmp/x.mp4", "interview_kind": "hologram", "saved_at": clock()})
        assert store.load_staged(StagingKind.INTERVIEW) is None
        assert StagingKind.INTERVIEW.value not in kv.data

    def test_replace_staged_writes_now(self, store, kv, clock):
        store.set_pointer(Remote("sub-1"))
        store.replace_staged(StagedPhotos(["/tmp/b.jpg"], ["images/1-aaaaaaaa.jpg"], saved_at=clock()))
        stored = json.loads(kv.data[StagingKind.PHOTOS.value])
        assert stored["local_paths"] == ["/tmp/b.jpg"]


# ===================================================================
# Draft reference on media records
# ===================================================================


class TestDraftReference:
    def test_pending_flow_media_has_no_ref(self, store):
        store.stage_info(FORM)
        assert store.stage_photos(["/tmp/a.jpg"]).draft_ref is None
        assert store.stage_interview("/tmp/i.m4a", "audio").draft_ref is None

    def test_ref_survives_persistence(self, tmp_path, clock):
        first = StagingStore(JsonFileStore(tmp_path / "staging"), clock=clock)
        first.set_pointer(Remote("sub-7"))
        first.stage_interview("/tmp/i.mp4", "video")

        second = StagingStore(JsonFileStore(tmp_path / "staging"), clock=clock)
        assert second.load_staged(StagingKind.INTERVIEW).draft_ref == "sub-7"

    def test_load_media_for_drops_foreign_record(self, store, kv):
        store.set_pointer(Remote("sub-1"))
        store.stage_photos(["/tmp/a.jpg"])
        assert store.load_media_for(StagingKind.PHOTOS, "sub-1").local_paths == ["/tmp/a.jpg"]

        assert store.load_media_for(StagingKind.PHOTOS, "sub-2") is None
        assert StagingKind.PHOTOS.value not in kv.data

    def test_adopt_binds_only_pending_media(self, store):
        store.stage_info(FORM)
        store.stage_photos(["/tmp/a.jpg"])
        store.set_pointer(Remote("sub-1"))
        store.stage_interview("/tmp/i.m4a", "audio")

        store.adopt_pending_media("sub-new")
        assert store.load_staged(StagingKind.PHOTOS).draft_ref == "sub-new"
        assert store.load_staged(StagingKind.INTERVIEW).draft_ref == "sub-1"

    def test_forget_without_info_discards_media(self, store):
        store.set_pointer(Remote("sub-gone"))
        store.stage_photos(["/tmp/a.jpg"])
        store.stage_interview("/tmp/i.m4a", "audio")

        assert store.forget_remote_draft("sub-gone") == NoActiveDraft()
        assert store.has_staged() is False
        assert isinstance(store.get_pointer(), NoActiveDraft)

    def test_forget_with_info_keeps_media_for_recreation(self, store):
        store.set_pointer(Remote("sub-gone"))
        store.stage_info(FORM)
        store.stage_photos(["/tmp/a.jpg"])

        assert store.forget_remote_draft("sub-gone") == PendingCreation(FORM)
        photos = store.load_staged(StagingKind.PHOTOS)
        assert photos.local_paths == ["/tmp/a.jpg"]
        assert photos.draft_ref is None


# ===================================================================
# TTL
# ===================================================================


class TestExpiry:
    def test_record_survives_until_ttl(self, store, clock):
        store.stage_info(FORM)
        clock.advance(DEFAULT_TTL_SECONDS)
        assert store.load_staged(StagingKind.INFO) is not None

    def test_record_expires_after_ttl(self, store, kv, clock):
        store.stage_info(FORM)
        clock.advance(DEFAULT_TTL_SECONDS + 1)
        assert store.load_staged(StagingKind.INFO) is None
        assert StagingKind.INFO.value not in kv.data

    def test_kinds_expire_independently(self, store, clock):
        store.stage_info(FORM)
        clock.advance(DEFAULT_TTL_SECONDS - 10)
        store.stage_photos(["/tmp/a.jpg"])
        clock.advance(20)
        assert store.load_staged(StagingKind.INFO) is None
        assert store.load_staged(StagingKind.PHOTOS) is not None


# ===================================================================
# Debounce (running loop)
# ===================================================================


class TestDebounce:
    async def test_burst_becomes_one_write(self, kv, clock):
        store = StagingStore(kv, clock=clock, debounce_seconds=0.05)
        for name in ("K", "Ka", "Kape"):
            store.stage_info({**FORM, "business_name": name})

        assert kv.writes == 0
        assert store.load_staged(StagingKind.INFO).form["business_name"] == "Kape"

        await asyncio.sleep(0.15)
        # One info write plus the pointer it implies.
        assert kv.writes == 2
        assert json.loads(kv.data[StagingKind.INFO.value])["form"]["business_name"] == "Kape"
        assert store.get_pointer() == PendingCreation({**FORM, "business_name": "Kape"})

    async def test_flush_forces_pending_writes(self, kv, clock):
        store = StagingStore(kv, clock=clock, debounce_seconds=60)
        store.stage_info(FORM)
        store.stage_photos(["/tmp/a.jpg"])
        assert kv.writes == 0

        store.flush()
        assert StagingKind.INFO.value in kv.data
        assert StagingKind.PHOTOS.value in kv.data

    async def test_clear_cancels_pending_write(self, kv, clock):
        store = StagingStore(kv, clock=clock, debounce_seconds=0.05)
        store.stage_info(FORM)
        store.clear_staged(StagingKind.INFO)
        await asyncio.sleep(0.1)
        assert StagingKind.INFO.value not in kv.data
        assert kv.writes == 0


# ===================================================================
# Pointer and file store
# ===================================================================


class TestPointer:
    @pytest.mark.parametrize("pointer", [NoActiveDraft(), PendingCreation(FORM), Remote("sub-9")])
    def test_json_round_trip(self, pointer):
        assert pointer_from_json(pointer_to_json(pointer)) == pointer

    def test_garbage_means_no_draft(self):
        assert pointer_from_json(None) == NoActiveDraft()
        assert pointer_from_json({"state": "remote"}) == NoActiveDraft()
        assert pointer_from_json({"state": "weird"}) == NoActiveDraft()

    def test_remote_id(self):
        assert remote_id(Remote("sub-9")) == "sub-9"
        assert remote_id(PendingCreation(FORM)) is None


class TestJsonFileStore:
    def test_survives_restart(self, tmp_path, clock):
        first = StagingStore(JsonFileStore(tmp_path / "staging"), clock=clock)
        first.stage_info(FORM)
        first.stage_photos(["/tmp/a.jpg"])

        second = StagingStore(JsonFileStore(tmp_path / "staging"), clock=clock)
        assert second.load_staged(StagingKind.INFO).form == FORM
        assert second.load_staged(StagingKind.PHOTOS).local_paths == ["/tmp/a.jpg"]
        assert second.get_pointer() == PendingCreation(FORM)

    def test_unreadable_file_dropped(self, tmp_path):
        kv = JsonFileStore(tmp_path)
        (tmp_path / "pending_info.json").write_text("{not json", encoding="utf-8")
        assert kv.get("pending_info") is None
        assert not (tmp_path / "pending_info.json").exists()

    def test_delete_missing_is_noop(self, tmp_path):
        JsonFileStore(tmp_path).delete("pending_photos")
