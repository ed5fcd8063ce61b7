"""HTTP surface: auth, status codes and the end-to-end paths through the routers."""

import threading

import pytest

from negosyo.config import settings
from negosyo.core.identity import create_identity_token
from negosyo.services import storage_service
from negosyo.tests.factories import ThreadRecordingStore, business_fields, new_id, photo_keys

API = "/api/v1"


@pytest.fixture
async def signed_up(client, auth_header):
    """Register a creator through the API and return its auth headers."""
    subject = f"idp|{new_id()[:12]}"
    headers = auth_header(create_identity_token(subject, email=f"{subject[4:]}@negosyo.test"))
    resp = await client.post(f"{API}/creators/me", json={"first_name": "Maria", "last_name": "Santos"}, headers=headers)
    assert resp.status_code == 200
    return headers


async def _draft(client, headers, photos: int = 3) -> dict:
    body = {**business_fields(), "photos": photo_keys(photos)}
    resp = await client.post(f"{API}/submissions", json=body, headers=headers)
    assert resp.status_code == 201
    return resp.json()


# ===================================================================
# Health and auth
# ===================================================================


class TestHealth:
    async def test_health(self, client):
        resp = await client.get(f"{API}/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["outbox_backlog"] == 0

    async def test_ready(self, client):
        resp = await client.get(f"{API}/health/ready")
        assert resp.json() == {"status": "ready", "database": "connected"}

    async def test_security_headers(self, client):
        resp = await client.get("/")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


class TestAuth:
    async def test_missing_token(self, client):
        resp = await client.get(f"{API}/creators/me")
        assert resp.status_code == 401

    async def test_garbage_token(self, client):
        resp = await client.get(f"{API}/creators/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    async def test_unregistered_identity(self, client, auth_header):
        headers = auth_header(create_identity_token("idp|nobody", email="nobody@negosyo.test"))
        resp = await client.get(f"{API}/submissions", headers=headers)
        assert resp.status_code == 404

    async def test_admin_routes_need_admin(self, client, signed_up):
        resp = await client.get(f"{API}/admin/submissions", headers=signed_up)
        assert resp.status_code == 403


# ===================================================================
# Creators
# ===================================================================


class TestCreators:
    async def test_signup_is_idempotent(self, client, auth_header):
        headers = auth_header(create_identity_token("idp|maria", email="maria@negosyo.test"))
        first = await client.post(f"{API}/creators/me", json={"first_name": "Maria"}, headers=headers)
        second = await client.post(f"{API}/creators/me", json={"first_name": "Other"}, headers=headers)
        assert first.json()["id"] == second.json()["id"]
        assert second.json()["first_name"] == "Maria"
        assert first.json()["referral_code"]

    async def test_signup_with_unknown_referral_code(self, client, auth_header):
        headers = auth_header(create_identity_token("idp|maria", email="maria@negosyo.test"))
        resp = await client.post(f"{API}/creators/me", json={"referred_by_code": "NOPE9999"}, headers=headers)
        assert resp.status_code == 400

    async def test_profile_and_wallet(self, client, signed_up):
        resp = await client.put(f"{API}/creators/me", json={"phone": "+639170000000"}, headers=signed_up)
        assert resp.json()["phone"] == "+639170000000"

        wallet = (await client.get(f"{API}/creators/me/wallet", headers=signed_up)).json()
        assert wallet["balance"] == 0

    async def test_certify_is_idempotent(self, client, signed_up):
        first = (await client.post(f"{API}/creators/me/certify", headers=signed_up)).json()
        second = (await client.post(f"{API}/creators/me/certify", headers=signed_up)).json()
        assert first["certified_at"] is not None
        assert first["certified_at"] == second["certified_at"]


# ===================================================================
# Submissions
# ===================================================================


class TestSubmissions:
    async def test_draft_patch_submit(self, client, signed_up):
        draft = await _draft(client, signed_up)
        assert draft["status"] == "draft"

        resp = await client.patch(
            f"{API}/submissions/{draft['id']}", json={"city": "Cebu City"}, headers=signed_up,
        )
        assert resp.json()["city"] == "Cebu City"

        resp = await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)
        assert resp.status_code == 200
        assert resp.json()["status"] == "submitted"

        again = await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)
        assert again.status_code == 409

    async def test_submit_without_enough_photos(self, client, signed_up):
        draft = await _draft(client, signed_up, photos=1)
        resp = await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)
        assert resp.status_code == 400

    async def test_status_cannot_be_patched(self, client, signed_up):
        draft = await _draft(client, signed_up)
        resp = await client.patch(f"{API}/submissions/{draft['id']}", json={"status": "paid"}, headers=signed_up)
        # Unknown to the patch schema, so it never reaches the service.
        assert resp.status_code == 200
        assert resp.json()["status"] == "draft"

    async def test_creator_cannot_set_payout(self, client, signed_up, admin_token, auth_header):
        draft = await _draft(client, signed_up)
        sid = draft["id"]
        resp = await client.patch(
            f"{API}/submissions/{sid}",
            json={"audio_key": "audio/1700000000000-abcdefgh.m4a", "creator_payout": 99999},
            headers=signed_up,
        )
        assert resp.status_code == 200
        assert resp.json()["creator_payout"] == 300

        admin = auth_header(admin_token)
        await client.post(f"{API}/submissions/{sid}/submit", headers=signed_up)
        await client.post(f"{API}/admin/submissions/{sid}/approve", headers=admin)
        for step in ("website", "deployed"):
            await client.post(
                f"{API}/admin/submissions/{sid}/{step}",
                json={"website_url": "https://aling-nena.negosyo.test"}, headers=admin,
            )
        await client.post(f"{API}/admin/submissions/{sid}/mark-paid", headers=admin)

        wallet = (await client.get(f"{API}/creators/me/wallet", headers=signed_up)).json()
        assert wallet["balance"] == 300

    async def test_other_creator_gets_404(self, client, signed_up, auth_header):
        draft = await _draft(client, signed_up)
        other = auth_header(create_identity_token("idp|other", email="other@negosyo.test"))
        await client.post(f"{API}/creators/me", json={}, headers=other)
        resp = await client.get(f"{API}/submissions/{draft['id']}", headers=other)
        assert resp.status_code == 404

    async def test_latest_draft_and_listing(self, client, signed_up):
        assert (await client.get(f"{API}/submissions/latest-draft", headers=signed_up)).json() == {"draft": None}
        draft = await _draft(client, signed_up)
        latest = (await client.get(f"{API}/submissions/latest-draft", headers=signed_up)).json()
        assert latest["draft"]["id"] == draft["id"]

        listing = (await client.get(f"{API}/submissions?status=draft", headers=signed_up)).json()
        assert listing["count"] == 1
        bad = await client.get(f"{API}/submissions?status=bogus", headers=signed_up)
        assert bad.status_code == 400

    async def test_reject_reopen_resubmit(self, client, signed_up, admin_token, auth_header):
        admin = auth_header(admin_token)
        draft = await _draft(client, signed_up)
        await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)

        resp = await client.post(
            f"{API}/admin/submissions/{draft['id']}/reject", json={"reason": "Blurry photos"}, headers=admin,
        )
        assert resp.json()["status"] == "rejected"
        assert resp.json()["rejection_reason"] == "Blurry photos"

        resp = await client.post(f"{API}/submissions/{draft['id']}/reopen", headers=signed_up)
        assert resp.json()["status"] == "draft"
        resp = await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)
        assert resp.json()["status"] == "submitted"

    async def test_website_leads(self, client, signed_up):
        draft = await _draft(client, signed_up)
        resp = await client.post(
            f"{API}/submissions/{draft['id']}/leads",
            json={"source": "qr_code", "name": "Pedro", "phone": "+639181112222"},
        )
        assert resp.status_code == 201

        leads = (await client.get(f"{API}/submissions/{draft['id']}/leads", headers=signed_up)).json()
        assert len(leads["leads"]) == 1
        assert leads["leads"][0]["source"] == "qr_code"


# ===================================================================
# Admin settlement through the API
# ===================================================================


class TestSettlement:
    async def test_full_lifecycle_credits_wallet(self, client, signed_up, admin_token, auth_header):
        admin = auth_header(admin_token)
        draft = await _draft(client, signed_up)
        sid = draft["id"]
        await client.patch(
            f"{API}/submissions/{sid}", json={"video_key": "videos/1700000000000-abcdefgh.mp4"}, headers=signed_up,
        )
        await client.post(f"{API}/submissions/{sid}/submit", headers=signed_up)

        assert (await client.post(f"{API}/admin/submissions/{sid}/approve", headers=admin)).status_code == 200
        resp = await client.post(
            f"{API}/admin/submissions/{sid}/website",
            json={"website_url": "https://preview.negosyo.test/aling-nena"}, headers=admin,
        )
        assert resp.json()["status"] == "website_generated"
        resp = await client.post(
            f"{API}/admin/submissions/{sid}/deployed",
            json={"website_url": "https://aling-nena.negosyo.test"}, headers=admin,
        )
        assert resp.json()["status"] == "deployed"

        paid = await client.post(f"{API}/admin/submissions/{sid}/mark-paid", headers=admin)
        assert paid.json()["status"] == "paid"
        twice = await client.post(f"{API}/admin/submissions/{sid}/mark-paid", headers=admin)
        assert twice.status_code == 409

        wallet = (await client.get(f"{API}/creators/me/wallet", headers=signed_up)).json()
        assert wallet["balance"] == 500
        assert wallet["total_earnings"] == 500

        earnings = (await client.get(f"{API}/earnings", headers=signed_up)).json()
        assert earnings["count"] == 1
        summary = (await client.get(f"{API}/earnings/summary", headers=signed_up)).json()
        assert summary["by_type"]["submission_approved"] == 500

        done = await client.post(f"{API}/admin/submissions/{sid}/complete", headers=admin)
        assert done.json()["status"] == "completed"

    async def test_admin_payout_override(self, client, signed_up, admin_token, auth_header):
        draft = await _draft(client, signed_up)
        url = f"{API}/admin/submissions/{draft['id']}/payout"

        assert (await client.post(url, json={"amount": 650}, headers=signed_up)).status_code == 403
        assert (await client.post(url, json={"amount": -1}, headers=auth_header(admin_token))).status_code == 422

        resp = await client.post(url, json={"amount": 650}, headers=auth_header(admin_token))
        assert resp.status_code == 200
        assert resp.json()["creator_payout"] == 650

    async def test_admin_listing_paginates(self, client, signed_up, admin_token, auth_header):
        for _ in range(3):
            await _draft(client, signed_up)
        resp = await client.get(f"{API}/admin/submissions?page_size=2", headers=auth_header(admin_token))
        data = resp.json()
        assert data["total"] == 3
        assert len(data["submissions"]) == 2

    async def test_ledger_check(self, client, make_creator, admin_token, auth_header):
        creator, _ = await make_creator()
        resp = await client.get(
            f"{API}/admin/creators/{creator['id']}/ledger-check", headers=auth_header(admin_token),
        )
        assert resp.status_code == 200

    async def test_reconcile_rejects_bad_month(self, client, admin_token, auth_header):
        resp = await client.post(f"{API}/admin/analytics/reconcile/2026-13", headers=auth_header(admin_token))
        assert resp.status_code == 400

    async def test_reconcile_month(self, client, admin_token, auth_header):
        resp = await client.post(f"{API}/admin/analytics/reconcile/2026-10", headers=auth_header(admin_token))
        assert resp.status_code == 200

    async def test_outbox_admin(self, client, signed_up, admin_token, auth_header):
        admin = auth_header(admin_token)
        await _draft(client, signed_up)
        stats = (await client.get(f"{API}/admin/outbox", headers=admin)).json()
        assert stats["pending"] == 1
        assert (await client.get(f"{API}/admin/outbox/dead", headers=admin)).json() == {"events": []}
        missing = await client.post(f"{API}/admin/outbox/nope/retry", headers=admin)
        assert missing.status_code == 404


# ===================================================================
# Withdrawals and payout methods
# ===================================================================


class TestWithdrawals:
    async def test_request_and_fail_releases(self, client, make_creator, admin_token, auth_header):
        creator, token = await make_creator(balance=1000)
        headers = auth_header(token)
        admin = auth_header(admin_token)

        resp = await client.post(
            f"{API}/withdrawals",
            json={"amount": 400, "payout_method": "gcash", "account_details": "09171234567"},
            headers=headers,
        )
        assert resp.status_code == 201
        wid = resp.json()["id"]
        assert (await client.get(f"{API}/creators/me/wallet", headers=headers)).json()["balance"] == 600

        resp = await client.post(f"{API}/admin/withdrawals/{wid}/status", json={"status": "failed"}, headers=admin)
        assert resp.json()["status"] == "failed"
        assert (await client.get(f"{API}/creators/me/wallet", headers=headers)).json()["balance"] == 1000

        again = await client.post(f"{API}/admin/withdrawals/{wid}/status", json={"status": "failed"}, headers=admin)
        assert again.status_code == 409

        listing = (await client.get(f"{API}/admin/withdrawals?status=failed", headers=admin)).json()
        assert listing["count"] == 1

    async def test_insufficient_balance(self, client, make_creator, auth_header):
        _, token = await make_creator(balance=50)
        resp = await client.post(
            f"{API}/withdrawals",
            json={"amount": 500, "payout_method": "maya", "account_details": "09171234567"},
            headers=auth_header(token),
        )
        assert resp.status_code == 400

    async def test_amount_must_be_positive(self, client, signed_up):
        resp = await client.post(
            f"{API}/withdrawals",
            json={"amount": 0, "payout_method": "gcash", "account_details": "x"},
            headers=signed_up,
        )
        assert resp.status_code == 422


class TestPayoutMethods:
    async def test_first_is_default_and_delete_reassigns(self, client, signed_up):
        first = await client.post(
            f"{API}/payout-methods",
            json={"type": "gcash", "account_name": "Maria Santos", "account_number": "09171234567"},
            headers=signed_up,
        )
        assert first.status_code == 201
        assert first.json()["is_default"] is True

        second = await client.post(
            f"{API}/payout-methods",
            json={"type": "bank_transfer", "account_name": "Maria Santos", "account_number": "001234567890"},
            headers=signed_up,
        )
        assert second.json()["is_default"] is False

        resp = await client.delete(f"{API}/payout-methods/{first.json()['id']}", headers=signed_up)
        assert resp.json()["new_default"] == second.json()["id"]

        default = (await client.get(f"{API}/payout-methods/default", headers=signed_up)).json()
        assert default["method"]["id"] == second.json()["id"]

    async def test_switch_default(self, client, signed_up):
        ids = []
        for number in ("0917", "0918"):
            resp = await client.post(
                f"{API}/payout-methods",
                json={"type": "gcash", "account_name": "Maria", "account_number": number},
                headers=signed_up,
            )
            ids.append(resp.json()["id"])
        await client.post(f"{API}/payout-methods/{ids[1]}/default", headers=signed_up)

        methods = (await client.get(f"{API}/payout-methods", headers=signed_up)).json()["methods"]
        assert [m["is_default"] for m in methods] == [False, True]

    async def test_unknown_type(self, client, signed_up):
        resp = await client.post(
            f"{API}/payout-methods",
            json={"type": "paypal", "account_name": "Maria", "account_number": "x"},
            headers=signed_up,
        )
        assert resp.status_code == 400


# ===================================================================
# Files
# ===================================================================


class TestFiles:
    async def _target(self, client, headers, folder="images", filename="storefront.JPG", content_type="image/jpeg"):
        resp = await client.post(
            f"{API}/files/upload-target",
            json={"folder": folder, "filename": filename, "content_type": content_type},
            headers=headers,
        )
        assert resp.status_code == 200
        return resp.json()

    async def test_upload_target_then_put_and_get(self, client, signed_up):
        target = await self._target(client, signed_up)
        key = target["storage_key"]
        assert key.startswith("images/")
        assert key.endswith(".jpg")
        assert "?token=" in target["upload_url"]

        put = await client.put(target["upload_url"], content=b"\xff\xd8jpeg", headers=target["headers"])
        assert put.status_code == 201
        assert put.json()["size"] == 6

        got = await client.get(f"{API}/files/{key}")
        assert got.content == b"\xff\xd8jpeg"
        assert got.headers["content-type"] == "image/jpeg"

    async def test_put_without_token_is_refused(self, client, signed_up):
        target = await self._target(client, signed_up)
        resp = await client.put(f"{API}/files/{target['storage_key']}", content=b"anonymous")
        assert resp.status_code == 403
        assert (await client.get(f"{API}/files/{target['storage_key']}")).status_code == 404

    async def test_token_is_bound_to_its_key(self, client, signed_up):
        mine = await self._target(client, signed_up)
        other = await self._target(client, signed_up, filename="other.jpg")
        token = mine["upload_url"].split("?token=", 1)[1]

        resp = await client.put(f"{API}/files/{other['storage_key']}?token={token}", content=b"x")
        assert resp.status_code == 403

    async def test_identity_token_is_not_an_upload_token(self, client, signed_up):
        target = await self._target(client, signed_up)
        bearer = signed_up["Authorization"].split()[1]
        resp = await client.put(f"{API}/files/{target['storage_key']}?token={bearer}", content=b"x")
        assert resp.status_code == 403

    async def test_upload_url_is_single_use(self, client, signed_up):
        target = await self._target(client, signed_up)
        first = await client.put(target["upload_url"], content=b"original", headers=target["headers"])
        assert first.status_code == 201

        again = await client.put(target["upload_url"], content=b"overwritten", headers=target["headers"])
        assert again.status_code == 409
        assert (await client.get(f"{API}/files/{target['storage_key']}")).content == b"original"

    async def test_blob_io_runs_off_the_event_loop(self, client, signed_up, tmp_path):
        recording = ThreadRecordingStore(str(tmp_path / "recorded"), settings.public_base_url)
        storage_service.reset_storage(recording)
        target = await self._target(client, signed_up)

        await client.put(target["upload_url"], content=b"\xff\xd8jpeg", headers=target["headers"])
        await client.get(f"{API}/files/{target['storage_key']}")

        assert [name for name, _ in recording.calls] == ["put", "get"]
        loop_thread = threading.get_ident()
        assert all(thread != loop_thread for _, thread in recording.calls)

    async def test_invalid_key(self, client):
        resp = await client.put(f"{API}/files/../../etc/passwd", content=b"x")
        assert resp.status_code in (400, 404)
        resp = await client.get(f"{API}/files/images/not-a-key.jpg")
        assert resp.status_code == 400

    async def test_bad_folder(self, client, signed_up):
        resp = await client.post(
            f"{API}/files/upload-target",
            json={"folder": "documents", "filename": "a.pdf", "content_type": "application/pdf"},
            headers=signed_up,
        )
        assert resp.status_code == 422

    async def test_missing_file(self, client):
        resp = await client.get(f"{API}/files/images/1700000000000-abcdefgh.jpg")
        assert resp.status_code == 404


# ===================================================================
# Referrals, notifications, analytics
# ===================================================================


class TestCreatorViews:
    async def test_referrals(self, client, make_creator, auth_header):
        referrer, token = await make_creator(first_name="Ana", last_name="Reyes")
        await make_creator(referred_by_code=referrer["referral_code"])

        data = (await client.get(f"{API}/referrals", headers=auth_header(token))).json()
        assert data["referral_code"] == referrer["referral_code"]
        assert len(data["referrals"]) == 1
        assert data["referrals"][0]["status"] == "pending"

        stats = (await client.get(f"{API}/referrals/stats", headers=auth_header(token))).json()
        assert stats["total"] == 1
        assert stats["pending"] == 1

    async def test_notifications(self, client, db, signed_up):
        from negosyo.services import outbox_service

        await _draft(client, signed_up)
        await outbox_service.dispatch_due(db)

        data = (await client.get(f"{API}/notifications", headers=signed_up)).json()
        assert data["unread"] == 1
        nid = data["notifications"][0]["id"]

        resp = await client.post(f"{API}/notifications/{nid}/read", headers=signed_up)
        assert resp.status_code == 200
        assert (await client.get(f"{API}/notifications/unread-count", headers=signed_up)).json() == {"unread": 0}

        missing = await client.post(f"{API}/notifications/{new_id()}/read", headers=signed_up)
        assert missing.status_code == 404

    async def test_my_analytics(self, client, signed_up):
        draft = await _draft(client, signed_up)
        await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)

        data = (await client.get(f"{API}/analytics/me?period_type=monthly", headers=signed_up)).json()
        assert data["period_type"] == "monthly"
        assert data["totals"]["submissions_count"] == 1

        bad = await client.get(f"{API}/analytics/me?period_type=weekly", headers=signed_up)
        assert bad.status_code == 422


class TestAudit:
    async def test_history_and_chain(self, client, signed_up, admin_token, auth_header):
        admin = auth_header(admin_token)
        draft = await _draft(client, signed_up)
        await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)

        history = (await client.get(f"{API}/audit/submission/{draft['id']}", headers=admin)).json()
        assert history["count"] == 2

        recent = (await client.get(f"{API}/audit/events?limit=10", headers=admin)).json()
        assert recent["count"] >= 2
        assert (await client.get(f"{API}/audit/events/verify", headers=admin)).json()["valid"] is True

    async def test_creators_cannot_read_audit(self, client, signed_up):
        resp = await client.get(f"{API}/audit/events", headers=signed_up)
        assert resp.status_code == 403


class TestLeads:
    async def test_owner_updates_lead_status(self, client, signed_up):
        draft = await _draft(client, signed_up)
        await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)

        leads = (await client.get(f"{API}/submissions/leads", headers=signed_up)).json()
        assert leads["count"] == 1
        assert leads["leads"][0]["source"] == "direct"

        lead_id = leads["leads"][0]["id"]
        resp = await client.patch(f"{API}/submissions/leads/{lead_id}", json={"status": "contacted"}, headers=signed_up)
        assert resp.json()["status"] == "contacted"

        bad = await client.patch(f"{API}/submissions/leads/{lead_id}", json={"status": "sold"}, headers=signed_up)
        assert bad.status_code == 400

    async def test_lead_notes(self, client, signed_up, auth_header):
        draft = await _draft(client, signed_up)
        await client.post(f"{API}/submissions/{draft['id']}/submit", headers=signed_up)
        lead_id = (await client.get(f"{API}/submissions/leads", headers=signed_up)).json()["leads"][0]["id"]
        notes_url = f"{API}/submissions/leads/{lead_id}/notes"

        first = await client.post(notes_url, json={"content": "Called, wants a menu page"}, headers=signed_up)
        assert first.status_code == 201
        await client.post(notes_url, json={"content": "Sent the preview link"}, headers=signed_up)
        assert (await client.post(notes_url, json={"content": ""}, headers=signed_up)).status_code == 422

        listed = (await client.get(notes_url, headers=signed_up)).json()
        assert listed["count"] == 2
        assert listed["notes"][0]["content"] == "Sent the preview link"

        other = auth_header(create_identity_token("idp|other-notes", email="other-notes@negosyo.test"))
        await client.post(f"{API}/creators/me", json={}, headers=other)
        assert (await client.get(notes_url, headers=other)).status_code == 404
        note_id = first.json()["id"]
        assert (await client.delete(f"{API}/submissions/leads/notes/{note_id}", headers=other)).status_code == 404

        resp = await client.delete(f"{API}/submissions/leads/notes/{note_id}", headers=signed_up)
        assert resp.json() == {"deleted": note_id}
        assert (await client.get(notes_url, headers=signed_up)).json()["count"] == 1
