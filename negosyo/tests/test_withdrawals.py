"""Withdrawals: balance reservation, release on failure, commit on completion."""

import pytest
from sqlalchemy import select

from negosyo.core.exceptions import InvalidTransitionError, ValidationError, WithdrawalNotFoundError
from negosyo.models.outbox import OutboxEvent
from negosyo.services import creator_service, withdrawal_service
from negosyo.tests.factories import ADMIN_SUBJECT


async def _wallet(db, creator_id):
    return await creator_service.get_wallet(db, creator_id)


class TestReservation:
    async def test_request_reserves_balance(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        w = await withdrawal_service.create_withdrawal(db, creator["id"], 500, "gcash", "0917 123 4567")

        assert w["status"] == "pending"
        assert w["reservation_status"] == "reserved"
        assert w["amount"] == 500.0
        assert w["account_details"] == "0917 123 4567"
        wallet = await _wallet(db, creator["id"])
        assert wallet["balance"] == 0.0
        assert wallet["total_withdrawn"] == 0.0

    async def test_insufficient_balance(self, db, make_creator):
        creator, _ = await make_creator(balance=150)
        with pytest.raises(ValidationError, match="Insufficient balance"):
            await withdrawal_service.create_withdrawal(db, creator["id"], 200, "maya", "09170000000")
        assert (await _wallet(db, creator["id"]))["balance"] == 150.0

    async def test_below_minimum(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        with pytest.raises(ValidationError, match="Minimum withdrawal"):
            await withdrawal_service.create_withdrawal(db, creator["id"], 50, "gcash", "09170000000")

    async def test_unknown_payout_method(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        with pytest.raises(ValidationError, match="payout_method"):
            await withdrawal_service.create_withdrawal(db, creator["id"], 200, "paypal", "me@example.com")

    async def test_blank_account_details(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        with pytest.raises(ValidationError, match="account_details"):
            await withdrawal_service.create_withdrawal(db, creator["id"], 200, "gcash", "   ")

    async def test_second_request_cannot_overdraw(self, db, make_creator):
        creator, _ = await make_creator(balance=300)
        await withdrawal_service.create_withdrawal(db, creator["id"], 200, "gcash", "09170000000")
        with pytest.raises(ValidationError, match="Insufficient balance"):
            await withdrawal_service.create_withdrawal(db, creator["id"], 200, "gcash", "09170000000")
        assert (await _wallet(db, creator["id"]))["balance"] == 100.0


class TestOutcome:
    async def test_failed_then_completed(self, db, make_creator):
        """500 reserved, payout fails and returns, 500 requested again and completes."""
        creator, _ = await make_creator(balance=500)

        first = await withdrawal_service.create_withdrawal(db, creator["id"], 500, "gcash", "09171234567")
        failed = await withdrawal_service.update_status(db, first["id"], "failed", actor_id=ADMIN_SUBJECT)
        assert failed["status"] == "failed"
        assert failed["reservation_status"] == "released"
        assert failed["processed_at"] is not None
        assert (await _wallet(db, creator["id"]))["balance"] == 500.0

        second = await withdrawal_service.create_withdrawal(db, creator["id"], 500, "gcash", "09171234567")
        completed = await withdrawal_service.update_status(
            db, second["id"], "completed", transaction_ref="GC-0001", actor_id=ADMIN_SUBJECT,
        )
        assert completed["status"] == "completed"
        assert completed["reservation_status"] == "committed"
        assert completed["transaction_ref"] == "GC-0001"

        wallet = await _wallet(db, creator["id"])
        assert wallet["balance"] == 0.0
        assert wallet["total_withdrawn"] == 500.0

    async def test_processing_then_completed(self, db, make_creator):
        creator, _ = await make_creator(balance=400)
        w = await withdrawal_service.create_withdrawal(db, creator["id"], 400, "bank_transfer", "BPI 1234")

        processing = await withdrawal_service.update_status(db, w["id"], "processing")
        assert processing["reservation_status"] == "reserved"
        completed = await withdrawal_service.update_status(db, w["id"], "completed")
        assert completed["status"] == "completed"
        assert (await _wallet(db, creator["id"]))["total_withdrawn"] == 400.0

    async def test_double_failure_releases_once(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        w = await withdrawal_service.create_withdrawal(db, creator["id"], 300, "gcash", "09171234567")

        await withdrawal_service.update_status(db, w["id"], "failed")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await withdrawal_service.update_status(db, w["id"], "failed")
        assert exc_info.value.current == "failed"
        assert (await _wallet(db, creator["id"]))["balance"] == 500.0

    async def test_completed_cannot_fail(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        w = await withdrawal_service.create_withdrawal(db, creator["id"], 500, "maya", "09171234567")
        await withdrawal_service.update_status(db, w["id"], "completed")

        with pytest.raises(InvalidTransitionError):
            await withdrawal_service.update_status(db, w["id"], "failed")
        wallet = await _wallet(db, creator["id"])
        assert wallet["balance"] == 0.0
        assert wallet["total_withdrawn"] == 500.0

    async def test_unknown_status(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        w = await withdrawal_service.create_withdrawal(db, creator["id"], 200, "gcash", "09171234567")
        with pytest.raises(ValidationError):
            await withdrawal_service.update_status(db, w["id"], "pending")

    async def test_missing_withdrawal(self, db):
        with pytest.raises(WithdrawalNotFoundError):
            await withdrawal_service.update_status(db, "does-not-exist", "completed")

    async def test_outcomes_notify_creator(self, db, make_creator):
        creator, _ = await make_creator(balance=500)
        w = await withdrawal_service.create_withdrawal(db, creator["id"], 200, "gcash", "09171234567")
        await withdrawal_service.update_status(db, w["id"], "failed")

        result = await db.execute(select(OutboxEvent.payload).where(OutboxEvent.kind == "notification"))
        payloads = [row[0] for row in result.all()]
        assert any('"payout_failed"' in p for p in payloads)

    async def test_admin_listing_includes_creator(self, db, make_creator):
        creator, _ = await make_creator(first_name="Lito", last_name="Lapid", balance=500)
        await withdrawal_service.create_withdrawal(db, creator["id"], 200, "gcash", "09171234567")

        pending = await withdrawal_service.list_withdrawals(db, "pending")
        assert len(pending) == 1
        assert pending[0]["creator_name"] == "Lito Lapid"
        assert await withdrawal_service.list_withdrawals(db, "completed") == []
