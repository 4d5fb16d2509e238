from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from marketplace.models.seller_wallet import SellerWallet
from marketplace.models.transaction import Transaction
from marketplace.services.escrow_scheduler import compute_next_run_at
from marketplace.services.escrow_service import release_matured_escrow

from tests.conftest import NOW, SELLER_ID, make_event, sign


SETTLED_AT = datetime.fromtimestamp(NOW, tz=timezone.utc).replace(tzinfo=None)


@pytest.fixture
def settled_order(settlement, db, seed_order):
    seed_order(earnings=(Decimal("40"), Decimal("50")))
    body = make_event()
    assert settlement.handle_gateway_event(db, body, sign(body)).status_code == 200


def _wallet(session_factory):
    db = session_factory()
    try:
        return db.query(SellerWallet).filter(SellerWallet.seller_id == SELLER_ID).one()
    finally:
        db.close()


def test_nothing_is_released_before_the_hold_elapses(settled_order, session_factory):
    db = session_factory()
    stats = release_matured_escrow(db, now=SETTLED_AT + timedelta(hours=23, minutes=59))
    db.close()

    assert stats.processed == 0
    assert _wallet(session_factory).pending_balance == Decimal("90")


def test_matured_earnings_move_to_available(settled_order, session_factory):
    release_time = SETTLED_AT + timedelta(hours=24)
    db = session_factory()
    stats = release_matured_escrow(db, now=release_time)
    db.close()

    assert stats.released == 2
    assert stats.released_amount == Decimal("90")
    assert stats.sellers == {SELLER_ID}

    wallet = _wallet(session_factory)
    assert wallet.pending_balance == Decimal("0")
    assert wallet.available_balance == Decimal("90")
    assert wallet.total_earned == Decimal("90")

    check = session_factory()
    assert all(t.escrow_released_at == release_time for t in check.query(Transaction).all())
    check.close()


def test_each_transaction_is_released_once(settled_order, session_factory):
    db = session_factory()
    release_matured_escrow(db, now=SETTLED_AT + timedelta(hours=25))
    second = release_matured_escrow(db, now=SETTLED_AT + timedelta(hours=26))
    db.close()

    assert second.processed == 0
    assert _wallet(session_factory).available_balance == Decimal("90")


def test_missing_wallet_is_skipped(settled_order, session_factory):
    db = session_factory()
    db.query(SellerWallet).delete()
    db.commit()

    stats = release_matured_escrow(db, now=SETTLED_AT + timedelta(hours=24))

    assert stats.processed == 2
    assert stats.skipped == 2
    assert stats.released == 0
    assert db.query(Transaction).filter(Transaction.escrow_released_at.isnot(None)).count() == 0
    db.close()


def test_batch_size_limits_a_sweep(settled_order, session_factory):
    db = session_factory()
    first = release_matured_escrow(db, now=SETTLED_AT + timedelta(hours=24), batch_size=1)
    second = release_matured_escrow(db, now=SETTLED_AT + timedelta(hours=24), batch_size=1)
    db.close()

    assert (first.released, second.released) == (1, 1)
    assert _wallet(session_factory).available_balance == Decimal("90")


class TestSchedule:
    def test_next_run_follows_the_cron_expression(self):
        base = datetime(2026, 10, 19, 12, 3, 10)

        assert compute_next_run_at(base_utc=base, cron_expr="*/5 * * * *") == datetime(2026, 10, 19, 12, 5)

    def test_timezone_is_applied_before_converting_back_to_utc(self):
        base = datetime(2026, 1, 15, 0, 0)

        next_run = compute_next_run_at(base_utc=base, cron_expr="0 2 * * *", tz_name="Asia/Kolkata")

        assert next_run == datetime(2026, 1, 15, 20, 30)

    def test_empty_expression_is_rejected(self):
        with pytest.raises(ValueError):
            compute_next_run_at(base_utc=datetime(2026, 1, 1), cron_expr="")
