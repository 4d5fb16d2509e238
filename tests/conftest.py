"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file; time is driven by a fake
clock and alerts are captured in memory instead of being POSTed.
"""
import json
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from marketplace.db import Base
from marketplace.models.alert_record import AlertRecord  # noqa: F401
from marketplace.models.note import Note
from marketplace.models.notification import Notification  # noqa: F401
from marketplace.models.purchase import Purchase  # noqa: F401
from marketplace.models.seller_wallet import SellerWallet
from marketplace.models.transaction import Transaction
from marketplace.models.webhook_log import WebhookLog  # noqa: F401
from marketplace.services.alert_service import AlertDispatcher
from marketplace.services.settlement_service import SettlementEngine
from marketplace.services.signature_service import compute_signature


WEBHOOK_SECRET = "whsec_test_fake_secret"
KEY_SECRET = "rzp_key_secret_test"
NOW = 1_760_000_000.0

BUYER_ID = "buyer-0001-aaaa"
SELLER_ID = "seller-0001-bbbb"


class FakeClock:
    def __init__(self, start: float = NOW):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingAlerts(AlertDispatcher):
    """Alert dispatcher that records alerts instead of delivering them."""

    def __init__(self, session_factory=None):
        super().__init__("http://alerts.test/hook", session_factory, max_workers=1)
        self.sent: list[tuple[str, str, str, dict[str, Any]]] = []

    def notify(self, severity, event, message, metadata=None):
        self.sent.append((severity, event, message, dict(metadata or {})))

    def events(self) -> list[str]:
        return [event for _, event, _, _ in self.sent]

    def severity_of(self, event: str) -> str:
        return next(severity for severity, name, _, _ in self.sent if name == event)


def make_event(
    order_id: str = "order_1",
    payment_id: str = "pay_1",
    created_at: float = NOW,
    event: str = "payment.authorized",
) -> bytes:
    body = {
        "entity": "event",
        "event": event,
        "created_at": int(created_at),
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "amount": 10000,
                    "status": "authorized",
                }
            }
        },
    }
    return json.dumps(body).encode("utf-8")


def sign(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(secret, raw_body)


def sign_checkout(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_signature(secret, f"{order_id}|{payment_id}")


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'settlement.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def alerts(session_factory):
    dispatcher = RecordingAlerts(session_factory)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def settlement(alerts, clock) -> SettlementEngine:
    return SettlementEngine(WEBHOOK_SECRET, alerts, payment_key_secret=KEY_SECRET, clock=clock)


@pytest.fixture
def seed_order(session_factory):
    """
    Create notes and PENDING transactions sharing one gateway order.

    Returns the transaction ids in creation order.
    """

    def _seed(
        order_id: str = "order_1",
        earnings=(Decimal("90"),),
        buyer_id: str = BUYER_ID,
        seller_id: str = SELLER_ID,
        wallet: dict | None = None,
    ) -> list[str]:
        db = session_factory()
        try:
            if wallet is not None:
                db.add(SellerWallet(seller_id=seller_id, **wallet))

            ids = []
            for index, earning in enumerate(earnings):
                note = Note(
                    seller_id=seller_id,
                    title=f"Note {order_id} #{index}",
                    file_url=f"https://files.test/{order_id}/{index}.pdf",
                )
                db.add(note)
                db.flush()

                txn = Transaction(
                    payment_gateway_order_id=order_id,
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    note_id=note.id,
                    amount=Decimal(earning) + Decimal("10"),
                    seller_earning=Decimal(earning),
                    status="PENDING",
                )
                db.add(txn)
                db.flush()
                ids.append(txn.id)

            db.commit()
            return ids
        finally:
            db.close()

    return _seed
