"""
Payment settlement engine.

Turns a gateway notification (webhook push) or a client "I paid, verify me"
call into one all-or-nothing update of transactions, purchases, note
counters, seller wallets, notifications and the webhook log.

Pipeline for a webhook push, each step a hard gate:
  1. HMAC-SHA256 of the raw body must match the signature header
  2. event timestamp must be inside the replay window
  3. only `payment.authorized` settles; other events are acknowledged
  4. the derived event id must not be in webhook_logs
  5. the order must exist locally and still be PENDING
  6. settlement unit, committed under SERIALIZABLE isolation

The idempotency check (4), the business-state check (5) and the writes (6)
run inside the same database transaction, and webhook_logs.event_id is
unique, so a duplicate delivery racing the first one is rejected by the
store even if both pass the read.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.exceptions import (
    AlreadyProcessed,
    AuthenticationFailure,
    ConfigurationError,
    Forbidden,
    MalformedEvent,
    MarketplaceError,
    ReplayRejected,
    SettlementFailure,
    UnknownOrder,
    VerificationFailed,
)
from marketplace.models.note import Note
from marketplace.models.notification import Notification
from marketplace.models.purchase import Purchase
from marketplace.models.transaction import Transaction
from marketplace.models.webhook_log import WebhookLog
from marketplace.schemas.webhook import GatewayEvent
from marketplace.services.alert_service import AlertDispatcher
from marketplace.services.signature_service import verify_checkout_signature, verify_webhook_signature
from marketplace.services.wallet_service import credit_seller_wallet


logger = logging.getLogger(__name__)

SETTLEMENT_EVENT_TYPE = "payment.authorized"
MANUAL_VERIFICATION_EVENT_TYPE = "manual.verify"

REPLAY_WINDOW_SECONDS = 5 * 60
ESCROW_HOLD = timedelta(hours=24)

LOCK_WAIT_TIMEOUT_MS = 5000
TRANSACTION_TIMEOUT_MS = 10000

PENDING = "PENDING"
SUCCESS = "SUCCESS"
FAILED = "FAILED"

LOG_PROCESSED = "PROCESSED"
LOG_ALREADY_PROCESSED = "ALREADY_PROCESSED"


@dataclass
class SettlementOutcome:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def derive_event_id(payment_id: str) -> str:
    return f"webhook_{payment_id}"


def generate_watermark_id(buyer_id: str, now_ms: int) -> str:
    return f"WM_{buyer_id[:8]}_{now_ms}_{uuid.uuid4().hex[:8]}"


def _begin_serializable(db: Session) -> None:
    conn = db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    if conn.dialect.name == "postgresql":
        conn.exec_driver_sql(f"SET LOCAL lock_timeout = '{LOCK_WAIT_TIMEOUT_MS}ms'")
        # per-statement and per-idle-gap ceilings; a whole-transaction bound needs PostgreSQL 17
        conn.exec_driver_sql(f"SET LOCAL statement_timeout = '{TRANSACTION_TIMEOUT_MS}ms'")
        conn.exec_driver_sql(f"SET LOCAL idle_in_transaction_session_timeout = '{TRANSACTION_TIMEOUT_MS}ms'")


def _event_logged(db: Session, event_id: str) -> bool:
    return db.query(WebhookLog.id).filter(WebhookLog.event_id == event_id).first() is not None


class SettlementEngine:
    def __init__(
        self,
        webhook_secret: str | None,
        alerts: AlertDispatcher,
        *,
        payment_key_secret: str | None = None,
        clock: Callable[[], float] = time.time,
        replay_window_seconds: int = REPLAY_WINDOW_SECONDS,
        escrow_hold: timedelta = ESCROW_HOLD,
    ):
        if not webhook_secret:
            raise ConfigurationError("RAZORPAY_WEBHOOK_SECRET is not configured")

        self._webhook_secret = webhook_secret
        self._payment_key_secret = payment_key_secret
        self.alerts = alerts
        self._clock = clock
        self.replay_window_seconds = replay_window_seconds
        self.escrow_hold = escrow_hold

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).replace(tzinfo=None)

    # ============================================================
    # GATEWAY PUSH
    # ============================================================

    def handle_gateway_event(
        self,
        db: Session,
        raw_body: bytes,
        signature: str | None,
        claimed_timestamp: int | None = None,
        *,
        source_ip: str | None = None,
    ) -> SettlementOutcome:
        try:
            return self._handle_gateway_event(db, raw_body, signature, claimed_timestamp, source_ip)
        except AlreadyProcessed:
            return SettlementOutcome(200, {"received": True, "already_processed": True})
        except UnknownOrder as e:
            return SettlementOutcome(e.status_code, {"error": e.message})
        except MarketplaceError as e:
            return SettlementOutcome(e.status_code, e.to_dict())

    def _handle_gateway_event(
        self,
        db: Session,
        raw_body: bytes,
        signature: str | None,
        claimed_timestamp: int | None,
        source_ip: str | None,
    ) -> SettlementOutcome:
        self._authenticate(raw_body, signature, source_ip)
        event = self._parse_event(raw_body)

        payment = event.payment
        self._check_freshness(
            claimed_timestamp if claimed_timestamp is not None else event.created_at,
            payment.id if payment else None,
        )

        if event.event != SETTLEMENT_EVENT_TYPE:
            logger.info("ignoring webhook event type", extra={"event_type": event.event})
            return SettlementOutcome(200, {"received": True, "processed": False})

        if payment is None:
            raise MalformedEvent("Missing payment entity")

        transactions = self._settle(
            db,
            order_id=payment.order_id,
            payment_id=payment.id,
            event_type=event.event,
            payload=raw_body.decode("utf-8", errors="replace"),
        )

        logger.info(
            "payment settled via webhook",
            extra={
                "order_id": payment.order_id,
                "payment_id": payment.id,
                "transaction_count": len(transactions),
            },
        )
        self.alerts.warning(
            "WEBHOOK_PAYMENT_SUCCESS",
            f"Payment processed via webhook: {payment.id}",
            {"orderId": payment.order_id, "noteCount": len(transactions)},
        )
        return SettlementOutcome(200, {"received": True, "processed": True})

    def _authenticate(self, raw_body: bytes, signature: str | None, source_ip: str | None) -> None:
        if not signature:
            logger.warning("webhook without signature header", extra={"source_ip": source_ip})
            self.alerts.warning(
                "WEBHOOK_MISSING_SIGNATURE",
                "Webhook received without signature header",
                {"ip": source_ip},
            )
            raise AuthenticationFailure("Missing signature", missing=True)

        if not verify_webhook_signature(self._webhook_secret, raw_body, signature):
            logger.warning("webhook signature mismatch", extra={"source_ip": source_ip})
            self.alerts.critical(
                "WEBHOOK_INVALID_SIGNATURE",
                "Webhook signature verification failed",
                {"ip": source_ip},
            )
            raise AuthenticationFailure("Invalid signature")

    def _parse_event(self, raw_body: bytes) -> GatewayEvent:
        try:
            return GatewayEvent.model_validate_json(raw_body)
        except ValidationError as e:
            raise MalformedEvent("Malformed webhook payload", {"errors": e.error_count()}) from e

    def _check_freshness(self, claimed_timestamp: int, payment_id: str | None) -> None:
        age = self._clock() - claimed_timestamp
        if age > self.replay_window_seconds:
            age_seconds = round(age, 3)
            logger.warning(
                "webhook event too old",
                extra={"payment_id": payment_id, "age_seconds": age_seconds},
            )
            self.alerts.warning(
                "WEBHOOK_EVENT_EXPIRED",
                f"Webhook rejected: event age {age_seconds}s",
                {"eventId": payment_id, "ageSeconds": age_seconds},
            )
            raise ReplayRejected("Event too old", {"ageSeconds": age_seconds})

    def _settle(self, db: Session, *, order_id: str, payment_id: str, event_type: str, payload: str):
        event_id = derive_event_id(payment_id)

        with self._settlement_unit(db, event_id=event_id, order_id=order_id, payment_id=payment_id):
            if _event_logged(db, event_id):
                logger.info("webhook event already processed", extra={"event_id": event_id})
                raise AlreadyProcessed()

            transactions = self._load_order(db, order_id)

            if transactions[0].status != PENDING:
                logger.info(
                    "order already settled",
                    extra={"order_id": order_id, "status": transactions[0].status},
                )
                self._log_event(db, event_id, event_type, payload, LOG_ALREADY_PROCESSED)
                db.commit()
                raise AlreadyProcessed()

            self._apply_settlement(db, transactions, payment_id=payment_id)
            self._log_event(db, event_id, event_type, payload, LOG_PROCESSED)

        return transactions

    # ============================================================
    # CLIENT VERIFICATION
    # ============================================================

    def verify_manual_payment(
        self,
        db: Session,
        *,
        user_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> SettlementOutcome:
        try:
            transactions = self._verify_manual_payment(db, user_id, order_id, payment_id, signature)
        except AlreadyProcessed:
            return SettlementOutcome(
                400,
                {"success": False, "message": "Transaction already processed", "code": "ALREADY_PROCESSED"},
            )
        except MarketplaceError as e:
            return SettlementOutcome(e.status_code, {"success": False, "message": e.message, "code": e.code})

        logger.info(
            "payment settled via client verification",
            extra={"order_id": order_id, "payment_id": payment_id, "transaction_count": len(transactions)},
        )
        return SettlementOutcome(
            200,
            {
                "success": True,
                "message": "Payment verified successfully!",
                "data": {
                    "orderId": order_id,
                    "purchasedNoteIds": [t.note_id for t in transactions],
                },
            },
        )

    def _verify_manual_payment(self, db: Session, user_id: str, order_id: str, payment_id: str, signature: str):
        if not self._payment_key_secret:
            logger.error("payment verification attempted without RAZORPAY_KEY_SECRET")
            raise SettlementFailure("Payment service misconfigured")

        event_id = derive_event_id(payment_id)

        with self._settlement_unit(db, event_id=event_id, order_id=order_id, payment_id=payment_id):
            transactions = self._load_order(db, order_id)

            if transactions[0].buyer_id != user_id:
                raise Forbidden()

            if transactions[0].status != PENDING or _event_logged(db, event_id):
                raise AlreadyProcessed()

            if not verify_checkout_signature(self._payment_key_secret, order_id, payment_id, signature):
                now = self._now()
                for txn in transactions:
                    txn.status = FAILED
                    txn.updated_at = now
                db.commit()
                logger.warning("client payment signature mismatch", extra={"order_id": order_id, "user_id": user_id})
                raise VerificationFailed("Payment verification failed")

            self._apply_settlement(db, transactions, payment_id=payment_id, signature=signature)
            payload = json.dumps({"order_id": order_id, "payment_id": payment_id, "user_id": user_id})
            self._log_event(db, event_id, MANUAL_VERIFICATION_EVENT_TYPE, payload, LOG_PROCESSED)

        return transactions

    # ============================================================
    # SHARED SETTLEMENT UNIT
    # ============================================================

    @contextmanager
    def _settlement_unit(self, db: Session, *, event_id: str, order_id: str, payment_id: str):
        _begin_serializable(db)
        try:
            yield
            db.commit()
        except MarketplaceError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            if _event_logged(db, event_id):
                logger.info("concurrent delivery already settled event", extra={"event_id": event_id})
                raise AlreadyProcessed() from e
            self._fail(e, order_id=order_id, payment_id=payment_id)
        except Exception as e:
            db.rollback()
            self._fail(e, order_id=order_id, payment_id=payment_id)

    def _fail(self, error: Exception, *, order_id: str, payment_id: str):
        logger.exception(
            "settlement failed; rolled back",
            extra={"order_id": order_id, "payment_id": payment_id},
        )
        self.alerts.critical(
            "WEBHOOK_PROCESSING_ERROR",
            f"Payment settlement failed: {error}",
            {"orderId": order_id, "paymentId": payment_id, "error": str(error)},
        )
        raise SettlementFailure() from error

    def _load_order(self, db: Session, order_id: str) -> list[Transaction]:
        transactions = (
            db.query(Transaction)
            .filter(Transaction.payment_gateway_order_id == order_id)
            .order_by(Transaction.created_at.asc(), Transaction.id.asc())
            .all()
        )
        if not transactions:
            logger.warning("order not found", extra={"order_id": order_id})
            raise UnknownOrder(order_id)
        return transactions

    def _log_event(self, db: Session, event_id: str, event_type: str, payload: str, status: str) -> None:
        db.add(
            WebhookLog(
                event_id=event_id,
                event_type=event_type,
                payload=payload,
                status=status,
                processed_at=self._now(),
            )
        )
        db.flush()

    def _apply_settlement(
        self,
        db: Session,
        transactions: list[Transaction],
        *,
        payment_id: str,
        signature: str | None = None,
    ) -> None:
        now = self._now()
        escrow_release_at = now + self.escrow_hold
        buyer_id = transactions[0].buyer_id

        for txn in transactions:
            txn.status = SUCCESS
            txn.payment_gateway_payment_id = payment_id
            if signature:
                txn.payment_gateway_signature = signature
            txn.escrow_release_at = escrow_release_at
            txn.updated_at = now
        db.flush()

        note_ids = {txn.note_id for txn in transactions}
        notes = {n.id: n for n in db.query(Note).filter(Note.id.in_(note_ids)).all()}

        now_ms = int(self._clock() * 1000)
        for txn in transactions:
            note = notes.get(txn.note_id)
            if note is None:
                raise LookupError(f"note {txn.note_id} missing for transaction {txn.id}")

            db.add(
                Purchase(
                    user_id=buyer_id,
                    note_id=txn.note_id,
                    transaction_id=txn.id,
                    watermarked_file_url=note.file_url,
                    watermark_id=generate_watermark_id(buyer_id, now_ms),
                    download_count=0,
                    is_active=True,
                )
            )

            note.purchase_count = (note.purchase_count or 0) + 1
            note.updated_at = now

            credit_seller_wallet(db, txn.seller_id, txn.seller_earning)

            db.add(
                Notification(
                    user_id=txn.seller_id,
                    type="SALE",
                    title="New Sale!",
                    message=f'You sold "{note.title}"',
                )
            )

        db.add(
            Notification(
                user_id=buyer_id,
                type="PURCHASE",
                title="Purchase Successful",
                message=f"You successfully purchased {len(transactions)} notes.",
            )
        )
        db.flush()
