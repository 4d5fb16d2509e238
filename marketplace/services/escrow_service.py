from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from marketplace.models.transaction import Transaction
from marketplace.services.wallet_service import release_pending_balance


logger = logging.getLogger(__name__)


@dataclass
class EscrowReleaseStats:
    processed: int = 0
    released: int = 0
    skipped: int = 0
    released_amount: Decimal = Decimal("0")
    sellers: set[str] = field(default_factory=set)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def release_matured_escrow(
    db: Session,
    *,
    now: datetime | None = None,
    batch_size: int = 500,
) -> EscrowReleaseStats:
    """
    Promote settled seller earnings whose escrow window elapsed.

    Each transaction is released at most once (escrow_released_at stamp);
    the whole batch commits together.
    """
    if now is None:
        now = _utcnow()

    matured = (
        db.query(Transaction)
        .filter(Transaction.status == "SUCCESS")
        .filter(Transaction.escrow_release_at.isnot(None))
        .filter(Transaction.escrow_release_at <= now)
        .filter(Transaction.escrow_released_at.is_(None))
        .order_by(Transaction.escrow_release_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
        .all()
    )

    stats = EscrowReleaseStats()
    try:
        for txn in matured:
            stats.processed += 1
            wallet = release_pending_balance(db, txn.seller_id, txn.seller_earning)
            if wallet is None:
                stats.skipped += 1
                logger.error(
                    "escrow release skipped: seller wallet missing",
                    extra={"transaction_id": txn.id, "seller_id": txn.seller_id},
                )
                continue

            txn.escrow_released_at = now
            stats.released += 1
            stats.released_amount += Decimal(str(txn.seller_earning))
            stats.sellers.add(txn.seller_id)

        db.commit()
    except Exception:
        db.rollback()
        raise

    return stats
