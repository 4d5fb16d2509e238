from decimal import Decimal

from sqlalchemy.orm import Session

from marketplace.models.seller_wallet import SellerWallet


MINIMUM_WITHDRAWAL_AMOUNT = Decimal("100")


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def get_wallet(db: Session, seller_id: str):
    return db.query(SellerWallet).filter(SellerWallet.seller_id == seller_id).first()


def credit_seller_wallet(db: Session, seller_id: str, amount) -> SellerWallet:
    """
    Credit a sale to the seller's escrow (pending) balance.

    Upsert: the first sale for a seller creates the wallet with the earning
    as its initial pending balance and total earned.
    """
    amount = _as_decimal(amount)

    wallet = (
        db.query(SellerWallet)
        .filter(SellerWallet.seller_id == seller_id)
        .with_for_update()
        .first()
    )

    if wallet is None:
        wallet = SellerWallet(
            seller_id=seller_id,
            available_balance=Decimal("0"),
            pending_balance=amount,
            total_earned=amount,
            total_withdrawn=Decimal("0"),
            minimum_withdrawal_amount=MINIMUM_WITHDRAWAL_AMOUNT,
            is_active=True,
        )
        db.add(wallet)
    else:
        wallet.pending_balance = _as_decimal(wallet.pending_balance) + amount
        wallet.total_earned = _as_decimal(wallet.total_earned) + amount

    db.flush()
    return wallet


def release_pending_balance(db: Session, seller_id: str, amount):
    """Move funds whose escrow window elapsed from pending to available."""
    amount = _as_decimal(amount)

    wallet = (
        db.query(SellerWallet)
        .filter(SellerWallet.seller_id == seller_id)
        .with_for_update()
        .first()
    )
    if wallet is None:
        return None

    wallet.pending_balance = _as_decimal(wallet.pending_balance) - amount
    wallet.available_balance = _as_decimal(wallet.available_balance) + amount
    db.flush()
    return wallet
