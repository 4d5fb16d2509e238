from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from marketplace.db import get_db
from marketplace.deps.rate_limit import enforce_general_rate_limit
from marketplace.schemas.wallet import WalletOut
from marketplace.services.wallet_service import get_wallet

router = APIRouter(prefix="/wallets", tags=["wallet"], dependencies=[Depends(enforce_general_rate_limit)])


@router.get("/{seller_id}", response_model=WalletOut)
def read_wallet(seller_id: str, db: Session = Depends(get_db)):

    wallet = get_wallet(db, seller_id)

    if not wallet:
        raise HTTPException(status_code=404, detail="Wallet not found")

    return wallet
