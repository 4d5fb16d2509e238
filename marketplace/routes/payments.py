from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from marketplace.db import get_db
from marketplace.deps.rate_limit import enforce_payment_rate_limit
from marketplace.deps.services import get_settlement_engine
from marketplace.deps.user import get_current_user_id
from marketplace.schemas.payment import ManualVerificationIn
from marketplace.services.settlement_service import SettlementEngine


router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/verify", dependencies=[Depends(enforce_payment_rate_limit)])
def verify_payment(
    body: ManualVerificationIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    outcome = engine.verify_manual_payment(
        db,
        user_id=user_id,
        order_id=body.razorpayOrderId,
        payment_id=body.razorpayPaymentId,
        signature=body.razorpaySignature,
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
