from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from marketplace.db import get_db
from marketplace.deps.services import client_ip, get_settlement_engine
from marketplace.services.settlement_service import SettlementEngine


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/razorpay")
async def handle_razorpay(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None, alias="X-Razorpay-Signature"),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    # signature covers the exact bytes received, so read before any parsing
    raw_body = await request.body()

    outcome = await run_in_threadpool(
        engine.handle_gateway_event,
        db,
        raw_body,
        x_razorpay_signature,
        source_ip=client_ip(request),
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
