from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.db import get_db
from marketplace.deps.rate_limit import enforce_general_rate_limit
from marketplace.deps.services import get_alert_dispatcher
from marketplace.schemas.alert import AlertStatsOut
from marketplace.services.alert_service import AlertDispatcher

router = APIRouter(prefix="/health", tags=["health"], dependencies=[Depends(enforce_general_rate_limit)])


@router.get("")
def health():
    return {"status": "ok"}


@router.get("/alerts", response_model=AlertStatsOut)
def alert_stats(
    db: Session = Depends(get_db),
    alerts: AlertDispatcher = Depends(get_alert_dispatcher),
):
    return alerts.stats(db).to_dict()
