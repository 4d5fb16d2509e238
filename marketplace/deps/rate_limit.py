import logging

from fastapi import Depends, Request

from marketplace.deps.services import (
    client_ip,
    get_alert_dispatcher,
    get_general_rate_limiter,
    get_payment_rate_limiter,
)
from marketplace.deps.user import get_current_user_id
from marketplace.exceptions import QuotaExceeded
from marketplace.services.alert_service import AlertDispatcher
from marketplace.services.rate_limiter import RateLimiter


logger = logging.getLogger(__name__)


def enforce_payment_rate_limit(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    limiter: RateLimiter = Depends(get_payment_rate_limiter),
    alerts: AlertDispatcher = Depends(get_alert_dispatcher),
):
    ip = client_ip(request)
    admission = limiter.admit({"user": user_id, "ip": ip, "global": "global"})
    if admission.allowed:
        return

    logger.warning(
        "rate limit exceeded",
        extra={
            "user_id": user_id,
            "ip": ip,
            "endpoint": request.url.path,
            "denied_layers": list(admission.denied_layers),
        },
    )
    alerts.warning(
        "RATE_LIMIT_EXCEEDED",
        "User hit payment rate limit",
        {
            "userId": user_id,
            "ip": ip,
            "retryAfter": admission.retry_after,
            "endpoint": request.url.path,
            "layers": list(admission.denied_layers),
        },
    )
    raise QuotaExceeded(admission.retry_after)


def enforce_general_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_general_rate_limiter),
):
    admission = limiter.admit({"ip": client_ip(request)})
    if not admission.allowed:
        raise QuotaExceeded(admission.retry_after)
