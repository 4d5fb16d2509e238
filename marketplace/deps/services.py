from fastapi import Request

from marketplace.services.alert_service import AlertDispatcher
from marketplace.services.rate_limiter import RateLimiter
from marketplace.services.settlement_service import SettlementEngine


def get_settlement_engine(request: Request) -> SettlementEngine:
    return request.app.state.settlement_engine


def get_alert_dispatcher(request: Request) -> AlertDispatcher:
    return request.app.state.alert_dispatcher


def get_payment_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.payment_rate_limiter


def get_general_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.general_rate_limiter


def client_ip(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
