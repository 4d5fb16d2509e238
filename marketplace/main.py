import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from marketplace.config import Settings, get_settings
from marketplace.db import Base, SessionLocal, engine as default_engine
from marketplace.exceptions import QuotaExceeded

from marketplace.models.note import Note
from marketplace.models.transaction import Transaction
from marketplace.models.purchase import Purchase
from marketplace.models.seller_wallet import SellerWallet
from marketplace.models.notification import Notification
from marketplace.models.webhook_log import WebhookLog
from marketplace.models.alert_record import AlertRecord

from marketplace.routes.webhooks import router as webhooks_router
from marketplace.routes.payments import router as payments_router
from marketplace.routes.wallet import router as wallet_router
from marketplace.routes.health import router as health_router

from marketplace.services.alert_service import AlertDispatcher
from marketplace.services.rate_limiter import (
    CounterStore,
    build_counter_store,
    build_general_rate_limiter,
    build_payment_rate_limiter,
)
from marketplace.services.settlement_service import SettlementEngine


logger = logging.getLogger(__name__)


def create_app(
    *,
    settings: Settings | None = None,
    db_engine=None,
    session_factory=None,
    alert_dispatcher: AlertDispatcher | None = None,
    counter_store: CounterStore | None = None,
) -> FastAPI:
    app = FastAPI(title="Marketplace Settlement")

    # ─── CORS ─────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "https://localhost:3000",
            "http://127.0.0.1:3000",
            "https://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def startup():
        cfg = settings or get_settings()
        logging.basicConfig(level=cfg.log_level)

        # a missing webhook secret aborts startup
        webhook_secret = cfg.require_webhook_secret()

        Base.metadata.create_all(bind=db_engine or default_engine)

        alerts = alert_dispatcher or AlertDispatcher(
            cfg.alert_webhook_url,
            session_factory or SessionLocal,
            environment=cfg.environment,
            max_workers=cfg.alert_workers,
            max_pending=cfg.alert_max_pending,
        )
        store = counter_store or build_counter_store(cfg.redis_url)

        app.state.alert_dispatcher = alerts
        app.state.payment_rate_limiter = build_payment_rate_limiter(store)
        app.state.general_rate_limiter = build_general_rate_limiter(store)
        app.state.settlement_engine = SettlementEngine(
            webhook_secret,
            alerts,
            payment_key_secret=cfg.payment_key_secret,
        )

        logger.info(
            "settlement core started",
            extra={
                "environment": cfg.environment,
                "alerts_enabled": alerts.enabled,
                "counter_store": store.name,
            },
        )

    @app.on_event("shutdown")
    def shutdown():
        app.state.payment_rate_limiter.shutdown()
        app.state.general_rate_limiter.shutdown()
        app.state.alert_dispatcher.shutdown(wait=True)

    @app.exception_handler(QuotaExceeded)
    async def quota_exceeded_handler(request: Request, exc: QuotaExceeded):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "code": exc.code,
                "message": exc.message,
                "retryAfter": exc.retry_after,
            },
            headers={"Retry-After": str(exc.retry_after)},
        )

    app.include_router(webhooks_router)
    app.include_router(payments_router)
    app.include_router(wallet_router)
    app.include_router(health_router)

    @app.get("/")
    def read_root():
        return {"message": "Marketplace settlement core is running"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8001, reload=True)
