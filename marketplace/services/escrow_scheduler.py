from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from croniter import croniter

from marketplace.config import get_settings
from marketplace.db import SessionLocal
from marketplace.services.escrow_service import release_matured_escrow


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # Keep naive UTC timestamps to match existing DB column types/semantics.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def compute_next_run_at(*, base_utc: datetime, cron_expr: str, tz_name: str = "UTC") -> datetime:
    if not cron_expr:
        raise ValueError("cron expression is required")

    tz = ZoneInfo(tz_name)
    base = base_utc.replace(tzinfo=ZoneInfo("UTC")) if base_utc.tzinfo is None else base_utc
    it = croniter(cron_expr, base.astimezone(tz))
    next_local: datetime = it.get_next(datetime)
    return next_local.astimezone(ZoneInfo("UTC")).replace(tzinfo=None)


def run_sweep_once(*, now: datetime | None = None, batch_size: int = 500):
    db = SessionLocal()
    try:
        return release_matured_escrow(db, now=now or _utcnow(), batch_size=batch_size)
    finally:
        db.close()


def run_scheduler_loop(
    *,
    cron_expr: str,
    batch_size: int = 500,
    max_sleep_seconds: int = 60,
):
    logger.info(
        "escrow release scheduler started",
        extra={"cron": cron_expr, "batch_size": batch_size, "max_sleep_seconds": max_sleep_seconds},
    )

    next_run_at = compute_next_run_at(base_utc=_utcnow(), cron_expr=cron_expr)

    while True:
        now = _utcnow()
        if now < next_run_at:
            sleep_for = min(max_sleep_seconds, max(1, int((next_run_at - now).total_seconds())))
            logger.debug(
                "escrow sweep not due; sleeping",
                extra={"sleep_for_seconds": sleep_for, "next_run_at": next_run_at.isoformat()},
            )
            time.sleep(sleep_for)
            continue

        try:
            stats = run_sweep_once(now=now, batch_size=batch_size)
            logger.info(
                "escrow sweep success",
                extra={
                    "processed": stats.processed,
                    "released": stats.released,
                    "skipped": stats.skipped,
                    "released_amount": str(stats.released_amount),
                    "sellers": len(stats.sellers),
                },
            )
        except Exception:
            # On failure, keep moving next_run_at forward to avoid a tight retry loop.
            logger.exception("escrow sweep failed")

        next_run_at = compute_next_run_at(base_utc=now, cron_expr=cron_expr)


def main():
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    batch_size = int(os.getenv("ESCROW_SWEEP_BATCH_SIZE") or "500")
    max_sleep_seconds = int(os.getenv("ESCROW_SWEEP_MAX_SLEEP_SECONDS") or "60")

    run_scheduler_loop(
        cron_expr=settings.escrow_sweep_cron,
        batch_size=batch_size,
        max_sleep_seconds=max_sleep_seconds,
    )


if __name__ == "__main__":
    main()
