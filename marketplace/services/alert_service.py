"""
Security / operational alert dispatcher with a dead-letter queue.

notify() hands the alert to a bounded worker pool and returns at once; it
never raises. Each alert is POSTed to the configured endpoint with up to
three attempts and exponential backoff (1s, 2s, ...). Whatever the outcome,
one AlertRecord row is written: DELIVERED rows are the audit trail, FAILED
rows are the dead-letter queue. Nothing re-drives FAILED rows automatically.

At most `max_pending` alerts are queued or in flight; beyond that, new
alerts are logged at ERROR and dropped.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from marketplace.models.alert_record import AlertRecord


logger = logging.getLogger(__name__)

CRITICAL = "CRITICAL"
HIGH = "HIGH"
WARNING = "WARNING"

DELIVERED = "DELIVERED"
FAILED = "FAILED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AlertDeliveryError(Exception):
    pass


@dataclass
class Alert:
    severity: str
    event: str
    message: str
    environment: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "severity": self.severity,
            "event": self.event,
            "message": self.message,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat() + "Z",
            "environment": self.environment,
        }


@dataclass
class AlertStats:
    failed_count: int
    delivered_count: int
    average_attempts: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "failedCount": self.failed_count,
            "deliveredCount": self.delivered_count,
            "averageAttempts": self.average_attempts,
        }


class AlertDispatcher:
    def __init__(
        self,
        webhook_url: str | None,
        session_factory: Callable[[], Session],
        *,
        environment: str = "development",
        max_workers: int = 4,
        max_pending: int = 100,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        timeout_seconds: float = 5.0,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.webhook_url = webhook_url
        self.environment = environment
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.timeout_seconds = timeout_seconds

        self._session_factory = session_factory
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout_seconds)
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="alert-dispatch")
        self._slots = threading.BoundedSemaphore(max(1, max_pending))

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, severity: str, event: str, message: str, metadata: dict[str, Any] | None = None) -> None:
        try:
            if not self.enabled:
                logger.warning(
                    "alert endpoint not configured; alert logged only",
                    extra={"severity": severity, "alert_event": event, "alert_message": message},
                )
                return

            if not self._slots.acquire(blocking=False):
                logger.error(
                    "alert queue full; alert dropped",
                    extra={
                        "severity": severity,
                        "alert_event": event,
                        "alert_message": message,
                        "alert_metadata": metadata,
                    },
                )
                return

            alert = Alert(
                severity=severity,
                event=event,
                message=message,
                environment=self.environment,
                metadata=dict(metadata or {}),
            )
            try:
                future = self._executor.submit(self._deliver, alert)
            except Exception:
                self._slots.release()
                raise
            future.add_done_callback(lambda _: self._slots.release())
        except Exception:
            logger.exception("alert dispatch failed", extra={"severity": severity, "alert_event": event})

    def critical(self, event: str, message: str, metadata: dict[str, Any] | None = None) -> None:
        self.notify(CRITICAL, event, message, metadata)

    def high(self, event: str, message: str, metadata: dict[str, Any] | None = None) -> None:
        self.notify(HIGH, event, message, metadata)

    def warning(self, event: str, message: str, metadata: dict[str, Any] | None = None) -> None:
        self.notify(WARNING, event, message, metadata)

    # ------------------------------------------------------------
    # delivery (runs on the worker pool)
    # ------------------------------------------------------------

    def _post(self, alert: Alert) -> None:
        response = self._client.post(
            self.webhook_url,
            json=alert.to_payload(),
            timeout=self.timeout_seconds,
        )
        if not response.is_success:
            raise AlertDeliveryError(f"HTTP {response.status_code}: {response.reason_phrase}")

    def _deliver(self, alert: Alert) -> str:
        attempts: list[dict[str, Any]] = []

        def start_attempt(retry_state: RetryCallState) -> None:
            attempts.append({"attempt": retry_state.attempt_number, "timestamp": _utcnow().isoformat()})

        def record_failure(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            attempts[-1]["error"] = str(error) or error.__class__.__name__
            logger.warning(
                "alert delivery attempt failed",
                extra={
                    "alert_event": alert.event,
                    "attempt": retry_state.attempt_number,
                    "max_attempts": self.max_attempts,
                    "error": attempts[-1]["error"],
                },
            )

        def dead_letter(retry_state: RetryCallState) -> str:
            logger.error(
                "alert moved to dead-letter queue",
                extra={"alert_event": alert.event, "attempt_count": len(attempts)},
            )
            self._persist(alert, attempts, FAILED)
            return FAILED

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay_seconds),
            retry=retry_if_exception_type((httpx.HTTPError, AlertDeliveryError)),
            sleep=self._sleep,
            before=start_attempt,
            after=record_failure,
            retry_error_callback=dead_letter,
        )

        try:
            if retrying(self._post, alert) == FAILED:
                return FAILED

            logger.info(
                "alert delivered",
                extra={"alert_event": alert.event, "attempt": len(attempts), "max_attempts": self.max_attempts},
            )
            self._persist(alert, attempts, DELIVERED)
            return DELIVERED

        except Exception:
            logger.exception("alert worker crashed", extra={"alert": alert.to_payload()})
            return FAILED

    def _persist(self, alert: Alert, attempts: list[dict[str, Any]], status: str) -> None:
        db = self._session_factory()
        try:
            db.add(
                AlertRecord(
                    severity=alert.severity,
                    event=alert.event,
                    message=alert.message,
                    metadata_=alert.metadata,
                    environment=alert.environment,
                    attempts=attempts,
                    attempt_count=len(attempts),
                    status=status,
                    created_at=alert.timestamp,
                    last_attempt_at=_utcnow(),
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            # last resort: the log line is the only remaining copy
            logger.exception(
                "failed to persist alert record",
                extra={"status": status, "alert": alert.to_payload(), "attempts": attempts},
            )
        finally:
            db.close()

    # ------------------------------------------------------------
    # monitoring / lifecycle
    # ------------------------------------------------------------

    def stats(self, db: Session) -> AlertStats:
        failed = db.query(func.count(AlertRecord.id)).filter(AlertRecord.status == FAILED).scalar()
        delivered = db.query(func.count(AlertRecord.id)).filter(AlertRecord.status == DELIVERED).scalar()
        average = db.query(func.avg(AlertRecord.attempt_count)).scalar()

        return AlertStats(
            failed_count=int(failed or 0),
            delivered_count=int(delivered or 0),
            average_attempts=round(float(average or 0), 2),
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        if self._owns_client:
            self._client.close()
