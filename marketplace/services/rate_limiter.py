"""
Multi-layer rate limiting for sensitive endpoints.

Each layer is a fixed-window counter keyed by (prefix, key). The window
opens on the first consumption; the consumption that pushes the count past
the quota extends the key's lifetime to the block duration, so the key
stays denied until it expires.

Counters live in Redis when it is reachable at startup and in process
memory otherwise. The choice is made once by build_counter_store() and the
resulting store is injected into the limiters.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Protocol

import redis


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimiterPolicy:
    key_prefix: str
    points: int
    duration: int  # seconds
    block_duration: int = 0  # seconds


PAYMENT_USER_POLICY = LimiterPolicy("rl:payment:user", points=10, duration=60, block_duration=300)
IP_POLICY = LimiterPolicy("rl:ip", points=100, duration=60, block_duration=600)
GLOBAL_PAYMENT_POLICY = LimiterPolicy("rl:global:payment", points=5000, duration=1, block_duration=10)


@dataclass(frozen=True)
class ConsumeResult:
    allowed: bool
    consumed_points: int
    ms_before_next: int


@dataclass(frozen=True)
class Admission:
    allowed: bool
    retry_after: int = 0
    denied_layers: tuple[str, ...] = ()


class CounterStore(Protocol):
    name: str

    def consume(self, policy: LimiterPolicy, key: str) -> ConsumeResult: ...


def _evaluate(policy: LimiterPolicy, count: int, ttl_ms: int) -> tuple[bool, int]:
    """Returns (allowed, lifetime_ms) after a consumption that brought the counter to `count`."""
    if count <= policy.points:
        return True, ttl_ms
    if policy.block_duration > 0 and count == policy.points + 1:
        return False, policy.block_duration * 1000
    return False, ttl_ms


class MemoryCounterStore:
    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval_seconds: float = 60.0):
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: dict[str, tuple[int, float]] = {}
        self._sweep_interval = sweep_interval_seconds
        self._next_sweep_at = clock() + sweep_interval_seconds

    def __len__(self) -> int:
        return len(self._counters)

    def _sweep_expired(self, now: float) -> None:
        # keys are caller-controlled (user ids, addresses); expired ones must not pile up
        if now < self._next_sweep_at:
            return
        self._counters = {k: v for k, v in self._counters.items() if v[1] > now}
        self._next_sweep_at = now + self._sweep_interval

    def consume(self, policy: LimiterPolicy, key: str) -> ConsumeResult:
        full_key = f"{policy.key_prefix}:{key}"
        with self._lock:
            now = self._clock()
            self._sweep_expired(now)
            count, expires_at = self._counters.get(full_key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + policy.duration

            count += 1
            allowed, lifetime_ms = _evaluate(policy, count, int(round((expires_at - now) * 1000)))
            if not allowed and count == policy.points + 1 and policy.block_duration > 0:
                expires_at = now + policy.block_duration

            self._counters[full_key] = (count, expires_at)
            return ConsumeResult(allowed=allowed, consumed_points=count, ms_before_next=max(0, lifetime_ms))

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


class RedisCounterStore:
    """
    Redis-backed counters shared by every process instance.

    A Redis error during a request is absorbed by consuming from an
    in-process fallback store for that call.
    """

    name = "redis"

    def __init__(self, client: redis.Redis, fallback: MemoryCounterStore | None = None):
        self._client = client
        self._fallback = fallback or MemoryCounterStore()

    def consume(self, policy: LimiterPolicy, key: str) -> ConsumeResult:
        full_key = f"{policy.key_prefix}:{key}"
        try:
            pipe = self._client.pipeline()
            pipe.set(full_key, 0, px=policy.duration * 1000, nx=True)
            pipe.incr(full_key)
            pipe.pttl(full_key)
            _, count, ttl_ms = pipe.execute()

            count = int(count)
            allowed, lifetime_ms = _evaluate(policy, count, int(ttl_ms))
            if not allowed and count == policy.points + 1 and policy.block_duration > 0:
                self._client.pexpire(full_key, policy.block_duration * 1000)

            return ConsumeResult(allowed=allowed, consumed_points=count, ms_before_next=max(0, lifetime_ms))

        except redis.RedisError as e:
            logger.warning(
                "redis counter unavailable; consuming from in-process fallback",
                extra={"key_prefix": policy.key_prefix, "error": str(e)},
            )
            return self._fallback.consume(policy, key)


def build_counter_store(redis_url: str | None, *, connect_timeout: float = 5.0) -> CounterStore:
    if not redis_url:
        logger.info("rate limiting: in-process counters (redis not configured)")
        return MemoryCounterStore()

    try:
        client = redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=connect_timeout,
            socket_timeout=connect_timeout,
        )
        client.ping()
    except redis.RedisError as e:
        logger.info(
            "redis not available for rate limiting; using in-process counters",
            extra={"error": str(e)},
        )
        return MemoryCounterStore()

    logger.info("rate limiting: redis counters")
    return RedisCounterStore(client)


class RateLimiter:
    """
    All layers must grant quota for a call to be admitted.

    Layers are consumed concurrently and the call waits for every layer
    before deciding.
    """

    def __init__(self, store: CounterStore, layers: dict[str, LimiterPolicy]):
        self.store = store
        self.layers = dict(layers)
        self._executor = ThreadPoolExecutor(max_workers=max(1, len(self.layers)), thread_name_prefix="rate-limit")

    def admit(self, layer_keys: dict[str, str]) -> Admission:
        missing = set(self.layers) - set(layer_keys)
        if missing:
            raise ValueError(f"missing keys for layers: {sorted(missing)}")

        names = list(self.layers)
        if len(names) == 1:
            results = [self.store.consume(self.layers[names[0]], layer_keys[names[0]])]
        else:
            futures = [
                self._executor.submit(self.store.consume, self.layers[name], layer_keys[name])
                for name in names
            ]
            results = [f.result() for f in futures]

        denied = [(name, r) for name, r in zip(names, results) if not r.allowed]
        if not denied:
            return Admission(allowed=True)

        ms_before_next = max(r.ms_before_next for _, r in denied)
        retry_after = round(ms_before_next / 1000) or 60
        return Admission(
            allowed=False,
            retry_after=retry_after,
            denied_layers=tuple(name for name, _ in denied),
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def build_payment_rate_limiter(store: CounterStore) -> RateLimiter:
    return RateLimiter(
        store,
        {
            "user": PAYMENT_USER_POLICY,
            "ip": IP_POLICY,
            "global": GLOBAL_PAYMENT_POLICY,
        },
    )


def build_general_rate_limiter(store: CounterStore) -> RateLimiter:
    return RateLimiter(store, {"ip": IP_POLICY})
