"""Process-wide coordination state for the assignment pass.

Three concerns share a backend: the global assignment lock, per-branch
round-robin cursors with a TTL, and the "last update" signal polled by
clients. The in-memory backend serves a single process; the Redis backend
lets several API processes and the resident assigner share one lock.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_CURSOR_TTL_SECONDS = 21600
DEFAULT_SIGNAL_TTL_SECONDS = 21600


class InMemoryAssignmentLock:
    """Non-reentrant lock with bounded wait; a second acquire from the same thread waits too."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self, *, timeout_s: float) -> bool:
        return self._lock.acquire(timeout=max(0.0, float(timeout_s)))

    def release(self) -> None:
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


class InMemoryCursorStore:
    def __init__(self, *, time_fn: Callable[[], float] = time.monotonic) -> None:
        self._time_fn = time_fn
        self._lock = threading.RLock()
        self._cursors: dict[str, tuple[int, float]] = {}

    def get(self, branch: str) -> int | None:
        with self._lock:
            item = self._cursors.get(branch)
            if item is None:
                return None
            index, expires_at = item
            if expires_at <= self._time_fn():
                self._cursors.pop(branch, None)
                return None
            return index

    def set(self, branch: str, index: int, *, ttl_s: int = DEFAULT_CURSOR_TTL_SECONDS) -> None:
        with self._lock:
            self._cursors[branch] = (int(index), self._time_fn() + max(1, int(ttl_s)))


class InMemoryUpdateSignal:
    """Monotonic millisecond stamp raised on every new submission."""

    def __init__(
        self,
        *,
        ttl_s: int = DEFAULT_SIGNAL_TTL_SECONDS,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = max(1, int(ttl_s))
        self._time_fn = time_fn
        self._lock = threading.Lock()
        self._value: int | None = None
        self._expires_at = 0.0

    def touch(self, *, now_ms: int) -> int:
        with self._lock:
            current = self._current()
            value = int(now_ms) if current is None else max(int(now_ms), current + 1)
            self._value = value
            self._expires_at = self._time_fn() + self._ttl_s
            return value

    def _current(self) -> int | None:
        if self._value is None or self._expires_at <= self._time_fn():
            return None
        return self._value

    def last(self) -> int | None:
        with self._lock:
            return self._current()


def _import_redis() -> Any:
    try:
        import redis  # type: ignore
    except ImportError as exc:
        raise RuntimeError(
            "redis is required for CONCILIA_COORDINATION_BACKEND=redis; install redis>=5"
        ) from exc
    return redis


class RedisAssignmentLock:
    """Distributed lock; the lease bounds how long a crashed holder can block others."""

    def __init__(self, *, client: Any, namespace: str, lease_s: int = 300) -> None:
        self._client = client
        self._name = f"{namespace}:assignment:lock"
        self._lease_s = max(1, int(lease_s))
        self._held: Any = None

    def acquire(self, *, timeout_s: float) -> bool:
        lock = self._client.lock(self._name, timeout=self._lease_s, blocking_timeout=max(0.0, float(timeout_s)))
        if not lock.acquire(blocking=True, blocking_timeout=max(0.0, float(timeout_s))):
            return False
        self._held = lock
        return True

    def release(self) -> None:
        lock = self._held
        self._held = None
        if lock is not None:
            lock.release()


class RedisCursorStore:
    def __init__(self, *, client: Any, namespace: str) -> None:
        self._client = client
        self._namespace = namespace

    def _key(self, branch: str) -> str:
        return f"{self._namespace}:assignment:cursor:{branch}"

    def get(self, branch: str) -> int | None:
        raw = self._client.get(self._key(branch))
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    def set(self, branch: str, index: int, *, ttl_s: int = DEFAULT_CURSOR_TTL_SECONDS) -> None:
        self._client.set(self._key(branch), str(int(index)), ex=max(1, int(ttl_s)))


class RedisUpdateSignal:
    def __init__(self, *, client: Any, namespace: str, ttl_s: int = DEFAULT_SIGNAL_TTL_SECONDS) -> None:
        self._client = client
        self._key = f"{namespace}:records:last_update"
        self._ttl_s = max(1, int(ttl_s))

    def last(self) -> int | None:
        raw = self._client.get(self._key)
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    def touch(self, *, now_ms: int) -> int:
        current = self.last()
        value = int(now_ms) if current is None else max(int(now_ms), current + 1)
        self._client.set(self._key, str(value), ex=self._ttl_s)
        return value


@dataclass
class Coordination:
    lock: Any
    cursors: Any
    update_signal: Any
    backend: str = "memory"


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def create_coordination_from_env(environ: Mapping[str, str] | None = None) -> Coordination:
    env = os.environ if environ is None else environ
    backend = env.get("CONCILIA_COORDINATION_BACKEND", "memory").strip().lower()
    signal_ttl_s = _env_int(env, "CONCILIA_UPDATE_SIGNAL_TTL_SECONDS", default=DEFAULT_SIGNAL_TTL_SECONDS, minimum=1)
    if backend == "memory":
        return Coordination(
            lock=InMemoryAssignmentLock(),
            cursors=InMemoryCursorStore(),
            update_signal=InMemoryUpdateSignal(ttl_s=signal_ttl_s),
            backend="memory",
        )
    if backend == "redis":
        dsn = env.get("REDIS_DSN", "").strip()
        if not dsn:
            raise ValueError("REDIS_DSN must be set when CONCILIA_COORDINATION_BACKEND=redis")
        namespace = env.get("CONCILIA_KEY_PREFIX", "concilia").strip() or "concilia"
        lease_s = _env_int(env, "CONCILIA_ASSIGNMENT_LOCK_LEASE_SECONDS", default=300, minimum=1)
        redis = _import_redis()
        client = redis.Redis.from_url(dsn, decode_responses=True)
        return Coordination(
            lock=RedisAssignmentLock(client=client, namespace=namespace, lease_s=lease_s),
            cursors=RedisCursorStore(client=client, namespace=namespace),
            update_signal=RedisUpdateSignal(client=client, namespace=namespace, ttl_s=signal_ttl_s),
            backend="redis",
        )
    raise RuntimeError(f"unsupported coordination backend: {backend}")
