from __future__ import annotations

import pytest

import conciliapp.coordination as coordination
from conciliapp.coordination import (
    InMemoryAssignmentLock,
    InMemoryCursorStore,
    InMemoryUpdateSignal,
    RedisAssignmentLock,
    RedisCursorStore,
    create_coordination_from_env,
)


class FakeTime:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_inmemory_lock_is_not_reentrant():
    lock = InMemoryAssignmentLock()
    assert lock.acquire(timeout_s=0) is True
    assert lock.acquire(timeout_s=0) is False
    lock.release()
    assert lock.locked() is False


def test_cursor_expires_after_ttl():
    fake_time = FakeTime()
    cursors = InMemoryCursorStore(time_fn=fake_time)
    cursors.set("Caracas", 2, ttl_s=60)
    assert cursors.get("Caracas") == 2
    fake_time.now += 61
    assert cursors.get("Caracas") is None


def test_update_signal_is_monotonic():
    signal = InMemoryUpdateSignal(time_fn=FakeTime())
    assert signal.last() is None
    assert signal.touch(now_ms=500) == 500
    assert signal.touch(now_ms=400) == 501
    assert signal.last() == 501


class FakeRedisLock:
    def __init__(self, owner: "FakeRedis", name: str) -> None:
        self.owner = owner
        self.name = name

    def acquire(self, blocking: bool = True, blocking_timeout: float | None = None) -> bool:
        if self.name in self.owner.locks:
            return False
        self.owner.locks.add(self.name)
        return True

    def release(self) -> None:
        self.owner.locks.discard(self.name)


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiries: dict[str, int] = {}
        self.locks: set[str] = set()

    def lock(self, name: str, timeout: int | None = None, blocking_timeout: float | None = None):
        return FakeRedisLock(self, name)

    def get(self, key: str):
        return self.values.get(key)

    def set(self, key: str, value: str, ex: int | None = None):
        self.values[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True


def test_redis_lock_skips_when_held_elsewhere():
    client = FakeRedis()
    first = RedisAssignmentLock(client=client, namespace="concilia")
    second = RedisAssignmentLock(client=client, namespace="concilia")
    assert first.acquire(timeout_s=0) is True
    assert second.acquire(timeout_s=0) is False
    first.release()
    assert second.acquire(timeout_s=0) is True
    assert client.locks == {"concilia:assignment:lock"}


def test_redis_cursor_store_sets_ttl():
    client = FakeRedis()
    cursors = RedisCursorStore(client=client, namespace="concilia")
    assert cursors.get("Caracas") is None
    cursors.set("Caracas", 1, ttl_s=120)
    assert cursors.get("Caracas") == 1
    assert client.expiries["concilia:assignment:cursor:Caracas"] == 120


def test_coordination_factory_defaults_to_memory():
    built = create_coordination_from_env({})
    assert built.backend == "memory"
    assert isinstance(built.lock, InMemoryAssignmentLock)


def test_coordination_factory_builds_redis_backend(monkeypatch: pytest.MonkeyPatch):
    client = FakeRedis()

    class FakeRedisModule:
        class Redis:
            @staticmethod
            def from_url(dsn: str, decode_responses: bool = False):
                assert dsn == "redis://localhost:6379/0"
                assert decode_responses is True
                return client

    monkeypatch.setattr(coordination, "_import_redis", lambda: FakeRedisModule)
    built = create_coordination_from_env(
        {
            "CONCILIA_COORDINATION_BACKEND": "redis",
            "REDIS_DSN": "redis://localhost:6379/0",
            "CONCILIA_KEY_PREFIX": "test",
        }
    )
    assert built.backend == "redis"
    built.update_signal.touch(now_ms=10)
    assert client.values["test:records:last_update"] == "10"


def test_coordination_factory_rejects_unsupported_backend():
    with pytest.raises(RuntimeError, match="unsupported coordination backend"):
        create_coordination_from_env({"CONCILIA_COORDINATION_BACKEND": "etcd"})
