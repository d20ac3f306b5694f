"""Shared fixtures: temporary database, synthetic clock, in-memory volatile store."""

import fnmatch
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from chronicle.cache.volatile import VolatileStore
from chronicle.memory.database import Database


class FakeClock:
    """Synthetic time source; advance it explicitly."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeVolatileStore(VolatileStore):
    """Dict-backed volatile store. Set ``fail`` to make every call raise."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("volatile store unavailable")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def keys(self, pattern: str) -> list[str]:
        self._check()
        return [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    async def delete(self, keys: list[str]) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def incr(self, key: str) -> int:
        self._check()
        value = int(self.data.get(key, "0")) + 1
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, ttl_seconds: int) -> None:
        self._check()
        if key in self.data:
            self.ttls[key] = ttl_seconds

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def volatile() -> FakeVolatileStore:
    return FakeVolatileStore()


@pytest.fixture
async def db(tmp_path: Path):
    """Create a temporary narrative database."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()
