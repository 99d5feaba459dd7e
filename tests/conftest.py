from __future__ import annotations

from collections.abc import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from planning_poker.api.deps import get_clock, get_redis
from planning_poker.clock import ManualClock
from planning_poker.main import app


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_redis(
    r: fakeredis.FakeRedis, clock: ManualClock
) -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient wired to fakeredis and a manual clock."""

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
