import asyncio

import asyncpg
import pytest

from nearbyconnect.domain import repo
from nearbyconnect.domain.errors import (
    AlreadyConnected,
    AlreadyRequested,
    ConflictError,
    NotFoundError,
    TransientError,
)
from nearbyconnect.domain.memory_repo import InMemoryStore
from nearbyconnect.settings import settings


def _unique_violation(constraint: str) -> asyncpg.UniqueViolationError:
    exc = asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
    exc.constraint_name = constraint
    return exc


def _raising(exc: BaseException):
    @repo._guarded("test_op")
    async def operation():
        raise exc

    return operation


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "constraint,expected",
    [
        ("connection_requests_sender_receiver_key", AlreadyRequested),
        ("connections_pair_key", AlreadyConnected),
    ],
)
async def test_unique_violations_map_to_conflicts(constraint, expected):
    with pytest.raises(expected):
        await _raising(_unique_violation(constraint))()


@pytest.mark.asyncio
async def test_username_violation_maps_to_username_taken():
    with pytest.raises(ConflictError) as excinfo:
        await _raising(_unique_violation("profiles_username_lower_idx"))()
    assert excinfo.value.reason == "username_taken"


@pytest.mark.asyncio
async def test_unknown_violation_is_generic_conflict():
    with pytest.raises(ConflictError) as excinfo:
        await _raising(_unique_violation("something_else"))()
    assert excinfo.value.reason == "conflict"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc",
    [
        asyncio.TimeoutError(),
        ConnectionRefusedError("db down"),
        asyncpg.InterfaceError("connection is closed"),
    ],
)
async def test_driver_outages_are_transient(exc):
    with pytest.raises(TransientError) as excinfo:
        await _raising(exc)()
    assert excinfo.value.reason == "unavailable"


@pytest.mark.asyncio
async def test_domain_errors_pass_through():
    with pytest.raises(NotFoundError):
        await _raising(NotFoundError())()


def test_backend_selection_follows_settings(monkeypatch):
    repo.set_store(None)
    monkeypatch.setattr(settings, "store_backend", "memory")
    assert isinstance(repo.get_store(), InMemoryStore)

    repo.set_store(None)
    monkeypatch.setattr(settings, "store_backend", "postgres")
    assert isinstance(repo.get_store(), repo.PostgresStore)
    repo.set_store(None)


class _RecordingPool:
    def __init__(self):
        self.queries = []

    async def fetch(self, query, *args):
        self.queries.append(query)
        return []

    async def fetchval(self, query, *args):
        self.queries.append(query)
        return None


@pytest.mark.asyncio
async def test_postgres_proximity_uses_the_same_sphere_as_the_grid(monkeypatch):
    from nearbyconnect.domain.proximity.spatial_index import EARTH_RADIUS_M

    pool = _RecordingPool()

    async def _pool():
        return pool

    monkeypatch.setattr(repo, "get_pool", _pool)
    assert await repo.PostgresStore().find_nearby(1.0, 2.0, 500.0, exclude_id="x", limit=5) == []

    [query] = pool.queries
    assert "ST_Distance(l.location, origin.point, false)" in query
    assert "ST_DWithin(l.location, origin.point, $3, false)" in query
    # PostGIS spherical mode uses the WGS84 mean radius (2a + b) / 3
    assert EARTH_RADIUS_M == pytest.approx((2 * 6_378_137.0 + 6_356_752.314245) / 3, abs=0.1)


@pytest.mark.asyncio
async def test_postgres_delete_location_reports_missing_rows(monkeypatch):
    pool = _RecordingPool()

    async def _pool():
        return pool

    monkeypatch.setattr(repo, "get_pool", _pool)

    assert await repo.PostgresStore().delete_location("u1") is False
    assert pool.queries[0].startswith("DELETE FROM user_locations")
