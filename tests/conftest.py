import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure the package is importable when tests run from the repo root
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
	sys.path.insert(0, str(REPO_ROOT))

from nearbyconnect.domain import repo
from nearbyconnect.domain.memory_repo import InMemoryStore
from nearbyconnect.domain.profiles import service as profiles_service
from nearbyconnect.domain.realtime import sockets as realtime_sockets
from nearbyconnect.infra import postgres
from nearbyconnect.infra.auth import AuthenticatedUser
from nearbyconnect.main import app
from nearbyconnect.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if sys.platform == "win32" and hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class RecordingNamespace:
	"""Stands in for the Socket.IO namespace and records every emitted event."""

	namespace = "/live"

	def __init__(self) -> None:
		self.events: List[Dict[str, Any]] = []

	async def emit(self, event: str, payload: dict, room: Optional[str] = None, **_: Any) -> None:
		self.events.append({"event": event, "payload": payload, "room": room})

	def of(self, event: str) -> List[Dict[str, Any]]:
		return [entry for entry in self.events if entry["event"] == event]


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from nearbyconnect.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest_asyncio.fixture
async def unreachable_redis(fake_redis):
	"""Point the rate-limit counters at a port nothing listens on."""
	from redis.asyncio import Redis

	from nearbyconnect.infra.redis import set_redis_client
	client = Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.5)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(fake_redis)
		await client.aclose()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Dev mode accepts X-User-Id headers; the in-process store needs no database."""
	original_env = settings.environment
	original_backend = settings.store_backend
	original_hook_token = settings.identity_hook_token
	settings.environment = "dev"
	settings.store_backend = "memory"
	settings.identity_hook_token = "hook-secret"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.store_backend = original_backend
		settings.identity_hook_token = original_hook_token


@pytest.fixture(autouse=True)
def store():
	memory = InMemoryStore()
	repo.set_store(memory)
	try:
		yield memory
	finally:
		repo.set_store(None)


@pytest.fixture(autouse=True)
def published():
	original = realtime_sockets.get_namespace()
	recorder = RecordingNamespace()
	realtime_sockets.set_namespace(recorder)  # type: ignore[arg-type]
	try:
		yield recorder
	finally:
		realtime_sockets.set_namespace(original)


@pytest.fixture
def make_user():
	"""Provision a profile and optionally report a location for it."""

	async def _make(
		full_name: str,
		*,
		lat: Optional[float] = None,
		lng: Optional[float] = None,
		available: bool = True,
		username: Optional[str] = None,
	) -> AuthenticatedUser:
		user = AuthenticatedUser(id=str(uuid4()))
		metadata = {"full_name": full_name}
		if username:
			metadata["username"] = username
		await profiles_service.provision(user.id, email=None, metadata=metadata)
		if not available:
			await profiles_service.update_me(user, {"is_available": False})
		if lat is not None and lng is not None:
			await profiles_service.report_location(user, lat, lng)
		return user

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
