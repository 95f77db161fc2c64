"""ASGI entrypoint.

``socket_app`` is what uvicorn serves: Socket.IO handles ``/socket.io`` and
hands every other path to the FastAPI ``app``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nearbyconnect.api import chat, connections, identity, notifications, ops, profiles, proximity
from nearbyconnect.api.errors import install_error_handlers
from nearbyconnect.domain.realtime.sockets import LiveNamespace, set_namespace
from nearbyconnect.domain.repo import get_store
from nearbyconnect.infra import postgres
from nearbyconnect.infra.redis import close_redis
from nearbyconnect.obs import init as obs_init
from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)

_DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _cors_origins() -> List[str]:
	configured = [origin for origin in settings.cors_allow_origins if origin != "*"]
	if configured:
		return configured
	# credentials rule out a wildcard, so dev falls back to the local web client
	return list(_DEV_ORIGINS) if settings.is_dev() else []


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.store_backend == "postgres":
		await postgres.init_pool()
	store = get_store()
	logger.info("store ready", extra={"store_backend": settings.store_backend})
	try:
		yield
	finally:
		await store.close()
		await postgres.close_pool()
		await close_redis()


origins = _cors_origins()

app = FastAPI(title="NearbyConnect", lifespan=lifespan)
install_error_handlers(app)
app.add_middleware(
	CORSMiddleware,
	allow_origins=origins,
	allow_credentials=True,
	allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
	allow_headers=["Authorization", "Content-Type", "X-Request-Id", "X-User-Id"],
	expose_headers=["X-Request-Id", "Retry-After"],
)
obs_init(app)

for router, tag in (
	(proximity.router, "proximity"),
	(profiles.router, "profiles"),
	(connections.router, "connections"),
	(chat.router, "chat"),
	(notifications.router, "notifications"),
	(identity.router, "identity"),
	(ops.router, "ops"),
):
	app.include_router(router, tags=[tag])

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=origins)
live_namespace = LiveNamespace()
sio.register_namespace(live_namespace)
set_namespace(live_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
