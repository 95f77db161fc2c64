"""Socket.IO namespace carrying topic-scoped realtime events."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set

import socketio
from fastapi import HTTPException

from nearbyconnect.domain.errors import DataLayerError, ValidationError
from nearbyconnect.domain.realtime.topics import Topic, TopicKind, authorize_subscription
from nearbyconnect.infra.auth import AuthenticatedUser, verify_access_jwt
from nearbyconnect.obs import logging as obs_logging
from nearbyconnect.obs import metrics as obs_metrics
from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)

_namespace: "LiveNamespace" | None = None


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _bearer(value: Optional[str]) -> Optional[str]:
	if not value:
		return None
	scheme, _, token = value.partition(" ")
	if scheme.lower() != "bearer" or not token:
		return None
	return token.strip()


def _authenticate(environ: dict, auth: Optional[dict]) -> AuthenticatedUser:
	scope = environ.get("asgi.scope", environ)
	auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
	token = auth_payload.get("token") or _bearer(_header(scope, "authorization"))
	if token:
		try:
			return verify_access_jwt(token)
		except HTTPException as exc:
			raise ConnectionRefusedError(exc.detail) from None
	user_id = auth_payload.get("userId") or _header(scope, "x-user-id")
	if settings.is_dev() and user_id:
		return AuthenticatedUser(id=str(user_id))
	raise ConnectionRefusedError("not_authenticated")


class LiveNamespace(socketio.AsyncNamespace):
	"""Clients join one room per subscribed topic, bounded per session."""

	def __init__(self, namespace: str = "/live", *, max_subscriptions: Optional[int] = None) -> None:
		super().__init__(namespace)
		self.max_subscriptions = max_subscriptions or settings.realtime_max_subscriptions
		self.sessions: Dict[str, AuthenticatedUser] = {}
		self.subscriptions: Dict[str, Set[Topic]] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		user = _authenticate(environ, auth)
		obs_metrics.socket_connected(self.namespace)
		self.sessions[sid] = user
		self.subscriptions[sid] = set()
		await self.emit("sys:ok", {"user_id": user.id}, room=sid)

	async def on_disconnect(self, sid: str, *args: Any) -> None:
		user = self.sessions.pop(sid, None)
		topics = self.subscriptions.pop(sid, set())
		for topic in topics:
			await self.leave_room(sid, topic.name)
			obs_metrics.realtime_unsubscribed(topic.kind.value)
		if user is not None:
			obs_metrics.socket_disconnected(self.namespace)

	async def on_subscribe(self, sid: str, payload: dict | None = None) -> dict:
		obs_metrics.socket_event(self.namespace, "subscribe")
		user = self.sessions.get(sid)
		if user is None:
			return {"ok": False, "error": "not_authenticated"}
		try:
			topic = Topic.parse((payload or {}).get("topic"))
			held = self.subscriptions.setdefault(sid, set())
			if topic in held:
				return {"ok": True, "topic": topic.name}
			if len(held) >= self.max_subscriptions:
				raise ValidationError("too_many_subscriptions")
			with obs_logging.log_context(sid=sid, user_id=user.id):
				await authorize_subscription(user.id, topic)
		except DataLayerError as exc:
			return {"ok": False, "error": exc.reason}
		held.add(topic)
		await self.enter_room(sid, topic.name)
		obs_metrics.realtime_subscribed(topic.kind.value)
		return {"ok": True, "topic": topic.name}

	async def on_unsubscribe(self, sid: str, payload: dict | None = None) -> dict:
		obs_metrics.socket_event(self.namespace, "unsubscribe")
		try:
			topic = Topic.parse((payload or {}).get("topic"))
		except ValidationError as exc:
			return {"ok": False, "error": exc.reason}
		held = self.subscriptions.get(sid, set())
		if topic in held:
			held.discard(topic)
			await self.leave_room(sid, topic.name)
			obs_metrics.realtime_unsubscribed(topic.kind.value)
		return {"ok": True, "topic": topic.name}

	async def on_typing(self, sid: str, payload: dict | None = None) -> dict:
		user = self.sessions.get(sid)
		if user is None:
			return {"ok": False, "error": "not_authenticated"}
		try:
			topic = Topic.parse((payload or {}).get("topic"))
		except ValidationError as exc:
			return {"ok": False, "error": exc.reason}
		# Typing is only relayed to rooms the sender already joined
		if topic.kind is not TopicKind.MESSAGES or topic not in self.subscriptions.get(sid, set()):
			return {"ok": False, "error": "forbidden"}
		obs_metrics.socket_event(self.namespace, "typing")
		await self.emit(
			"typing",
			{"connection_id": topic.scope_id, "user_id": user.id, "is_typing": bool((payload or {}).get("is_typing", True))},
			room=topic.name,
			skip_sid=sid,
		)
		return {"ok": True}


def set_namespace(ns: Optional[LiveNamespace]) -> None:
	global _namespace
	_namespace = ns


def get_namespace() -> Optional[LiveNamespace]:
	return _namespace


async def publish(topic: Topic, event: str, payload: dict) -> None:
	"""Emit an event on a topic. Failures are logged; the caller already committed."""
	if _namespace is None:
		return
	try:
		await _namespace.emit(event, payload, room=topic.name)
	except Exception:
		logger.exception("realtime publish failed", extra={"topic": topic.kind.value, "event": event})
		return
	obs_metrics.socket_event(_namespace.namespace, event)
