"""Connection request state machine: pending -> accepted | rejected."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from nearbyconnect.domain import access
from nearbyconnect.domain.connections.models import (
	Connection,
	ConnectionRequest,
	Decision,
	RequestStatus,
	canonical_pair,
)
from nearbyconnect.domain.connections.schemas import (
	ConnectionRequestOut,
	ConnectionSummary,
	RequestUpdatePayload,
)
from nearbyconnect.domain.errors import (
	AlreadyConnected,
	AlreadyResolved,
	ConflictError,
	NotFoundError,
	ValidationError,
)
from nearbyconnect.domain.notifications import service as notifications
from nearbyconnect.domain.profiles.schemas import PublicProfile
from nearbyconnect.domain.realtime.sockets import publish
from nearbyconnect.domain.realtime.topics import Topic
from nearbyconnect.domain.repo import get_store
from nearbyconnect.infra.auth import AuthenticatedUser
from nearbyconnect.infra.rate_limit import RateLimitExceeded, enforce
from nearbyconnect.obs import metrics as obs_metrics
from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Resolution:
	request: ConnectionRequest
	connection: Optional[Connection] = None
	changed: bool = True


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _parse_user_id(raw: object) -> str:
	try:
		return str(UUID(str(raw)))
	except (TypeError, ValueError):
		raise ValidationError("invalid_user_id") from None


async def _enforce_request_limit(sender_id: str) -> None:
	try:
		await enforce("connection_request", sender_id, limit=settings.connection_requests_per_minute)
	except RateLimitExceeded:
		obs_metrics.inc_connection_request("rate_limited")
		raise


async def _emit_request_new(request: ConnectionRequest) -> None:
	payload = ConnectionRequestOut.from_model(request).model_dump(mode="json")
	await publish(Topic.requests(request.receiver_id), "request:new", payload)


async def _emit_request_update(request: ConnectionRequest, connection: Optional[Connection]) -> None:
	payload = RequestUpdatePayload(
		id=request.id,
		status=request.status.value,
		connection_id=connection.id if connection else None,
	).model_dump(mode="json")
	await publish(Topic.requests(request.sender_id), "request:update", payload)
	await publish(Topic.requests(request.receiver_id), "request:update", payload)


async def create_request(auth_user: AuthenticatedUser, receiver_id: object) -> ConnectionRequest:
	"""Send a connection request and notify the receiver in the same transaction."""
	sender_id = _parse_user_id(auth_user.id)
	target_id = _parse_user_id(receiver_id)
	if sender_id == target_id:
		obs_metrics.inc_connection_request("self")
		raise ValidationError("self_request")
	await _enforce_request_limit(sender_id)

	store = get_store()
	sender = await store.get_profile(sender_id)
	if sender is None:
		raise NotFoundError("profile_missing")
	if await store.get_profile(target_id) is None:
		raise NotFoundError("receiver_not_found")

	now = _now()
	request = ConnectionRequest(
		id=str(uuid4()),
		sender_id=sender_id,
		receiver_id=target_id,
		status=RequestStatus.PENDING,
		created_at=now,
		updated_at=now,
	)
	access.authorize(access.Actor.user(sender_id), "connection_request", "insert", request)
	if await store.find_connection_between(sender_id, target_id) is not None:
		obs_metrics.inc_connection_request("already_connected")
		raise AlreadyConnected()

	notification = notifications.build_request_notification(request, sender, at=now)
	try:
		stored = await store.create_request(request, notification)
	except ConflictError as exc:
		obs_metrics.inc_connection_request(exc.reason)
		raise
	obs_metrics.inc_connection_request("sent")
	logger.info("connection request sent", extra={"request_id": stored.id})

	await _emit_request_new(stored)
	await notifications.publish_new(notification)
	return stored


async def _settled(request: ConnectionRequest, decision: Decision) -> Resolution:
	"""Handle a request that is no longer pending."""
	if request.status is not decision.status:
		obs_metrics.inc_connection_transition(decision.status.value, "already_resolved")
		raise AlreadyResolved()
	connection = None
	if request.status is RequestStatus.ACCEPTED:
		connection = await get_store().find_connection_between(request.sender_id, request.receiver_id)
	obs_metrics.inc_connection_transition(decision.status.value, "noop")
	return Resolution(request=request, connection=connection, changed=False)


async def resolve_request(auth_user: AuthenticatedUser, request_id: object, decision: Decision | str) -> Resolution:
	"""Accept or reject a pending request as its receiver.

	Repeating the decision already applied is a no-op. Applying the opposite
	decision to a resolved request raises :class:`AlreadyResolved`.
	"""
	decision = Decision(decision)
	store = get_store()
	request = await store.get_request(str(request_id))
	if request is None:
		raise NotFoundError()
	access.authorize_visible(access.Actor.user(auth_user.id), "connection_request", "update", request)
	if not request.is_pending:
		return await _settled(request, decision)

	now = _now()
	connection: Optional[Connection] = None
	notification = None
	if decision is Decision.ACCEPT:
		receiver = await store.get_profile(request.receiver_id)
		if receiver is None:
			raise NotFoundError("profile_missing")
		first, second = canonical_pair(request.sender_id, request.receiver_id)
		connection = Connection(id=str(uuid4()), user_id_1=first, user_id_2=second, connected_at=now)
		notification = notifications.build_accepted_notification(request, receiver, at=now)

	updated, stored_connection = await store.resolve_request(
		request.id,
		decision.status,
		at=now,
		connection=connection,
		notification=notification,
	)
	if updated is None:
		# Lost the race against a concurrent resolution
		latest = await store.get_request(request.id)
		if latest is None:
			raise NotFoundError()
		return await _settled(latest, decision)

	obs_metrics.inc_connection_transition(updated.status.value, "ok")
	logger.info("connection request resolved", extra={"request_id": updated.id, "status": updated.status.value})
	await _emit_request_update(updated, stored_connection)
	if notification is not None:
		await notifications.publish_new(notification)
	return Resolution(request=updated, connection=stored_connection, changed=True)


async def list_incoming(auth_user: AuthenticatedUser) -> List[ConnectionRequest]:
	rows = await get_store().list_incoming(auth_user.id)
	return access.filter_visible(access.Actor.user(auth_user.id), "connection_request", rows)


async def list_outgoing(auth_user: AuthenticatedUser) -> List[ConnectionRequest]:
	rows = await get_store().list_outgoing(auth_user.id)
	return access.filter_visible(access.Actor.user(auth_user.id), "connection_request", rows)


async def list_connections(auth_user: AuthenticatedUser) -> List[ConnectionSummary]:
	actor = access.Actor.user(auth_user.id)
	rows = await get_store().list_connections(auth_user.id)
	summaries: List[ConnectionSummary] = []
	for connection, other, unread in rows:
		if not access.is_allowed(actor, "connection", "read", connection):
			continue
		summaries.append(
			ConnectionSummary(
				id=connection.id,
				connected_at=connection.connected_at,
				other_user=PublicProfile(**other.public_view()),
				unread_count=unread,
			)
		)
	return summaries


async def get_connection(auth_user: AuthenticatedUser, connection_id: object) -> Connection:
	"""Load a connection the caller participates in."""
	try:
		key = str(UUID(str(connection_id)))
	except (TypeError, ValueError):
		raise NotFoundError() from None
	connection = await get_store().get_connection(key)
	if connection is None:
		raise NotFoundError()
	access.authorize(access.Actor.user(auth_user.id), "connection", "read", connection)
	return connection
