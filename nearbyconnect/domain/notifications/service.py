"""Notification fan-out builders and recipient-facing operations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List

import ulid

from nearbyconnect.domain import access
from nearbyconnect.domain.connections.models import ConnectionRequest
from nearbyconnect.domain.errors import NotFoundError
from nearbyconnect.domain.notifications.models import DEFAULT_PAGE_SIZE, Notification, NotificationType
from nearbyconnect.domain.notifications.schemas import NotificationOut
from nearbyconnect.domain.profiles.models import Profile
from nearbyconnect.domain.realtime.sockets import publish
from nearbyconnect.domain.realtime.topics import Topic
from nearbyconnect.domain.repo import get_store
from nearbyconnect.infra.auth import AuthenticatedUser
from nearbyconnect.obs import metrics as obs_metrics
from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)


def _new_id() -> str:
	# ULIDs keep ids in creation order for (created_at, id) tie-breaks
	return str(ulid.new().uuid)


def build_request_notification(request: ConnectionRequest, sender: Profile, *, at: datetime) -> Notification:
	return Notification(
		id=_new_id(),
		user_id=request.receiver_id,
		type=NotificationType.CONNECTION_REQUEST,
		title="New Connection Request",
		body=f"{sender.full_name} wants to connect with you",
		data={
			"connection_request_id": request.id,
			"sender_id": request.sender_id,
			"sender_name": sender.full_name,
		},
		created_at=at,
	)


def build_accepted_notification(request: ConnectionRequest, receiver: Profile, *, at: datetime) -> Notification:
	return Notification(
		id=_new_id(),
		user_id=request.sender_id,
		type=NotificationType.CONNECTION_ACCEPTED,
		title="Connection Accepted",
		body=f"{receiver.full_name} accepted your connection request",
		data={
			"connection_request_id": request.id,
			"receiver_id": request.receiver_id,
			"receiver_name": receiver.full_name,
		},
		created_at=at,
	)


def to_payload(notification: Notification) -> dict:
	return NotificationOut.from_model(notification).model_dump(mode="json")


async def publish_new(notification: Notification) -> None:
	obs_metrics.inc_notification(notification.type.value, "created")
	await publish(Topic.notifications(notification.user_id), "notification:new", to_payload(notification))


async def publish_update(notification: Notification) -> None:
	await publish(Topic.notifications(notification.user_id), "notification:update", to_payload(notification))


def _clamp_limit(limit: int | None) -> int:
	if limit is None:
		return DEFAULT_PAGE_SIZE
	return max(1, min(int(limit), settings.notifications_page_max))


async def list_notifications(auth_user: AuthenticatedUser, *, limit: int | None = DEFAULT_PAGE_SIZE) -> List[Notification]:
	rows = await get_store().list_notifications(auth_user.id, limit=_clamp_limit(limit))
	return access.filter_visible(access.Actor.user(auth_user.id), "notification", rows)


async def mark_read(auth_user: AuthenticatedUser, notification_id: str) -> Notification:
	store = get_store()
	current = await store.get_notification(str(notification_id))
	if current is None:
		raise NotFoundError()
	access.authorize_visible(access.Actor.user(auth_user.id), "notification", "update", current)
	if current.is_read:
		return current
	updated = await store.mark_notification_read(current.id)
	if updated is None:
		# Marked read concurrently
		latest = await store.get_notification(current.id)
		return latest or current
	obs_metrics.inc_notification(updated.type.value, "read")
	await publish_update(updated)
	return updated


async def mark_all_read(auth_user: AuthenticatedUser) -> int:
	changed = await get_store().mark_all_notifications_read(auth_user.id)
	for notification in changed:
		obs_metrics.inc_notification(notification.type.value, "read")
		await publish_update(notification)
	return len(changed)


async def count_unread(auth_user: AuthenticatedUser) -> int:
	return await get_store().count_unread_notifications(auth_user.id)
