"""Chat over established connections."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

import ulid

from nearbyconnect.domain import access
from nearbyconnect.domain.chat.models import Message
from nearbyconnect.domain.chat.schemas import MessageResponse, ReadReceipt
from nearbyconnect.domain.connections.models import Connection
from nearbyconnect.domain.connections.service import get_connection
from nearbyconnect.domain.errors import NotFoundError, ValidationError
from nearbyconnect.domain.realtime.sockets import publish
from nearbyconnect.domain.realtime.topics import Topic
from nearbyconnect.domain.repo import get_store
from nearbyconnect.infra.auth import AuthenticatedUser
from nearbyconnect.obs import metrics as obs_metrics
from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)


def _message_row(connection: Connection, sender_id: str) -> dict:
	return {
		"user_id_1": connection.user_id_1,
		"user_id_2": connection.user_id_2,
		"sender_id": sender_id,
	}


def _clean_content(content: object) -> str:
	text = str(content or "").strip()
	if not text:
		raise ValidationError("empty_message")
	if len(text) > settings.message_max_length:
		raise ValidationError("message_too_long")
	return text


async def post_message(
	auth_user: AuthenticatedUser,
	connection_id: object,
	content: object,
	*,
	client_msg_id: Optional[str] = None,
) -> Message:
	"""Append a message; a retried ``client_msg_id`` returns the stored row."""
	text = _clean_content(content)
	connection = await get_connection(auth_user, connection_id)
	access.authorize(access.Actor.user(auth_user.id), "message", "insert", _message_row(connection, auth_user.id))

	message = Message(
		id=str(ulid.new().uuid),
		connection_id=connection.id,
		sender_id=auth_user.id,
		content=text,
		created_at=datetime.now(timezone.utc),
		client_msg_id=client_msg_id or None,
	)
	stored, created = await get_store().insert_message(message)
	if not created:
		obs_metrics.inc_message_sent("duplicate")
		return stored
	obs_metrics.inc_message_sent("ok")
	await publish(
		Topic.messages(connection.id),
		"message:new",
		MessageResponse.from_model(stored).model_dump(mode="json"),
	)
	return stored


async def list_messages(
	auth_user: AuthenticatedUser,
	connection_id: object,
	*,
	since: Optional[str] = None,
) -> List[Message]:
	"""Messages in chronological order; ``since`` is the last message id the client holds."""
	connection = await get_connection(auth_user, connection_id)
	store = get_store()
	after = None
	if since:
		anchor = await store.get_message(str(since))
		if anchor is None or anchor.connection_id != connection.id:
			raise NotFoundError("since_not_found")
		after = anchor.sort_key()
	return await store.list_messages(connection.id, after=after)


async def mark_read(auth_user: AuthenticatedUser, connection_id: object) -> int:
	"""Flip every message addressed to the caller to read."""
	connection = await get_connection(auth_user, connection_id)
	access.authorize(access.Actor.user(auth_user.id), "message", "update", _message_row(connection, auth_user.id))
	changed = await get_store().mark_messages_read(connection.id, auth_user.id)
	obs_metrics.inc_messages_read(len(changed))
	if changed:
		receipt = ReadReceipt(connection_id=connection.id, reader_id=auth_user.id, message_ids=changed)
		await publish(Topic.messages(connection.id), "message:read", receipt.model_dump(mode="json"))
	return len(changed)


async def unread_count(auth_user: AuthenticatedUser, connection_id: object) -> int:
	connection = await get_connection(auth_user, connection_id)
	return await get_store().count_unread_messages(connection.id, auth_user.id)
