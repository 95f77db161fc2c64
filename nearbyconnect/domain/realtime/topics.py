"""Realtime topic naming and subscription rules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from nearbyconnect.domain import access
from nearbyconnect.domain.errors import AuthorizationError, NotFoundError, ValidationError
from nearbyconnect.domain.repo import get_store


class TopicKind(str, Enum):
	MESSAGES = "messages"
	NOTIFICATIONS = "notifications"
	REQUESTS = "requests"


@dataclass(slots=True, frozen=True)
class Topic:
	kind: TopicKind
	scope_id: str

	@property
	def name(self) -> str:
		return f"{self.kind.value}:{self.scope_id}"

	@classmethod
	def parse(cls, raw: object) -> "Topic":
		if not isinstance(raw, str) or ":" not in raw:
			raise ValidationError("invalid_topic")
		kind_raw, scope_raw = raw.split(":", 1)
		try:
			kind = TopicKind(kind_raw)
			scope_id = str(UUID(scope_raw))
		except ValueError:
			raise ValidationError("invalid_topic") from None
		return cls(kind=kind, scope_id=scope_id)

	@classmethod
	def messages(cls, connection_id: str) -> "Topic":
		return cls(TopicKind.MESSAGES, str(connection_id))

	@classmethod
	def notifications(cls, user_id: str) -> "Topic":
		return cls(TopicKind.NOTIFICATIONS, str(user_id))

	@classmethod
	def requests(cls, user_id: str) -> "Topic":
		return cls(TopicKind.REQUESTS, str(user_id))


async def authorize_subscription(user_id: str, topic: Topic) -> None:
	"""Apply the read rule of the topic's underlying resource."""
	if topic.kind is TopicKind.MESSAGES:
		connection = await get_store().get_connection(topic.scope_id)
		if connection is None:
			raise NotFoundError()
		access.authorize(access.Actor.user(user_id), "connection", "read", connection)
		return
	if topic.scope_id != str(user_id):
		raise AuthorizationError()
