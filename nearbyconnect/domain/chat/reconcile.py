"""Client-side timeline reconciliation for optimistic sends.

A client shows a provisional entry as soon as the user hits send, keyed by
the ``client_msg_id`` it attached to the request. The authoritative record
arrives twice at most (HTTP response and ``message:new`` push) and in either
order; both paths go through :meth:`MessageTimeline.apply`.

Nothing on the server imports this module. It ships in the package for
Python clients (bots, load tools, integration suites) that consume the
``/live`` namespace.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from nearbyconnect.domain.chat.models import Message
from nearbyconnect.domain.chat.schemas import MessageResponse


@dataclass(slots=True)
class ProvisionalMessage:
	client_msg_id: str
	connection_id: str
	sender_id: str
	content: str
	created_at: datetime
	failed: bool = False


Entry = Union[Message, ProvisionalMessage]


def _coerce(record: Union[Message, dict]) -> Message:
	if isinstance(record, Message):
		return record
	# same shape the server pushes on message:new and returns from POST
	payload = MessageResponse.model_validate(record)
	return Message(
		id=str(payload.id),
		connection_id=str(payload.connection_id),
		sender_id=str(payload.sender_id),
		content=payload.content,
		created_at=payload.created_at,
		is_read=payload.is_read,
		client_msg_id=payload.client_msg_id or None,
	)


class MessageTimeline:
	"""Ordered view of one conversation, deduplicated by message id."""

	def __init__(self, connection_id: str) -> None:
		self.connection_id = str(connection_id)
		self._confirmed: Dict[str, Message] = {}
		self._pending: Dict[str, ProvisionalMessage] = {}

	def add_provisional(
		self,
		client_msg_id: str,
		sender_id: str,
		content: str,
		*,
		created_at: Optional[datetime] = None,
	) -> ProvisionalMessage:
		entry = ProvisionalMessage(
			client_msg_id=client_msg_id,
			connection_id=self.connection_id,
			sender_id=str(sender_id),
			content=content,
			created_at=created_at or datetime.now(timezone.utc),
		)
		self._pending[client_msg_id] = entry
		return entry

	def apply(self, record: Union[Message, dict]) -> bool:
		"""Merge an authoritative record. Returns False for a repeated delivery."""
		message = _coerce(record)
		if message.connection_id != self.connection_id:
			return False
		if message.client_msg_id:
			self._pending.pop(message.client_msg_id, None)
		known = self._confirmed.get(message.id)
		self._confirmed[message.id] = message
		return known is None

	def apply_read(self, message_ids: List[str]) -> int:
		changed = 0
		for message_id in message_ids:
			message = self._confirmed.get(str(message_id))
			if message is not None and not message.is_read:
				message.is_read = True
				changed += 1
		return changed

	def mark_failed(self, client_msg_id: str) -> None:
		entry = self._pending.get(client_msg_id)
		if entry is not None:
			entry.failed = True

	def discard(self, client_msg_id: str) -> None:
		self._pending.pop(client_msg_id, None)

	@property
	def pending(self) -> List[ProvisionalMessage]:
		return sorted(self._pending.values(), key=lambda entry: entry.created_at)

	@property
	def last_confirmed_id(self) -> Optional[str]:
		"""Cursor for re-sync after a reconnect."""
		if not self._confirmed:
			return None
		return max(self._confirmed.values(), key=Message.sort_key).id

	def entries(self) -> List[Entry]:
		confirmed: List[Entry] = sorted(self._confirmed.values(), key=Message.sort_key)
		return confirmed + list(self.pending)

	def __len__(self) -> int:
		return len(self._confirmed) + len(self._pending)
