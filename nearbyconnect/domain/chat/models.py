"""Domain models for connection-scoped chat."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple


@dataclass(slots=True)
class Message:
	id: str
	connection_id: str
	sender_id: str
	content: str
	created_at: datetime
	is_read: bool = False
	client_msg_id: Optional[str] = None

	@classmethod
	def from_record(cls, record: Any) -> "Message":
		client_msg_id = record["client_msg_id"]
		return cls(
			id=str(record["id"]),
			connection_id=str(record["connection_id"]),
			sender_id=str(record["sender_id"]),
			content=record["content"],
			created_at=record["created_at"],
			is_read=bool(record["is_read"]),
			client_msg_id=str(client_msg_id) if client_msg_id is not None else None,
		)

	def sort_key(self) -> Tuple[datetime, str]:
		return (self.created_at, self.id)
