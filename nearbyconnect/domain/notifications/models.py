"""Domain models for persisted user notifications."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict


class NotificationType(str, Enum):
	CONNECTION_REQUEST = "connection_request"
	CONNECTION_ACCEPTED = "connection_accepted"
	# Reserved: chat messages surface through unread counts, not notification rows
	MESSAGE = "message"


DEFAULT_PAGE_SIZE = 20


@dataclass(slots=True)
class Notification:
	id: str
	user_id: str
	type: NotificationType
	title: str
	body: str
	created_at: datetime
	data: Dict[str, Any] = field(default_factory=dict)
	is_read: bool = False

	@classmethod
	def from_record(cls, record: Any) -> "Notification":
		data = record["data"]
		if isinstance(data, str):
			data = json.loads(data)
		return cls(
			id=str(record["id"]),
			user_id=str(record["user_id"]),
			type=NotificationType(record["type"]),
			title=record["title"],
			body=record["body"],
			created_at=record["created_at"],
			data=dict(data or {}),
			is_read=bool(record["is_read"]),
		)
