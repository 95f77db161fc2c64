"""Domain models for connection requests and established connections."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Tuple


class RequestStatus(str, Enum):
	"""Lifecycle of a directional connection request."""

	PENDING = "pending"
	ACCEPTED = "accepted"
	REJECTED = "rejected"


class Decision(str, Enum):
	ACCEPT = "accept"
	REJECT = "reject"

	@property
	def status(self) -> RequestStatus:
		return RequestStatus.ACCEPTED if self is Decision.ACCEPT else RequestStatus.REJECTED


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
	"""Order two participant ids the way connections store them."""
	first, second = str(user_a), str(user_b)
	return (first, second) if first < second else (second, first)


@dataclass(slots=True)
class ConnectionRequest:
	id: str
	sender_id: str
	receiver_id: str
	status: RequestStatus
	created_at: datetime
	updated_at: datetime

	@classmethod
	def from_record(cls, record: Any) -> "ConnectionRequest":
		return cls(
			id=str(record["id"]),
			sender_id=str(record["sender_id"]),
			receiver_id=str(record["receiver_id"]),
			status=RequestStatus(record["status"]),
			created_at=record["created_at"],
			updated_at=record["updated_at"],
		)

	@property
	def is_pending(self) -> bool:
		return self.status is RequestStatus.PENDING


@dataclass(slots=True)
class Connection:
	id: str
	user_id_1: str
	user_id_2: str
	connected_at: datetime

	@classmethod
	def from_record(cls, record: Any) -> "Connection":
		return cls(
			id=str(record["id"]),
			user_id_1=str(record["user_id_1"]),
			user_id_2=str(record["user_id_2"]),
			connected_at=record["connected_at"],
		)

	def participants(self) -> Tuple[str, str]:
		return (self.user_id_1, self.user_id_2)

	def is_participant(self, user_id: str) -> bool:
		return str(user_id) in self.participants()

	def other(self, user_id: str) -> str:
		return self.user_id_2 if str(user_id) == self.user_id_1 else self.user_id_1
