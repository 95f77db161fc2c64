"""Pydantic schemas for chat endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from nearbyconnect.domain.chat.models import Message


class SendMessageRequest(BaseModel):
	content: str = Field(..., min_length=1)
	client_msg_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class MessageResponse(BaseModel):
	id: UUID
	connection_id: UUID
	sender_id: UUID
	content: str
	is_read: bool
	client_msg_id: Optional[str] = None
	created_at: datetime

	@classmethod
	def from_model(cls, message: Message) -> "MessageResponse":
		return cls(
			id=message.id,
			connection_id=message.connection_id,
			sender_id=message.sender_id,
			content=message.content,
			is_read=message.is_read,
			client_msg_id=message.client_msg_id,
			created_at=message.created_at,
		)


class MessageListResponse(BaseModel):
	items: List[MessageResponse]


class ReadReceipt(BaseModel):
	connection_id: UUID
	reader_id: UUID
	message_ids: List[UUID]


class MarkReadResponse(BaseModel):
	updated: int


class UnreadCountResponse(BaseModel):
	connection_id: UUID
	unread: int
