"""Pydantic schemas for notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from nearbyconnect.domain.notifications.models import Notification


class NotificationOut(BaseModel):
	id: UUID
	user_id: UUID
	type: Literal["connection_request", "connection_accepted", "message"]
	title: str
	body: str
	data: Dict[str, Any] = Field(default_factory=dict)
	is_read: bool
	created_at: datetime

	@classmethod
	def from_model(cls, notification: Notification) -> "NotificationOut":
		return cls(
			id=notification.id,
			user_id=notification.user_id,
			type=notification.type.value,
			title=notification.title,
			body=notification.body,
			data=dict(notification.data),
			is_read=notification.is_read,
			created_at=notification.created_at,
		)


class UnreadCount(BaseModel):
	unread: int


class MarkAllReadResponse(BaseModel):
	updated: int
