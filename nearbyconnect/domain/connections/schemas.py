"""Pydantic schemas for connection requests and connections."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from nearbyconnect.domain.connections.models import Connection, ConnectionRequest
from nearbyconnect.domain.profiles.schemas import PublicProfile


class ConnectionRequestCreate(BaseModel):
	receiver_id: UUID = Field(..., description="User the request is addressed to")


class ConnectionRequestOut(BaseModel):
	id: UUID
	sender_id: UUID
	receiver_id: UUID
	status: Literal["pending", "accepted", "rejected"]
	created_at: datetime
	updated_at: datetime

	@classmethod
	def from_model(cls, request: ConnectionRequest) -> "ConnectionRequestOut":
		return cls(
			id=request.id,
			sender_id=request.sender_id,
			receiver_id=request.receiver_id,
			status=request.status.value,
			created_at=request.created_at,
			updated_at=request.updated_at,
		)


class ConnectionOut(BaseModel):
	id: UUID
	user_id_1: UUID
	user_id_2: UUID
	connected_at: datetime

	@classmethod
	def from_model(cls, connection: Connection) -> "ConnectionOut":
		return cls(
			id=connection.id,
			user_id_1=connection.user_id_1,
			user_id_2=connection.user_id_2,
			connected_at=connection.connected_at,
		)


class ResolutionOut(BaseModel):
	request: ConnectionRequestOut
	connection: Optional[ConnectionOut] = None


class ConnectionSummary(BaseModel):
	id: UUID
	connected_at: datetime
	other_user: PublicProfile
	unread_count: int = 0


class RequestUpdatePayload(BaseModel):
	id: UUID
	status: Literal["pending", "accepted", "rejected"]
	connection_id: Optional[UUID] = None
