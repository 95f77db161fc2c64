"""Chat endpoints scoped to an established connection."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from nearbyconnect.api.errors import map_error
from nearbyconnect.domain.chat import service
from nearbyconnect.domain.chat.schemas import (
	MarkReadResponse,
	MessageListResponse,
	MessageResponse,
	SendMessageRequest,
	UnreadCountResponse,
)
from nearbyconnect.domain.errors import DataLayerError
from nearbyconnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter()


@router.post(
	"/connections/{connection_id}/messages",
	response_model=MessageResponse,
	status_code=status.HTTP_201_CREATED,
)
async def send_message(
	connection_id: UUID,
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageResponse:
	try:
		message = await service.post_message(
			auth_user,
			str(connection_id),
			payload.content,
			client_msg_id=payload.client_msg_id,
		)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return MessageResponse.from_model(message)


@router.get("/connections/{connection_id}/messages", response_model=MessageListResponse)
async def list_messages(
	connection_id: UUID,
	since: Optional[UUID] = Query(default=None, description="Last message id already held by the client"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageListResponse:
	try:
		messages = await service.list_messages(
			auth_user,
			str(connection_id),
			since=str(since) if since else None,
		)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return MessageListResponse(items=[MessageResponse.from_model(m) for m in messages])


@router.post("/connections/{connection_id}/messages/read", response_model=MarkReadResponse)
async def mark_read(
	connection_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MarkReadResponse:
	try:
		updated = await service.mark_read(auth_user, str(connection_id))
	except DataLayerError as exc:
		raise map_error(exc) from None
	return MarkReadResponse(updated=updated)


@router.get("/connections/{connection_id}/messages/unread", response_model=UnreadCountResponse)
async def unread(
	connection_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> UnreadCountResponse:
	try:
		count = await service.unread_count(auth_user, str(connection_id))
	except DataLayerError as exc:
		raise map_error(exc) from None
	return UnreadCountResponse(connection_id=connection_id, unread=count)
