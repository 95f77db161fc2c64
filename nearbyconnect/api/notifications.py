"""Notification endpoints."""

from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from nearbyconnect.api.errors import map_error
from nearbyconnect.domain.errors import DataLayerError
from nearbyconnect.domain.notifications import service
from nearbyconnect.domain.notifications.models import DEFAULT_PAGE_SIZE
from nearbyconnect.domain.notifications.schemas import MarkAllReadResponse, NotificationOut, UnreadCount
from nearbyconnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter()


@router.get("/notifications", response_model=List[NotificationOut])
async def list_notifications(
	limit: int = Query(default=DEFAULT_PAGE_SIZE),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[NotificationOut]:
	try:
		rows = await service.list_notifications(auth_user, limit=limit)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return [NotificationOut.from_model(row) for row in rows]


@router.get("/notifications/unread", response_model=UnreadCount)
async def unread(auth_user: AuthenticatedUser = Depends(get_current_user)) -> UnreadCount:
	try:
		return UnreadCount(unread=await service.count_unread(auth_user))
	except DataLayerError as exc:
		raise map_error(exc) from None


@router.post("/notifications/read-all", response_model=MarkAllReadResponse)
async def read_all(auth_user: AuthenticatedUser = Depends(get_current_user)) -> MarkAllReadResponse:
	try:
		return MarkAllReadResponse(updated=await service.mark_all_read(auth_user))
	except DataLayerError as exc:
		raise map_error(exc) from None


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
async def read_one(
	notification_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> NotificationOut:
	try:
		notification = await service.mark_read(auth_user, str(notification_id))
	except DataLayerError as exc:
		raise map_error(exc) from None
	return NotificationOut.from_model(notification)
