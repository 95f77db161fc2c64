"""REST API surface for connection requests and connections."""

from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from nearbyconnect.api.errors import map_error
from nearbyconnect.domain.connections import service
from nearbyconnect.domain.connections.models import Decision
from nearbyconnect.domain.connections.schemas import (
	ConnectionOut,
	ConnectionRequestCreate,
	ConnectionRequestOut,
	ConnectionSummary,
	ResolutionOut,
)
from nearbyconnect.domain.errors import DataLayerError
from nearbyconnect.infra.auth import AuthenticatedUser, get_current_user
from nearbyconnect.infra.rate_limit import RateLimitExceeded

router = APIRouter()


def _resolution_out(resolution: service.Resolution) -> ResolutionOut:
	return ResolutionOut(
		request=ConnectionRequestOut.from_model(resolution.request),
		connection=ConnectionOut.from_model(resolution.connection) if resolution.connection else None,
	)


@router.post(
	"/connections/requests",
	response_model=ConnectionRequestOut,
	status_code=status.HTTP_201_CREATED,
)
async def create_request(
	payload: ConnectionRequestCreate,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ConnectionRequestOut:
	try:
		request = await service.create_request(auth_user, payload.receiver_id)
	except (DataLayerError, RateLimitExceeded) as exc:
		raise map_error(exc) from None
	return ConnectionRequestOut.from_model(request)


@router.get("/connections/requests/incoming", response_model=List[ConnectionRequestOut])
async def incoming(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[ConnectionRequestOut]:
	try:
		rows = await service.list_incoming(auth_user)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return [ConnectionRequestOut.from_model(row) for row in rows]


@router.get("/connections/requests/outgoing", response_model=List[ConnectionRequestOut])
async def outgoing(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[ConnectionRequestOut]:
	try:
		rows = await service.list_outgoing(auth_user)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return [ConnectionRequestOut.from_model(row) for row in rows]


@router.post("/connections/requests/{request_id}/accept", response_model=ResolutionOut)
async def accept(
	request_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ResolutionOut:
	try:
		resolution = await service.resolve_request(auth_user, str(request_id), Decision.ACCEPT)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return _resolution_out(resolution)


@router.post("/connections/requests/{request_id}/reject", response_model=ResolutionOut)
async def reject(
	request_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ResolutionOut:
	try:
		resolution = await service.resolve_request(auth_user, str(request_id), Decision.REJECT)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return _resolution_out(resolution)


@router.get("/connections", response_model=List[ConnectionSummary])
async def list_connections(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[ConnectionSummary]:
	try:
		return await service.list_connections(auth_user)
	except DataLayerError as exc:
		raise map_error(exc) from None
