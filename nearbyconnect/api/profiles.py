"""Profile and location endpoints."""

from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from nearbyconnect.api.errors import map_error
from nearbyconnect.domain.errors import DataLayerError
from nearbyconnect.domain.profiles import service
from nearbyconnect.domain.profiles.models import Location
from nearbyconnect.domain.profiles.schemas import LocationIn, LocationOut, ProfileOut, ProfilePatch, PublicProfile
from nearbyconnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter()


def _location_out(location: Location) -> LocationOut:
	return LocationOut(
		user_id=location.user_id,
		latitude=location.latitude,
		longitude=location.longitude,
		accuracy=location.accuracy,
		updated_at=location.updated_at,
	)


@router.get("/profiles/me", response_model=ProfileOut)
async def get_me(auth_user: AuthenticatedUser = Depends(get_current_user)) -> ProfileOut:
	try:
		profile = await service.get_me(auth_user)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return ProfileOut(**service.profile_to_dict(profile))


@router.patch("/profiles/me", response_model=ProfileOut)
async def patch_me(
	payload: ProfilePatch,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ProfileOut:
	try:
		profile = await service.update_me(auth_user, payload.model_dump(exclude_unset=True))
	except DataLayerError as exc:
		raise map_error(exc) from None
	return ProfileOut(**service.profile_to_dict(profile))


@router.get("/profiles/{profile_id}")
async def get_profile(
	profile_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
	try:
		view = await service.get_profile(auth_user, str(profile_id))
	except DataLayerError as exc:
		raise map_error(exc) from None
	if view["id"] == auth_user.id:
		return ProfileOut(**view).model_dump(mode="json")
	return PublicProfile(**view).model_dump(mode="json")


@router.put("/locations/me", response_model=LocationOut)
async def put_location(
	payload: LocationIn,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> LocationOut:
	try:
		location = await service.report_location(
			auth_user,
			payload.latitude,
			payload.longitude,
			accuracy=payload.accuracy,
		)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return _location_out(location)


@router.get("/locations/me", response_model=LocationOut)
async def get_location(auth_user: AuthenticatedUser = Depends(get_current_user)) -> LocationOut:
	try:
		location = await service.get_my_location(auth_user)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return _location_out(location)


@router.delete("/locations/me", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(auth_user: AuthenticatedUser = Depends(get_current_user)) -> Response:
	try:
		await service.delete_my_location(auth_user)
	except DataLayerError as exc:
		raise map_error(exc) from None
	return Response(status_code=status.HTTP_204_NO_CONTENT)
