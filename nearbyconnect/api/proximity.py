"""Proximity endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from nearbyconnect.api.errors import map_error
from nearbyconnect.domain.errors import DataLayerError
from nearbyconnect.domain.proximity import service
from nearbyconnect.domain.proximity.schemas import NearbyUser
from nearbyconnect.infra.auth import AuthenticatedUser, get_current_user
from nearbyconnect.infra.rate_limit import RateLimitExceeded
from nearbyconnect.settings import settings

router = APIRouter()


@router.get("/proximity/nearby", response_model=List[NearbyUser])
async def nearby(
	lat: float = Query(..., ge=-90.0, le=90.0),
	lng: float = Query(..., ge=-180.0, le=180.0),
	radius_km: Optional[float] = Query(default=None, gt=0.0),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[NearbyUser]:
	radius = radius_km if radius_km is not None else settings.proximity_default_radius_km
	try:
		return await service.find_nearby(auth_user, lat, lng, radius)
	except (DataLayerError, RateLimitExceeded) as exc:
		raise map_error(exc) from None
