"""Proximity search: available users within a radius, nearest first."""

from __future__ import annotations

import logging
import math
from typing import List, Optional

from nearbyconnect.domain import access
from nearbyconnect.domain.errors import AuthorizationError, ValidationError
from nearbyconnect.domain.profiles.models import NearbyCandidate
from nearbyconnect.domain.proximity.schemas import NearbyUser
from nearbyconnect.domain.proximity.spatial_index import valid_coordinates
from nearbyconnect.domain.repo import get_store
from nearbyconnect.infra.auth import AuthenticatedUser
from nearbyconnect.infra.rate_limit import RateLimitExceeded, enforce
from nearbyconnect.obs import metrics as obs_metrics
from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)

# Self-exclusion value when no identity is bound; can never equal a real user id
NOBODY_ID = "00000000-0000-0000-0000-000000000000"


def _validate(lat: float, lng: float, radius_km: float) -> None:
	if not valid_coordinates(lat, lng):
		raise ValidationError("invalid_coordinates")
	try:
		radius = float(radius_km)
	except (TypeError, ValueError):
		raise ValidationError("invalid_radius") from None
	if not math.isfinite(radius) or radius <= 0:
		raise ValidationError("invalid_radius")
	if radius > settings.proximity_max_radius_km:
		raise ValidationError("radius_too_large")


def _to_nearby_user(candidate: NearbyCandidate) -> NearbyUser:
	profile = candidate.profile
	return NearbyUser(
		user_id=profile.id,
		username=profile.username,
		full_name=profile.full_name,
		avatar_url=profile.avatar_url,
		bio=profile.bio,
		interests=list(profile.interests),
		latitude=candidate.location.latitude,
		longitude=candidate.location.longitude,
		distance_km=candidate.distance_m / 1000.0,
		last_seen=candidate.location.updated_at,
	)


async def find_nearby(
	auth_user: Optional[AuthenticatedUser],
	lat: float,
	lng: float,
	radius_km: float = 2.0,
) -> List[NearbyUser]:
	"""Return available users within ``radius_km`` of (lat, lng).

	The boundary is inclusive, the caller is never part of the result and the
	list is capped at ``PROXIMITY_MAX_RESULTS``. An empty list means nobody was
	found; store failures raise TransientError instead.
	"""
	requester_id = auth_user.id if auth_user and auth_user.id else NOBODY_ID
	if requester_id == NOBODY_ID:
		obs_metrics.inc_proximity_query("unauthenticated")
		raise AuthorizationError()
	_validate(lat, lng, radius_km)
	try:
		await enforce("proximity", requester_id, limit=settings.proximity_queries_per_minute)
	except RateLimitExceeded:
		obs_metrics.inc_proximity_query("rate_limited")
		raise

	candidates = await get_store().find_nearby(
		float(lat),
		float(lng),
		float(radius_km) * 1000.0,
		exclude_id=requester_id,
		limit=settings.proximity_max_results,
	)
	actor = access.Actor.user(requester_id)
	visible = [
		c
		for c in candidates
		if c.profile.id != requester_id and access.is_allowed(actor, "profile", "read", c.profile)
	]
	visible.sort(key=lambda c: (c.distance_m, c.profile.id))
	results = [_to_nearby_user(c) for c in visible[: settings.proximity_max_results]]
	obs_metrics.inc_proximity_query("ok", len(results))
	return results
