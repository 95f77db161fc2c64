"""Profile, location and identity bootstrap operations."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from nearbyconnect.domain import access
from nearbyconnect.domain.errors import ConflictError, NotFoundError, ValidationError
from nearbyconnect.domain.profiles.models import EDITABLE_FIELDS, Location, Profile, Theme
from nearbyconnect.domain.proximity.spatial_index import valid_coordinates
from nearbyconnect.domain.repo import get_store
from nearbyconnect.infra.auth import AuthenticatedUser
from nearbyconnect.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_USERNAME_MAX = 40


def _now() -> datetime:
	return datetime.now(timezone.utc)


async def get_me(auth_user: AuthenticatedUser) -> Profile:
	profile = await get_store().get_profile(auth_user.id)
	if profile is None:
		raise NotFoundError("profile_missing")
	return profile


async def get_profile(auth_user: AuthenticatedUser, profile_id: str) -> Dict[str, Any]:
	"""Return a profile as visible to the caller: full for the owner, public fields otherwise."""
	profile = await get_store().get_profile(str(profile_id))
	if profile is None:
		raise NotFoundError()
	actor = access.Actor.user(auth_user.id)
	if not access.is_allowed(actor, "profile", "read", profile):
		# Hidden profiles are indistinguishable from missing ones
		raise NotFoundError()
	if profile.id == auth_user.id:
		return profile_to_dict(profile)
	return profile.public_view()


def profile_to_dict(profile: Profile) -> Dict[str, Any]:
	return {
		"id": profile.id,
		"username": profile.username,
		"full_name": profile.full_name,
		"avatar_url": profile.avatar_url,
		"bio": profile.bio,
		"interests": list(profile.interests),
		"is_available": profile.is_available,
		"city": profile.city,
		"country": profile.country,
		"phone": profile.phone,
		"address": profile.address,
		"date_of_birth": profile.date_of_birth,
		"theme": profile.theme,
		"created_at": profile.created_at,
		"updated_at": profile.updated_at,
	}


def _clean_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
	cleaned: Dict[str, Any] = {}
	for key, value in changes.items():
		if key not in EDITABLE_FIELDS:
			raise ValidationError(f"unknown_field:{key}")
		if key in ("username", "full_name"):
			value = (value or "").strip()
			if not value:
				raise ValidationError(f"{key}_required")
		if key == "username" and len(value) > _USERNAME_MAX:
			raise ValidationError("username_too_long")
		if key == "theme":
			try:
				value = Theme(value).value
			except ValueError:
				raise ValidationError("invalid_theme") from None
		if key == "interests":
			value = [str(tag).strip() for tag in (value or []) if str(tag).strip()]
		if key == "date_of_birth" and value is not None and hasattr(value, "isoformat"):
			value = value.isoformat()
		cleaned[key] = value
	return cleaned


async def update_me(auth_user: AuthenticatedUser, changes: Mapping[str, Any]) -> Profile:
	store = get_store()
	current = await store.get_profile(auth_user.id)
	if current is None:
		raise NotFoundError("profile_missing")
	access.authorize(access.Actor.user(auth_user.id), "profile", "update", current)
	cleaned = _clean_changes(changes)
	if not cleaned:
		return current
	updated = await store.update_profile(auth_user.id, cleaned, at=_now())
	if updated is None:
		raise NotFoundError("profile_missing")
	return updated


async def report_location(
	auth_user: AuthenticatedUser,
	latitude: float,
	longitude: float,
	*,
	accuracy: Optional[float] = None,
) -> Location:
	"""Upsert the caller's position; the next proximity query sees it."""
	if not valid_coordinates(latitude, longitude):
		raise ValidationError("invalid_coordinates")
	if accuracy is not None and accuracy < 0:
		raise ValidationError("invalid_accuracy")
	access.authorize(access.Actor.user(auth_user.id), "location", "insert", {"user_id": auth_user.id})
	store = get_store()
	if await store.get_profile(auth_user.id) is None:
		raise NotFoundError("profile_missing")
	location = await store.upsert_location(
		auth_user.id,
		float(latitude),
		float(longitude),
		accuracy=accuracy,
		at=_now(),
	)
	obs_metrics.inc_location_update()
	return location


async def get_my_location(auth_user: AuthenticatedUser) -> Location:
	location = await get_store().get_location(auth_user.id)
	if location is None:
		raise NotFoundError("location_missing")
	access.authorize(access.Actor.user(auth_user.id), "location", "read", location)
	return location


async def delete_my_location(auth_user: AuthenticatedUser) -> None:
	"""Forget the caller's position. Later proximity queries no longer return them."""
	store = get_store()
	location = await store.get_location(auth_user.id)
	if location is None:
		raise NotFoundError("location_missing")
	access.authorize(access.Actor.user(auth_user.id), "location", "delete", location)
	await store.delete_location(auth_user.id)


def _local_part(email: Optional[str]) -> Optional[str]:
	if not email or "@" not in email:
		return None
	local = email.split("@", 1)[0].strip()
	return local or None


def _first_text(metadata: Mapping[str, Any], *keys: str) -> Optional[str]:
	for key in keys:
		value = metadata.get(key)
		if isinstance(value, str) and value.strip():
			return value.strip()
	return None


def default_username(user_id: str, email: Optional[str], metadata: Mapping[str, Any]) -> str:
	base = _first_text(metadata, "username", "preferred_username") or _local_part(email)
	return (base or f"user_{user_id[:8]}")[:_USERNAME_MAX]


def default_full_name(email: Optional[str], metadata: Mapping[str, Any]) -> str:
	return _first_text(metadata, "full_name", "name") or _local_part(email) or "User"


def _username_candidates(base: str, user_id: str):
	compact = user_id.replace("-", "")
	yield base
	for size in (4, 8, len(compact)):
		suffix = f"_{compact[:size]}"
		yield f"{base[: _USERNAME_MAX - len(suffix)]}{suffix}"


async def provision(
	user_id: str,
	*,
	email: Optional[str] = None,
	metadata: Optional[Mapping[str, Any]] = None,
) -> Tuple[Profile, bool]:
	"""Create the default profile for a newly registered identity.

	Calling again for the same identity returns the existing profile untouched.
	A taken username gets a suffix derived from the user id.
	"""
	user_id = str(user_id)
	metadata = metadata or {}
	store = get_store()
	existing = await store.get_profile(user_id)
	if existing is not None:
		return existing, False

	base = default_username(user_id, email, metadata)
	full_name = default_full_name(email, metadata)
	avatar_url = _first_text(metadata, "avatar_url", "picture")
	access.authorize(access.Actor.user(user_id), "profile", "insert", {"id": user_id})

	for username in _username_candidates(base, user_id):
		if await store.username_taken(username, exclude_id=user_id):
			continue
		now = _now()
		profile = Profile(
			id=user_id,
			username=username,
			full_name=full_name,
			avatar_url=avatar_url,
			created_at=now,
			updated_at=now,
			theme=Theme.SYSTEM.value,
		)
		try:
			created = await store.insert_profile(profile)
		except ConflictError as exc:
			if exc.reason != "username_taken":
				raise
			continue
		if not created:
			current = await store.get_profile(user_id)
			if current is None:
				raise NotFoundError("profile_missing")
			return current, False
		logger.info("profile provisioned", extra={"profile_id": user_id})
		return profile, True
	raise ConflictError("username_taken")
