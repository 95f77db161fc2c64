"""Domain models for profiles and their last reported location."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Theme(str, Enum):
	LIGHT = "light"
	DARK = "dark"
	SYSTEM = "system"


# Only these fields are returned to anyone other than the owner
PUBLIC_FIELDS = (
	"id",
	"username",
	"full_name",
	"avatar_url",
	"bio",
	"interests",
	"is_available",
	"city",
	"country",
)

EDITABLE_FIELDS = frozenset(
	{
		"username",
		"full_name",
		"avatar_url",
		"bio",
		"interests",
		"is_available",
		"city",
		"country",
		"phone",
		"address",
		"date_of_birth",
		"theme",
	}
)


@dataclass(slots=True)
class Profile:
	id: str
	username: str
	full_name: str
	created_at: datetime
	updated_at: datetime
	bio: Optional[str] = None
	avatar_url: Optional[str] = None
	interests: List[str] = field(default_factory=list)
	is_available: bool = True
	city: Optional[str] = None
	country: Optional[str] = None
	phone: Optional[str] = None
	address: Optional[str] = None
	date_of_birth: Optional[str] = None
	theme: str = Theme.SYSTEM.value

	@classmethod
	def from_record(cls, record: Any) -> "Profile":
		data = dict(record)
		dob = data.get("date_of_birth")
		return cls(
			id=str(data["id"]),
			username=data["username"],
			full_name=data["full_name"],
			created_at=data["created_at"],
			updated_at=data["updated_at"],
			bio=data.get("bio"),
			avatar_url=data.get("avatar_url"),
			interests=list(data.get("interests") or []),
			is_available=bool(data.get("is_available", True)),
			city=data.get("city"),
			country=data.get("country"),
			phone=data.get("phone"),
			address=data.get("address"),
			date_of_birth=dob.isoformat() if hasattr(dob, "isoformat") else dob,
			theme=data.get("theme") or Theme.SYSTEM.value,
		)

	def with_changes(self, changes: Dict[str, Any], *, at: datetime) -> "Profile":
		return replace(self, **changes, updated_at=at)

	def public_view(self) -> Dict[str, Any]:
		return {name: getattr(self, name) for name in PUBLIC_FIELDS}


@dataclass(slots=True)
class Location:
	user_id: str
	latitude: float
	longitude: float
	updated_at: datetime
	accuracy: Optional[float] = None

	@classmethod
	def from_record(cls, record: Any) -> "Location":
		data = dict(record)
		accuracy = data.get("accuracy")
		return cls(
			user_id=str(data["user_id"]),
			latitude=float(data["latitude"]),
			longitude=float(data["longitude"]),
			updated_at=data["updated_at"],
			accuracy=float(accuracy) if accuracy is not None else None,
		)


@dataclass(slots=True)
class NearbyCandidate:
	"""A located, available profile returned by a store radius scan."""

	profile: Profile
	location: Location
	distance_m: float
