"""Pydantic schemas for profiles, locations and identity provisioning."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PublicProfile(BaseModel):
	id: UUID
	username: str
	full_name: str
	avatar_url: Optional[str] = None
	bio: Optional[str] = None
	interests: List[str] = Field(default_factory=list)
	is_available: bool = True
	city: Optional[str] = None
	country: Optional[str] = None


class ProfileOut(PublicProfile):
	phone: Optional[str] = None
	address: Optional[str] = None
	date_of_birth: Optional[date] = None
	theme: Literal["light", "dark", "system"] = "system"
	created_at: datetime
	updated_at: datetime


class ProfilePatch(BaseModel):
	username: Optional[str] = Field(default=None, min_length=1, max_length=40)
	full_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
	avatar_url: Optional[str] = Field(default=None, max_length=2048)
	bio: Optional[str] = Field(default=None, max_length=500)
	interests: Optional[List[str]] = Field(default=None, max_length=30)
	is_available: Optional[bool] = None
	city: Optional[str] = Field(default=None, max_length=120)
	country: Optional[str] = Field(default=None, max_length=120)
	phone: Optional[str] = Field(default=None, max_length=40)
	address: Optional[str] = Field(default=None, max_length=240)
	date_of_birth: Optional[date] = None
	theme: Optional[Literal["light", "dark", "system"]] = None


class LocationIn(BaseModel):
	latitude: float = Field(..., ge=-90.0, le=90.0)
	longitude: float = Field(..., ge=-180.0, le=180.0)
	accuracy: Optional[float] = Field(default=None, ge=0.0)


class LocationOut(BaseModel):
	user_id: UUID
	latitude: float
	longitude: float
	accuracy: Optional[float] = None
	updated_at: datetime


class ProvisionRequest(BaseModel):
	"""Payload posted by the identity provider when a user first signs in."""

	user_id: UUID
	email: Optional[str] = None
	metadata: Dict[str, Any] = Field(default_factory=dict)


class ProvisionResponse(BaseModel):
	created: bool
	profile: ProfileOut
