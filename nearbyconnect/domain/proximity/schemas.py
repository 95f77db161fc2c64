"""Pydantic schemas for proximity queries."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class NearbyUser(BaseModel):
	user_id: UUID
	username: str
	full_name: str
	avatar_url: Optional[str] = None
	bio: Optional[str] = None
	interests: List[str] = Field(default_factory=list)
	latitude: float
	longitude: float
	distance_km: float
	last_seen: datetime
