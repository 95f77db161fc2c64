"""In-process store used by tests and single-node development.

Mirrors the PostgreSQL schema's uniqueness rules with dictionaries guarded by
one asyncio lock, so every store method is all-or-nothing just like its
transactional counterpart in :mod:`nearbyconnect.domain.repo`.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from nearbyconnect.domain.chat.models import Message
from nearbyconnect.domain.connections.models import (
	Connection,
	ConnectionRequest,
	RequestStatus,
	canonical_pair,
)
from nearbyconnect.domain.errors import AlreadyRequested, ConflictError
from nearbyconnect.domain.notifications.models import Notification
from nearbyconnect.domain.profiles.models import Location, NearbyCandidate, Profile
from nearbyconnect.domain.proximity.spatial_index import GeoGridIndex
from nearbyconnect.settings import settings


class InMemoryStore:
	"""Dictionary-backed implementation of the store interface."""

	def __init__(self, *, cell_deg: Optional[float] = None) -> None:
		self._lock = asyncio.Lock()
		self._profiles: Dict[str, Profile] = {}
		self._usernames: Dict[str, str] = {}
		self._locations: Dict[str, Location] = {}
		self._index = GeoGridIndex(cell_deg or settings.spatial_grid_cell_deg)
		self._requests: Dict[str, ConnectionRequest] = {}
		self._request_pairs: Dict[Tuple[str, str], str] = {}
		self._connections: Dict[str, Connection] = {}
		self._connection_pairs: Dict[Tuple[str, str], str] = {}
		self._messages: Dict[str, List[Message]] = {}
		self._client_ids: Dict[Tuple[str, str, str], Message] = {}
		self._notifications: Dict[str, Notification] = {}

	async def close(self) -> None:
		return None

	async def ping(self) -> Dict[str, object]:
		async with self._lock:
			return {"backend": "memory", "profiles": len(self._profiles), "located": len(self._locations)}

	# Profiles -----------------------------------------------------------------

	async def get_profile(self, user_id: str) -> Optional[Profile]:
		async with self._lock:
			return self._profiles.get(str(user_id))

	async def username_taken(self, username: str, *, exclude_id: Optional[str] = None) -> bool:
		async with self._lock:
			owner = self._usernames.get(username.lower())
			return owner is not None and owner != exclude_id

	async def insert_profile(self, profile: Profile) -> bool:
		async with self._lock:
			if profile.id in self._profiles:
				return False
			if profile.username.lower() in self._usernames:
				raise ConflictError("username_taken")
			self._profiles[profile.id] = profile
			self._usernames[profile.username.lower()] = profile.id
			return True

	async def update_profile(self, user_id: str, changes: dict, *, at: datetime) -> Optional[Profile]:
		async with self._lock:
			current = self._profiles.get(str(user_id))
			if current is None:
				return None
			new_username = changes.get("username")
			if new_username and new_username.lower() != current.username.lower():
				owner = self._usernames.get(new_username.lower())
				if owner is not None and owner != current.id:
					raise ConflictError("username_taken")
				del self._usernames[current.username.lower()]
				self._usernames[new_username.lower()] = current.id
			updated = current.with_changes(changes, at=at)
			self._profiles[current.id] = updated
			return updated

	# Locations ----------------------------------------------------------------

	async def upsert_location(
		self,
		user_id: str,
		latitude: float,
		longitude: float,
		*,
		accuracy: Optional[float],
		at: datetime,
	) -> Location:
		async with self._lock:
			location = Location(
				user_id=str(user_id),
				latitude=float(latitude),
				longitude=float(longitude),
				updated_at=at,
				accuracy=accuracy,
			)
			self._locations[location.user_id] = location
			self._index.upsert(location.user_id, location.latitude, location.longitude)
			return location

	async def get_location(self, user_id: str) -> Optional[Location]:
		async with self._lock:
			return self._locations.get(str(user_id))

	async def delete_location(self, user_id: str) -> bool:
		async with self._lock:
			removed = self._locations.pop(str(user_id), None)
			self._index.remove(str(user_id))
			return removed is not None

	async def find_nearby(
		self,
		latitude: float,
		longitude: float,
		radius_m: float,
		*,
		exclude_id: str,
		limit: int,
	) -> List[NearbyCandidate]:
		async with self._lock:
			results: List[NearbyCandidate] = []
			for hit in self._index.query_radius(latitude, longitude, radius_m):
				if hit.key == exclude_id:
					continue
				profile = self._profiles.get(hit.key)
				if profile is None or not profile.is_available:
					continue
				results.append(
					NearbyCandidate(profile=profile, location=self._locations[hit.key], distance_m=hit.distance_m)
				)
				if len(results) >= limit:
					break
			return results

	# Connection requests ------------------------------------------------------

	async def find_connection_between(self, user_a: str, user_b: str) -> Optional[Connection]:
		async with self._lock:
			connection_id = self._connection_pairs.get(canonical_pair(user_a, user_b))
			return self._connections.get(connection_id) if connection_id else None

	async def create_request(self, request: ConnectionRequest, notification: Notification) -> ConnectionRequest:
		async with self._lock:
			pair = (request.sender_id, request.receiver_id)
			if pair in self._request_pairs:
				raise AlreadyRequested()
			self._requests[request.id] = request
			self._request_pairs[pair] = request.id
			self._notifications[notification.id] = notification
			return request

	async def get_request(self, request_id: str) -> Optional[ConnectionRequest]:
		async with self._lock:
			return self._requests.get(str(request_id))

	async def resolve_request(
		self,
		request_id: str,
		status: RequestStatus,
		*,
		at: datetime,
		connection: Optional[Connection] = None,
		notification: Optional[Notification] = None,
	) -> Tuple[Optional[ConnectionRequest], Optional[Connection]]:
		async with self._lock:
			current = self._requests.get(str(request_id))
			if current is None or not current.is_pending:
				return None, None
			updated = replace(current, status=status, updated_at=at)
			self._requests[updated.id] = updated
			stored: Optional[Connection] = None
			if connection is not None:
				pair = (connection.user_id_1, connection.user_id_2)
				existing_id = self._connection_pairs.get(pair)
				if existing_id is None:
					self._connections[connection.id] = connection
					self._connection_pairs[pair] = connection.id
					stored = connection
				else:
					stored = self._connections[existing_id]
			if notification is not None:
				self._notifications[notification.id] = notification
			return updated, stored

	async def list_incoming(self, user_id: str) -> List[ConnectionRequest]:
		async with self._lock:
			rows = [
				r for r in self._requests.values() if r.receiver_id == str(user_id) and r.status is RequestStatus.PENDING
			]
		return sorted(rows, key=lambda r: (r.created_at, r.id), reverse=True)

	async def list_outgoing(self, user_id: str) -> List[ConnectionRequest]:
		async with self._lock:
			rows = [r for r in self._requests.values() if r.sender_id == str(user_id)]
		return sorted(rows, key=lambda r: (r.created_at, r.id), reverse=True)

	# Connections --------------------------------------------------------------

	async def get_connection(self, connection_id: str) -> Optional[Connection]:
		async with self._lock:
			return self._connections.get(str(connection_id))

	async def list_connections(self, user_id: str) -> List[Tuple[Connection, Profile, int]]:
		user_id = str(user_id)
		async with self._lock:
			rows: List[Tuple[Connection, Profile, int]] = []
			for connection in self._connections.values():
				if not connection.is_participant(user_id):
					continue
				other = self._profiles.get(connection.other(user_id))
				if other is None:
					continue
				unread = self._unread_locked(connection.id, user_id)
				rows.append((connection, other, unread))
		return sorted(rows, key=lambda row: (row[0].connected_at, row[0].id), reverse=True)

	# Messages -----------------------------------------------------------------

	async def insert_message(self, message: Message) -> Tuple[Message, bool]:
		async with self._lock:
			if message.client_msg_id:
				key = (message.connection_id, message.sender_id, message.client_msg_id)
				existing = self._client_ids.get(key)
				if existing is not None:
					return existing, False
				self._client_ids[key] = message
			self._messages.setdefault(message.connection_id, []).append(message)
			return message, True

	async def get_message(self, message_id: str) -> Optional[Message]:
		async with self._lock:
			for bucket in self._messages.values():
				for message in bucket:
					if message.id == str(message_id):
						return message
			return None

	async def list_messages(
		self,
		connection_id: str,
		*,
		after: Optional[Tuple[datetime, str]] = None,
	) -> List[Message]:
		async with self._lock:
			messages = sorted(self._messages.get(str(connection_id), []), key=Message.sort_key)
		if after is not None:
			messages = [m for m in messages if m.sort_key() > after]
		return messages

	async def mark_messages_read(self, connection_id: str, reader_id: str) -> List[str]:
		async with self._lock:
			changed: List[str] = []
			bucket = self._messages.get(str(connection_id), [])
			for idx, message in enumerate(bucket):
				if message.sender_id != str(reader_id) and not message.is_read:
					updated = replace(message, is_read=True)
					bucket[idx] = updated
					if updated.client_msg_id:
						self._client_ids[(updated.connection_id, updated.sender_id, updated.client_msg_id)] = updated
					changed.append(updated.id)
			return changed

	async def count_unread_messages(self, connection_id: str, viewer_id: str) -> int:
		async with self._lock:
			return self._unread_locked(str(connection_id), str(viewer_id))

	def _unread_locked(self, connection_id: str, viewer_id: str) -> int:
		return sum(
			1 for m in self._messages.get(connection_id, []) if m.sender_id != viewer_id and not m.is_read
		)

	# Notifications ------------------------------------------------------------

	async def list_notifications(self, user_id: str, *, limit: int) -> List[Notification]:
		async with self._lock:
			rows = [n for n in self._notifications.values() if n.user_id == str(user_id)]
		rows.sort(key=lambda n: (n.created_at, n.id), reverse=True)
		return rows[:limit]

	async def get_notification(self, notification_id: str) -> Optional[Notification]:
		async with self._lock:
			return self._notifications.get(str(notification_id))

	async def mark_notification_read(self, notification_id: str) -> Optional[Notification]:
		async with self._lock:
			current = self._notifications.get(str(notification_id))
			if current is None or current.is_read:
				return None
			updated = replace(current, is_read=True)
			self._notifications[updated.id] = updated
			return updated

	async def mark_all_notifications_read(self, user_id: str) -> List[Notification]:
		async with self._lock:
			changed: List[Notification] = []
			for notification in list(self._notifications.values()):
				if notification.user_id == str(user_id) and not notification.is_read:
					updated = replace(notification, is_read=True)
					self._notifications[updated.id] = updated
					changed.append(updated)
		changed.sort(key=lambda n: (n.created_at, n.id))
		return changed

	async def count_unread_notifications(self, user_id: str) -> int:
		async with self._lock:
			return sum(1 for n in self._notifications.values() if n.user_id == str(user_id) and not n.is_read)
