"""PostgreSQL/PostGIS store and backend selection.

Every mutating method runs inside a single ``conn.transaction()`` so derived
rows (connections, notifications) commit or roll back with the transition that
produced them. Driver failures are translated into domain errors here and
nowhere else.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar, Union

import asyncpg

from nearbyconnect.domain.chat.models import Message
from nearbyconnect.domain.connections.models import Connection, ConnectionRequest, RequestStatus, canonical_pair
from nearbyconnect.domain.errors import (
	AlreadyConnected,
	AlreadyRequested,
	ConflictError,
	DataLayerError,
	TransientError,
)
from nearbyconnect.domain.memory_repo import InMemoryStore
from nearbyconnect.domain.notifications.models import Notification
from nearbyconnect.domain.profiles.models import Location, NearbyCandidate, Profile
from nearbyconnect.infra.postgres import get_pool
from nearbyconnect.obs import metrics as obs_metrics
from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

_TRANSIENT_ERRORS = (
	asyncpg.exceptions.PostgresConnectionError,
	asyncpg.exceptions.CannotConnectNowError,
	asyncpg.exceptions.TooManyConnectionsError,
	asyncpg.exceptions.QueryCanceledError,
	asyncpg.exceptions.SerializationError,
	asyncpg.exceptions.DeadlockDetectedError,
	asyncpg.InterfaceError,
	asyncio.TimeoutError,
	OSError,
)

_CONSTRAINT_ERRORS = {
	"connection_requests_sender_receiver_key": AlreadyRequested,
	"connections_pair_key": AlreadyConnected,
}


def _guarded(operation: str) -> Callable[[F], F]:
	"""Translate driver failures raised by a store method into domain errors."""

	def decorator(func: F) -> F:
		@functools.wraps(func)
		async def wrapper(*args, **kwargs):
			try:
				return await func(*args, **kwargs)
			except DataLayerError:
				raise
			except asyncpg.UniqueViolationError as exc:
				error_cls = _CONSTRAINT_ERRORS.get(_constraint(exc))
				if error_cls is not None:
					raise error_cls() from exc
				raise ConflictError(_conflict_reason(exc)) from exc
			except _TRANSIENT_ERRORS as exc:
				obs_metrics.inc_store_error(operation)
				logger.warning("store unavailable", extra={"operation": operation, "error": type(exc).__name__})
				raise TransientError() from exc

		return wrapper  # type: ignore[return-value]

	return decorator


def _constraint(exc: asyncpg.UniqueViolationError) -> str:
	return getattr(exc, "constraint_name", None) or ""


def _conflict_reason(exc: asyncpg.UniqueViolationError) -> str:
	if _constraint(exc).startswith("profiles_username"):
		return "username_taken"
	return "conflict"


def _as_date(value: Optional[str]) -> Optional[date]:
	if value in (None, ""):
		return None
	return date.fromisoformat(str(value))


_PROFILE_COLUMNS = """
	p.id, p.username, p.full_name, p.bio, p.avatar_url, p.interests, p.is_available,
	p.city, p.country, p.phone, p.address, p.date_of_birth, p.theme, p.created_at, p.updated_at
"""

_LOCATION_COLUMNS = """
	l.user_id, ST_Y(l.location::geometry) AS latitude, ST_X(l.location::geometry) AS longitude,
	l.accuracy, l.updated_at
"""

_NOTIFICATION_INSERT_SQL = """
INSERT INTO notifications (id, user_id, type, title, body, data, is_read, created_at)
VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
"""


async def _insert_notification(conn: asyncpg.Connection, notification: Notification) -> None:
	await conn.execute(
		_NOTIFICATION_INSERT_SQL,
		notification.id,
		notification.user_id,
		notification.type.value,
		notification.title,
		notification.body,
		notification.data,
		notification.is_read,
		notification.created_at,
	)


class PostgresStore:
	"""Store backed by the asyncpg pool and the PostGIS geography index."""

	async def close(self) -> None:
		return None

	@_guarded("ping")
	async def ping(self) -> Dict[str, object]:
		pool = await get_pool()
		version = await pool.fetchval("SELECT PostGIS_Lib_Version()")
		return {"backend": "postgres", "postgis": version}

	# Profiles -----------------------------------------------------------------

	@_guarded("get_profile")
	async def get_profile(self, user_id: str) -> Optional[Profile]:
		pool = await get_pool()
		record = await pool.fetchrow(f"SELECT {_PROFILE_COLUMNS} FROM profiles p WHERE p.id = $1", str(user_id))
		return Profile.from_record(record) if record else None

	@_guarded("username_taken")
	async def username_taken(self, username: str, *, exclude_id: Optional[str] = None) -> bool:
		pool = await get_pool()
		record = await pool.fetchrow(
			"SELECT id FROM profiles WHERE lower(username) = lower($1) AND ($2::uuid IS NULL OR id <> $2::uuid)",
			username,
			exclude_id,
		)
		return record is not None

	@_guarded("insert_profile")
	async def insert_profile(self, profile: Profile) -> bool:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				record = await conn.fetchrow(
					"""
					INSERT INTO profiles (
						id, username, full_name, bio, avatar_url, interests, is_available,
						city, country, phone, address, date_of_birth, theme, created_at, updated_at
					)
					VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
					ON CONFLICT (id) DO NOTHING
					RETURNING id
					""",
					profile.id,
					profile.username,
					profile.full_name,
					profile.bio,
					profile.avatar_url,
					list(profile.interests),
					profile.is_available,
					profile.city,
					profile.country,
					profile.phone,
					profile.address,
					_as_date(profile.date_of_birth),
					profile.theme,
					profile.created_at,
					profile.updated_at,
				)
		return record is not None

	@_guarded("update_profile")
	async def update_profile(self, user_id: str, changes: dict, *, at: datetime) -> Optional[Profile]:
		values = dict(changes)
		if "date_of_birth" in values:
			values["date_of_birth"] = _as_date(values["date_of_birth"])
		if "interests" in values:
			values["interests"] = list(values["interests"] or [])
		columns = sorted(values)
		assignments = ", ".join(f"{column} = ${idx + 3}" for idx, column in enumerate(columns))
		set_clause = f"{assignments}, updated_at = $2" if assignments else "updated_at = $2"
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				record = await conn.fetchrow(
					f"""
					UPDATE profiles p SET {set_clause}
					WHERE p.id = $1
					RETURNING {_PROFILE_COLUMNS}
					""",
					str(user_id),
					at,
					*[values[column] for column in columns],
				)
		return Profile.from_record(record) if record else None

	# Locations ----------------------------------------------------------------

	@_guarded("upsert_location")
	async def upsert_location(
		self,
		user_id: str,
		latitude: float,
		longitude: float,
		*,
		accuracy: Optional[float],
		at: datetime,
	) -> Location:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				record = await conn.fetchrow(
					f"""
					INSERT INTO user_locations AS l (user_id, location, accuracy, updated_at)
					VALUES ($1, ST_SetSRID(ST_MakePoint($3, $2), 4326)::geography, $4, $5)
					ON CONFLICT (user_id) DO UPDATE
					SET location = EXCLUDED.location, accuracy = EXCLUDED.accuracy, updated_at = EXCLUDED.updated_at
					RETURNING {_LOCATION_COLUMNS}
					""",
					str(user_id),
					float(latitude),
					float(longitude),
					accuracy,
					at,
				)
		return Location.from_record(record)

	@_guarded("get_location")
	async def get_location(self, user_id: str) -> Optional[Location]:
		pool = await get_pool()
		record = await pool.fetchrow(
			f"SELECT {_LOCATION_COLUMNS} FROM user_locations l WHERE l.user_id = $1",
			str(user_id),
		)
		return Location.from_record(record) if record else None

	@_guarded("delete_location")
	async def delete_location(self, user_id: str) -> bool:
		pool = await get_pool()
		deleted = await pool.fetchval(
			"DELETE FROM user_locations WHERE user_id = $1 RETURNING user_id",
			str(user_id),
		)
		return deleted is not None

	@_guarded("find_nearby")
	async def find_nearby(
		self,
		latitude: float,
		longitude: float,
		radius_m: float,
		*,
		exclude_id: str,
		limit: int,
	) -> List[NearbyCandidate]:
		# sphere, not spheroid: same distances as the in-process haversine index
		pool = await get_pool()
		rows = await pool.fetch(
			f"""
			WITH origin AS (
				SELECT ST_SetSRID(ST_MakePoint($2, $1), 4326)::geography AS point
			)
			SELECT {_PROFILE_COLUMNS},
				ST_Y(l.location::geometry) AS latitude, ST_X(l.location::geometry) AS longitude,
				l.accuracy, l.updated_at AS last_seen,
				ST_Distance(l.location, origin.point, false) AS distance_m
			FROM user_locations l
			JOIN profiles p ON p.id = l.user_id
			CROSS JOIN origin
			WHERE ST_DWithin(l.location, origin.point, $3, false)
				AND p.is_available = TRUE
				AND p.id <> $4::uuid
			ORDER BY distance_m ASC, p.id ASC
			LIMIT $5
			""",
			float(latitude),
			float(longitude),
			float(radius_m),
			exclude_id,
			limit,
		)
		return [
			NearbyCandidate(
				profile=Profile.from_record(row),
				location=Location(
					user_id=str(row["id"]),
					latitude=float(row["latitude"]),
					longitude=float(row["longitude"]),
					updated_at=row["last_seen"],
					accuracy=row["accuracy"],
				),
				distance_m=float(row["distance_m"]),
			)
			for row in rows
		]

	# Connection requests ------------------------------------------------------

	@_guarded("find_connection_between")
	async def find_connection_between(self, user_a: str, user_b: str) -> Optional[Connection]:
		first, second = canonical_pair(user_a, user_b)
		pool = await get_pool()
		record = await pool.fetchrow(
			"SELECT * FROM connections WHERE user_id_1 = $1 AND user_id_2 = $2",
			first,
			second,
		)
		return Connection.from_record(record) if record else None

	@_guarded("create_request")
	async def create_request(self, request: ConnectionRequest, notification: Notification) -> ConnectionRequest:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				record = await conn.fetchrow(
					"""
					INSERT INTO connection_requests (id, sender_id, receiver_id, status, created_at, updated_at)
					VALUES ($1, $2, $3, $4, $5, $6)
					ON CONFLICT (sender_id, receiver_id) DO NOTHING
					RETURNING *
					""",
					request.id,
					request.sender_id,
					request.receiver_id,
					request.status.value,
					request.created_at,
					request.updated_at,
				)
				if record is None:
					raise AlreadyRequested()
				await _insert_notification(conn, notification)
		return ConnectionRequest.from_record(record)

	@_guarded("get_request")
	async def get_request(self, request_id: str) -> Optional[ConnectionRequest]:
		pool = await get_pool()
		record = await pool.fetchrow("SELECT * FROM connection_requests WHERE id = $1", str(request_id))
		return ConnectionRequest.from_record(record) if record else None

	@_guarded("resolve_request")
	async def resolve_request(
		self,
		request_id: str,
		status: RequestStatus,
		*,
		at: datetime,
		connection: Optional[Connection] = None,
		notification: Optional[Notification] = None,
	) -> Tuple[Optional[ConnectionRequest], Optional[Connection]]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				updated = await conn.fetchrow(
					"""
					UPDATE connection_requests
					SET status = $2, updated_at = $3
					WHERE id = $1 AND status = 'pending'
					RETURNING *
					""",
					str(request_id),
					status.value,
					at,
				)
				if updated is None:
					return None, None
				stored: Optional[asyncpg.Record] = None
				if connection is not None:
					await conn.execute(
						"""
						INSERT INTO connections (id, user_id_1, user_id_2, connected_at)
						VALUES ($1, $2, $3, $4)
						ON CONFLICT (user_id_1, user_id_2) DO NOTHING
						""",
						connection.id,
						connection.user_id_1,
						connection.user_id_2,
						connection.connected_at,
					)
					stored = await conn.fetchrow(
						"SELECT * FROM connections WHERE user_id_1 = $1 AND user_id_2 = $2",
						connection.user_id_1,
						connection.user_id_2,
					)
				if notification is not None:
					await _insert_notification(conn, notification)
		return (
			ConnectionRequest.from_record(updated),
			Connection.from_record(stored) if stored else None,
		)

	@_guarded("list_incoming")
	async def list_incoming(self, user_id: str) -> List[ConnectionRequest]:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT * FROM connection_requests
			WHERE receiver_id = $1 AND status = 'pending'
			ORDER BY created_at DESC, id DESC
			""",
			str(user_id),
		)
		return [ConnectionRequest.from_record(row) for row in rows]

	@_guarded("list_outgoing")
	async def list_outgoing(self, user_id: str) -> List[ConnectionRequest]:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT * FROM connection_requests
			WHERE sender_id = $1
			ORDER BY created_at DESC, id DESC
			""",
			str(user_id),
		)
		return [ConnectionRequest.from_record(row) for row in rows]

	# Connections --------------------------------------------------------------

	@_guarded("get_connection")
	async def get_connection(self, connection_id: str) -> Optional[Connection]:
		pool = await get_pool()
		record = await pool.fetchrow("SELECT * FROM connections WHERE id = $1", str(connection_id))
		return Connection.from_record(record) if record else None

	@_guarded("list_connections")
	async def list_connections(self, user_id: str) -> List[Tuple[Connection, Profile, int]]:
		pool = await get_pool()
		rows = await pool.fetch(
			f"""
			SELECT c.id AS connection_id, c.user_id_1, c.user_id_2, c.connected_at,
				{_PROFILE_COLUMNS},
				(
					SELECT COUNT(*) FROM messages m
					WHERE m.connection_id = c.id AND m.sender_id <> $1::uuid AND m.is_read = FALSE
				) AS unread_count
			FROM connections c
			JOIN profiles p ON p.id = CASE WHEN c.user_id_1 = $1::uuid THEN c.user_id_2 ELSE c.user_id_1 END
			WHERE c.user_id_1 = $1::uuid OR c.user_id_2 = $1::uuid
			ORDER BY c.connected_at DESC, c.id DESC
			""",
			str(user_id),
		)
		result: List[Tuple[Connection, Profile, int]] = []
		for row in rows:
			connection = Connection(
				id=str(row["connection_id"]),
				user_id_1=str(row["user_id_1"]),
				user_id_2=str(row["user_id_2"]),
				connected_at=row["connected_at"],
			)
			result.append((connection, Profile.from_record(row), int(row["unread_count"])))
		return result

	# Messages -----------------------------------------------------------------

	@_guarded("insert_message")
	async def insert_message(self, message: Message) -> Tuple[Message, bool]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				record = await conn.fetchrow(
					"""
					INSERT INTO messages (id, connection_id, sender_id, content, is_read, client_msg_id, created_at)
					VALUES ($1, $2, $3, $4, $5, $6, $7)
					ON CONFLICT (connection_id, sender_id, client_msg_id) DO NOTHING
					RETURNING *
					""",
					message.id,
					message.connection_id,
					message.sender_id,
					message.content,
					message.is_read,
					message.client_msg_id,
					message.created_at,
				)
				if record is not None:
					return Message.from_record(record), True
				existing = await conn.fetchrow(
					"""
					SELECT * FROM messages
					WHERE connection_id = $1 AND sender_id = $2 AND client_msg_id = $3
					""",
					message.connection_id,
					message.sender_id,
					message.client_msg_id,
				)
		return Message.from_record(existing), False

	@_guarded("get_message")
	async def get_message(self, message_id: str) -> Optional[Message]:
		pool = await get_pool()
		record = await pool.fetchrow("SELECT * FROM messages WHERE id = $1", str(message_id))
		return Message.from_record(record) if record else None

	@_guarded("list_messages")
	async def list_messages(
		self,
		connection_id: str,
		*,
		after: Optional[Tuple[datetime, str]] = None,
	) -> List[Message]:
		pool = await get_pool()
		if after is None:
			rows = await pool.fetch(
				"SELECT * FROM messages WHERE connection_id = $1 ORDER BY created_at ASC, id ASC",
				str(connection_id),
			)
		else:
			rows = await pool.fetch(
				"""
				SELECT * FROM messages
				WHERE connection_id = $1 AND (created_at, id) > ($2, $3::uuid)
				ORDER BY created_at ASC, id ASC
				""",
				str(connection_id),
				after[0],
				after[1],
			)
		return [Message.from_record(row) for row in rows]

	@_guarded("mark_messages_read")
	async def mark_messages_read(self, connection_id: str, reader_id: str) -> List[str]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				rows = await conn.fetch(
					"""
					UPDATE messages SET is_read = TRUE
					WHERE connection_id = $1 AND sender_id <> $2 AND is_read = FALSE
					RETURNING id
					""",
					str(connection_id),
					str(reader_id),
				)
		return [str(row["id"]) for row in rows]

	@_guarded("count_unread_messages")
	async def count_unread_messages(self, connection_id: str, viewer_id: str) -> int:
		pool = await get_pool()
		value = await pool.fetchval(
			"""
			SELECT COUNT(*) FROM messages
			WHERE connection_id = $1 AND sender_id <> $2 AND is_read = FALSE
			""",
			str(connection_id),
			str(viewer_id),
		)
		return int(value or 0)

	# Notifications ------------------------------------------------------------

	@_guarded("list_notifications")
	async def list_notifications(self, user_id: str, *, limit: int) -> List[Notification]:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT * FROM notifications
			WHERE user_id = $1
			ORDER BY created_at DESC, id DESC
			LIMIT $2
			""",
			str(user_id),
			limit,
		)
		return [Notification.from_record(row) for row in rows]

	@_guarded("get_notification")
	async def get_notification(self, notification_id: str) -> Optional[Notification]:
		pool = await get_pool()
		record = await pool.fetchrow("SELECT * FROM notifications WHERE id = $1", str(notification_id))
		return Notification.from_record(record) if record else None

	@_guarded("mark_notification_read")
	async def mark_notification_read(self, notification_id: str) -> Optional[Notification]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				record = await conn.fetchrow(
					"""
					UPDATE notifications SET is_read = TRUE
					WHERE id = $1 AND is_read = FALSE
					RETURNING *
					""",
					str(notification_id),
				)
		return Notification.from_record(record) if record else None

	@_guarded("mark_all_notifications_read")
	async def mark_all_notifications_read(self, user_id: str) -> List[Notification]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				rows = await conn.fetch(
					"""
					UPDATE notifications SET is_read = TRUE
					WHERE user_id = $1 AND is_read = FALSE
					RETURNING *
					""",
					str(user_id),
				)
		changed = [Notification.from_record(row) for row in rows]
		changed.sort(key=lambda n: (n.created_at, n.id))
		return changed

	@_guarded("count_unread_notifications")
	async def count_unread_notifications(self, user_id: str) -> int:
		pool = await get_pool()
		value = await pool.fetchval(
			"SELECT COUNT(*) FROM notifications WHERE user_id = $1 AND is_read = FALSE",
			str(user_id),
		)
		return int(value or 0)


Store = Union[PostgresStore, InMemoryStore]

_store: Optional[Store] = None


def get_store() -> Store:
	"""Return the process-wide store selected by ``STORE_BACKEND``."""
	global _store
	if _store is None:
		_store = InMemoryStore() if settings.store_backend == "memory" else PostgresStore()
	return _store


def set_store(store: Optional[Store]) -> None:
	global _store
	_store = store
