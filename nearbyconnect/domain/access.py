"""Row-level access rules for every persisted entity.

Each resource maps an action to a predicate over ``(actor, row)``. Services
call :func:`authorize` before touching the store and :func:`filter_visible`
on collections they hand back to callers. Rows created by service transitions
(connections, notifications) are written under the :data:`SYSTEM` actor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Tuple, TypeVar

from nearbyconnect.domain.errors import AuthorizationError, NotFoundError
from nearbyconnect.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

Resource = Literal["profile", "location", "connection_request", "connection", "message", "notification"]
Action = Literal["read", "insert", "update", "delete"]

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Actor:
	"""The identity an operation runs as."""

	user_id: Optional[str]
	system: bool = False

	@classmethod
	def user(cls, user_id: object) -> "Actor":
		return cls(user_id=str(user_id))

	@property
	def authenticated(self) -> bool:
		return self.system or bool(self.user_id)


SYSTEM = Actor(user_id=None, system=True)
ANONYMOUS = Actor(user_id=None)

Predicate = Callable[[Actor, Any], bool]


def _field(row: Any, name: str) -> Any:
	if isinstance(row, dict):
		value = row.get(name)
	else:
		value = getattr(row, name, None)
	return str(value) if value is not None else None


def _is(actor: Actor, row: Any, name: str) -> bool:
	return actor.user_id is not None and _field(row, name) == actor.user_id


def _participant(actor: Actor, row: Any) -> bool:
	return _is(actor, row, "user_id_1") or _is(actor, row, "user_id_2")


def _never(actor: Actor, row: Any) -> bool:
	return False


def _owner(actor: Actor, row: Any) -> bool:
	return _is(actor, row, "id")


def _location_owner(actor: Actor, row: Any) -> bool:
	return _is(actor, row, "user_id")


def _profile_read(actor: Actor, row: Any) -> bool:
	available = row.get("is_available") if isinstance(row, dict) else getattr(row, "is_available", False)
	return bool(available) or _owner(actor, row)


def _request_read(actor: Actor, row: Any) -> bool:
	return _is(actor, row, "sender_id") or _is(actor, row, "receiver_id")


def _request_insert(actor: Actor, row: Any) -> bool:
	return _is(actor, row, "sender_id")


def _request_update(actor: Actor, row: Any) -> bool:
	return _is(actor, row, "receiver_id")


# Message rows carry the connection's participants alongside sender_id.
def _message_participant(actor: Actor, row: Any) -> bool:
	return _participant(actor, row)


def _message_insert(actor: Actor, row: Any) -> bool:
	return _participant(actor, row) and _is(actor, row, "sender_id")


def _recipient(actor: Actor, row: Any) -> bool:
	return _is(actor, row, "user_id")


_POLICIES: Dict[Tuple[str, str], Predicate] = {
	("profile", "read"): _profile_read,
	("profile", "insert"): _owner,
	("profile", "update"): _owner,
	("location", "read"): _location_owner,
	("location", "insert"): _location_owner,
	("location", "update"): _location_owner,
	("location", "delete"): _location_owner,
	("connection_request", "read"): _request_read,
	("connection_request", "insert"): _request_insert,
	("connection_request", "update"): _request_update,
	("connection", "read"): _participant,
	("connection", "insert"): _never,
	("connection", "update"): _never,
	("message", "read"): _message_participant,
	("message", "insert"): _message_insert,
	("message", "update"): _message_participant,
	("notification", "read"): _recipient,
	("notification", "insert"): _never,
	("notification", "update"): _recipient,
}


def is_allowed(actor: Actor, resource: Resource, action: Action, row: Any) -> bool:
	predicate = _POLICIES.get((resource, action))
	if predicate is None:
		return False
	if actor.system:
		# System transitions may create rows nobody else can, but never read on a user's behalf
		return action == "insert"
	return predicate(actor, row)


def authorize(actor: Actor, resource: Resource, action: Action, row: Any) -> None:
	"""Raise AuthorizationError unless ``actor`` may perform ``action`` on ``row``."""
	if is_allowed(actor, resource, action, row):
		return
	obs_metrics.inc_access_denied(resource, action)
	logger.info("access denied", extra={"resource": resource, "action": action, "actor": actor.user_id})
	raise AuthorizationError()


def authorize_visible(actor: Actor, resource: Resource, action: Action, row: Any) -> None:
	"""Like :func:`authorize`, but a row the actor cannot read raises NotFoundError.

	Callers then see the same answer for a foreign row as for an unknown id.
	"""
	if not is_allowed(actor, resource, "read", row):
		obs_metrics.inc_access_denied(resource, "read")
		raise NotFoundError()
	authorize(actor, resource, action, row)


def filter_visible(actor: Actor, resource: Resource, rows: Iterable[T]) -> List[T]:
	return [row for row in rows if is_allowed(actor, resource, "read", row)]


__all__ = [
	"ANONYMOUS",
	"Actor",
	"SYSTEM",
	"authorize",
	"authorize_visible",
	"filter_visible",
	"is_allowed",
]
