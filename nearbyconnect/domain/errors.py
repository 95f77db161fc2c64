"""Domain-level exceptions shared by every data-layer component."""

from __future__ import annotations


class DataLayerError(Exception):
	"""Base class for data layer errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class ValidationError(DataLayerError):
	reason = "invalid"


class AuthorizationError(DataLayerError):
	reason = "forbidden"


class NotFoundError(DataLayerError):
	reason = "not_found"


class ConflictError(DataLayerError):
	reason = "conflict"


class AlreadyRequested(ConflictError):
	reason = "already_requested"


class AlreadyConnected(ConflictError):
	reason = "already_connected"


class AlreadyResolved(ConflictError):
	reason = "already_resolved"


class TransientError(DataLayerError):
	"""Store unavailable or timed out. Safe to retry."""

	reason = "unavailable"
