"""JSON log lines with request and socket context attached.

Fields bound with :func:`bind_context` (request id, route, user id, socket
sid) ride along on every record emitted from the same task. Values whose key
looks like coordinates, message text or credentials are replaced before the
line is written.
"""

from __future__ import annotations

import json
import logging
import random
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

from nearbyconnect.settings import settings

ROOT_LOGGER = "nearbyconnect"
REDACTED = "[redacted]"

_EMPTY: Mapping[str, str] = MappingProxyType({})
_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("nearby_log_context", default=_EMPTY)

# raw coordinates and chat text must never reach the log pipeline
_REDACT_FRAGMENTS = (
	"token",
	"secret",
	"authorization",
	"password",
	"email",
	"phone",
	"address",
	"content",
	"body",
	"latitude",
	"longitude",
	"location",
)
_REDACT_EXACT = frozenset({"lat", "lng", "lon", "accuracy"})
_MAX_TEXT = 256
_MAX_ITEMS = 10

# attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Layer ``fields`` over the current context. Pass the token to :func:`reset_context`."""
	merged = dict(_CONTEXT.get())
	merged.update({key: str(value) for key, value in fields.items() if value is not None})
	return _CONTEXT.set(MappingProxyType(merged))


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
	token = bind_context(**fields)
	try:
		yield
	finally:
		reset_context(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _is_sensitive(key: str) -> bool:
	lowered = key.lower()
	if lowered in _REDACT_EXACT:
		return True
	return any(fragment in lowered for fragment in _REDACT_FRAGMENTS)


def scrub(key: str, value: Any) -> Any:
	if _is_sensitive(key):
		return REDACTED
	if isinstance(value, str) and len(value) > _MAX_TEXT:
		return value[:_MAX_TEXT] + "…"
	if isinstance(value, Mapping):
		items = list(value.items())
		scrubbed = {str(k): scrub(str(k), v) for k, v in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			scrubbed["…"] = f"+{len(items) - _MAX_ITEMS} keys"
		return scrubbed
	if isinstance(value, (list, tuple, set, frozenset)):
		items = list(value)
		trimmed = [scrub(key, item) for item in items[:_MAX_ITEMS]]
		if len(items) > _MAX_ITEMS:
			trimmed.append("…")
		return trimmed
	return value


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		line: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		line.update(_CONTEXT.get())
		for key, value in vars(record).items():
			if key not in _STANDARD_ATTRS:
				line[key] = scrub(key, value)
		if record.exc_info:
			line["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(line, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Drop a share of INFO records. Warnings and errors always pass."""

	def __init__(self, rate: float) -> None:
		super().__init__()
		self.rate = max(0.0, min(1.0, rate))

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or self.rate >= 1.0:
			return True
		return random.random() < self.rate


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter(settings.obs_log_sampling_rate_info))
	root = logging.getLogger()
	root.handlers[:] = [handler]
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(ROOT_LOGGER)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or ROOT_LOGGER)
