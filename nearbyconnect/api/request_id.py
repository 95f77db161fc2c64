"""Request ID helper for endpoints and error handlers."""

from __future__ import annotations

from typing import Optional

from starlette.requests import Request

from nearbyconnect.obs import logging as obs_logging


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
	"""Return the id the observability middleware assigned to this request."""
	if request is not None:
		rid = getattr(request.state, "request_id", None)
		if rid:
			return str(rid)
		header = request.headers.get("X-Request-Id")
		if header:
			return header
	return obs_logging.current_request_id() or default
