"""Per-request id, access log line and latency metrics."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from nearbyconnect.obs import logging as obs_logging
from nearbyconnect.obs import metrics

REQUEST_ID_HEADER = "X-Request-Id"
_MAX_INBOUND_ID = 128

# probes and scrapes would drown the access log
_QUIET_PATHS = frozenset({"/health", "/health/live", "/metrics"})


def _inbound_request_id(request: Request) -> str:
	supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
	if supplied and len(supplied) <= _MAX_INBOUND_ID and supplied.isprintable():
		return supplied
	return str(uuid4())


def _route_label(request: Request) -> str:
	# templated path keeps ids out of metric labels
	route = request.scope.get("route")
	path = getattr(route, "path", None)
	return path if path else "unmatched"


class ObservabilityMiddleware(BaseHTTPMiddleware):
	def __init__(self, app) -> None:
		super().__init__(app)
		self._logger = obs_logging.get_logger("nearbyconnect.http")

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		request_id = _inbound_request_id(request)
		request.state.request_id = request_id
		client = request.client
		started = time.perf_counter()
		status_code = 500
		with obs_logging.log_context(
			request_id=request_id,
			route=request.url.path,
			user_id=request.headers.get("X-User-Id"),
			client_ip=client.host if client else None,
		):
			try:
				response = await call_next(request)
				status_code = response.status_code
			except Exception:
				self._logger.exception("http_request_failed", extra={"method": request.method})
				raise
			finally:
				elapsed = time.perf_counter() - started
				metrics.observe_request(_route_label(request), request.method, status_code, elapsed)
				if request.url.path not in _QUIET_PATHS or status_code >= 500:
					self._logger.info(
						"http_request",
						extra={"method": request.method, "status": status_code, "latency_ms": round(elapsed * 1000, 3)},
					)
		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response


def install(app) -> None:
	app.add_middleware(ObservabilityMiddleware)
