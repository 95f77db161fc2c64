"""Error mapping and global handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nearbyconnect.api.request_id import get_request_id
from nearbyconnect.domain.errors import (
	AuthorizationError,
	ConflictError,
	DataLayerError,
	NotFoundError,
	TransientError,
	ValidationError,
)
from nearbyconnect.infra.rate_limit import RateLimitExceeded


def map_error(exc: Exception) -> HTTPException:
	"""Translate a domain exception into the HTTP status clients see."""
	reason = getattr(exc, "reason", None)
	if isinstance(exc, RateLimitExceeded):
		headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
		return HTTPException(status.HTTP_429_TOO_MANY_REQUESTS, detail=reason or "rate_limited", headers=headers)
	if isinstance(exc, ValidationError):
		return HTTPException(422, detail=reason or "invalid")
	if isinstance(exc, AuthorizationError):
		return HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")
	if isinstance(exc, NotFoundError):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=reason or "not_found")
	if isinstance(exc, ConflictError):
		return HTTPException(status.HTTP_409_CONFLICT, detail=reason or "conflict")
	if isinstance(exc, TransientError):
		return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=reason or "unavailable")
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc))


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		rid = get_request_id(request)
		payload = {"detail": exc.detail, "request_id": rid}
		return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		rid = get_request_id(request)
		payload = {"detail": "validation_error", "errors": jsonable_errors(exc), "request_id": rid}
		return JSONResponse(status_code=422, content=payload)

	@app.exception_handler(DataLayerError)
	async def data_layer_exc_handler(request: Request, exc: DataLayerError):  # type: ignore[override]
		mapped = map_error(exc)
		return JSONResponse(
			status_code=mapped.status_code,
			content={"detail": mapped.detail, "request_id": get_request_id(request)},
		)

	@app.exception_handler(RateLimitExceeded)
	async def rate_limit_exc_handler(request: Request, exc: RateLimitExceeded):  # type: ignore[override]
		mapped = map_error(exc)
		return JSONResponse(
			status_code=mapped.status_code,
			content={"detail": mapped.detail, "request_id": get_request_id(request)},
			headers=mapped.headers,
		)


def jsonable_errors(exc: RequestValidationError) -> list:
	errors = []
	for error in exc.errors():
		errors.append({"loc": list(error.get("loc", ())), "msg": str(error.get("msg", "")), "type": error.get("type")})
	return errors
