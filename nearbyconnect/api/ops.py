"""Probe and scrape endpoints for the deployment platform."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from nearbyconnect.obs import health
from nearbyconnect.settings import settings

router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}


@router.get("/health")
async def readiness() -> Response:
	"""Ready only when both the store and Redis answer."""
	status_code, payload = await health.readiness()
	return JSONResponse(payload, status_code=status_code, headers=_NO_STORE)


@router.get("/health/live")
async def liveness() -> Response:
	return JSONResponse(await health.liveness(), headers=_NO_STORE)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
	if not settings.obs_enabled:
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="metrics_disabled")
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
