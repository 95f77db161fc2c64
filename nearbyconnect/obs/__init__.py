"""Logging, request metrics and build info for the API process."""

from __future__ import annotations

from fastapi import FastAPI

from nearbyconnect.obs import logging as obs_logging
from nearbyconnect.obs import metrics, middleware
from nearbyconnect.settings import settings


def init(app: FastAPI) -> bool:
	"""Wire observability into ``app`` once. Returns False when disabled or already wired."""
	if not settings.obs_enabled or getattr(app.state, "obs_installed", False):
		return False
	obs_logging.configure_logging()
	middleware.install(app)
	metrics.record_build(settings.service_name, settings.environment, settings.git_commit, settings.store_backend)
	app.state.obs_installed = True
	obs_logging.get_logger().info("observability ready", extra={"store_backend": settings.store_backend})
	return True


__all__ = ["init"]
