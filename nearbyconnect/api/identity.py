"""Hook called by the identity provider after a user registers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from nearbyconnect.api.errors import map_error
from nearbyconnect.domain.errors import DataLayerError
from nearbyconnect.domain.profiles import service
from nearbyconnect.domain.profiles.schemas import ProfileOut, ProvisionRequest, ProvisionResponse
from nearbyconnect.infra.auth import require_identity_hook

router = APIRouter()


@router.post("/identity/provision", response_model=ProvisionResponse)
async def provision(
	payload: ProvisionRequest,
	response: Response,
	_: None = Depends(require_identity_hook),
) -> ProvisionResponse:
	try:
		profile, created = await service.provision(
			str(payload.user_id),
			email=payload.email,
			metadata=payload.metadata,
		)
	except DataLayerError as exc:
		raise map_error(exc) from None
	response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
	return ProvisionResponse(created=created, profile=ProfileOut(**service.profile_to_dict(profile)))
