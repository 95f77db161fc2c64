"""Authentication helpers for FastAPI endpoints.

Identity is issued by the external identity provider as an HS256 access JWT.
Development builds additionally accept an `X-User-Id` header for local tools.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional, Tuple
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from nearbyconnect.infra import jwt as jwt_helper
from nearbyconnect.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	handle: Optional[str] = None
	display_name: Optional[str] = None
	email: Optional[str] = None
	roles: Tuple[str, ...] = ()
	session_id: Optional[str] = None

	def has_role(self, role: str) -> bool:
		return role in self.roles

	@property
	def uuid(self) -> UUID:
		return UUID(self.id)


_bearer_scheme = HTTPBearer(auto_error=False)


def _invalid_token() -> HTTPException:
	return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def _parse_subject(raw: object) -> str:
	try:
		return str(UUID(str(raw).strip()))
	except (TypeError, ValueError):
		raise _invalid_token() from None


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise _invalid_token() from None

	user_id = _parse_subject(payload.get("sub"))
	handle = payload.get("handle") or payload.get("preferred_username")
	display_name = payload.get("name") or payload.get("full_name")
	roles_claim = payload.get("roles") or payload.get("role")
	roles: Tuple[str, ...]
	if isinstance(roles_claim, (list, tuple)):
		roles = tuple(str(r).strip() for r in roles_claim if str(r).strip())
	elif isinstance(roles_claim, str):
		roles = tuple(part.strip() for part in roles_claim.split(",") if part.strip())
	else:
		roles = ()
	session_id = payload.get("sid")
	email = payload.get("email")
	return AuthenticatedUser(
		id=user_id,
		handle=str(handle) if handle is not None else None,
		display_name=str(display_name) if display_name is not None else None,
		email=str(email) if email is not None else None,
		roles=roles,
		session_id=str(session_id) if session_id is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow a plain X-User-Id header. In all other environments
	a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=_parse_subject(x_user_id))

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not_authenticated")


async def require_identity_hook(
	x_service_token: Optional[str] = Header(default=None, alias="X-Service-Token"),
) -> None:
	"""Guard for calls made by the identity provider rather than end users."""
	expected = settings.identity_hook_token
	if not expected or not x_service_token:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_service_token")
	if not hmac.compare_digest(expected, x_service_token):
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_service_token")
