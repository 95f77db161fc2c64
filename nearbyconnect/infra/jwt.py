"""Access tokens minted by the identity provider.

Tokens are HS256 and signed with ``SECRET_KEY``. The subject claim holds the
profile id; everything else (handle, roles, session) is optional.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt
from jwt import InvalidTokenError

from nearbyconnect.settings import settings

ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


def issue_access_token(user_id: str, *, ttl_seconds: Optional[int] = None, **claims: Any) -> str:
	"""Sign a token for ``user_id``. Used by local tooling and the test suite."""
	issued_at = int(time.time())
	ttl = settings.access_ttl_minutes * 60 if ttl_seconds is None else ttl_seconds
	body: Dict[str, Any] = dict(claims)
	body.update(
		sub=str(user_id),
		iss=settings.jwt_issuer,
		aud=settings.jwt_audience,
		iat=issued_at,
		exp=issued_at + ttl,
	)
	return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> Dict[str, Any]:
	"""Return the verified claims, or raise ``jwt.InvalidTokenError``."""
	claims = jwt.decode(
		token,
		settings.secret_key,
		algorithms=[ALGORITHM],
		audience=settings.jwt_audience,
		issuer=settings.jwt_issuer,
		leeway=settings.jwt_leeway_seconds,
		options={"require": _REQUIRED_CLAIMS},
	)
	if not str(claims["sub"]).strip():
		raise InvalidTokenError("empty_subject")
	return claims
