"""Authentication helpers for FastAPI endpoints.

A valid Bearer JWT (HS256, settings.secret_key) is required outside
development. In development, the ``X-User-Id`` header is accepted for local
tools and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from matchcore.infra import jwt as jwt_helper
from matchcore.settings import settings


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
	id: str
	access_token: Optional[str] = None
	display_name: Optional[str] = None
	roles: Tuple[str, ...] = ()


# The matching core only ever sees the read-only session view of the caller.
SessionContext = AuthenticatedUser

_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode an access JWT and return the caller, keeping the raw token for the store fallback."""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	display_name = payload.get("name") or payload.get("display_name")
	roles_claim = payload.get("roles") or payload.get("role")
	roles: Tuple[str, ...]
	if isinstance(roles_claim, (list, tuple)):
		roles = tuple(str(r).strip() for r in roles_claim if str(r).strip())
	elif isinstance(roles_claim, str):
		roles = tuple(part.strip() for part in roles_claim.split(",") if part.strip())
	else:
		roles = ()
	return AuthenticatedUser(
		id=sub,
		access_token=token,
		display_name=str(display_name) if display_name is not None else None,
		roles=roles,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user for the current request."""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip(), access_token=x_access_token)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
