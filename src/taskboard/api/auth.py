from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .repositories import Store, get_store
from .settings import Settings, get_settings

_security = HTTPBearer(auto_error=False, description="Bearer token mapped to a user via API_TOKENS")


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Principal:
    """The authenticated user a request acts for."""

    user_id: str


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class RequestContext:
    """
    Per-request context built once by the auth dependency and handed explicitly
    to route handlers.

    - principal: the authenticated user
    - store: the store handle every query of this request goes through
    """

    principal: Principal
    store: Store

    @property
    def user_id(self) -> str:
        return self.principal.user_id


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


# PUBLIC_INTERFACE
def authenticate(token: Optional[str], settings: Settings) -> Optional[Principal]:
    """Resolve a bearer token to a Principal using the configured token table."""
    if not token:
        return None
    user_id = settings.api_tokens.get(token)
    if user_id is None:
        return None
    return Principal(user_id=user_id)


# PUBLIC_INTERFACE
def get_request_context(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_security),
    settings: Settings = Depends(get_settings),
    store: Store = Depends(get_store),
) -> RequestContext:
    """
    FastAPI dependency enforcing bearer authentication on protected routes.

    Raises:
        HTTPException(401) if the credential is missing, not a bearer token,
        or unknown.
    """
    if creds is None or creds.scheme.lower() != "bearer":
        raise _unauthorized()

    principal = authenticate(creds.credentials, settings)
    if principal is None:
        raise _unauthorized()

    return RequestContext(principal=principal, store=store)
