"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.config.dependencies import ServiceContainer
from app.domain.models import Owner
from app.utils import AuthenticationError, decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_services(request: Request) -> ServiceContainer:
    """Return the service graph attached to the running application."""

    return request.app.state.services


ServicesDep = Annotated[ServiceContainer, Depends(get_services)]


async def get_current_owner(
    token: Annotated[str, Depends(oauth2_scheme)],
    services: ServicesDep,
) -> Owner:
    """Resolve and validate the owner referenced by the bearer token."""

    try:
        payload = decode_access_token(token)
        owner_id = int(payload.sub)
    except (AuthenticationError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    owner = await services.owners.get_by_id(owner_id)
    if owner is None or not owner.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return owner


CurrentOwnerDep = Annotated[Owner, Depends(get_current_owner)]


__all__ = [
    "CurrentOwnerDep",
    "ServicesDep",
    "get_current_owner",
    "get_services",
    "oauth2_scheme",
]
