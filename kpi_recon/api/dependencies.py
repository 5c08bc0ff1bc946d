"""Shared FastAPI dependencies."""
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from kpi_recon.container import ServiceContainer
from kpi_recon.domain.entities import SessionIdentity


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service container not initialised",
        )
    return container


def get_identity(
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_alt_user_email: Optional[str] = Header(None, alias="X-Alt-User-Email"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> SessionIdentity:
    """
    Identity forwarded by the outer auth layer.

    Missing headers are fine; the actor falls back to the configured default.
    """
    return SessionIdentity(
        email=x_user_email,
        alternate_email=x_alt_user_email,
        user_id=x_user_id,
    )
