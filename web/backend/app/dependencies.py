"""Request dependencies shared by the routers."""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from cathub.registry.service import RegistryService


def get_registry_service(request: Request) -> RegistryService:
    """Return the registry service built at application startup."""
    return request.app.state.registry_service


def require_aggregated(request: Request) -> None:
    """Hide the cross-registry endpoints unless configuration enables them."""
    if not getattr(request.app.state, "enable_aggregated_endpoints", False):
        raise HTTPException(status_code=404, detail="Not Found")


def parse_limit(raw: Optional[str], maximum: int) -> Optional[int]:
    """Validate a ``limit`` query parameter. ``None`` means the service default."""
    if raw is None or raw == "":
        return None
    try:
        limit = int(raw)
    except ValueError:
        raise HTTPException(
            status_code=400, detail="invalid limit parameter: must be an integer"
        )
    if limit < 1 or limit > maximum:
        raise HTTPException(
            status_code=400,
            detail=f"invalid limit parameter: must be between 1 and {maximum}",
        )
    return limit

