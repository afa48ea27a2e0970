"""Registries router -- list, inspect, create/update and delete registries.

Registries defined in the configuration file are read-only here; only
registries created through this API can be changed or removed. File
storage serves the read endpoints and answers 501 for the writes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from cathub.config import SourceSpec, source_spec_from_dict
from cathub.errors import RegistryNotFoundError
from cathub.registry.service import RegistryService
from web.backend.app.dependencies import get_registry_service
from web.backend.app.models.api import RegistryListResponse, RegistryModel, RegistryUpsertRequest

router = APIRouter(prefix="/extension/v0/registries", tags=["registries"])


@router.get("", response_model=RegistryListResponse, summary="List registries")
def list_registries(svc: RegistryService = Depends(get_registry_service)):
    return RegistryListResponse(
        registries=[RegistryModel.from_info(info) for info in svc.list_registries()]
    )


@router.get("/{registry_name}", response_model=RegistryModel, summary="Get a registry")
def get_registry(registry_name: str, svc: RegistryService = Depends(get_registry_service)):
    return RegistryModel.from_info(svc.get_registry_by_name(registry_name))


@router.put("/{registry_name}", response_model=RegistryModel, summary="Create or update a registry")
def upsert_registry(
    registry_name: str,
    body: RegistryUpsertRequest,
    response: Response,
    svc: RegistryService = Depends(get_registry_service),
):
    """Update the registry if it exists, otherwise create it (201)."""
    spec = source_spec_from_dict(body.model_dump(exclude_none=True), SourceSpec)
    try:
        info = svc.update_registry(registry_name, spec)
    except RegistryNotFoundError:
        info = svc.create_registry(registry_name, spec)
        response.status_code = 201
    return RegistryModel.from_info(info)


@router.delete("/{registry_name}", status_code=204, summary="Delete a registry")
def delete_registry(registry_name: str, svc: RegistryService = Depends(get_registry_service)):
    svc.delete_registry(registry_name)
    return Response(status_code=204)
