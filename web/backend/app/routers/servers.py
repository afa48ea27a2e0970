"""Server routers -- list, get, publish and delete server versions.

Two routers share the handlers below:

* ``aggregated_router`` serves ``/registry/v0.1/...`` across every registry,
  with names prefixed ``<registry>.<server>``. It answers 404 unless
  ``enable_aggregated_endpoints`` is set.
* ``router`` serves ``/registry/{registry_name}/v0.1/...`` for one registry,
  with names as stored. Writes exist only here.

Server names may contain ``/``, hence the ``:path`` converters.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from cathub.registry.options import (
    with_cursor,
    with_limit,
    with_name,
    with_registry_name,
    with_search,
    with_server_data,
    with_status,
    with_updated_since,
    with_version,
)
from cathub.registry.service import MAX_SERVER_PAGE_SIZE, RegistryService
from web.backend.app.dependencies import get_registry_service, parse_limit, require_aggregated
from web.backend.app.models.api import ListMetadata, ServerListResponse, ServerModel

aggregated_router = APIRouter(
    prefix="/registry/v0.1",
    tags=["registry-aggregated"],
    dependencies=[Depends(require_aggregated)],
)
router = APIRouter(prefix="/registry/{registry_name}/v0.1", tags=["registry"])


def _list_servers(
    svc: RegistryService,
    registry_name: Optional[str],
    cursor: Optional[str],
    limit: Optional[str],
    search: Optional[str],
    updated_since: Optional[datetime],
    version: Optional[str],
    status: Optional[str],
) -> ServerListResponse:
    options = []
    if registry_name is not None:
        options.append(with_registry_name(registry_name))
    if cursor:
        options.append(with_cursor(cursor))
    parsed = parse_limit(limit, MAX_SERVER_PAGE_SIZE)
    if parsed is not None:
        options.append(with_limit(parsed))
    if search:
        options.append(with_search(search))
    if updated_since is not None:
        options.append(with_updated_since(updated_since))
    if version:
        options.append(with_version(version))
    if status:
        options.append(with_status(status))

    result = svc.list_servers(*options)
    return ServerListResponse(
        servers=[ServerModel.from_server(s) for s in result.entries],
        metadata=ListMetadata(count=result.count, next_cursor=result.next_cursor),
    )


def _list_versions(svc: RegistryService, registry_name: Optional[str], server_name: str) -> ServerListResponse:
    options = [with_name(server_name)]
    if registry_name is not None:
        options.append(with_registry_name(registry_name))
    versions = svc.list_server_versions(*options)
    return ServerListResponse(
        servers=[ServerModel.from_server(s) for s in versions],
        metadata=ListMetadata(count=len(versions)),
    )


def _get_version(svc: RegistryService, registry_name: Optional[str], server_name: str, version: str) -> ServerModel:
    options = [with_name(server_name), with_version(version)]
    if registry_name is not None:
        options.append(with_registry_name(registry_name))
    return ServerModel.from_server(svc.get_server_version(*options))


# ---------------------------------------------------------------------------
# Aggregated
# ---------------------------------------------------------------------------


@aggregated_router.get("/servers", response_model=ServerListResponse, summary="List servers (aggregated)")
def list_servers_aggregated(
    cursor: Optional[str] = Query(None, description="Pagination cursor from a previous page"),
    limit: Optional[str] = Query(None, description="Maximum number of items to return"),
    search: Optional[str] = Query(None, description="Substring of name, title or description"),
    updated_since: Optional[datetime] = Query(None, description="RFC3339 timestamp"),
    version: Optional[str] = Query(None, description="'latest' or an exact version"),
    status: Optional[str] = Query(None, description="Comma-separated statuses"),
    svc: RegistryService = Depends(get_registry_service),
):
    """List servers from every registry, prefixed with their registry name."""
    return _list_servers(svc, None, cursor, limit, search, updated_since, version, status)


@aggregated_router.get(
    "/servers/{server_name:path}/versions",
    response_model=ServerListResponse,
    summary="List versions of a server (aggregated)",
)
def list_versions_aggregated(server_name: str, svc: RegistryService = Depends(get_registry_service)):
    return _list_versions(svc, None, server_name)


@aggregated_router.get(
    "/servers/{server_name:path}/versions/{version}",
    response_model=ServerModel,
    summary="Get a server version (aggregated)",
)
def get_version_aggregated(server_name: str, version: str, svc: RegistryService = Depends(get_registry_service)):
    return _get_version(svc, None, server_name, version)


# ---------------------------------------------------------------------------
# Registry-scoped
# ---------------------------------------------------------------------------


@router.get("/servers", response_model=ServerListResponse, summary="List servers in a registry")
def list_servers(
    registry_name: str,
    cursor: Optional[str] = Query(None, description="Pagination cursor from a previous page"),
    limit: Optional[str] = Query(None, description="Maximum number of items to return"),
    search: Optional[str] = Query(None, description="Substring of name, title or description"),
    updated_since: Optional[datetime] = Query(None, description="RFC3339 timestamp"),
    version: Optional[str] = Query(None, description="'latest' or an exact version"),
    status: Optional[str] = Query(None, description="Comma-separated statuses"),
    svc: RegistryService = Depends(get_registry_service),
):
    """List servers of one registry. Names are not prefixed."""
    return _list_servers(svc, registry_name, cursor, limit, search, updated_since, version, status)


@router.get(
    "/servers/{server_name:path}/versions",
    response_model=ServerListResponse,
    summary="List versions of a server",
)
def list_versions(registry_name: str, server_name: str, svc: RegistryService = Depends(get_registry_service)):
    return _list_versions(svc, registry_name, server_name)


@router.get(
    "/servers/{server_name:path}/versions/{version}",
    response_model=ServerModel,
    summary="Get a server version",
)
def get_version(
    registry_name: str, server_name: str, version: str,
    svc: RegistryService = Depends(get_registry_service),
):
    """Retrieve one version; ``latest`` resolves to the latest version."""
    return _get_version(svc, registry_name, server_name, version)


@router.delete(
    "/servers/{server_name:path}/versions/{version}",
    status_code=204,
    summary="Delete a server version",
)
def delete_version(
    registry_name: str, server_name: str, version: str,
    svc: RegistryService = Depends(get_registry_service),
):
    svc.delete_server_version(
        with_registry_name(registry_name), with_name(server_name), with_version(version)
    )
    return Response(status_code=204)


@router.post("/publish", response_model=ServerModel, status_code=201, summary="Publish a server version")
def publish(registry_name: str, body: ServerModel, svc: RegistryService = Depends(get_registry_service)):
    """Publish a server version to a managed registry."""
    server = svc.publish_server_version(
        with_registry_name(registry_name), with_server_data(body.to_server())
    )
    return ServerModel.from_server(server)
