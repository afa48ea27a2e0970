"""Skills router -- the skills extension of one registry."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from cathub.registry.models import LATEST_VERSION
from cathub.registry.options import (
    with_cursor,
    with_limit,
    with_name,
    with_namespace,
    with_registry_name,
    with_search,
    with_status,
    with_version,
)
from cathub.registry.service import MAX_SKILL_PAGE_SIZE, RegistryService
from web.backend.app.dependencies import get_registry_service, parse_limit
from web.backend.app.models.api import ListMetadata, SkillListResponse, SkillModel

router = APIRouter(prefix="/registry/{registry_name}/v0.1/x/skills", tags=["skills"])


def _page(result) -> SkillListResponse:
    return SkillListResponse(
        skills=[SkillModel.from_skill(s) for s in result.entries],
        metadata=ListMetadata(count=result.count, next_cursor=result.next_cursor),
    )


@router.get("", response_model=SkillListResponse, summary="List skills")
def list_skills(
    registry_name: str,
    search: Optional[str] = Query(None, description="Substring of name, title or description"),
    namespace: Optional[str] = Query(None, description="Only skills in this namespace"),
    status: Optional[str] = Query(None, description="Comma-separated statuses, e.g. active,deprecated"),
    limit: Optional[str] = Query(None, description="Max results (default 50, max 100)"),
    cursor: Optional[str] = Query(None, description="Pagination cursor from a previous page"),
    svc: RegistryService = Depends(get_registry_service),
):
    """List the latest version of every skill in the registry."""
    options = [with_registry_name(registry_name)]
    if search:
        options.append(with_search(search))
    if namespace:
        options.append(with_namespace(namespace))
    if status:
        options.append(with_status(status))
    parsed = parse_limit(limit, MAX_SKILL_PAGE_SIZE)
    if parsed is not None:
        options.append(with_limit(parsed))
    if cursor:
        options.append(with_cursor(cursor))
    return _page(svc.list_skills(*options))


@router.get("/{namespace}/{name}", response_model=SkillModel, summary="Get the latest version of a skill")
def get_latest_version(
    registry_name: str, namespace: str, name: str,
    svc: RegistryService = Depends(get_registry_service),
):
    skill = svc.get_skill_version(
        with_registry_name(registry_name),
        with_namespace(namespace),
        with_name(name),
        with_version(LATEST_VERSION),
    )
    return SkillModel.from_skill(skill)


@router.get("/{namespace}/{name}/versions", response_model=SkillListResponse, summary="List versions of a skill")
def list_versions(
    registry_name: str, namespace: str, name: str,
    limit: Optional[str] = Query(None, description="Max results (default 50, max 100)"),
    cursor: Optional[str] = Query(None, description="Pagination cursor from a previous page"),
    svc: RegistryService = Depends(get_registry_service),
):
    options = [with_registry_name(registry_name), with_namespace(namespace), with_name(name)]
    parsed = parse_limit(limit, MAX_SKILL_PAGE_SIZE)
    if parsed is not None:
        options.append(with_limit(parsed))
    if cursor:
        options.append(with_cursor(cursor))
    return _page(svc.list_skills(*options))


@router.get(
    "/{namespace}/{name}/versions/{version}",
    response_model=SkillModel,
    summary="Get a skill version",
)
def get_version(
    registry_name: str, namespace: str, name: str, version: str,
    svc: RegistryService = Depends(get_registry_service),
):
    skill = svc.get_skill_version(
        with_registry_name(registry_name),
        with_namespace(namespace),
        with_name(name),
        with_version(version),
    )
    return SkillModel.from_skill(skill)


@router.post("", response_model=SkillModel, status_code=201, summary="Publish a skill version")
def publish_skill(registry_name: str, body: SkillModel, svc: RegistryService = Depends(get_registry_service)):
    """Publish a skill version to a managed registry.

    ``namespace``, ``name``, ``description`` and ``version`` are required;
    the first one missing is reported.
    """
    skill = svc.publish_skill(body.to_skill(), with_registry_name(registry_name))
    return SkillModel.from_skill(skill)


@router.delete(
    "/{namespace}/{name}/versions/{version}",
    status_code=204,
    summary="Delete a skill version",
)
def delete_version(
    registry_name: str, namespace: str, name: str, version: str,
    svc: RegistryService = Depends(get_registry_service),
):
    svc.delete_skill_version(
        with_registry_name(registry_name),
        with_namespace(namespace),
        with_name(name),
        with_version(version),
    )
    return Response(status_code=204)
