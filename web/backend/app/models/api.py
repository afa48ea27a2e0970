"""Pydantic models for API request/response serialization.

These models mirror the cathub dataclasses and provide proper JSON
serialization for the FastAPI endpoints. Conversion goes through the
dict helpers in :mod:`cathub.registry.models`, so the dataclass stays the
single source of truth for field names.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from cathub.registry.models import (
    RegistryInfo,
    Server,
    Skill,
    format_time,
    server_from_dict,
    server_to_dict,
    skill_from_dict,
    skill_to_dict,
)


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


class ServerModel(_Model):
    """Mirrors cathub.registry.models.Server."""

    name: str = ""
    version: str = ""
    description: str = ""
    title: str = ""
    status: str = "active"
    repository: Optional[dict[str, Any]] = None
    packages: list[dict[str, Any]] = Field(default_factory=list)
    remotes: list[dict[str, Any]] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict, alias="_meta")
    is_latest: bool = False
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_server(cls, server: Server) -> "ServerModel":
        return cls.model_validate(server_to_dict(server))

    def to_server(self) -> Server:
        server = server_from_dict(self.model_dump(by_alias=True))
        # Publish state is assigned by the service.
        server.is_latest = False
        server.created_at = server.updated_at = None
        return server


class ListMetadata(_Model):
    count: int = 0
    next_cursor: str = Field(default="", alias="nextCursor")


class ServerListResponse(_Model):
    servers: list[ServerModel] = Field(default_factory=list)
    metadata: ListMetadata = Field(default_factory=ListMetadata)


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------


class SkillRepositoryModel(_Model):
    url: str = ""
    type: str = ""


class SkillIconModel(_Model):
    src: str
    size: str = ""
    type: str = ""
    label: str = ""


class SkillPackageModel(_Model):
    registry_type: str
    identifier: str = ""
    digest: str = ""
    media_type: str = ""
    url: str = ""
    ref: str = ""
    commit: str = ""
    subfolder: str = ""


class SkillModel(_Model):
    """Mirrors cathub.registry.models.Skill."""

    namespace: str = ""
    name: str = ""
    version: str = ""
    description: str = ""
    title: str = ""
    status: str = "active"
    license: str = ""
    compatibility: str = ""
    allowed_tools: list[str] = Field(default_factory=list)
    repository: Optional[SkillRepositoryModel] = None
    icons: list[SkillIconModel] = Field(default_factory=list)
    packages: list[SkillPackageModel] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict, alias="_meta")
    is_latest: bool = False
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_skill(cls, skill: Skill) -> "SkillModel":
        return cls.model_validate(skill_to_dict(skill))

    def to_skill(self) -> Skill:
        skill = skill_from_dict(self.model_dump(by_alias=True))
        skill.is_latest = False
        skill.created_at = skill.updated_at = None
        return skill


class SkillListResponse(_Model):
    skills: list[SkillModel] = Field(default_factory=list)
    metadata: ListMetadata = Field(default_factory=ListMetadata)


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


class SyncStatusModel(_Model):
    """Mirrors cathub.registry.models.SyncStatus."""

    phase: str = ""
    message: str = ""
    last_attempt: str = ""
    attempt_count: int = 0
    last_sync_time: str = ""
    entry_count: int = 0


class RegistryModel(_Model):
    """Mirrors cathub.registry.models.RegistryInfo."""

    name: str
    type: str = ""
    creation_type: str = ""
    format: str = ""
    source_config: dict[str, Any] = Field(default_factory=dict)
    filter_config: dict[str, Any] = Field(default_factory=dict)
    sync_schedule: str = ""
    sync_status: Optional[SyncStatusModel] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_info(cls, info: RegistryInfo) -> "RegistryModel":
        status = None
        if info.sync_status is not None:
            st = info.sync_status
            status = SyncStatusModel(
                phase=st.phase.value,
                message=st.message,
                last_attempt=format_time(st.last_attempt),
                attempt_count=st.attempt_count,
                last_sync_time=format_time(st.last_sync_time),
                entry_count=st.entry_count,
            )
        return cls(
            name=info.name,
            type=info.source_type.value,
            creation_type=info.creation_type.value,
            format=info.format.value,
            source_config=info.source_config,
            filter_config=info.filter_config,
            sync_schedule=info.sync_schedule,
            sync_status=status,
            created_at=format_time(info.created_at),
            updated_at=format_time(info.updated_at),
        )


class RegistryListResponse(_Model):
    registries: list[RegistryModel] = Field(default_factory=list)


class SyncPolicyModel(_Model):
    interval: str = ""


class RegistryUpsertRequest(_Model):
    """Source settings for a registry created or updated through the API.

    Exactly one of ``git``, ``api``, ``file``, ``managed`` or ``kubernetes``
    must be present; ``managed: {}`` selects a managed registry.
    """

    format: str = ""
    git: Optional[dict[str, Any]] = None
    api: Optional[dict[str, Any]] = None
    file: Optional[dict[str, Any]] = None
    managed: Optional[dict[str, Any]] = None
    kubernetes: Optional[dict[str, Any]] = None
    sync_policy: Optional[SyncPolicyModel] = None
    filter: Optional[dict[str, Any]] = None
