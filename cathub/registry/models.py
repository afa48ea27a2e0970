"""Registry data models: catalog entries, registries, snapshots and list results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

LATEST_VERSION = "latest"


class SourceType(str, Enum):
    """Where a registry's entries come from."""

    GIT = "git"
    API = "api"
    FILE = "file"
    MANAGED = "managed"
    KUBERNETES = "kubernetes"

    @property
    def is_synced(self) -> bool:
        return self not in (SourceType.MANAGED, SourceType.KUBERNETES)


class CreationType(str, Enum):
    """How a registry came to exist."""

    API = "API"
    CONFIG = "CONFIG"


class RegistryFormat(str, Enum):
    NATIVE = "toolhive"
    UPSTREAM = "upstream"


class SyncPhase(str, Enum):
    SYNCING = "Syncing"
    COMPLETE = "Complete"
    FAILED = "Failed"


class EntryType(str, Enum):
    SERVER = "SERVER"
    SKILL = "SKILL"


# ---------------------------------------------------------------------------
# Catalog entries
# ---------------------------------------------------------------------------


@dataclass
class Server:
    """A single versioned server entry."""

    name: str
    version: str
    description: str = ""
    title: str = ""
    status: str = "active"
    repository: Optional[dict[str, Any]] = None
    packages: list[dict[str, Any]] = field(default_factory=list)
    remotes: list[dict[str, Any]] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
    is_latest: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def namespace(self) -> str:
        return ""

    @property
    def qualified_id(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass
class SkillRepository:
    url: str = ""
    type: str = ""


@dataclass
class SkillIcon:
    src: str
    size: str = ""
    type: str = ""
    label: str = ""


@dataclass
class SkillPackage:
    """A distributable artifact for a skill: an OCI image or a git checkout."""

    registry_type: str
    identifier: str = ""
    digest: str = ""
    media_type: str = ""
    url: str = ""
    ref: str = ""
    commit: str = ""
    subfolder: str = ""


@dataclass
class Skill:
    """A single versioned skill entry, keyed by (namespace, name, version)."""

    namespace: str
    name: str
    version: str
    description: str = ""
    title: str = ""
    status: str = "active"
    license: str = ""
    compatibility: str = ""
    allowed_tools: list[str] = field(default_factory=list)
    repository: Optional[SkillRepository] = None
    icons: list[SkillIcon] = field(default_factory=list)
    packages: list[SkillPackage] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    is_latest: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def qualified_id(self) -> str:
        return f"{self.namespace}/{self.name}@{self.version}"


@dataclass
class ListResult:
    """One page of entries plus the cursor for the next page ("" when done)."""

    entries: list = field(default_factory=list)
    next_cursor: str = ""

    @property
    def count(self) -> int:
        return len(self.entries)


# ---------------------------------------------------------------------------
# Registries and sync state
# ---------------------------------------------------------------------------


@dataclass
class SyncStatus:
    """Synchronization state recorded for one registry."""

    phase: SyncPhase = SyncPhase.FAILED
    message: str = ""
    last_attempt: Optional[datetime] = None
    attempt_count: int = 0
    last_sync_time: Optional[datetime] = None
    last_sync_hash: str = ""
    last_applied_filter_hash: str = ""
    entry_count: int = 0
    creation_type: CreationType = CreationType.CONFIG
    sync_schedule: str = ""


@dataclass
class RegistryInfo:
    """Registry metadata as reported by list/get registry operations."""

    name: str
    source_type: SourceType
    creation_type: CreationType = CreationType.CONFIG
    format: RegistryFormat = RegistryFormat.UPSTREAM
    source_config: dict[str, Any] = field(default_factory=dict)
    filter_config: dict[str, Any] = field(default_factory=dict)
    sync_schedule: str = ""
    sync_status: Optional[SyncStatus] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RegistryData:
    """The entries held by one registry at one point in time."""

    name: str
    source_type: SourceType = SourceType.FILE
    servers: list[Server] = field(default_factory=list)
    skills: list[Skill] = field(default_factory=list)


@dataclass
class CatalogSnapshot:
    """Every registry's data as fetched by a provider in one pass.

    A snapshot is never mutated once published to readers; writers build a
    new one and swap the reference.
    """

    registries: dict[str, RegistryData] = field(default_factory=dict)
    fetched_at: float = 0.0

    def registry(self, name: str) -> Optional[RegistryData]:
        return self.registries.get(name)

    @property
    def server_count(self) -> int:
        return sum(len(r.servers) for r in self.registries.values())

    @property
    def skill_count(self) -> int:
        return sum(len(r.skills) for r in self.registries.values())


@dataclass
class MergedRegistry:
    """All registries flattened into a single document."""

    version: str = "1.0.0"
    last_updated: str = ""
    servers: list[Server] = field(default_factory=list)
    skills: list[Skill] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_time(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def server_to_dict(server: Server) -> dict:
    return {
        "name": server.name,
        "version": server.version,
        "description": server.description,
        "title": server.title,
        "status": server.status,
        "repository": server.repository,
        "packages": server.packages,
        "remotes": server.remotes,
        "tags": server.tags,
        "_meta": server.meta,
        "is_latest": server.is_latest,
        "created_at": format_time(server.created_at),
        "updated_at": format_time(server.updated_at),
    }


def server_from_dict(data: dict) -> Server:
    return Server(
        name=data["name"],
        version=data["version"],
        description=data.get("description", ""),
        title=data.get("title", ""),
        status=data.get("status", "active"),
        repository=data.get("repository"),
        packages=data.get("packages", []),
        remotes=data.get("remotes", []),
        tags=data.get("tags", []),
        meta=data.get("_meta", data.get("meta", {})) or {},
        is_latest=data.get("is_latest", False),
        created_at=parse_time(data.get("created_at")),
        updated_at=parse_time(data.get("updated_at")),
    )


def skill_to_dict(skill: Skill) -> dict:
    return {
        "namespace": skill.namespace,
        "name": skill.name,
        "version": skill.version,
        "description": skill.description,
        "title": skill.title,
        "status": skill.status,
        "license": skill.license,
        "compatibility": skill.compatibility,
        "allowed_tools": skill.allowed_tools,
        "repository": (
            {"url": skill.repository.url, "type": skill.repository.type}
            if skill.repository
            else None
        ),
        "icons": [
            {"src": i.src, "size": i.size, "type": i.type, "label": i.label}
            for i in skill.icons
        ],
        "packages": [
            {
                "registry_type": p.registry_type,
                "identifier": p.identifier,
                "digest": p.digest,
                "media_type": p.media_type,
                "url": p.url,
                "ref": p.ref,
                "commit": p.commit,
                "subfolder": p.subfolder,
            }
            for p in skill.packages
        ],
        "metadata": skill.metadata,
        "_meta": skill.meta,
        "is_latest": skill.is_latest,
        "created_at": format_time(skill.created_at),
        "updated_at": format_time(skill.updated_at),
    }


def skill_from_dict(data: dict) -> Skill:
    repo = data.get("repository")
    return Skill(
        namespace=data.get("namespace", ""),
        name=data["name"],
        version=data["version"],
        description=data.get("description", ""),
        title=data.get("title", ""),
        status=data.get("status", "active"),
        license=data.get("license", ""),
        compatibility=data.get("compatibility", ""),
        allowed_tools=data.get("allowed_tools", []),
        repository=SkillRepository(**repo) if repo else None,
        icons=[SkillIcon(**i) for i in data.get("icons", [])],
        packages=[SkillPackage(**p) for p in data.get("packages", [])],
        metadata=data.get("metadata", {}) or {},
        meta=data.get("_meta", {}) or {},
        is_latest=data.get("is_latest", False),
        created_at=parse_time(data.get("created_at")),
        updated_at=parse_time(data.get("updated_at")),
    )
