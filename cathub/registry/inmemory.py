"""In-memory registry service for file storage mode.

Serves reads from a cached :class:`CatalogSnapshot`. The snapshot is
immutable once published; refreshes and writes build a new one and swap the
reference, so a reader sees either the old or the new catalog, never a mix.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Callable, Optional

from cathub.errors import (
    NotFoundError,
    NotManagedRegistryError,
    ProviderError,
    RegistryNotFoundError,
    UnsupportedOperationError,
    ValidationError,
    VersionAlreadyExistsError,
)
from cathub.registry.models import (
    CatalogSnapshot,
    CreationType,
    ListResult,
    MergedRegistry,
    RegistryData,
    RegistryInfo,
    Server,
    Skill,
    SourceType,
    utcnow,
)
from cathub.registry.options import (
    DeleteServerVersionOptions,
    DeleteSkillVersionOptions,
    GetServerVersionOptions,
    GetSkillVersionOptions,
    ListServerVersionsOptions,
    ListServersOptions,
    ListSkillsOptions,
    PublishServerVersionOptions,
    PublishSkillOptions,
    apply_options,
)
from cathub.registry.provider import RegistryDataProvider
from cathub.registry.service import (
    DEFAULT_SERVER_PAGE_SIZE,
    DEFAULT_SKILL_PAGE_SIZE,
    MAX_SERVER_PAGE_SIZE,
    MAX_SKILL_PAGE_SIZE,
    RegistryService,
    check_time_window,
    clamp_limit,
    filter_version,
    in_time_window,
    matches_search,
    matches_status,
    paginate,
    render,
    require,
    select_version,
    skill_key,
    updated_after,
)
from cathub.registry.validation import validate_publish_server, validate_publish_skill
from cathub.registry.versions import is_newer_version, newest, version_key

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 30.0


class InMemoryRegistryService(RegistryService):
    def __init__(
        self,
        provider: RegistryDataProvider,
        config=None,
        storage_manager=None,
        state_service=None,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.config = config
        self.storage_manager = storage_manager
        self.state_service = state_service
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: Optional[tuple[CatalogSnapshot, float]] = None

        try:
            self._cache = (self.provider.get_registry_data(), self._clock())
            logger.info("Loaded initial catalog from %s", self.provider.get_source())
        except ProviderError as exc:
            logger.warning("Initial catalog load failed, will retry on first read: %s", exc)

    # ------------------------------------------------------------------
    # Snapshot cache
    # ------------------------------------------------------------------

    def _is_fresh(self, cache) -> bool:
        return cache is not None and self._clock() - cache[1] < self.cache_ttl

    def _snapshot(self) -> CatalogSnapshot:
        cache = self._cache
        if self._is_fresh(cache):
            return cache[0]

        with self._lock:
            # Another thread may have refreshed while we waited.
            cache = self._cache
            if self._is_fresh(cache):
                return cache[0]
            return self._refresh_locked(cache)

    def _refresh_locked(self, cache) -> CatalogSnapshot:
        try:
            snapshot = self.provider.get_registry_data()
        except ProviderError as exc:
            if cache is None:
                raise
            logger.warning("Catalog refresh failed, serving stale data: %s", exc)
            return cache[0]
        self._cache = (snapshot, self._clock())
        logger.debug("Catalog refreshed: %d servers, %d skills", snapshot.server_count, snapshot.skill_count)
        return snapshot

    def invalidate(self) -> None:
        """Force the next read to refetch."""
        with self._lock:
            if self._cache is not None:
                self._cache = (self._cache[0], float("-inf"))

    def check_readiness(self) -> None:
        self.provider.get_registry_data()

    def _scoped(self, snapshot: CatalogSnapshot, registry_name: Optional[str]) -> list[RegistryData]:
        if registry_name is None:
            return [snapshot.registries[n] for n in sorted(snapshot.registries)]
        data = snapshot.registry(registry_name)
        if data is None:
            raise RegistryNotFoundError(f"registry {registry_name!r} not found")
        return [data]

    def _servers(self, registry_name: Optional[str]) -> list[Server]:
        return [
            render(s, registry_name, data.name)
            for data in self._scoped(self._snapshot(), registry_name)
            for s in data.servers
        ]

    def _skills(self, registry_name: Optional[str]) -> list[Skill]:
        return [
            render(s, registry_name, data.name)
            for data in self._scoped(self._snapshot(), registry_name)
            for s in data.skills
        ]

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    def get_registry(self) -> MergedRegistry:
        snapshot = self._snapshot()
        merged = MergedRegistry(last_updated=utcnow().isoformat())
        for name in sorted(snapshot.registries):
            data = snapshot.registries[name]
            merged.servers.extend(render(s, None, name) for s in data.servers)
            merged.skills.extend(render(s, None, name) for s in data.skills)
        return merged

    def list_servers(self, *options) -> ListResult:
        opts = apply_options(ListServersOptions(), options)
        limit = clamp_limit(opts.limit, DEFAULT_SERVER_PAGE_SIZE, MAX_SERVER_PAGE_SIZE)

        servers = [
            s for s in filter_version(self._servers(opts.registry_name), opts.version)
            if matches_search(s, opts.search)
            and matches_status(s, opts.statuses)
            and updated_after(s, opts.updated_since)
        ]
        return paginate(servers, opts.cursor, limit)

    def list_server_versions(self, *options) -> list[Server]:
        opts = apply_options(ListServerVersionsOptions(), options)
        require(opts.name, "server name")
        check_time_window(opts.next, opts.prev)
        limit = clamp_limit(opts.limit, DEFAULT_SERVER_PAGE_SIZE, MAX_SERVER_PAGE_SIZE)

        versions = [
            s for s in self._servers(opts.registry_name)
            if s.name == opts.name and in_time_window(s, opts.next, opts.prev)
        ]
        versions.sort(key=lambda s: version_key(s.version))
        return versions[:limit]

    def get_server_version(self, *options) -> Server:
        opts = apply_options(GetServerVersionOptions(), options)
        require(opts.name, "server name")
        require(opts.version, "version")

        versions = [s for s in self._servers(opts.registry_name) if s.name == opts.name]
        if not versions:
            raise NotFoundError(f"server {opts.name} not found")
        return select_version(versions, opts.version, f"server {opts.name}")

    def publish_server_version(self, *options) -> Server:
        opts = apply_options(PublishServerVersionOptions(), options)
        registry_name = require(opts.registry_name, "registry name")
        if opts.server_data is None:
            raise ValidationError("server data is required")
        server = opts.server_data
        validate_publish_server(server)

        def mutate(data: RegistryData) -> Server:
            if any(s.name == server.name and s.version == server.version for s in data.servers):
                raise VersionAlreadyExistsError(
                    f"server {server.name} version {server.version} already exists"
                )
            published = _stamp(copy.copy(server))
            _publish_latest(published, [s for s in data.servers if s.name == server.name])
            data.servers.append(published)
            return published

        return self._mutate(registry_name, mutate)

    def delete_server_version(self, *options) -> None:
        opts = apply_options(DeleteServerVersionOptions(), options)
        registry_name = require(opts.registry_name, "registry name")
        require(opts.name, "server name")
        require(opts.version, "version")

        def mutate(data: RegistryData) -> None:
            data.servers = _remove_version(
                data.servers, lambda s: s.name == opts.name, opts.version, f"server {opts.name}"
            )

        self._mutate(registry_name, mutate)

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    def list_skills(self, *options) -> ListResult:
        opts = apply_options(ListSkillsOptions(), options)
        limit = clamp_limit(opts.limit, DEFAULT_SKILL_PAGE_SIZE, MAX_SKILL_PAGE_SIZE)

        skills = [
            s for s in self._skills(opts.registry_name)
            if (not opts.namespace or s.namespace == opts.namespace)
            and (not opts.name or s.name == opts.name)
            and matches_search(s, opts.search)
            and matches_status(s, opts.statuses)
        ]
        if opts.version:
            skills = filter_version(skills, opts.version)
        elif not opts.name:
            # Without a name, one row per skill.
            skills = [s for s in skills if s.is_latest]
        return paginate(skills, opts.cursor, limit, key=skill_key)

    def get_skill_version(self, *options) -> Skill:
        opts = apply_options(GetSkillVersionOptions(), options)
        require(opts.namespace, "namespace")
        require(opts.name, "name")
        require(opts.version, "version")

        versions = [
            s for s in self._skills(opts.registry_name)
            if s.namespace == opts.namespace and s.name == opts.name
        ]
        if not versions:
            raise NotFoundError(f"skill {opts.namespace}/{opts.name} not found")
        return select_version(versions, opts.version, f"skill {opts.namespace}/{opts.name}")

    def publish_skill(self, skill: Skill, *options) -> Skill:
        opts = apply_options(PublishSkillOptions(), options)
        validate_publish_skill(skill)
        registry_name = require(opts.registry_name, "registry name")

        def mutate(data: RegistryData) -> Skill:
            same = [s for s in data.skills if s.namespace == skill.namespace and s.name == skill.name]
            if any(s.version == skill.version for s in same):
                raise VersionAlreadyExistsError(
                    f"skill {skill.namespace}/{skill.name} version {skill.version} already exists"
                )
            published = _stamp(copy.copy(skill))
            _publish_latest(published, same)
            data.skills.append(published)
            return published

        return self._mutate(registry_name, mutate)

    def delete_skill_version(self, *options) -> None:
        opts = apply_options(DeleteSkillVersionOptions(), options)
        registry_name = require(opts.registry_name, "registry name")
        require(opts.namespace, "namespace")
        require(opts.name, "name")
        require(opts.version, "version")

        def mutate(data: RegistryData) -> None:
            data.skills = _remove_version(
                data.skills,
                lambda s: s.namespace == opts.namespace and s.name == opts.name,
                opts.version,
                f"skill {opts.namespace}/{opts.name}",
            )

        self._mutate(registry_name, mutate)

    # ------------------------------------------------------------------
    # Managed registry writes
    # ------------------------------------------------------------------

    def _mutate(self, registry_name: str, change):
        """Apply *change* to a copy of one managed registry, persist, then swap."""
        snapshot = self._snapshot()
        with self._lock:
            cache = self._cache
            snapshot = cache[0] if cache is not None else snapshot
            current = snapshot.registry(registry_name)
            if current is None:
                raise RegistryNotFoundError(f"registry {registry_name!r} not found")
            if current.source_type is not SourceType.MANAGED:
                raise NotManagedRegistryError(
                    f"registry {registry_name!r} is not a managed registry"
                )

            draft = RegistryData(
                name=current.name,
                source_type=current.source_type,
                servers=[copy.copy(s) for s in current.servers],
                skills=[copy.copy(s) for s in current.skills],
            )
            result = change(draft)

            if self.storage_manager is not None:
                self.storage_manager.store(registry_name, draft)
            registries = dict(snapshot.registries)
            registries[registry_name] = draft
            loaded_at = cache[1] if cache is not None else self._clock()
            self._cache = (CatalogSnapshot(registries=registries, fetched_at=snapshot.fetched_at), loaded_at)
        logger.info("Updated managed registry %s", registry_name)
        return result

    # ------------------------------------------------------------------
    # Registries
    # ------------------------------------------------------------------

    def _info(self, reg) -> RegistryInfo:
        status = self.state_service.get_sync_status(reg.name) if self.state_service else None
        return RegistryInfo(
            name=reg.name,
            source_type=reg.source_type,
            creation_type=CreationType.CONFIG,
            format=reg.registry_format,
            source_config=reg.source_config(),
            filter_config=reg.filter.to_dict(),
            sync_schedule=reg.sync_interval,
            sync_status=status,
        )

    def list_registries(self) -> list[RegistryInfo]:
        if self.config is None:
            return [
                RegistryInfo(name=name, source_type=data.source_type)
                for name, data in sorted(self._snapshot().registries.items())
            ]
        return [self._info(reg) for reg in self.config.registries]

    def get_registry_by_name(self, name: str) -> RegistryInfo:
        for info in self.list_registries():
            if info.name == name:
                return info
        raise RegistryNotFoundError(f"registry {name!r} not found")

    def create_registry(self, name: str, spec) -> RegistryInfo:
        raise UnsupportedOperationError("registry management requires database storage")

    def update_registry(self, name: str, spec) -> RegistryInfo:
        raise UnsupportedOperationError("registry management requires database storage")

    def delete_registry(self, name: str) -> None:
        raise UnsupportedOperationError("registry management requires database storage")


def _stamp(entry):
    now = utcnow()
    entry.created_at = entry.created_at or now
    entry.updated_at = now
    return entry


def _publish_latest(published, siblings: list) -> None:
    """Make *published* latest only if it is newer than the current latest."""
    current = next((s for s in siblings if s.is_latest), None)
    if current is None or is_newer_version(published.version, current.version):
        for sibling in siblings:
            sibling.is_latest = False
        published.is_latest = True
    else:
        published.is_latest = False


def _remove_version(entries: list, same_name, version: str, what: str) -> list:
    target = next((e for e in entries if same_name(e) and e.version == version), None)
    if target is None:
        raise NotFoundError(f"{what} version {version} not found")
    remaining = [e for e in entries if e is not target]
    if target.is_latest:
        promoted = newest(e for e in remaining if same_name(e))
        if promoted is not None:
            promoted.is_latest = True
    return remaining
