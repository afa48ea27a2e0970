"""Database-backed registry service.

Every call opens a short session on the shared engine; there is no cache.
Registries created through the API live alongside those loaded from
configuration, distinguished by their creation type.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, func, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from cathub.errors import (
    CatalogError,
    ConfigRegistryError,
    NotFoundError,
    NotManagedRegistryError,
    ProviderError,
    RegistryAlreadyExistsError,
    RegistryNotFoundError,
    SourceTypeChangeNotAllowedError,
    ValidationError,
    VersionAlreadyExistsError,
)
from cathub.registry.cursor import decode_cursor, encode_cursor
from cathub.registry.filtering import FilterRules, apply_filter
from cathub.registry.models import (
    LATEST_VERSION,
    CreationType,
    EntryType,
    ListResult,
    MergedRegistry,
    RegistryFormat,
    RegistryInfo,
    Server,
    Skill,
    SourceType,
    SyncPhase,
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
from cathub.registry.naming import DELIMITER, should_prefix
from cathub.registry.provider import parse_registry_document
from cathub.registry.service import (
    DEFAULT_SERVER_PAGE_SIZE,
    DEFAULT_SKILL_PAGE_SIZE,
    MAX_SERVER_PAGE_SIZE,
    MAX_SKILL_PAGE_SIZE,
    RegistryService,
    check_time_window,
    clamp_limit,
    in_time_window,
    render,
    require,
    select_version,
    skill_key,
)
from cathub.registry.validation import (
    validate_publish_server,
    validate_publish_skill,
    validate_source_spec,
)
from cathub.registry.versions import is_newer_version, mark_latest, newest, version_key
from cathub.storage.database import (
    apply_spec_to_row,
    get_registry_row,
    row_to_server,
    row_to_skill,
    server_row,
    session_scope,
    skill_row,
)
from cathub.storage.schema import RegistryEntryRow, RegistryRow, RegistrySyncRow
from cathub.sync.state import default_status, row_to_status

logger = logging.getLogger(__name__)


class DatabaseRegistryService(RegistryService):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _session(self):
        return session_scope(self.session_factory)

    def check_readiness(self) -> None:
        try:
            with self._session() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise ProviderError(f"database is not reachable: {exc}") from exc

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    def _require_registry(self, session: Session, name: str) -> RegistryRow:
        row = get_registry_row(session, name)
        if row is None:
            raise RegistryNotFoundError(f"registry {name!r} not found")
        return row

    def _managed_registry(self, session: Session, name: str) -> RegistryRow:
        row = self._require_registry(session, name)
        if row.source_type is not SourceType.MANAGED:
            raise NotManagedRegistryError(f"registry {name!r} is not a managed registry")
        return row

    def _entries(self, entry_type: EntryType, registry_name: Optional[str],
                 name: str = "", namespace: str = "") -> list:
        """Rendered domain entries of one type, scoped or across all registries."""
        convert = row_to_server if entry_type is EntryType.SERVER else row_to_skill
        try:
            with self._session() as session:
                stmt = (
                    select(RegistryRow.name, RegistryEntryRow)
                    .join(RegistryEntryRow, RegistryEntryRow.registry_id == RegistryRow.id)
                    .where(RegistryEntryRow.entry_type == entry_type)
                )
                if registry_name is not None:
                    self._require_registry(session, registry_name)
                    stmt = stmt.where(RegistryRow.name == registry_name)
                if name:
                    stmt = stmt.where(_display_name(registry_name) == name)
                if namespace:
                    stmt = stmt.where(RegistryEntryRow.namespace == namespace)
                rows = session.execute(stmt).all()
                return [render(convert(row), registry_name, reg) for reg, row in rows]
        except SQLAlchemyError as exc:
            raise CatalogError(f"failed to read {entry_type.value.lower()} entries: {exc}") from exc

    def _page(self, entry_type: EntryType, registry_name: Optional[str], sort_name,
              conditions: list, cursor: str, limit: int, key) -> ListResult:
        """One listing page, filtered, ordered and cut by the database.

        Rows are ordered by (*sort_name*, version), the same key the cursor
        carries, and one row past *limit* is read to decide whether a next
        page exists.
        """
        convert = row_to_server if entry_type is EntryType.SERVER else row_to_skill
        stmt = (
            select(RegistryRow.name, RegistryEntryRow)
            .join(RegistryEntryRow, RegistryEntryRow.registry_id == RegistryRow.id)
            .where(RegistryEntryRow.entry_type == entry_type, *conditions)
            .order_by(sort_name, RegistryEntryRow.version)
            .limit(limit + 1)
        )
        try:
            with self._session() as session:
                if registry_name is not None:
                    self._require_registry(session, registry_name)
                    stmt = stmt.where(RegistryRow.name == registry_name)
                if cursor:
                    after_name, after_version = decode_cursor(cursor)
                    stmt = stmt.where(or_(
                        sort_name > after_name,
                        and_(sort_name == after_name, RegistryEntryRow.version > after_version),
                    ))
                rows = session.execute(stmt).all()
                entries = [render(convert(row), registry_name, reg) for reg, row in rows]
        except SQLAlchemyError as exc:
            raise CatalogError(f"failed to list {entry_type.value.lower()} entries: {exc}") from exc

        page = entries[:limit]
        next_cursor = ""
        if len(entries) > limit:
            next_cursor = encode_cursor(*key(page[-1]))
        return ListResult(entries=page, next_cursor=next_cursor)

    def _write(self, action: str, change):
        try:
            with self._session() as session:
                return change(session)
        except IntegrityError as exc:
            raise VersionAlreadyExistsError(f"failed to {action}: version already exists") from exc
        except SQLAlchemyError as exc:
            raise CatalogError(f"failed to {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    def get_registry(self) -> MergedRegistry:
        return MergedRegistry(
            last_updated=utcnow().isoformat(),
            servers=sorted(self._entries(EntryType.SERVER, None), key=lambda s: (s.name, s.version)),
            skills=sorted(self._entries(EntryType.SKILL, None), key=skill_key),
        )

    def list_servers(self, *options) -> ListResult:
        opts = apply_options(ListServersOptions(), options)
        limit = clamp_limit(opts.limit, DEFAULT_SERVER_PAGE_SIZE, MAX_SERVER_PAGE_SIZE)
        logger.debug("list_servers registry=%s limit=%d search=%r", opts.registry_name, limit, opts.search)

        display = _display_name(opts.registry_name)
        conditions = _entry_filters(display, opts.search, opts.statuses, opts.version)
        if opts.updated_since is not None:
            stamp = func.coalesce(RegistryEntryRow.updated_at, RegistryEntryRow.created_at)
            conditions.append(stamp >= _utc(opts.updated_since))
        return self._page(EntryType.SERVER, opts.registry_name, display, conditions,
                          opts.cursor, limit, key=lambda s: (s.name, s.version))

    def list_server_versions(self, *options) -> list[Server]:
        opts = apply_options(ListServerVersionsOptions(), options)
        require(opts.name, "server name")
        check_time_window(opts.next, opts.prev)
        limit = clamp_limit(opts.limit, DEFAULT_SERVER_PAGE_SIZE, MAX_SERVER_PAGE_SIZE)

        versions = [
            s for s in self._entries(EntryType.SERVER, opts.registry_name, name=opts.name)
            if in_time_window(s, opts.next, opts.prev)
        ]
        versions.sort(key=lambda s: version_key(s.version))
        return versions[:limit]

    def get_server_version(self, *options) -> Server:
        opts = apply_options(GetServerVersionOptions(), options)
        require(opts.name, "server name")
        require(opts.version, "version")

        versions = self._entries(EntryType.SERVER, opts.registry_name, name=opts.name)
        if not versions:
            raise NotFoundError(f"server {opts.name} not found")
        return select_version(versions, opts.version, f"server {opts.name}")

    def publish_server_version(self, *options) -> Server:
        opts = apply_options(PublishServerVersionOptions(), options)
        registry_name = require(opts.registry_name, "registry name")
        if opts.server_data is None:
            raise ValidationError("server data is required")
        server = copy.copy(opts.server_data)
        validate_publish_server(server)

        def change(session: Session) -> Server:
            reg = self._managed_registry(session, registry_name)
            siblings = self._sibling_rows(session, reg.id, EntryType.SERVER, "", server.name)
            if any(r.version == server.version for r in siblings):
                raise VersionAlreadyExistsError(
                    f"server {server.name} version {server.version} already exists"
                )
            server.is_latest = _take_latest(server.version, siblings)
            row = server_row(reg.id, server)
            session.add(row)
            session.flush()
            return row_to_server(row)

        return self._write("publish server", change)

    def delete_server_version(self, *options) -> None:
        opts = apply_options(DeleteServerVersionOptions(), options)
        registry_name = require(opts.registry_name, "registry name")
        require(opts.name, "server name")
        require(opts.version, "version")

        def change(session: Session) -> None:
            reg = self._managed_registry(session, registry_name)
            siblings = self._sibling_rows(session, reg.id, EntryType.SERVER, "", opts.name)
            _delete_row(session, siblings, opts.version, f"server {opts.name}")

        self._write("delete server", change)

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    def list_skills(self, *options) -> ListResult:
        opts = apply_options(ListSkillsOptions(), options)
        limit = clamp_limit(opts.limit, DEFAULT_SKILL_PAGE_SIZE, MAX_SKILL_PAGE_SIZE)

        display = _display_name(opts.registry_name)
        conditions = _entry_filters(display, opts.search, opts.statuses, opts.version)
        if opts.name:
            conditions.append(display == opts.name)
        if opts.namespace:
            conditions.append(RegistryEntryRow.namespace == opts.namespace)
        if not opts.version and not opts.name:
            conditions.append(RegistryEntryRow.is_latest.is_(True))
        sort_name = RegistryEntryRow.namespace + "/" + display
        return self._page(EntryType.SKILL, opts.registry_name, sort_name, conditions,
                          opts.cursor, limit, key=skill_key)

    def get_skill_version(self, *options) -> Skill:
        opts = apply_options(GetSkillVersionOptions(), options)
        require(opts.namespace, "namespace")
        require(opts.name, "name")
        require(opts.version, "version")

        versions = self._entries(
            EntryType.SKILL, opts.registry_name, name=opts.name, namespace=opts.namespace
        )
        if not versions:
            raise NotFoundError(f"skill {opts.namespace}/{opts.name} not found")
        return select_version(versions, opts.version, f"skill {opts.namespace}/{opts.name}")

    def publish_skill(self, skill: Skill, *options) -> Skill:
        opts = apply_options(PublishSkillOptions(), options)
        validate_publish_skill(skill)
        registry_name = require(opts.registry_name, "registry name")
        skill = copy.copy(skill)

        def change(session: Session) -> Skill:
            reg = self._managed_registry(session, registry_name)
            siblings = self._sibling_rows(session, reg.id, EntryType.SKILL, skill.namespace, skill.name)
            if any(r.version == skill.version for r in siblings):
                raise VersionAlreadyExistsError(
                    f"skill {skill.namespace}/{skill.name} version {skill.version} already exists"
                )
            skill.is_latest = _take_latest(skill.version, siblings)
            row = skill_row(reg.id, skill)
            session.add(row)
            session.flush()
            return row_to_skill(row)

        return self._write("publish skill", change)

    def delete_skill_version(self, *options) -> None:
        opts = apply_options(DeleteSkillVersionOptions(), options)
        registry_name = require(opts.registry_name, "registry name")
        require(opts.namespace, "namespace")
        require(opts.name, "name")
        require(opts.version, "version")

        def change(session: Session) -> None:
            reg = self._managed_registry(session, registry_name)
            siblings = self._sibling_rows(session, reg.id, EntryType.SKILL, opts.namespace, opts.name)
            _delete_row(session, siblings, opts.version, f"skill {opts.namespace}/{opts.name}")

        self._write("delete skill", change)

    def _sibling_rows(self, session: Session, registry_id: int, entry_type: EntryType,
                      namespace: str, name: str) -> list[RegistryEntryRow]:
        return list(
            session.scalars(
                select(RegistryEntryRow).where(
                    RegistryEntryRow.registry_id == registry_id,
                    RegistryEntryRow.entry_type == entry_type,
                    RegistryEntryRow.namespace == namespace,
                    RegistryEntryRow.name == name,
                )
            )
        )

    # ------------------------------------------------------------------
    # Registries
    # ------------------------------------------------------------------

    def list_registries(self) -> list[RegistryInfo]:
        try:
            with self._session() as session:
                rows = session.scalars(select(RegistryRow).order_by(RegistryRow.name)).all()
                return [_row_to_info(row) for row in rows]
        except SQLAlchemyError as exc:
            raise CatalogError(f"failed to list registries: {exc}") from exc

    def get_registry_by_name(self, name: str) -> RegistryInfo:
        try:
            with self._session() as session:
                return _row_to_info(self._require_registry(session, name))
        except SQLAlchemyError as exc:
            raise CatalogError(f"failed to get registry: {exc}") from exc

    def create_registry(self, name: str, spec) -> RegistryInfo:
        if not name:
            raise ValidationError("registry name is required")
        validate_source_spec(spec)

        def change(session: Session) -> RegistryInfo:
            if get_registry_row(session, name) is not None:
                raise RegistryAlreadyExistsError(f"registry {name!r} already exists")
            row = RegistryRow(name=name, creation_type=CreationType.API)
            apply_spec_to_row(row, spec)
            session.add(row)
            session.flush()
            row.sync = RegistrySyncRow(registry_id=row.id)
            _reset_sync(row.sync, spec)
            _load_inline_data(session, row, spec)
            session.flush()
            return _row_to_info(row)

        try:
            with self._session() as session:
                info = change(session)
        except IntegrityError as exc:
            raise RegistryAlreadyExistsError(f"registry {name!r} already exists") from exc
        except SQLAlchemyError as exc:
            raise CatalogError(f"failed to create registry: {exc}") from exc
        logger.info("Created registry %s (%s)", name, spec.source_type.value)
        return info

    def update_registry(self, name: str, spec) -> RegistryInfo:
        validate_source_spec(spec)

        def change(session: Session) -> RegistryInfo:
            row = self._require_registry(session, name)
            if row.creation_type is CreationType.CONFIG:
                raise ConfigRegistryError(f"registry {name!r} is managed by configuration")
            if row.source_type is not spec.source_type:
                raise SourceTypeChangeNotAllowedError(
                    f"cannot change source type of {name!r} from "
                    f"{row.source_type.value} to {spec.source_type.value}"
                )
            apply_spec_to_row(row, spec)
            if row.sync is None:
                row.sync = RegistrySyncRow(registry_id=row.id)
            _load_inline_data(session, row, spec)
            session.flush()
            return _row_to_info(row)

        info = self._write("update registry", change)
        logger.info("Updated registry %s", name)
        return info

    def delete_registry(self, name: str) -> None:
        def change(session: Session) -> None:
            row = self._require_registry(session, name)
            if row.creation_type is CreationType.CONFIG:
                raise ConfigRegistryError(f"registry {name!r} is managed by configuration")
            session.delete(row)

        self._write("delete registry", change)
        logger.info("Deleted registry %s", name)

    def initialize_config_registries(self, registries: list) -> None:
        """Upsert every configured registry as a CONFIG registry."""

        def change(session: Session) -> None:
            for reg in registries:
                row = get_registry_row(session, reg.name)
                if row is None:
                    row = RegistryRow(name=reg.name)
                    session.add(row)
                row.creation_type = CreationType.CONFIG
                apply_spec_to_row(row, reg)
            session.flush()

        self._write("initialize config registries", change)
        logger.info("Initialized %d config registries", len(registries))


def _display_name(registry_name: Optional[str]):
    """SQL expression for entry names as a reader of this scope sees them."""
    if should_prefix(registry_name):
        return RegistryRow.name + DELIMITER + RegistryEntryRow.name
    return RegistryEntryRow.name


def _entry_filters(display, search: str, statuses: list[str], version: str) -> list:
    conditions = []
    if search:
        haystack = display + " " + RegistryEntryRow.title + " " + RegistryEntryRow.description
        conditions.append(func.lower(haystack).contains(search.lower(), autoescape=True))
    if statuses:
        conditions.append(func.lower(RegistryEntryRow.status).in_(statuses))
    if version == LATEST_VERSION:
        conditions.append(RegistryEntryRow.is_latest.is_(True))
    elif version:
        conditions.append(RegistryEntryRow.version == version)
    return conditions


def _utc(value: datetime) -> datetime:
    # Naive times are taken as UTC, like the stored timestamps.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _take_latest(version: str, siblings: list[RegistryEntryRow]) -> bool:
    """Decide whether a new version becomes latest, demoting the old one if so."""
    current = next((r for r in siblings if r.is_latest), None)
    if current is None or is_newer_version(version, current.version):
        for row in siblings:
            row.is_latest = False
        return True
    return False


def _delete_row(session: Session, siblings: list[RegistryEntryRow], version: str, what: str) -> None:
    target = next((r for r in siblings if r.version == version), None)
    if target is None:
        raise NotFoundError(f"{what} version {version} not found")
    session.delete(target)
    if target.is_latest:
        promoted = newest(r for r in siblings if r is not target)
        if promoted is not None:
            promoted.is_latest = True


def _reset_sync(sync: RegistrySyncRow, spec) -> None:
    status = default_status(spec)
    sync.phase = status.phase
    sync.message = status.message


def _load_inline_data(session: Session, row: RegistryRow, spec) -> None:
    """Replace a file registry's entries with its inline ``file.data``."""
    if spec.file is None or not spec.file.data:
        return
    servers, skills = parse_registry_document(spec.file.data, spec.registry_format)
    rules = FilterRules.from_dict(row.filter_config)
    servers = mark_latest(apply_filter(servers, rules))
    skills = mark_latest(apply_filter(skills, rules), group_of=lambda s: (s.namespace, s.name))
    for entry in list(row.entries):
        session.delete(entry)
    session.flush()
    for server in servers:
        session.add(server_row(row.id, server))
    for skill in skills:
        session.add(skill_row(row.id, skill))
    now = utcnow()
    row.sync.phase = SyncPhase.COMPLETE
    row.sync.message = "Inline data processed"
    row.sync.last_attempt = now
    row.sync.last_sync_time = now
    row.sync.entry_count = len(servers) + len(skills)


def _row_to_info(row: RegistryRow) -> RegistryInfo:
    return RegistryInfo(
        name=row.name,
        source_type=row.source_type,
        creation_type=row.creation_type,
        format=RegistryFormat(row.format or RegistryFormat.UPSTREAM.value),
        source_config=dict(row.source_config or {}),
        filter_config=dict(row.filter_config or {}),
        sync_schedule=row.sync_interval or "",
        sync_status=row_to_status(row.sync, row) if row.sync is not None else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
