"""Write-back of synced registry data.

A sync run fetches a registry's upstream data and hands it to
:meth:`SyncWriter.store`, which replaces the registry's stored entries with
the filtered result and recomputes the latest pointers.
"""

from __future__ import annotations

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cathub.errors import CatalogError, RegistryNotFoundError
from cathub.registry.filtering import FilterRules, apply_filter
from cathub.registry.models import (
    EntryType,
    RegistryData,
    Server,
    Skill,
    SyncPhase,
    SyncStatus,
    server_to_dict,
    skill_to_dict,
    utcnow,
)
from cathub.registry.provider import parse_registry_document
from cathub.registry.versions import mark_latest
from cathub.storage.database import get_registry_row, server_row, session_scope, skill_row
from cathub.storage.files import FileStorageManager
from cathub.storage.schema import RegistryEntryRow

logger = logging.getLogger(__name__)


@dataclass
class SyncData:
    """What one sync run produced. ``skills=None`` leaves stored skills untouched."""

    servers: list[Server]
    skills: Optional[list[Skill]] = None


def data_hash(data: SyncData) -> str:
    """Stable digest of the synced content, used to skip no-op syncs."""
    doc = {
        "servers": sorted((server_to_dict(s) for s in data.servers), key=lambda d: (d["name"], d["version"])),
        "skills": sorted(
            (skill_to_dict(s) for s in data.skills or []),
            key=lambda d: (d["namespace"], d["name"], d["version"]),
        ),
    }
    for entries in doc.values():
        for entry in entries:
            for key in ("is_latest", "created_at", "updated_at"):
                entry.pop(key, None)
    return hashlib.sha256(json.dumps(doc, sort_keys=True, default=str).encode()).hexdigest()


def _prepare(data: SyncData, rules: FilterRules) -> tuple[list[Server], Optional[list[Skill]]]:
    servers = mark_latest(apply_filter(data.servers, rules))
    skills = None
    if data.skills is not None:
        skills = mark_latest(apply_filter(data.skills, rules), group_of=lambda s: (s.namespace, s.name))
    return servers, skills


class SyncWriter(ABC):
    @abstractmethod
    def store(self, registry_name: str, data: SyncData) -> int:
        """Replace the registry's entries. Returns the number of entries kept."""


class FileSyncWriter(SyncWriter):
    def __init__(self, storage_manager: FileStorageManager, config):
        self.storage_manager = storage_manager
        self.config = config

    def store(self, registry_name: str, data: SyncData) -> int:
        reg = self.config.registry(registry_name)
        if reg is None:
            raise RegistryNotFoundError(f"registry {registry_name!r} not found")

        servers, skills = _prepare(data, reg.filter)
        if skills is None:
            existing = self.storage_manager.get(registry_name)
            skills = existing.skills if existing else []

        try:
            self.storage_manager.store(
                registry_name, RegistryData(name=registry_name, servers=servers, skills=skills)
            )
        except OSError as exc:
            raise CatalogError(f"failed to store registry {registry_name}: {exc}") from exc
        logger.info("Stored sync data for %s: %d servers, %d skills", registry_name, len(servers), len(skills))
        return len(servers) + len(skills)


class DatabaseSyncWriter(SyncWriter):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def store(self, registry_name: str, data: SyncData) -> int:
        try:
            with session_scope(self.session_factory) as session:
                row = get_registry_row(session, registry_name)
                if row is None:
                    raise RegistryNotFoundError(f"registry {registry_name!r} not found")
                servers, skills = _prepare(data, FilterRules.from_dict(row.filter_config))

                replaced = [EntryType.SERVER] if skills is None else [EntryType.SERVER, EntryType.SKILL]
                session.execute(
                    delete(RegistryEntryRow).where(
                        RegistryEntryRow.registry_id == row.id,
                        RegistryEntryRow.entry_type.in_(replaced),
                    )
                )
                for server in servers:
                    session.add(server_row(row.id, server))
                for skill in skills or []:
                    session.add(skill_row(row.id, skill))
        except SQLAlchemyError as exc:
            raise CatalogError(f"failed to store registry {registry_name}: {exc}") from exc

        count = len(servers) + len(skills or [])
        logger.info("Stored sync data for %s: %d entries", registry_name, count)
        return count


def load_inline_registries(registries: list, writer: SyncWriter, state_service) -> int:
    """Write configured ``file.data`` registries and mark them synced.

    Inline data needs no fetch, so it is processed once at startup rather
    than by the sync scheduler. Returns the number of registries loaded.
    """
    loaded = 0
    for reg in registries:
        if reg.file is None or not reg.file.data:
            continue
        servers, skills = parse_registry_document(reg.file.data, reg.registry_format)
        data = SyncData(servers=servers, skills=skills)
        count = writer.store(reg.name, data)
        digest = data_hash(data)

        def complete(status: SyncStatus) -> SyncStatus:
            now = utcnow()
            status.phase = SyncPhase.COMPLETE
            status.message = "Inline data processed"
            status.last_attempt = now
            status.last_sync_time = now
            status.entry_count = count
            status.last_sync_hash = digest
            return status

        state_service.update_status_atomically(reg.name, complete)
        loaded += 1
    if loaded:
        logger.info("Loaded inline data for %d registries", loaded)
    return loaded
