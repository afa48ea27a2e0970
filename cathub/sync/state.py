"""Sync state services: where each registry's sync status is recorded.

The file implementation keeps statuses in memory and writes them through to
YAML files. The database implementation reads and writes the
``registry_sync`` table directly. Neither schedules anything; an external
scheduler calls :meth:`get_next_sync_job` and :meth:`update_sync_status`.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cathub.errors import CatalogError, RegistryNotFoundError
from cathub.registry.models import CreationType, SyncPhase, SyncStatus, utcnow
from cathub.storage.database import (
    apply_spec_to_row,
    get_registry_row,
    row_to_registry_config,
    session_scope,
)
from cathub.storage.schema import RegistryRow, RegistrySyncRow
from cathub.sync.status import FileStatusPersistence

logger = logging.getLogger(__name__)

StatusUpdate = Callable[[SyncStatus], SyncStatus]


def default_status(registry) -> SyncStatus:
    """Initial status for a registry with no recorded history."""
    if registry.is_non_synced:
        return SyncStatus(
            phase=SyncPhase.COMPLETE,
            message=f"Non-synced registry (type: {registry.source_type.value})",
            sync_schedule=registry.sync_interval,
        )
    return SyncStatus(
        phase=SyncPhase.FAILED,
        message="No previous sync status found",
        sync_schedule=registry.sync_interval,
    )


def _oldest_first(item: tuple[str, SyncStatus]):
    status = item[1]
    # Never-synced registries go first.
    return (status.last_sync_time is not None, status.last_sync_time or 0, item[0])


class RegistryStateService(ABC):
    """Records sync progress for every registry."""

    @abstractmethod
    def initialize(self, registries: list) -> None:
        """Load or create a status for each configured registry."""

    @abstractmethod
    def list_sync_statuses(self) -> dict[str, SyncStatus]:
        ...

    @abstractmethod
    def get_sync_status(self, registry_name: str) -> Optional[SyncStatus]:
        ...

    @abstractmethod
    def update_sync_status(self, registry_name: str, status: SyncStatus) -> None:
        ...

    @abstractmethod
    def update_status_atomically(self, registry_name: str, update: StatusUpdate) -> SyncStatus:
        """Read-modify-write a status without interleaving other writers."""

    def get_next_sync_job(self, registries: list, predicate: Callable[[SyncStatus], bool]):
        """Claim the least recently synced registry matching *predicate*.

        The claimed registry is marked Syncing. Returns its configuration, or
        None when nothing is due.
        """
        by_name = {r.name: r for r in registries if not r.is_non_synced}
        candidates = sorted(
            ((name, status) for name, status in self.list_sync_statuses().items() if name in by_name),
            key=_oldest_first,
        )
        for name, status in candidates:
            if not predicate(status):
                continue
            claimed = []

            def claim(current: SyncStatus) -> SyncStatus:
                # Re-check under the lock; another caller may have claimed it.
                if predicate(current):
                    current.phase = SyncPhase.SYNCING
                    current.last_attempt = utcnow()
                    current.attempt_count += 1
                    claimed.append(name)
                return current

            self.update_status_atomically(name, claim)
            if claimed:
                return by_name[name]
        return None


# ---------------------------------------------------------------------------
# File mode
# ---------------------------------------------------------------------------


class FileStateService(RegistryStateService):
    def __init__(self, persistence: FileStatusPersistence):
        self.persistence = persistence
        self._lock = threading.RLock()
        self._statuses: dict[str, SyncStatus] = {}

    def initialize(self, registries: list) -> None:
        for registry in registries:
            self._load_or_initialize(registry)

    def _load_or_initialize(self, registry) -> None:
        try:
            status = self.persistence.load_status(registry.name)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Failed to load sync status for %s, initializing with defaults: %s",
                registry.name, exc,
            )
            status = None

        if status is None:
            status = default_status(registry)
            logger.info("No previous sync status for %s, initialized to %s", registry.name, status.phase.value)
            self.persistence.save_status(registry.name, status)
        elif status.phase is SyncPhase.SYNCING and not registry.is_non_synced:
            logger.warning("Previous sync of %s was interrupted, resetting to Failed", registry.name)
            status.phase = SyncPhase.FAILED
            status.message = "Previous sync was interrupted"
            self.persistence.save_status(registry.name, status)

        with self._lock:
            self._statuses[registry.name] = status

    def list_sync_statuses(self) -> dict[str, SyncStatus]:
        with self._lock:
            return {name: copy.deepcopy(s) for name, s in self._statuses.items()}

    def get_sync_status(self, registry_name: str) -> Optional[SyncStatus]:
        with self._lock:
            status = self._statuses.get(registry_name)
            return copy.deepcopy(status) if status else None

    def update_sync_status(self, registry_name: str, status: SyncStatus) -> None:
        with self._lock:
            self.persistence.save_status(registry_name, status)
            self._statuses[registry_name] = copy.deepcopy(status)

    def update_status_atomically(self, registry_name: str, update: StatusUpdate) -> SyncStatus:
        with self._lock:
            current = self._statuses.get(registry_name)
            if current is None:
                raise RegistryNotFoundError(f"no sync status for registry {registry_name!r}")
            updated = update(copy.deepcopy(current))
            self.persistence.save_status(registry_name, updated)
            self._statuses[registry_name] = updated
            return copy.deepcopy(updated)


# ---------------------------------------------------------------------------
# Database mode
# ---------------------------------------------------------------------------


def row_to_status(row: RegistrySyncRow, registry: RegistryRow) -> SyncStatus:
    return SyncStatus(
        phase=row.phase,
        message=row.message or "",
        last_attempt=row.last_attempt,
        attempt_count=row.attempt_count or 0,
        last_sync_time=row.last_sync_time,
        last_sync_hash=row.last_sync_hash or "",
        last_applied_filter_hash=row.last_applied_filter_hash or "",
        entry_count=row.entry_count or 0,
        creation_type=registry.creation_type,
        sync_schedule=registry.sync_interval or "",
    )


def _status_to_row(status: SyncStatus, row: RegistrySyncRow) -> None:
    row.phase = status.phase
    row.message = status.message
    row.last_attempt = status.last_attempt
    row.attempt_count = status.attempt_count
    row.last_sync_time = status.last_sync_time
    row.last_sync_hash = status.last_sync_hash
    row.last_applied_filter_hash = status.last_applied_filter_hash
    row.entry_count = status.entry_count


class DatabaseStateService(RegistryStateService):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._lock = threading.Lock()

    def _wrap(self, exc: SQLAlchemyError, action: str) -> CatalogError:
        return CatalogError(f"failed to {action}: {exc}")

    def initialize(self, registries: list) -> None:
        try:
            with session_scope(self.session_factory) as session:
                for registry in registries:
                    row = get_registry_row(session, registry.name)
                    if row is None:
                        row = RegistryRow(name=registry.name, creation_type=CreationType.CONFIG)
                        apply_spec_to_row(row, registry)
                        session.add(row)
                        session.flush()
                    if row.sync is None:
                        sync = RegistrySyncRow(registry_id=row.id)
                        _status_to_row(default_status(registry), sync)
                        row.sync = sync
                    elif row.sync.phase is SyncPhase.SYNCING and not registry.is_non_synced:
                        logger.warning("Previous sync of %s was interrupted, resetting to Failed", registry.name)
                        row.sync.phase = SyncPhase.FAILED
                        row.sync.message = "Previous sync was interrupted"
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "initialize sync state") from exc

    def list_sync_statuses(self) -> dict[str, SyncStatus]:
        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(
                    select(RegistryRow, RegistrySyncRow).join(
                        RegistrySyncRow, RegistrySyncRow.registry_id == RegistryRow.id
                    )
                ).all()
                return {reg.name: row_to_status(sync, reg) for reg, sync in rows}
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "list sync statuses") from exc

    def get_sync_status(self, registry_name: str) -> Optional[SyncStatus]:
        try:
            with session_scope(self.session_factory) as session:
                row = get_registry_row(session, registry_name)
                if row is None or row.sync is None:
                    return None
                return row_to_status(row.sync, row)
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "get sync status") from exc

    def get_next_sync_job(self, registries: list, predicate: Callable[[SyncStatus], bool]):
        """Like the base, but registries created through the API are also due."""
        try:
            with session_scope(self.session_factory) as session:
                rows = session.scalars(
                    select(RegistryRow).where(RegistryRow.creation_type == CreationType.API)
                ).all()
                created = [row_to_registry_config(row) for row in rows]
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "list API registries") from exc

        known = {r.name for r in registries}
        candidates = list(registries) + [r for r in created if r.name not in known]
        return super().get_next_sync_job(candidates, predicate)

    def update_sync_status(self, registry_name: str, status: SyncStatus) -> None:
        try:
            with session_scope(self.session_factory) as session:
                row = get_registry_row(session, registry_name)
                if row is None:
                    raise RegistryNotFoundError(f"registry {registry_name!r} not found")
                if row.sync is None:
                    row.sync = RegistrySyncRow(registry_id=row.id)
                _status_to_row(status, row.sync)
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "update sync status") from exc

    def update_status_atomically(self, registry_name: str, update: StatusUpdate) -> SyncStatus:
        # Row locks are not portable across backends; serialize in-process.
        with self._lock:
            try:
                with session_scope(self.session_factory) as session:
                    row = get_registry_row(session, registry_name)
                    if row is None or row.sync is None:
                        raise RegistryNotFoundError(f"no sync status for registry {registry_name!r}")
                    updated = update(row_to_status(row.sync, row))
                    _status_to_row(updated, row.sync)
                    return updated
            except SQLAlchemyError as exc:
                raise self._wrap(exc, "update sync status") from exc
