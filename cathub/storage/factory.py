"""Storage factories.

A factory turns one storage choice into a consistent family of components:
the sync state service, the sync writer and the registry service. All
three share the factory's backend resource (one SQLAlchemy engine, or one
file storage manager), so nothing can read from one backend while writing
to another.

Usage::

    with new_storage_factory(config) as factory:
        components = factory.build()
        components.registry_service.list_servers()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from cathub.config import Config, StorageType
from cathub.errors import ConfigError, StorageInitError
from cathub.registry.database import DatabaseRegistryService
from cathub.registry.inmemory import InMemoryRegistryService
from cathub.registry.provider import FileRegistryDataProvider
from cathub.registry.service import RegistryService
from cathub.storage.database import create_db_engine, create_schema, make_session_factory, ping
from cathub.storage.files import FileStorageManager
from cathub.sync.state import DatabaseStateService, FileStateService, RegistryStateService
from cathub.sync.status import FileStatusPersistence
from cathub.sync.writer import (
    DatabaseSyncWriter,
    FileSyncWriter,
    SyncWriter,
    load_inline_registries,
)

logger = logging.getLogger(__name__)


@dataclass
class StorageComponents:
    state_service: RegistryStateService
    sync_writer: SyncWriter
    registry_service: RegistryService
    cleanup: Callable[[], None]


class StorageFactory(ABC):
    storage_type: StorageType

    def __init__(self, config: Config):
        if config is None:
            raise ConfigError("config cannot be None")
        self.config = config
        self._closed = False

    @abstractmethod
    def create_state_service(self) -> RegistryStateService:
        ...

    @abstractmethod
    def create_sync_writer(self) -> SyncWriter:
        ...

    @abstractmethod
    def create_registry_service(self) -> RegistryService:
        ...

    def build(self) -> StorageComponents:
        """Create and initialize all three components."""
        state = self.create_state_service()
        writer = self.create_sync_writer()
        self._prepare(state)
        load_inline_registries(self.config.registries, writer, state)
        service = self.create_registry_service()
        return StorageComponents(
            state_service=state,
            sync_writer=writer,
            registry_service=service,
            cleanup=self.cleanup,
        )

    def _prepare(self, state: RegistryStateService) -> None:
        state.initialize(self.config.registries)

    def cleanup(self) -> None:
        """Release the shared backend resource. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._release()

    def _release(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.cleanup()


# ---------------------------------------------------------------------------
# File
# ---------------------------------------------------------------------------


class FileStorageFactory(StorageFactory):
    storage_type = StorageType.FILE

    def __init__(self, config: Config):
        super().__init__(config)
        logger.info("Creating file-backed storage factory at %s", config.file_storage_base_dir)
        self.storage_manager = FileStorageManager(config.file_storage_base_dir)
        self.status_persistence = FileStatusPersistence(config.status_dir)
        self._state_service = None

    def create_state_service(self) -> RegistryStateService:
        logger.debug("Creating file-backed state service")
        if self._state_service is None:
            self._state_service = FileStateService(self.status_persistence)
        return self._state_service

    def create_sync_writer(self) -> SyncWriter:
        logger.debug("Creating file-backed sync writer")
        return FileSyncWriter(self.storage_manager, self.config)

    def create_registry_service(self) -> RegistryService:
        logger.debug("Creating file-backed registry service")
        provider = FileRegistryDataProvider(self.storage_manager, self.config)
        return InMemoryRegistryService(
            provider,
            config=self.config,
            storage_manager=self.storage_manager,
            state_service=self._state_service,
            cache_ttl=self.config.cache_ttl_seconds,
        )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseStorageFactory(StorageFactory):
    storage_type = StorageType.DATABASE

    def __init__(self, config: Config):
        super().__init__(config)
        if config.database is None:
            raise ConfigError("database configuration is required for database storage type")

        logger.info("Creating database-backed storage factory")
        self.engine = create_db_engine(config.database)
        try:
            ping(self.engine)
            if config.database.auto_create_schema:
                create_schema(self.engine)
        except StorageInitError:
            self.engine.dispose()
            raise
        self.session_factory = make_session_factory(self.engine)
        logger.info("Database connection pool created successfully")

    def create_state_service(self) -> RegistryStateService:
        logger.debug("Creating database-backed state service")
        return DatabaseStateService(self.session_factory)

    def create_sync_writer(self) -> SyncWriter:
        logger.debug("Creating database-backed sync writer")
        return DatabaseSyncWriter(self.session_factory)

    def create_registry_service(self) -> RegistryService:
        logger.debug("Creating database-backed registry service")
        return DatabaseRegistryService(self.session_factory)

    def _prepare(self, state: RegistryStateService) -> None:
        DatabaseRegistryService(self.session_factory).initialize_config_registries(
            self.config.registries
        )
        super()._prepare(state)

    def _release(self) -> None:
        logger.info("Closing database connection pool")
        try:
            self.engine.dispose()
        except SQLAlchemyError as exc:
            logger.warning("Error while closing database pool: %s", exc)


def new_storage_factory(config: Config) -> StorageFactory:
    """Pick the factory for ``config.storage_type``."""
    if config is None:
        raise ConfigError("config cannot be None")
    if config.storage_type is StorageType.DATABASE:
        return DatabaseStorageFactory(config)
    if config.storage_type is StorageType.FILE:
        return FileStorageFactory(config)
    raise ConfigError(f"unknown storage type: {config.storage_type}")
