"""Tests for storage factory selection, build and cleanup."""

import tempfile
from pathlib import Path

import pytest

from cathub.config import Config, DatabaseConfig, StorageType, config_from_dict
from cathub.errors import ConfigError, StorageInitError
from cathub.registry.database import DatabaseRegistryService
from cathub.registry.inmemory import InMemoryRegistryService
from cathub.storage.factory import DatabaseStorageFactory, FileStorageFactory, new_storage_factory
from cathub.sync.state import DatabaseStateService, FileStateService
from cathub.sync.writer import DatabaseSyncWriter, FileSyncWriter

REGISTRIES = [{"name": "internal", "managed": {}}]


def test_file_factory_builds_file_components():
    with tempfile.TemporaryDirectory() as tmpdir:
        cfg = config_from_dict({"file_storage": {"base_dir": tmpdir}, "registries": REGISTRIES})
        factory = new_storage_factory(cfg)
        assert isinstance(factory, FileStorageFactory)

        components = factory.build()
        assert isinstance(components.state_service, FileStateService)
        assert isinstance(components.sync_writer, FileSyncWriter)
        assert isinstance(components.registry_service, InMemoryRegistryService)
        # The registry service reports sync state from the same state service.
        assert components.registry_service.state_service is components.state_service
        assert (Path(tmpdir) / "status" / "internal" / "status.yaml").exists()

        components.cleanup()
        components.cleanup()


def test_database_factory_builds_database_components():
    with tempfile.TemporaryDirectory() as tmpdir:
        cfg = config_from_dict({
            "storage": {"type": "database"},
            "database": {"url": f"sqlite:///{Path(tmpdir) / 'cathub.db'}"},
            "registries": REGISTRIES,
        })
        with new_storage_factory(cfg) as factory:
            assert isinstance(factory, DatabaseStorageFactory)
            components = factory.build()
            assert isinstance(components.state_service, DatabaseStateService)
            assert isinstance(components.sync_writer, DatabaseSyncWriter)
            assert isinstance(components.registry_service, DatabaseRegistryService)
            assert [r.name for r in components.registry_service.list_registries()] == ["internal"]
        factory.cleanup()


def test_factory_requires_config():
    with pytest.raises(ConfigError):
        new_storage_factory(None)
    with pytest.raises(ConfigError):
        FileStorageFactory(None)


def test_database_factory_requires_database_section():
    cfg = Config(storage_type=StorageType.DATABASE, database=None)
    with pytest.raises(ConfigError, match="database configuration is required"):
        DatabaseStorageFactory(cfg)


def test_unreachable_database_fails_fast():
    cfg = Config(
        storage_type=StorageType.DATABASE,
        database=DatabaseConfig(url="sqlite:////nonexistent/dir/cathub.db"),
    )
    with pytest.raises(StorageInitError, match="failed to connect"):
        DatabaseStorageFactory(cfg)


def test_malformed_database_url():
    cfg = Config(storage_type=StorageType.DATABASE, database=DatabaseConfig(url="not a url"))
    with pytest.raises(StorageInitError, match="invalid database url"):
        DatabaseStorageFactory(cfg)
