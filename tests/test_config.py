"""Tests for configuration loading."""

import tempfile
from pathlib import Path

import pytest
import yaml

from cathub.config import StorageType, config_from_dict, load_config
from cathub.errors import ConfigError
from cathub.registry.models import RegistryFormat, SourceType


def _write_config(tmpdir: str, data: dict) -> Path:
    path = Path(tmpdir) / "config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return path


def _base_config(**overrides) -> dict:
    data = {
        "registry_name": "catalog",
        "file_storage": {"base_dir": "./data"},
        "registries": [
            {
                "name": "upstream",
                "format": "upstream",
                "file": {"path": "./registry.json"},
                "sync_policy": {"interval": "30m"},
                "filter": {"names": {"exclude": ["*-beta"]}},
            },
            {"name": "internal", "managed": {}},
        ],
    }
    data.update(overrides)
    return data


def test_load_config():
    with tempfile.TemporaryDirectory() as tmpdir:
        cfg = load_config(_write_config(tmpdir, _base_config()))

        assert cfg.registry_name == "catalog"
        assert cfg.storage_type is StorageType.FILE
        assert [r.name for r in cfg.registries] == ["upstream", "internal"]

        upstream = cfg.registry("upstream")
        assert upstream.source_type is SourceType.FILE
        assert upstream.registry_format is RegistryFormat.UPSTREAM
        assert upstream.sync_interval == "30m"
        assert upstream.filter.exclude_names == ["*-beta"]

        internal = cfg.registry("internal")
        assert internal.source_type is SourceType.MANAGED
        assert internal.is_non_synced
        assert cfg.registry("missing") is None


def test_missing_file():
    with pytest.raises(ConfigError, match="not found"):
        load_config("/nonexistent/cathub.yaml")


def test_invalid_yaml():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.yaml"
        path.write_text("registries: [unclosed")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(path)


def test_registries_required_and_unique():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError, match="at least one registry"):
            load_config(_write_config(tmpdir, {"registries": []}))

        dup = _base_config(registries=[{"name": "a", "managed": {}}, {"name": "a", "managed": {}}])
        with pytest.raises(ConfigError, match="duplicate registry name"):
            load_config(_write_config(tmpdir, dup))


def test_bad_registry_source_is_reported_with_name():
    with tempfile.TemporaryDirectory() as tmpdir:
        bad = _base_config(registries=[{"name": "g", "git": {"repository": "https://x/r.git"}}])
        with pytest.raises(ConfigError, match="registry 'g'"):
            load_config(_write_config(tmpdir, bad))


def test_database_mode_requires_connection_fields():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = _base_config(storage={"type": "database"}, database={"host": "db"})
        with pytest.raises(ConfigError, match="database.user is required"):
            load_config(_write_config(tmpdir, data))


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CATHUB_STORAGE_TYPE", "database")
    monkeypatch.setenv("CATHUB_DATABASE_PASSWORD", "s3cret")
    monkeypatch.setenv("CATHUB_CACHE_TTL_SECONDS", "5")
    cfg = config_from_dict(_base_config(database={"host": "db", "user": "u", "database": "d"}))

    assert cfg.storage_type is StorageType.DATABASE
    assert cfg.database.password == "s3cret"
    assert cfg.cache_ttl_seconds == 5.0


def test_unknown_storage_type():
    with pytest.raises(ConfigError, match="unknown storage type"):
        config_from_dict(_base_config(storage={"type": "s3"}))


def test_database_url_assembly():
    cfg = config_from_dict(_base_config(
        storage={"type": "database"},
        database={"host": "db", "port": 5433, "user": "u", "password": "p", "database": "cat"},
    ))
    url = cfg.database.connection_url()
    assert url.drivername == "postgresql+psycopg"
    assert url.port == 5433
    assert url.query["sslmode"] == "require"

    cfg.database.url = "sqlite:///cat.db"
    assert cfg.database.connection_url() == "sqlite:///cat.db"


def test_status_dir_defaults_under_storage():
    cfg = config_from_dict(_base_config())
    assert cfg.status_dir == Path("./data") / "status"
    cfg.data_dir = "/var/lib/cathub"
    assert cfg.status_dir == Path("/var/lib/cathub")
