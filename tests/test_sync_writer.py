"""Tests for sync write-back and inline registry loading."""

import json
import tempfile
from pathlib import Path

import pytest

from cathub.config import config_from_dict
from cathub.errors import RegistryNotFoundError
from cathub.registry.models import Server, Skill, SyncPhase
from cathub.storage.files import FileStorageManager
from cathub.sync.state import FileStateService
from cathub.sync.status import FileStatusPersistence
from cathub.sync.writer import FileSyncWriter, SyncData, data_hash, load_inline_registries


def _config(tmpdir, extra=None):
    registries = [
        {
            "name": "upstream",
            "api": {"endpoint": "https://registry.example.com"},
            "sync_policy": {"interval": "10m"},
            "filter": {"names": {"exclude": ["*-beta"]}},
        },
    ]
    registries.extend(extra or [])
    return config_from_dict({"file_storage": {"base_dir": tmpdir}, "registries": registries})


def test_store_filters_and_marks_latest():
    with tempfile.TemporaryDirectory() as tmpdir:
        cfg = _config(tmpdir)
        storage = FileStorageManager(tmpdir)
        writer = FileSyncWriter(storage, cfg)

        count = writer.store("upstream", SyncData(servers=[
            Server("fetch", "1.0.0"),
            Server("fetch", "1.10.0"),
            Server("fetch", "1.9.0"),
            Server("fetch-beta", "0.1.0"),
        ], skills=[]))
        assert count == 3

        stored = storage.get("upstream")
        assert [(s.version, s.is_latest) for s in stored.servers] == [
            ("1.0.0", False), ("1.10.0", True), ("1.9.0", False),
        ]


def test_store_without_skills_keeps_existing_ones():
    with tempfile.TemporaryDirectory() as tmpdir:
        cfg = _config(tmpdir)
        storage = FileStorageManager(tmpdir)
        writer = FileSyncWriter(storage, cfg)

        writer.store("upstream", SyncData(
            servers=[Server("fetch", "1.0.0")],
            skills=[Skill("acme", "lint", "0.1.0", description="Lint")],
        ))
        count = writer.store("upstream", SyncData(servers=[Server("fetch", "2.0.0")]))
        assert count == 2

        stored = storage.get("upstream")
        assert [s.version for s in stored.servers] == ["2.0.0"]
        assert [s.name for s in stored.skills] == ["lint"]


def test_store_unknown_registry():
    with tempfile.TemporaryDirectory() as tmpdir:
        writer = FileSyncWriter(FileStorageManager(tmpdir), _config(tmpdir))
        with pytest.raises(RegistryNotFoundError):
            writer.store("ghost", SyncData(servers=[]))


def test_data_hash_ignores_order_and_bookkeeping():
    a = SyncData(servers=[Server("a", "1.0.0"), Server("b", "1.0.0", is_latest=True)])
    b = SyncData(servers=[Server("b", "1.0.0"), Server("a", "1.0.0")])
    assert data_hash(a) == data_hash(b)

    c = SyncData(servers=[Server("a", "1.0.0", description="changed"), Server("b", "1.0.0")])
    assert data_hash(a) != data_hash(c)


def test_load_inline_registries():
    inline = json.dumps({"servers": [{"name": "pinned", "version": "3.0.0"}]})
    with tempfile.TemporaryDirectory() as tmpdir:
        cfg = _config(tmpdir, extra=[{"name": "pinned", "file": {"data": inline}}])
        storage = FileStorageManager(tmpdir)
        state = FileStateService(FileStatusPersistence(Path(tmpdir) / "status"))
        state.initialize(cfg.registries)

        loaded = load_inline_registries(cfg.registries, FileSyncWriter(storage, cfg), state)
        assert loaded == 1
        assert storage.get("pinned").servers[0].is_latest

        status = state.get_sync_status("pinned")
        assert status.phase is SyncPhase.COMPLETE
        assert status.message == "Inline data processed"
        assert status.entry_count == 1
        assert len(status.last_sync_hash) == 64
        assert state.get_sync_status("upstream").phase is SyncPhase.FAILED
