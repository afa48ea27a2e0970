"""YAML persistence of per-registry sync status records (file mode)."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from cathub.errors import StorageInitError
from cathub.registry.models import (
    CreationType,
    SyncPhase,
    SyncStatus,
    format_time,
    parse_time,
)

logger = logging.getLogger(__name__)

STATUS_FILE = "status.yaml"


def status_to_dict(status: SyncStatus) -> dict:
    return {
        "phase": status.phase.value,
        "message": status.message,
        "last_attempt": format_time(status.last_attempt),
        "attempt_count": status.attempt_count,
        "last_sync_time": format_time(status.last_sync_time),
        "last_sync_hash": status.last_sync_hash,
        "last_applied_filter_hash": status.last_applied_filter_hash,
        "entry_count": status.entry_count,
        "creation_type": status.creation_type.value,
        "sync_schedule": status.sync_schedule,
    }


def status_from_dict(data: dict) -> SyncStatus:
    return SyncStatus(
        phase=SyncPhase(data.get("phase") or SyncPhase.FAILED.value),
        message=data.get("message", ""),
        last_attempt=parse_time(data.get("last_attempt")),
        attempt_count=int(data.get("attempt_count", 0)),
        last_sync_time=parse_time(data.get("last_sync_time")),
        last_sync_hash=data.get("last_sync_hash", ""),
        last_applied_filter_hash=data.get("last_applied_filter_hash", ""),
        entry_count=int(data.get("entry_count", 0)),
        creation_type=CreationType(data.get("creation_type") or CreationType.CONFIG.value),
        sync_schedule=data.get("sync_schedule", ""),
    )


class FileStatusPersistence:
    """Stores each registry's status as ``<data_dir>/<name>/status.yaml``."""

    def __init__(self, data_dir: str | Path):
        self._base = Path(data_dir)
        try:
            self._base.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageInitError(f"cannot create status directory {self._base}: {exc}") from exc

    def _path(self, registry_name: str) -> Path:
        return self._base / registry_name / STATUS_FILE

    def save_status(self, registry_name: str, status: SyncStatus) -> None:
        path = self._path(registry_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            yaml.safe_dump(status_to_dict(status), f, sort_keys=False)
        os.replace(tmp, path)

    def load_status(self, registry_name: str) -> Optional[SyncStatus]:
        """The stored status, or None when nothing was saved yet."""
        path = self._path(registry_name)
        if not path.exists():
            return None
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return status_from_dict(data)
