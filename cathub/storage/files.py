"""File-based JSON storage for registry catalogs.

Each registry is one JSON document under ``<base_dir>/<name>/registry.json``.
All components in file mode share a single :class:`FileStorageManager`, so
their reads and writes go through the same lock.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from cathub.errors import StorageInitError
from cathub.registry.models import (
    RegistryData,
    server_from_dict,
    server_to_dict,
    skill_from_dict,
    skill_to_dict,
    utcnow,
)

logger = logging.getLogger(__name__)

REGISTRY_FILE = "registry.json"


class FileStorageManager:
    """Stores each registry's servers and skills as a JSON document."""

    def __init__(self, base_dir: str | Path):
        self._base = Path(base_dir)
        try:
            self._base.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageInitError(f"cannot create storage directory {self._base}: {exc}") from exc
        self._lock = threading.RLock()

    @property
    def base_dir(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _path(self, registry_name: str) -> Path:
        return self._base / registry_name / REGISTRY_FILE

    def _read_json(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        data = json.loads(path.read_text())
        return data if isinstance(data, dict) else None

    def _write_json(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2, default=str))
        os.replace(tmp, path)

    # ------------------------------------------------------------------
    # Registry documents
    # ------------------------------------------------------------------

    def store(self, registry_name: str, data: RegistryData) -> None:
        doc = {
            "name": registry_name,
            "last_updated": utcnow().isoformat(),
            "servers": [server_to_dict(s) for s in data.servers],
            "skills": [skill_to_dict(s) for s in data.skills],
        }
        with self._lock:
            self._write_json(self._path(registry_name), doc)
        logger.debug(
            "Stored registry %s: %d servers, %d skills",
            registry_name, len(data.servers), len(data.skills),
        )

    def get(self, registry_name: str) -> Optional[RegistryData]:
        with self._lock:
            doc = self._read_json(self._path(registry_name))
        if doc is None:
            return None
        return RegistryData(
            name=registry_name,
            servers=[server_from_dict(s) for s in doc.get("servers", [])],
            skills=[skill_from_dict(s) for s in doc.get("skills", [])],
        )

    def get_all(self) -> dict[str, RegistryData]:
        result: dict[str, RegistryData] = {}
        for name in self.list_names():
            data = self.get(name)
            if data is not None:
                result[name] = data
        return result

    def list_names(self) -> list[str]:
        with self._lock:
            if not self._base.exists():
                return []
            return sorted(
                p.name for p in self._base.iterdir()
                if p.is_dir() and (p / REGISTRY_FILE).exists()
            )
