"""Configuration loading for cathub.

Configuration is a YAML document::

    registry_name: default
    storage:
      type: file            # or "database"
    file_storage:
      base_dir: ./data
    cache_ttl_seconds: 30
    enable_aggregated_endpoints: false
    registries:
      - name: upstream
        format: upstream
        file:
          path: ./registry.json
        sync_policy:
          interval: 30m
      - name: internal
        managed: {}
    database:
      host: localhost
      port: 5432
      user: cathub
      database: cathub

Scalar top-level and ``database`` keys can be overridden with ``CATHUB_``
environment variables, e.g. ``CATHUB_STORAGE_TYPE=database`` or
``CATHUB_DATABASE_PASSWORD=...``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from sqlalchemy.engine import URL

from cathub.errors import ConfigError, InvalidRegistryConfigError
from cathub.registry.filtering import FilterRules
from cathub.registry.models import RegistryFormat, SourceType
from cathub.registry.validation import validate_source_spec

logger = logging.getLogger(__name__)

ENV_PREFIX = "CATHUB_"


class StorageType(str, Enum):
    FILE = "file"
    DATABASE = "database"


# ---------------------------------------------------------------------------
# Registry sources
# ---------------------------------------------------------------------------


@dataclass
class GitSource:
    repository: str = ""
    branch: str = ""
    tag: str = ""
    commit: str = ""
    path: str = ""


@dataclass
class ApiSource:
    endpoint: str = ""


@dataclass
class FileSource:
    path: str = ""
    url: str = ""
    data: str = ""
    timeout: str = ""


@dataclass
class SourceSpec:
    """Where a registry's data comes from, how often, and what is kept.

    Exactly one of ``git``, ``api``, ``file``, ``managed`` or ``kubernetes``
    may be set. ``managed`` and ``kubernetes`` carry no settings; an empty
    dict marks them as chosen.
    """

    format: str = ""
    git: Optional[GitSource] = None
    api: Optional[ApiSource] = None
    file: Optional[FileSource] = None
    managed: Optional[dict] = None
    kubernetes: Optional[dict] = None
    sync_interval: str = ""
    filter: FilterRules = field(default_factory=FilterRules)

    def count_source_types(self) -> int:
        return sum(
            1 for s in (self.git, self.api, self.file, self.managed, self.kubernetes)
            if s is not None
        )

    @property
    def source_type(self) -> Optional[SourceType]:
        if self.git is not None:
            return SourceType.GIT
        if self.api is not None:
            return SourceType.API
        if self.file is not None:
            return SourceType.FILE
        if self.managed is not None:
            return SourceType.MANAGED
        if self.kubernetes is not None:
            return SourceType.KUBERNETES
        return None

    @property
    def is_non_synced(self) -> bool:
        """Managed and kubernetes registries, and files carrying inline data."""
        if self.source_type in (SourceType.MANAGED, SourceType.KUBERNETES):
            return True
        return self.file is not None and bool(self.file.data)

    @property
    def registry_format(self) -> RegistryFormat:
        return RegistryFormat(self.format) if self.format else RegistryFormat.UPSTREAM

    def source_config(self) -> dict:
        """The settings of the chosen source, for storage and display."""
        source = self.git or self.api or self.file
        if source is not None:
            return {k: v for k, v in vars(source).items() if v}
        return {}


@dataclass
class RegistryConfig(SourceSpec):
    name: str = ""


def source_spec_from_dict(data: dict, cls: type = SourceSpec) -> Any:
    """Build a :class:`SourceSpec` (or subclass) from its YAML/JSON shape."""
    data = data or {}
    try:
        kwargs: dict[str, Any] = {
            "format": data.get("format", "") or "",
            "sync_interval": (data.get("sync_policy") or {}).get("interval", ""),
            "filter": FilterRules.from_dict(data.get("filter")),
        }
        if data.get("git") is not None:
            kwargs["git"] = GitSource(**data["git"])
        if data.get("api") is not None:
            kwargs["api"] = ApiSource(**data["api"])
        if data.get("file") is not None:
            kwargs["file"] = FileSource(**data["file"])
        if "managed" in data:
            kwargs["managed"] = dict(data["managed"] or {})
        if "kubernetes" in data:
            kwargs["kubernetes"] = dict(data["kubernetes"] or {})
        if cls is RegistryConfig:
            kwargs["name"] = data.get("name", "")
        return cls(**kwargs)
    except (TypeError, AttributeError) as exc:
        raise InvalidRegistryConfigError(f"invalid source settings: {exc}") from exc


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass
class DatabaseConfig:
    host: str = "localhost"
    port: int = 5432
    user: str = ""
    password: str = ""
    database: str = ""
    ssl_mode: str = "require"
    url: str = ""
    max_open_conns: int = 10
    max_idle_conns: int = 2
    conn_max_lifetime: str = "30m"
    auto_create_schema: bool = True

    def connection_url(self) -> URL | str:
        """An explicit ``url`` wins; otherwise a psycopg URL is assembled."""
        if self.url:
            return self.url
        return URL.create(
            "postgresql+psycopg",
            username=self.user or None,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.database,
            query={"sslmode": self.ssl_mode} if self.ssl_mode else {},
        )


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass
class Config:
    registry_name: str = "default"
    registries: list[RegistryConfig] = field(default_factory=list)
    storage_type: StorageType = StorageType.FILE
    file_storage_base_dir: str = "./data"
    data_dir: str = ""
    database: Optional[DatabaseConfig] = None
    cache_ttl_seconds: float = 30.0
    enable_aggregated_endpoints: bool = False

    @property
    def status_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return Path(self.file_storage_base_dir) / "status"

    def registry(self, name: str) -> Optional[RegistryConfig]:
        for reg in self.registries:
            if reg.name == name:
                return reg
        return None


def _env(name: str) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + name)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def config_from_dict(data: dict) -> Config:
    """Build a :class:`Config` from parsed YAML, applying env overrides."""
    data = data or {}
    storage = data.get("storage") or {}
    file_storage = data.get("file_storage") or {}

    storage_type = _env("STORAGE_TYPE") or storage.get("type") or StorageType.FILE.value
    try:
        storage_type = StorageType(str(storage_type).lower())
    except ValueError as exc:
        raise ConfigError(f"unknown storage type: {storage_type}") from exc

    db_data = data.get("database")
    database = None
    if db_data is not None or storage_type is StorageType.DATABASE:
        database = _database_from_dict(db_data or {})

    cfg = Config(
        registry_name=_env("REGISTRY_NAME") or data.get("registry_name") or "default",
        registries=[
            source_spec_from_dict(r, RegistryConfig) for r in data.get("registries") or []
        ],
        storage_type=storage_type,
        file_storage_base_dir=(
            _env("FILE_STORAGE_BASE_DIR") or file_storage.get("base_dir") or "./data"
        ),
        data_dir=_env("DATA_DIR") or data.get("data_dir") or "",
        database=database,
        cache_ttl_seconds=float(
            _env("CACHE_TTL_SECONDS") or data.get("cache_ttl_seconds", 30.0)
        ),
        enable_aggregated_endpoints=_as_bool(
            _env("ENABLE_AGGREGATED_ENDPOINTS")
            or data.get("enable_aggregated_endpoints", False)
        ),
    )
    return cfg


def _database_from_dict(data: dict) -> DatabaseConfig:
    db = DatabaseConfig(**{k: v for k, v in data.items() if k in DatabaseConfig.__dataclass_fields__})
    for key in ("host", "user", "password", "database", "ssl_mode", "url"):
        value = _env(f"DATABASE_{key.upper()}")
        if value:
            setattr(db, key, value)
    port = _env("DATABASE_PORT")
    if port:
        db.port = int(port)
    return db


def load_config(path: str | Path) -> Config:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    cfg = config_from_dict(data)
    validate_config(cfg)
    logger.info(
        "Loaded config from %s: %d registries, %s storage",
        path, len(cfg.registries), cfg.storage_type.value,
    )
    return cfg


def validate_config(cfg: Config) -> None:
    """Raise :class:`ConfigError` when *cfg* cannot be used to start a server."""
    if not cfg.registries:
        raise ConfigError("at least one registry must be configured")

    seen: set[str] = set()
    for reg in cfg.registries:
        if not reg.name:
            raise ConfigError("registry name is required")
        if reg.name in seen:
            raise ConfigError(f"duplicate registry name: {reg.name}")
        seen.add(reg.name)
        try:
            validate_source_spec(reg)
        except InvalidRegistryConfigError as exc:
            raise ConfigError(f"registry {reg.name!r}: {exc}") from exc

    if cfg.storage_type is StorageType.DATABASE:
        db = cfg.database
        if db is None:
            raise ConfigError("database configuration is required for database storage")
        if not db.url:
            for key in ("host", "user", "database"):
                if not getattr(db, key):
                    raise ConfigError(f"database.{key} is required")

    if cfg.cache_ttl_seconds < 0:
        raise ConfigError("cache_ttl_seconds must not be negative")
