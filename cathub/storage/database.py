"""SQLAlchemy engine setup for the database backend.

One engine (and therefore one connection pool) is created per storage
factory and shared by every database-backed component it produces.
Backend codecs are registered lazily: the first time each physical
connection is opened, never for the pool as a whole.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from cathub.config import DatabaseConfig, RegistryConfig, source_spec_from_dict
from cathub.errors import StorageInitError
from cathub.registry.models import (
    EntryType,
    Server,
    Skill,
    server_from_dict,
    server_to_dict,
    skill_from_dict,
    skill_to_dict,
)
from cathub.registry.validation import parse_duration
from cathub.storage.schema import ENUM_TYPE_NAMES, Base, RegistryEntryRow, RegistryRow

logger = logging.getLogger(__name__)

CODECS_REGISTERED = "cathub_codecs_registered"


def create_db_engine(db: DatabaseConfig) -> Engine:
    """Build the pooled engine and attach the per-connection setup hook."""
    try:
        recycle = int(parse_duration(db.conn_max_lifetime)) if db.conn_max_lifetime else -1
    except ValueError as exc:
        raise StorageInitError(f"invalid database.conn_max_lifetime: {exc}") from exc

    try:
        url = make_url(db.connection_url())
    except ArgumentError as exc:
        raise StorageInitError(f"invalid database url: {exc}") from exc

    connect_args = {}
    if url.get_backend_name() == "sqlite":
        # Pooled connections are handed to whichever request thread asks.
        connect_args["check_same_thread"] = False

    pool_size = max(db.max_idle_conns, 1)
    engine = create_engine(
        url,
        connect_args=connect_args,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max(db.max_open_conns - pool_size, 0),
        pool_recycle=recycle,
        pool_pre_ping=True,
    )
    event.listen(engine, "connect", _on_connect)
    return engine


def _on_connect(dbapi_connection, connection_record) -> None:
    if connection_record.info.get(CODECS_REGISTERED):
        return
    dialect = _dialect_of(dbapi_connection)
    if dialect == "postgresql":
        _register_postgres_enums(dbapi_connection)
    elif dialect == "sqlite":
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
    connection_record.info[CODECS_REGISTERED] = True
    logger.debug("Registered %s codecs on new connection", dialect)


def _dialect_of(dbapi_connection) -> str:
    module = type(dbapi_connection).__module__
    if module.startswith("psycopg"):
        return "postgresql"
    if module.startswith("sqlite3"):
        return "sqlite"
    return module


def _register_postgres_enums(dbapi_connection) -> None:
    # Enum values (and arrays of them) are loaded as plain text; SQLAlchemy
    # maps them onto the Python enums itself.
    from psycopg.types.enum import EnumInfo
    from psycopg.types.string import TextLoader

    for type_name in ENUM_TYPE_NAMES:
        info = EnumInfo.fetch(dbapi_connection, type_name)
        # Types are absent until the schema has been created.
        if info is not None:
            info.register(dbapi_connection)
            dbapi_connection.adapters.register_loader(info.oid, TextLoader)


def ping(engine: Engine) -> None:
    """Raise :class:`StorageInitError` unless the database answers."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise StorageInitError(f"failed to connect to database: {exc}") from exc


def create_schema(engine: Engine) -> None:
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StorageInitError(f"failed to create schema: {exc}") from exc


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Registry rows shared by the service and the sync components
# ---------------------------------------------------------------------------


def get_registry_row(session: Session, name: str) -> RegistryRow | None:
    return session.scalars(select(RegistryRow).where(RegistryRow.name == name)).first()


def apply_spec_to_row(row, spec) -> None:
    """Copy a registry's source settings onto its row."""
    row.source_type = spec.source_type
    row.format = spec.registry_format.value
    row.source_config = spec.source_config()
    row.filter_config = spec.filter.to_dict()
    row.sync_interval = spec.sync_interval


def row_to_registry_config(row: RegistryRow) -> RegistryConfig:
    """Rebuild the source settings stored on a registry row."""
    data = {
        "name": row.name,
        "format": row.format,
        "filter": row.filter_config,
        "sync_policy": {"interval": row.sync_interval or ""},
        row.source_type.value: dict(row.source_config or {}),
    }
    return source_spec_from_dict(data, RegistryConfig)


def server_row(registry_id: int, server: Server) -> RegistryEntryRow:
    return RegistryEntryRow(
        registry_id=registry_id,
        entry_type=EntryType.SERVER,
        namespace="",
        name=server.name,
        version=server.version,
        title=server.title,
        description=server.description,
        status=server.status,
        is_latest=server.is_latest,
        payload=server_to_dict(server),
    )


def skill_row(registry_id: int, skill: Skill) -> RegistryEntryRow:
    return RegistryEntryRow(
        registry_id=registry_id,
        entry_type=EntryType.SKILL,
        namespace=skill.namespace,
        name=skill.name,
        version=skill.version,
        title=skill.title,
        description=skill.description,
        status=skill.status,
        is_latest=skill.is_latest,
        payload=skill_to_dict(skill),
    )


def row_to_server(row: RegistryEntryRow) -> Server:
    server = server_from_dict(row.payload)
    server.is_latest = row.is_latest
    server.created_at = row.created_at
    server.updated_at = row.updated_at
    return server


def row_to_skill(row: RegistryEntryRow) -> Skill:
    skill = skill_from_dict(row.payload)
    skill.is_latest = row.is_latest
    skill.created_at = row.created_at
    skill.updated_at = row.updated_at
    return skill
