"""Relational schema for the database backend."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship
from sqlalchemy.sql import func

from cathub.registry.models import CreationType, EntryType, SourceType, SyncPhase

Base = declarative_base()

# Names of the PostgreSQL enum types, registered with psycopg per connection.
ENUM_TYPE_NAMES = ("registry_source_type", "creation_type", "sync_phase", "entry_type")


def _enum(cls, name: str) -> Enum:
    return Enum(cls, name=name, values_callable=lambda e: [m.value for m in e])


class RegistryRow(Base):
    __tablename__ = "registry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    source_type: Mapped[SourceType] = mapped_column(_enum(SourceType, "registry_source_type"))
    creation_type: Mapped[CreationType] = mapped_column(
        _enum(CreationType, "creation_type"), default=CreationType.CONFIG
    )
    format: Mapped[str] = mapped_column(String(32), default="upstream")
    source_config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    filter_config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    sync_interval: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    sync: Mapped[Optional["RegistrySyncRow"]] = relationship(
        "RegistrySyncRow",
        back_populates="owner",
        uselist=False,
        cascade="all, delete-orphan",
    )
    entries: Mapped[List["RegistryEntryRow"]] = relationship(
        "RegistryEntryRow",
        back_populates="owner",
        cascade="all, delete-orphan",
    )

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class RegistrySyncRow(Base):
    __tablename__ = "registry_sync"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registry_id: Mapped[int] = mapped_column(
        ForeignKey("registry.id", ondelete="CASCADE"), unique=True
    )
    phase: Mapped[SyncPhase] = mapped_column(_enum(SyncPhase, "sync_phase"), default=SyncPhase.FAILED)
    message: Mapped[str] = mapped_column(Text, default="")
    last_attempt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    entry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_sync_hash: Mapped[str] = mapped_column(String(128), default="")
    last_applied_filter_hash: Mapped[str] = mapped_column(String(128), default="")

    owner: Mapped[RegistryRow] = relationship("RegistryRow", back_populates="sync")


class RegistryEntryRow(Base):
    """One server or skill version. The full entry lives in ``payload``."""

    __tablename__ = "registry_entry"
    __table_args__ = (
        UniqueConstraint(
            "registry_id", "entry_type", "namespace", "name", "version",
            name="uq_registry_entry_version",
        ),
        Index("ix_registry_entry_lookup", "registry_id", "entry_type", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registry_id: Mapped[int] = mapped_column(ForeignKey("registry.id", ondelete="CASCADE"))
    entry_type: Mapped[EntryType] = mapped_column(_enum(EntryType, "entry_type"))
    namespace: Mapped[str] = mapped_column(String(255), default="")
    name: Mapped[str] = mapped_column(String(255))
    version: Mapped[str] = mapped_column(String(255))
    title: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(32), default="active")
    is_latest: Mapped[bool] = mapped_column(Boolean, default=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    owner: Mapped[RegistryRow] = relationship("RegistryRow", back_populates="entries")
