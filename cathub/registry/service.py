"""The read-facing registry service interface and helpers shared by its
implementations.

Listings are ordered by (rendered name, version) and paginated with
opaque cursors: the cursor names the last entry of the previous page and
the next page starts strictly after it.
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from cathub.errors import NotFoundError, ValidationError
from cathub.registry.cursor import decode_cursor, encode_cursor
from cathub.registry.models import (
    LATEST_VERSION,
    ListResult,
    RegistryInfo,
    Server,
    Skill,
)
from cathub.registry.naming import render_name

DEFAULT_SERVER_PAGE_SIZE = 30
MAX_SERVER_PAGE_SIZE = 1000
DEFAULT_SKILL_PAGE_SIZE = 50
MAX_SKILL_PAGE_SIZE = 100


class RegistryService(ABC):
    """List, get, publish and delete servers and skills across registries."""

    @abstractmethod
    def check_readiness(self) -> None:
        """Raise unless the backing data source can currently serve data."""

    @abstractmethod
    def get_registry(self):
        """All registries merged into one :class:`MergedRegistry` document."""

    # -- servers -------------------------------------------------------

    @abstractmethod
    def list_servers(self, *options) -> ListResult:
        ...

    @abstractmethod
    def list_server_versions(self, *options) -> list[Server]:
        ...

    @abstractmethod
    def get_server_version(self, *options) -> Server:
        ...

    @abstractmethod
    def publish_server_version(self, *options) -> Server:
        ...

    @abstractmethod
    def delete_server_version(self, *options) -> None:
        ...

    # -- skills --------------------------------------------------------

    @abstractmethod
    def list_skills(self, *options) -> ListResult:
        ...

    @abstractmethod
    def get_skill_version(self, *options) -> Skill:
        ...

    @abstractmethod
    def publish_skill(self, skill: Skill, *options) -> Skill:
        ...

    @abstractmethod
    def delete_skill_version(self, *options) -> None:
        ...

    # -- registries ----------------------------------------------------

    @abstractmethod
    def list_registries(self) -> list[RegistryInfo]:
        ...

    @abstractmethod
    def get_registry_by_name(self, name: str) -> RegistryInfo:
        ...

    @abstractmethod
    def create_registry(self, name: str, spec) -> RegistryInfo:
        ...

    @abstractmethod
    def update_registry(self, name: str, spec) -> RegistryInfo:
        ...

    @abstractmethod
    def delete_registry(self, name: str) -> None:
        ...

    def close(self) -> None:
        """Release anything the service holds. Shared resources belong to the factory."""


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def clamp_limit(limit: int, default: int, maximum: int) -> int:
    if not limit or limit <= 0:
        return default
    return min(limit, maximum)


def require(value: Optional[str], label: str) -> str:
    if not value:
        raise ValidationError(f"{label} is required")
    return value


def matches_search(entry, search: str) -> bool:
    if not search:
        return True
    needle = search.lower()
    haystack = f"{entry.name} {entry.title} {entry.description}".lower()
    return needle in haystack


def matches_status(entry, statuses: list[str]) -> bool:
    return not statuses or (entry.status or "").lower() in statuses


def updated_after(entry, since: Optional[datetime]) -> bool:
    if since is None:
        return True
    stamp = entry.updated_at or entry.created_at
    if stamp is None:
        return False
    return _aware(stamp) >= _aware(since)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def render(entry, scope: Optional[str], source_registry: str):
    """Copy of *entry* named as a reader with this scope should see it."""
    name = render_name(scope, source_registry, entry.name)
    if name == entry.name:
        return entry
    return dataclasses.replace(entry, name=name)


def paginate(entries: Iterable, cursor: str, limit: int,
             key: Callable = lambda e: (e.name, e.version)) -> ListResult:
    """Order *entries* by *key* and return the page after *cursor*."""
    after = decode_cursor(cursor) if cursor else None
    ordered = sorted(entries, key=key)
    if after is not None:
        ordered = [e for e in ordered if key(e) > after]

    page = ordered[:limit]
    next_cursor = ""
    if len(ordered) > limit and page:
        last = key(page[-1])
        next_cursor = encode_cursor(last[0], last[1])
    return ListResult(entries=page, next_cursor=next_cursor)


def skill_key(skill: Skill) -> tuple[str, str]:
    # Skills sort by namespace first; the cursor packs namespace/name.
    return (f"{skill.namespace}/{skill.name}", skill.version)


def select_version(entries: list, version: str, what: str):
    """Resolve *version* (or the ``latest`` alias) among one name's versions."""
    for entry in entries:
        if version == LATEST_VERSION and entry.is_latest:
            return entry
        if entry.version == version:
            return entry
    raise NotFoundError(f"{what} version {version} not found")


def filter_version(entries: list, version: str) -> list:
    if not version:
        return entries
    if version == LATEST_VERSION:
        return [e for e in entries if e.is_latest]
    return [e for e in entries if e.version == version]


def check_time_window(next_time, prev_time) -> None:
    if next_time is not None and prev_time is not None:
        raise ValidationError("next and prev cannot be set at the same time")


def in_time_window(entry, next_time, prev_time) -> bool:
    stamp = entry.created_at or entry.updated_at
    if next_time is not None:
        return stamp is not None and _aware(stamp) > _aware(next_time)
    if prev_time is not None:
        return stamp is not None and _aware(stamp) < _aware(prev_time)
    return True
