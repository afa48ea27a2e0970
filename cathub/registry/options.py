"""Per-operation options for registry service calls.

Every service operation takes ``*options``. Each ``with_*`` constructor
validates its value up front and returns an :class:`Option`; the service
builds its own options record and applies the options to it in call order
(last write wins). A record advertises which options it accepts by
inheriting the matching ``Supports*`` capability mixin, and applying an
option to a record without that capability raises
:class:`~cathub.errors.IncompatibleOptionError`.

Example::

    service.list_servers(with_registry_name("prod"), with_limit(10))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from cathub.errors import IncompatibleOptionError, InvalidOptionError
from cathub.registry.models import Server

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


class SupportsCursor:
    pass


class SupportsLimit:
    pass


class SupportsSearch:
    pass


class SupportsRegistryName:
    pass


class SupportsNamespace:
    pass


class SupportsName:
    pass


class SupportsVersion:
    pass


class SupportsUpdatedSince:
    pass


class SupportsNext:
    pass


class SupportsPrev:
    pass


class SupportsServerData:
    pass


class SupportsStatus:
    pass


# ---------------------------------------------------------------------------
# Option values
# ---------------------------------------------------------------------------


class Option:
    """A validated value bound to one field of an options record."""

    def __init__(self, attr: str, value: Any, capability: type):
        self.attr = attr
        self.value = value
        self.capability = capability

    def applies_to(self, record_type: type) -> bool:
        return issubclass(record_type, self.capability)

    def apply(self, record: Any) -> None:
        if not isinstance(record, self.capability):
            raise IncompatibleOptionError(
                f"incompatible option for this operation: "
                f"{self.attr} is not accepted by {type(record).__name__}"
            )
        setattr(record, self.attr, self.value)

    def __repr__(self) -> str:
        return f"Option({self.attr}={self.value!r})"


def apply_options(record: Any, options) -> Any:
    """Apply *options* to *record* in order and return the record."""
    for option in options:
        option.apply(record)
    return record


def _require_text(label: str, value: Optional[str]) -> str:
    if not value:
        raise InvalidOptionError(f"invalid {label}: must not be empty")
    return value


def _require_time(label: str, value: Optional[datetime]) -> datetime:
    if value is None:
        raise InvalidOptionError(f"invalid {label}: must be set")
    aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if aware == _EPOCH:
        raise InvalidOptionError(f"invalid {label}: zero time")
    return value


def with_cursor(cursor: str) -> Option:
    return Option("cursor", _require_text("cursor", cursor), SupportsCursor)


def with_limit(limit: int) -> Option:
    if limit is None or limit <= 0:
        raise InvalidOptionError(f"invalid limit: {limit}")
    return Option("limit", int(limit), SupportsLimit)


def with_search(search: str) -> Option:
    return Option("search", _require_text("search", search), SupportsSearch)


def with_registry_name(registry_name: str) -> Option:
    return Option(
        "registry_name",
        _require_text("registry name", registry_name),
        SupportsRegistryName,
    )


def with_namespace(namespace: str) -> Option:
    return Option("namespace", _require_text("namespace", namespace), SupportsNamespace)


def with_name(name: str) -> Option:
    return Option("name", _require_text("name", name), SupportsName)


def with_version(version: str) -> Option:
    return Option("version", _require_text("version", version), SupportsVersion)


def with_updated_since(updated_since: datetime) -> Option:
    return Option(
        "updated_since",
        _require_time("updated since", updated_since),
        SupportsUpdatedSince,
    )


def with_next(next_time: datetime) -> Option:
    return Option("next", _require_time("next", next_time), SupportsNext)


def with_prev(prev_time: datetime) -> Option:
    return Option("prev", _require_time("prev", prev_time), SupportsPrev)


def with_server_data(server: Server) -> Option:
    if server is None:
        raise InvalidOptionError("server data is required")
    return Option("server_data", server, SupportsServerData)


def with_statuses(*statuses: str) -> Option:
    """Restrict a listing to entries whose status is one of *statuses*."""
    cleaned = [s.strip().lower() for s in statuses if s and s.strip()]
    if not cleaned:
        raise InvalidOptionError("invalid status: must not be empty")
    return Option("statuses", cleaned, SupportsStatus)


def with_status(status_csv: str) -> Option:
    """Like :func:`with_statuses`, from a comma-separated string."""
    return with_statuses(*_require_text("status", status_csv).split(","))


# ---------------------------------------------------------------------------
# Per-operation records
# ---------------------------------------------------------------------------


@dataclass
class ListServersOptions(
    SupportsRegistryName,
    SupportsCursor,
    SupportsLimit,
    SupportsSearch,
    SupportsUpdatedSince,
    SupportsVersion,
    SupportsStatus,
):
    registry_name: Optional[str] = None
    cursor: str = ""
    limit: int = 0
    search: str = ""
    updated_since: Optional[datetime] = None
    version: str = ""
    statuses: list[str] = field(default_factory=list)


@dataclass
class ListServerVersionsOptions(
    SupportsRegistryName, SupportsName, SupportsNext, SupportsPrev, SupportsLimit
):
    registry_name: Optional[str] = None
    name: str = ""
    next: Optional[datetime] = None
    prev: Optional[datetime] = None
    limit: int = 0


@dataclass
class GetServerVersionOptions(SupportsRegistryName, SupportsName, SupportsVersion):
    registry_name: Optional[str] = None
    name: str = ""
    version: str = ""


@dataclass
class PublishServerVersionOptions(SupportsRegistryName, SupportsServerData):
    registry_name: Optional[str] = None
    server_data: Optional[Server] = None


@dataclass
class DeleteServerVersionOptions(SupportsRegistryName, SupportsName, SupportsVersion):
    registry_name: Optional[str] = None
    name: str = ""
    version: str = ""


@dataclass
class ListSkillsOptions(
    SupportsRegistryName,
    SupportsNamespace,
    SupportsName,
    SupportsVersion,
    SupportsSearch,
    SupportsLimit,
    SupportsCursor,
    SupportsStatus,
):
    """Options for listing skills and for listing one skill's versions."""

    registry_name: Optional[str] = None
    namespace: str = ""
    name: str = ""
    version: str = ""
    search: str = ""
    limit: int = 0
    cursor: str = ""
    statuses: list[str] = field(default_factory=list)


@dataclass
class GetSkillVersionOptions(
    SupportsRegistryName, SupportsNamespace, SupportsName, SupportsVersion
):
    registry_name: Optional[str] = None
    namespace: str = ""
    name: str = ""
    version: str = ""


@dataclass
class PublishSkillOptions(SupportsRegistryName):
    registry_name: Optional[str] = None


@dataclass
class DeleteSkillVersionOptions(
    SupportsRegistryName, SupportsNamespace, SupportsName, SupportsVersion
):
    registry_name: Optional[str] = None
    namespace: str = ""
    name: str = ""
    version: str = ""
