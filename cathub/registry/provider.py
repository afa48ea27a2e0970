"""Registry data providers.

A provider produces a :class:`CatalogSnapshot`: every registry's servers and
skills as of one fetch. The in-memory service caches what a provider
returns and asks again when the cache expires.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod

from cathub.errors import CatalogError, ProviderError, ValidationError
from cathub.registry.models import (
    CatalogSnapshot,
    RegistryData,
    RegistryFormat,
    Server,
    Skill,
    SourceType,
    server_from_dict,
    skill_from_dict,
)
from cathub.registry.versions import mark_latest

logger = logging.getLogger(__name__)


class RegistryDataProvider(ABC):
    """Source of catalog snapshots."""

    @abstractmethod
    def get_registry_data(self) -> CatalogSnapshot:
        """Fetch every registry's current data. Raises :class:`ProviderError`."""

    @abstractmethod
    def get_source(self) -> str:
        """A short human-readable description of where data comes from."""

    @property
    @abstractmethod
    def registry_name(self) -> str:
        """Name of this catalog instance."""


# ---------------------------------------------------------------------------
# Registry documents
# ---------------------------------------------------------------------------


def parse_registry_document(
    raw: str | dict, fmt: RegistryFormat | str = RegistryFormat.UPSTREAM
) -> tuple[list[Server], list[Skill]]:
    """Parse a registry document into servers and skills.

    Upstream documents carry ``data.servers`` (or top-level ``servers``) as a
    list of server objects. Native (``toolhive``) documents carry
    ``servers`` as a mapping from name to server details.
    """
    if isinstance(raw, str):
        if not raw.strip():
            raise ValidationError("data cannot be empty")
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"invalid registry JSON: {exc}") from exc
    else:
        doc = raw
    if not isinstance(doc, dict):
        raise ValidationError("registry document must be a JSON object")

    fmt = RegistryFormat(fmt)
    body = doc.get("data") if isinstance(doc.get("data"), dict) else doc

    try:
        if fmt is RegistryFormat.NATIVE:
            servers = _native_servers(body)
        else:
            items = body.get("servers") or []
            if not isinstance(items, list):
                raise ValidationError("upstream registry servers must be a list")
            servers = [server_from_dict(item) for item in items]
        skills = [skill_from_dict(item) for item in body.get("skills") or []]
    except (KeyError, TypeError) as exc:
        raise ValidationError(f"invalid registry entry: missing or malformed {exc}") from exc

    for server in servers:
        if not server.name or not server.version:
            raise ValidationError("every server needs a name and a version")
    mark_latest(servers)
    mark_latest(skills, group_of=lambda s: (s.namespace, s.name))
    return servers, skills


def _native_servers(body: dict) -> list[Server]:
    servers = []
    for key in ("servers", "remote_servers"):
        mapping = body.get(key) or {}
        if not isinstance(mapping, dict):
            raise ValidationError(f"toolhive registry {key} must be a mapping")
        for name, details in mapping.items():
            details = details or {}
            remotes = [{"type": details.get("transport", ""), "url": details["url"]}] if details.get("url") else []
            packages = [{"registry_type": "oci", "identifier": details["image"]}] if details.get("image") else []
            servers.append(
                Server(
                    name=name,
                    version=details.get("version", "1.0.0"),
                    description=details.get("description", ""),
                    title=details.get("title", ""),
                    status=str(details.get("status", "active")).lower(),
                    repository=(
                        {"url": details["repository_url"]} if details.get("repository_url") else None
                    ),
                    packages=packages,
                    remotes=remotes,
                    tags=list(details.get("tags", [])),
                    meta=details.get("metadata", {}) or {},
                )
            )
    return servers


def validate_inline_data(data: str, fmt: str = "") -> None:
    """Check that *data* parses as a registry document.

    With no format given, upstream is tried first, then native.
    """
    if fmt:
        parse_registry_document(data, fmt)
        return
    try:
        parse_registry_document(data, RegistryFormat.UPSTREAM)
    except ValidationError:
        parse_registry_document(data, RegistryFormat.NATIVE)


# ---------------------------------------------------------------------------
# File-backed provider
# ---------------------------------------------------------------------------


class FileRegistryDataProvider(RegistryDataProvider):
    """Reads every registry from a shared :class:`FileStorageManager`.

    Registries named in configuration but not yet written (a managed
    registry before its first publish, a synced one before its first sync)
    appear as empty catalogs so that they can be addressed.
    """

    def __init__(self, storage_manager, config):
        self.storage_manager = storage_manager
        self.config = config

    @property
    def registry_name(self) -> str:
        return self.config.registry_name

    def get_registry_data(self) -> CatalogSnapshot:
        try:
            stored = self.storage_manager.get_all()
        except (OSError, CatalogError, ValueError) as exc:
            raise ProviderError(f"failed to get registry data: {exc}") from exc

        registries: dict[str, RegistryData] = {}
        for reg in self.config.registries:
            data = stored.pop(reg.name, None) or RegistryData(name=reg.name)
            data.source_type = reg.source_type or SourceType.FILE
            registries[reg.name] = data
        for name, data in stored.items():
            logger.debug("Registry %s has stored data but no configuration", name)
            registries[name] = data

        snapshot = CatalogSnapshot(registries=registries, fetched_at=time.monotonic())
        logger.debug(
            "Loaded snapshot: %d registries, %d servers, %d skills",
            len(registries), snapshot.server_count, snapshot.skill_count,
        )
        return snapshot

    def get_source(self) -> str:
        regs = self.config.registries
        if not regs:
            return "multi-registry:<not-configured>"
        if len(regs) == 1:
            reg = regs[0]
            if reg.file is not None:
                return f"file:{reg.file.path or reg.file.url or '<inline>'}"
            if reg.git is not None:
                return f"git:{reg.git.repository}"
            if reg.api is not None:
                return f"api:{reg.api.endpoint}"
            return f"registry:{reg.name}"
        return f"multi-registry:{len(regs)}-sources"
