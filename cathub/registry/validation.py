"""Validation of registry source settings and of published entries."""

from __future__ import annotations

import re

from cathub.errors import InvalidRegistryConfigError, ValidationError
from cathub.registry.models import LATEST_VERSION, Server, Skill, SourceType
from cathub.registry.provider import validate_inline_data

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> float:
    """Parse a duration such as ``"30m"``, ``"1h30m"`` or ``"500ms"`` into seconds."""
    if not text:
        raise ValueError("empty duration")
    value = text.strip()
    sign = 1.0
    if value[0] in "+-":
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if value == "0":
        return 0.0

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(value):
        raise ValueError(f"invalid duration {text!r}")
    return sign * total


# ---------------------------------------------------------------------------
# Registry sources
# ---------------------------------------------------------------------------


def validate_source_spec(spec) -> None:
    """Check a registry's source settings. Raises :class:`InvalidRegistryConfigError`."""
    if spec is None:
        raise InvalidRegistryConfigError("config is required")

    count = spec.count_source_types()
    if count == 0:
        raise InvalidRegistryConfigError(
            "one of git, api, file, managed, or kubernetes must be specified"
        )
    if count > 1:
        raise InvalidRegistryConfigError("only one source type may be specified")

    if not spec.is_non_synced:
        if not spec.sync_interval:
            raise InvalidRegistryConfigError(
                f"sync_policy.interval is required for {spec.source_type.value} registries"
            )
        try:
            parse_duration(spec.sync_interval)
        except ValueError as exc:
            raise InvalidRegistryConfigError(f"invalid sync interval: {exc}") from exc

    if spec.format and spec.format not in ("toolhive", "upstream"):
        raise InvalidRegistryConfigError(
            f"format must be 'toolhive' or 'upstream', got '{spec.format}'"
        )

    source_type = spec.source_type
    if source_type is SourceType.GIT:
        _validate_git(spec.git)
    elif source_type is SourceType.API:
        if not spec.api.endpoint:
            raise InvalidRegistryConfigError("api.endpoint is required")
    elif source_type is SourceType.FILE:
        _validate_file(spec.file, spec.format)


def _validate_git(git) -> None:
    if not git.repository:
        raise InvalidRegistryConfigError("git.repository is required")
    refs = [r for r in (git.branch, git.tag, git.commit) if r]
    if len(refs) > 1:
        raise InvalidRegistryConfigError(
            "git.branch, git.tag, and git.commit are mutually exclusive"
        )


def _validate_file(file, fmt: str) -> None:
    given = [v for v in (file.path, file.url, file.data) if v]
    if not given:
        raise InvalidRegistryConfigError("file.path, file.url, or file.data is required")
    if len(given) > 1:
        raise InvalidRegistryConfigError(
            "file.path, file.url, and file.data are mutually exclusive"
        )

    if file.timeout:
        if not file.url:
            raise InvalidRegistryConfigError(
                "file.timeout is only applicable when file.url is specified"
            )
        try:
            parse_duration(file.timeout)
        except ValueError as exc:
            raise InvalidRegistryConfigError(f"invalid file.timeout: {exc}") from exc

    if file.data:
        try:
            validate_inline_data(file.data, fmt)
        except ValidationError as exc:
            raise InvalidRegistryConfigError(f"file.data: {exc}") from exc


# ---------------------------------------------------------------------------
# Published entries
# ---------------------------------------------------------------------------


def validate_publish_skill(skill: Skill) -> None:
    """Required fields are checked in order; the first missing one is reported."""
    for field_name in ("namespace", "name", "description", "version"):
        if not str(getattr(skill, field_name) or "").strip():
            raise ValidationError(f"{field_name} is required")
    _reject_separator("namespace", skill.namespace)
    _reject_separator("name", skill.name)
    _reject_reserved_version(skill.version)


def validate_publish_server(server: Server) -> None:
    for field_name in ("name", "version"):
        if not str(getattr(server, field_name) or "").strip():
            raise ValidationError(f"{field_name} is required")
    _reject_separator("name", server.name)
    _reject_reserved_version(server.version)


def _reject_reserved_version(version: str) -> None:
    if version == LATEST_VERSION:
        raise ValidationError(
            f"version '{LATEST_VERSION}' is reserved and cannot be published"
        )
    _reject_separator("version", version)


def _reject_separator(field_name: str, value: str) -> None:
    # Cursors are "<name>,<version>".
    if "," in value:
        raise ValidationError(f"{field_name} must not contain ','")
