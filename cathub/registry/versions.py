"""Version ordering and the per-name latest pointer."""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from packaging.version import InvalidVersion, Version


def _parse(version: str) -> Optional[Version]:
    text = version[1:] if version[:1] in ("v", "V") else version
    try:
        return Version(text)
    except InvalidVersion:
        return None


def version_key(version: str) -> tuple:
    """Sort key: empty first, then PEP 440 versions, then free-form strings."""
    if not version:
        return (0,)
    parsed = _parse(version)
    if parsed is not None:
        return (1, parsed)
    return (2, version)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1."""
    left, right = version_key(a), version_key(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def is_newer_version(candidate: str, current: str) -> bool:
    return compare_versions(candidate, current) > 0


def newest(entries: Iterable, version_of: Callable = lambda e: e.version):
    """The entry with the highest version, or None."""
    best = None
    for entry in entries:
        if best is None or is_newer_version(version_of(entry), version_of(best)):
            best = entry
    return best


def mark_latest(entries: list, group_of: Callable = lambda e: e.name) -> list:
    """Recompute ``is_latest`` so exactly one entry per group carries it."""
    groups: dict = {}
    for entry in entries:
        groups.setdefault(group_of(entry), []).append(entry)
    for members in groups.values():
        top = newest(members)
        for entry in members:
            entry.is_latest = entry is top
    return entries
