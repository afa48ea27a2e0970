"""Collision-safe names for aggregated reads.

When a read spans every registry, each entry name is rendered as
``<registry>.<name>``. Prefixing is unconditional so that a rendered name
never depends on which other registries happen to hold the same entry.
"""

from __future__ import annotations

from typing import Optional

DELIMITER = "."


def should_prefix(registry_name: Optional[str]) -> bool:
    """True when the read has no explicit registry scope."""
    return registry_name is None


def prefix_name(registry_name: str, entry_name: str) -> str:
    # Names containing the delimiter are prefixed once and never split.
    return f"{registry_name}{DELIMITER}{entry_name}"


def render_name(registry_name: Optional[str], source_registry: str, entry_name: str) -> str:
    """Name an entry as a reader of this scope should see it."""
    if should_prefix(registry_name):
        return prefix_name(source_registry, entry_name)
    return entry_name
