"""Name and tag filter rules applied when synced data is written back.

Exclusion always wins over inclusion. An empty include list admits
everything that is not excluded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase

logger = logging.getLogger(__name__)


@dataclass
class FilterRules:
    include_names: list[str] = field(default_factory=list)
    exclude_names: list[str] = field(default_factory=list)
    include_tags: list[str] = field(default_factory=list)
    exclude_tags: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.include_names or self.exclude_names
            or self.include_tags or self.exclude_tags
        )

    @classmethod
    def from_dict(cls, data: dict | None) -> "FilterRules":
        data = data or {}
        names = data.get("names") or {}
        tags = data.get("tags") or {}
        return cls(
            include_names=list(names.get("include", [])),
            exclude_names=list(names.get("exclude", [])),
            include_tags=list(tags.get("include", [])),
            exclude_tags=list(tags.get("exclude", [])),
        )

    def to_dict(self) -> dict:
        result: dict = {}
        if self.include_names or self.exclude_names:
            result["names"] = {"include": self.include_names, "exclude": self.exclude_names}
        if self.include_tags or self.exclude_tags:
            result["tags"] = {"include": self.include_tags, "exclude": self.exclude_tags}
        return result


def should_include_name(name: str, include: list[str], exclude: list[str]) -> tuple[bool, str]:
    """Decide on *name* and say why."""
    for pattern in exclude:
        if fnmatchcase(name, pattern):
            return False, f"excluded by pattern '{pattern}'"
    if include:
        for pattern in include:
            if fnmatchcase(name, pattern):
                return True, f"included by pattern '{pattern}'"
        return False, f"no match found in include patterns {include}"
    return True, "no name filters matched"


def should_include_tags(tags: list[str], include: list[str], exclude: list[str]) -> tuple[bool, str]:
    for tag in tags:
        if tag in exclude:
            return False, f"excluded by tag '{tag}'"
    if include:
        for tag in tags:
            if tag in include:
                return True, f"included by tag '{tag}'"
        return False, f"no matching tags found in include list {include}"
    return True, "no tag filters matched"


def apply_filter(entries: list, rules: FilterRules | None) -> list:
    """Entries that pass both the name and the tag rules."""
    if rules is None or rules.is_empty:
        return list(entries)

    kept = []
    for entry in entries:
        ok, reason = should_include_name(entry.name, rules.include_names, rules.exclude_names)
        if ok:
            ok, reason = should_include_tags(
                getattr(entry, "tags", []), rules.include_tags, rules.exclude_tags
            )
        if ok:
            kept.append(entry)
        else:
            logger.debug("Filtered out %s: %s", entry.qualified_id, reason)
    return kept
