"""Opaque pagination cursors.

A cursor is ``base64("<name>,<version>")``. The comma cannot appear in entry
names or in the version strings the catalog accepts, so splitting on it is
unambiguous. An empty cursor means "first page".
"""

from __future__ import annotations

import base64
import binascii

from cathub.errors import CursorDecodeError, InvalidCursorFormatError

SEPARATOR = ","


def encode_cursor(name: str, version: str) -> str:
    """Encode a (name, version) resume point into an opaque token."""
    raw = f"{name}{SEPARATOR}{version}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> tuple[str, str]:
    """Decode a token produced by :func:`encode_cursor`.

    Returns ``("", "")`` for the empty cursor.
    """
    if not cursor:
        return "", ""

    try:
        raw = base64.b64decode(cursor, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise CursorDecodeError(f"invalid cursor: {exc}") from exc

    parts = raw.split(SEPARATOR)
    if len(parts) != 2:
        raise InvalidCursorFormatError(
            f"invalid cursor format: expected 2 fields, got {len(parts)}"
        )
    return parts[0], parts[1]
