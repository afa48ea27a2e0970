"""Error taxonomy for the catalog core.

Callers compare errors by type, never by message. The HTTP layer maps each
class onto a status code in one place (``web/backend/app/main.py``).
"""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for every error raised by cathub."""


# ------------------------------------------------------------------
# Lookup errors
# ------------------------------------------------------------------


class NotFoundError(CatalogError):
    """A server or skill version does not exist."""


class RegistryNotFoundError(CatalogError):
    """The named registry does not exist."""


# ------------------------------------------------------------------
# Mutation errors
# ------------------------------------------------------------------


class NotManagedRegistryError(CatalogError):
    """Entries can only be published to or deleted from managed registries."""


class VersionAlreadyExistsError(CatalogError):
    """The (name, version) pair is already published in the registry."""


class ConfigRegistryError(CatalogError):
    """A registry created from configuration cannot be changed through the API."""


class RegistryAlreadyExistsError(CatalogError):
    """A registry with the same name already exists."""


class UnsupportedOperationError(CatalogError):
    """The active storage backend does not implement the operation."""


# ------------------------------------------------------------------
# Client input errors
# ------------------------------------------------------------------


class ValidationError(CatalogError):
    """Client supplied input that can never succeed as given."""


class InvalidOptionError(ValidationError):
    """An option value failed validation (empty string, non-positive limit...)."""


class IncompatibleOptionError(ValidationError):
    """An option was applied to an operation that does not accept it."""


class InvalidCursorError(ValidationError):
    """A pagination cursor could not be decoded."""


class CursorDecodeError(InvalidCursorError):
    """The cursor is not valid base64 text."""


class InvalidCursorFormatError(InvalidCursorError):
    """The decoded cursor does not hold exactly two fields."""


class InvalidRegistryConfigError(ValidationError):
    """A registry create/update request is malformed."""


class SourceTypeChangeNotAllowedError(ValidationError):
    """An update tried to change the source kind of an existing registry."""


# ------------------------------------------------------------------
# Construction and backend errors
# ------------------------------------------------------------------


class ConfigError(CatalogError):
    """Configuration is missing or invalid."""


class StorageInitError(CatalogError):
    """A storage backend resource could not be established."""


class ProviderError(CatalogError):
    """A registry data provider failed to produce a snapshot."""
