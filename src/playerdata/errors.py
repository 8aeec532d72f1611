"""Exception hierarchy shared by the storage layer and the lifecycle manager."""

from __future__ import annotations


class PlayerDataError(Exception):
    """Base exception for player data errors."""


class LoadError(PlayerDataError):
    """A document or schema file could not be read or decoded."""


class PersistError(PlayerDataError):
    """A document or schema file could not be written."""


class DecodeError(PlayerDataError, ValueError):
    """A raw field value cannot be coerced to the requested type."""


class SchemaError(PlayerDataError):
    """A field definition is invalid, or a reserved field was targeted."""
