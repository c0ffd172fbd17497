"""Exception hierarchy for fireapp.

Usage errors (no reference selected, persistence toggled too late) and
initialisation errors are raised synchronously.  Everything the remote store
reports is translated into :class:`DatabaseError` and handed to callbacks,
never raised into the caller.
"""

from __future__ import annotations

from typing import Any


class FireappError(Exception):
    """Base class for every error raised by fireapp."""


class DatabaseReferenceNotSetError(FireappError):
    """A terminal operation was invoked without selecting a path first."""

    def __init__(self, message: str = "Please call Database.in_reference() first.") -> None:
        super().__init__(message)


class BackendInitializationError(FireappError):
    """The resolver matched an environment but could not build its backend."""


class ConfigError(FireappError):
    """Invalid configuration file or value."""


class PersistenceConfigurationError(FireappError):
    """Persistence was toggled after the backend started serving operations."""


class DatabaseError(FireappError):
    """Caller-visible cause of a failed remote operation."""

    def __init__(self, description: str, *, code: int | str | None = None, details: Any = None) -> None:
        super().__init__(description)
        self.description = description
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r}, code={self.code!r})"


class ValueNotFoundError(DatabaseError):
    """A one-shot read found no value stored at the path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"No value stored at '{path or '/'}'", code="not-found")
        self.path = path


class ValueConversionError(DatabaseError):
    """A stored value could not be coerced into the declared type."""


class TransactionAbortedError(DatabaseError):
    """A transaction completed without committing."""


class UnsupportedValueError(FireappError, TypeError):
    """A value handed to a write cannot be reduced to a JSON tree."""
