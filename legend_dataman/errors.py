"""Exceptions raised by legend-dataman.

All errors derive from `LegendDataError` and additionally from the builtin
exception that a caller would expect for the kind of failure.
"""
from typing import Any, Optional


class LegendDataError(Exception):
    """Base class of all legend-dataman errors."""


class MalformedKeyError(LegendDataError, ValueError):
    """A key string or value does not match the grammar of its field."""

    def __init__(self, field: str, value: Any, msg: Optional[str] = None):
        self.field = field
        self.value = value
        super().__init__(msg or f"Malformed {field}: {value!r}")


class PathNotConfiguredError(LegendDataError, LookupError):
    """No configured path prefix matches the query."""

    def __init__(self, query: str):
        self.query = query
        super().__init__(f"No configured path for {query!r}")


class PropertyNotFoundError(LegendDataError, KeyError):
    """Property lookup path is absent from the tree."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(path)

    def __str__(self):
        return f"Property not found: {self.path}"


class InvalidSelectorError(LegendDataError, ValueError):
    """Unsupported selection passed to a (governed) property node."""


class InvalidDatabaseRootError(LegendDataError, ValueError):
    """Base directory of a property database is missing."""


class MissingEnvironmentError(LegendDataError, LookupError):
    """A required environment variable is not set."""

    def __init__(self, var: str, msg: Optional[str] = None):
        self.var = var
        super().__init__(msg or f"Environment variable {var} is not set")


class AmbiguousOrMissingChannelError(LegendDataError, LookupError):
    """A requested channel or detector is absent or not unique."""


class ValidityRuleError(LegendDataError, ValueError):
    """A validity rule record is malformed."""


class DiffInputError(LegendDataError, ValueError):
    """Input rows for validity rule generation are incomplete or inconsistent."""


__all__ = [
    "LegendDataError",
    "MalformedKeyError",
    "PathNotConfiguredError",
    "PropertyNotFoundError",
    "InvalidSelectorError",
    "InvalidDatabaseRootError",
    "MissingEnvironmentError",
    "AmbiguousOrMissingChannelError",
    "ValidityRuleError",
    "DiffInputError",
]
