"""
PawMatch — Domain errors.

Services raise these; the API layer translates them into HTTP responses.
"""

from __future__ import annotations


class PawMatchError(Exception):
    """Base class for every error raised by the match services."""


class FetchError(PawMatchError):
    """An upstream lookup (database query, permission, connectivity) failed."""


class NotFoundError(PawMatchError):
    """An expected related record is absent, e.g. no active match row."""


class ValidationError(PawMatchError):
    """Malformed input, such as a missing required identifier."""
