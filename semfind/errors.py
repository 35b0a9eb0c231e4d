"""Exception hierarchy shared by the semfind engines."""

from __future__ import annotations


class SemfindError(Exception):
    """Base class for semfind errors."""


class InputError(SemfindError, ValueError):
    """Raised when caller supplied input is invalid."""


class DimensionMismatchError(InputError):
    """Raised when vectors of different lengths are compared."""


class ZeroVectorError(InputError):
    """Raised when a zero-length vector cannot be normalized."""


class InvalidPatternError(InputError):
    """Raised for empty or malformed glob/regex patterns."""


class InvalidLineRangeError(InputError):
    """Raised when a requested line range is out of order or out of bounds."""


class BackendUnavailableError(SemfindError, RuntimeError):
    """Raised by an accelerated backend that cannot initialize."""


class PipelineError(SemfindError, RuntimeError):
    """Raised when the feature-extraction pipeline fails."""
