"""Failure taxonomy for the complaint lifecycle.

These are raised inside the store, services and controller internals and are
caught at the public lifecycle operation boundary, where they are logged and
turned into a ``None``/``False`` result.
"""


class ComplaintError(Exception):
    """Base class for every lifecycle failure."""


class AuthorizationFailure(ComplaintError):
    """The caller's role is not allowed to perform the operation."""


class ExtractionEmpty(ComplaintError):
    """Chat extraction produced no usable description or complaint area."""


class NotFound(ComplaintError):
    """The complaint id is outside the caller's current view."""


class PersistenceError(ComplaintError):
    """Reading, decoding or writing the persisted blob failed."""


class AnalysisError(ComplaintError):
    """The analysis service produced no usable result."""
