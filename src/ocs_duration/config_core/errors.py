from __future__ import annotations

"""
errors.py
=========
Exceptions raised while estimating an observation duration.

Every error is fatal for the single estimate being computed. There is no
partial duration to fall back on, so callers should treat any of these as
"duration cannot be estimated for this configuration".
"""


class DurationError(RuntimeError):
    """Base class for all duration-estimation failures."""


class MissingCollaborator(DurationError):
    """A required configuration object is absent for the selected code path."""


class UnsupportedPattern(DurationError):
    """The named scan pattern is not one of the recognized set."""


class UnrecognizedObservingMode(DurationError):
    """No calculator branch exists for the mapping/switching/type combination."""


class InvalidParameter(DurationError, ValueError):
    """A numeric precondition is violated (e.g. non-positive step time)."""


__all__ = [
    "DurationError",
    "MissingCollaborator",
    "UnsupportedPattern",
    "UnrecognizedObservingMode",
    "InvalidParameter",
]
