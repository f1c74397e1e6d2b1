"""Exception hierarchy for mni-labeler.

All custom exceptions inherit from LabelerError so callers can catch
everything raised by the package in one place while keeping compatibility
with the matching built-in exception types.
"""

from __future__ import annotations

from collections.abc import Iterable


class LabelerError(Exception):
    """Base exception for all mni-labeler errors."""

    pass


class UnknownAtlasError(LabelerError, KeyError):
    """Raised when one or more requested atlas names are not supported.

    Parameters
    ----------
    names : iterable of str
        Every offending atlas name, in request order.
    available : iterable of str
        Supported atlas names.
    """

    def __init__(self, names: Iterable[str], available: Iterable[str] = ()):
        self.names = list(names)
        self.available = list(available)
        # args hold the structured fields so the error survives pickling
        super().__init__(self.names, self.available)

    def __str__(self) -> str:
        message = f"Atlas `{', '.join(self.names)}` does not exist."
        if self.available:
            message += f" Available atlases: {', '.join(self.available)}"
        return message


class AtlasLoadError(LabelerError, OSError):
    """Raised when atlas reference data cannot be read."""

    pass


class AtlasFileNotFoundError(AtlasLoadError, FileNotFoundError):
    """Raised when an atlas volume or region table file does not exist."""

    pass


class CoordinateInputError(LabelerError, ValueError):
    """Raised when a coordinate table cannot be used as input."""

    pass
