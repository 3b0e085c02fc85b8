"""
GeoScriptHub — Custom Exception Hierarchy
==========================================
Every error a GeoScriptHub tool raises on purpose derives from
:class:`GeoScriptHubError`, so a CLI can report them uniformly while
library callers still catch the narrow subtype they care about.

Hierarchy::

    GeoScriptHubError                    ← catch-all base
    ├── InputValidationError             ← missing files, bad extensions
    │   └── InvalidConfigurationError    ← parameter outside its domain
    ├── InsufficientDataError            ← too few observations to fit
    ├── RasterError                      ← unreadable or mismatched rasters
    │   └── BandIndexError               ← requested band does not exist
    └── OutputWriteError                 ← cannot write to output path

Usage::

    from shared.python.exceptions import InvalidConfigurationError

    raise InvalidConfigurationError("flag_stat", "mad", "one of rmse, iqr, z")
"""

from __future__ import annotations

from typing import Any


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class GeoScriptHubError(Exception):
    """Common base of all GeoScriptHub errors.

    Args:
        message: Text shown to the user; also kept on :attr:`message`.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(GeoScriptHubError):
    """An input file or argument was rejected before processing started."""


class InvalidConfigurationError(InputValidationError):
    """A processing parameter lies outside its accepted domain.

    Raised before any per-pixel work begins.

    Args:
        parameter: Name of the offending parameter (e.g. ``"first_half"``).
        value: The rejected value.
        expected: Short description of what would have been accepted.

    Example::

        raise InvalidConfigurationError("first_half", 0.7, "a value in [0, 0.5]")
    """

    def __init__(self, parameter: str, value: Any, expected: str) -> None:
        super().__init__(
            f"Invalid value for '{parameter}': {value!r}. Expected {expected}."
        )
        self.parameter: str = parameter
        self.value: Any = value
        self.expected: str = expected


# ---------------------------------------------------------------------------
# Model fitting
# ---------------------------------------------------------------------------


class InsufficientDataError(GeoScriptHubError):
    """A fitting window holds too few observations to regress.

    The segmentation engine treats this as the end of a series rather than
    a failure.

    Args:
        available: Number of usable (non-missing) observations found.
        required: Minimum number needed for a fit.
    """

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Only {available} usable observation(s) in the fitting window; "
            f"at least {required} required."
        )
        self.available: int = available
        self.required: int = required


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(GeoScriptHubError):
    """A raster could not be opened or does not fit the time-series stack."""


class BandIndexError(RasterError):
    """The requested band is not present in a raster.

    Args:
        band: 1-based band index that was requested.
        band_count: Number of bands the raster actually has.
        source: File name, used in the message.
    """

    def __init__(self, band: int, band_count: int, source: str) -> None:
        super().__init__(
            f"Band {band} does not exist in '{source}' "
            f"({band_count} band(s), 1-indexed)."
        )
        self.band: int = band
        self.band_count: int = band_count


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(GeoScriptHubError):
    """The result file could not be written.

    Args:
        output_path: Path that failed, as a string.
        reason: Underlying OS or library error message.
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(f"Failed to write output to '{output_path}': {reason}")
        self.output_path: str = output_path
        self.reason: str = reason
