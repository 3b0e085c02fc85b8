"""
GeoScriptHub — Shared Input Validators
=======================================
Precondition checks shared by the GeoScriptHub tools.

Each check returns ``None`` on success and raises from
:mod:`shared.python.exceptions` on failure, so callers can chain them
without branching::

    Validators.assert_files_exist(self.input_paths)
    Validators.assert_in_range("pct_flag", self.pct_flag, 0, 1, low_inclusive=False)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np

from shared.python.exceptions import (
    InputValidationError,
    InvalidConfigurationError,
    OutputWriteError,
)


class Validators:
    """Namespace of static precondition checks; never instantiated."""

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Raise :class:`InputValidationError` unless *path* is an existing file."""
        path = Path(path)
        if not path.exists():
            raise InputValidationError(f"Input file not found: '{path}'.")
        if path.is_dir():
            raise InputValidationError(f"Expected a file but got a directory: '{path}'.")

    @staticmethod
    def assert_files_exist(paths: Iterable[Path]) -> None:
        """Check every path in *paths*; an empty iterable is an error too."""
        paths = [Path(p) for p in paths]
        if not paths:
            raise InputValidationError("At least one input file is required.")
        for path in paths:
            Validators.assert_file_exists(path)

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Create the parent directory of *output_path* if it is missing.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        parent = Path(output_path).parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Raise :class:`InputValidationError` if the suffix of *path* is not in *extensions*.

        Comparison is case-insensitive; extensions include the dot.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # Parameter checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_choice(name: str, value: Any, choices: Sequence[Any]) -> None:
        """Assert that *value* is one of *choices*.

        Raises:
            InvalidConfigurationError: If *value* is not an accepted choice.

        Example::

            Validators.assert_choice("flag_stat", "iqr", ["rmse", "iqr", "z"])
        """
        if value not in choices:
            options = ", ".join(repr(c) for c in choices)
            raise InvalidConfigurationError(name, value, f"one of {options}")

    @staticmethod
    def assert_positive_int(name: str, value: Any, *, minimum: int = 1) -> None:
        """Assert that *value* is an integer no smaller than *minimum*.

        Booleans are rejected even though they subclass ``int``.

        Raises:
            InvalidConfigurationError: If the check fails.
        """
        if (
            isinstance(value, bool)
            or not isinstance(value, (int, np.integer))
            or value < minimum
        ):
            raise InvalidConfigurationError(
                name, value, f"an integer >= {minimum}"
            )

    @staticmethod
    def assert_in_range(
        name: str,
        value: Any,
        low: float,
        high: float,
        *,
        low_inclusive: bool = True,
        high_inclusive: bool = True,
    ) -> None:
        """Assert that *value* is a finite number inside ``[low, high]``.

        Either bound can be made exclusive.

        Raises:
            InvalidConfigurationError: If *value* is not numeric or falls
                outside the interval.

        Example::

            Validators.assert_in_range("first_half", 0.25, 0.0, 0.5)
        """
        left = "[" if low_inclusive else "("
        right = "]" if high_inclusive else ")"
        expected = f"a number in {left}{low}, {high}{right}"
        if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
            raise InvalidConfigurationError(name, value, expected)
        if not np.isfinite(value):
            raise InvalidConfigurationError(name, value, expected)
        above = value >= low if low_inclusive else value > low
        below = value <= high if high_inclusive else value < high
        if not (above and below):
            raise InvalidConfigurationError(name, value, expected)

    # ------------------------------------------------------------------
    # Array / time-series checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_lengths_match(
        length_a: int,
        length_b: int,
        label_a: str = "values",
        label_b: str = "dates",
    ) -> None:
        """Assert that two parallel sequences have identical lengths.

        Raises:
            InvalidConfigurationError: If the lengths differ.
        """
        if length_a != length_b:
            raise InvalidConfigurationError(
                label_b, f"length {length_b}", f"{length_a} entries to match {label_a}"
            )

    @staticmethod
    def assert_dates_non_decreasing(dates: np.ndarray) -> None:
        """Assert that a ``datetime64`` vector never steps backwards in time.

        Raises:
            InvalidConfigurationError: If the vector is empty, contains
                ``NaT``, or any date precedes its predecessor.
        """
        if dates.size == 0:
            raise InvalidConfigurationError("dates", "[]", "at least one date")
        if np.isnat(dates).any():
            raise InvalidConfigurationError("dates", "NaT", "no missing dates")
        if dates.size > 1 and (np.diff(dates) < np.timedelta64(0, "D")).any():
            first_bad = int(np.argmax(np.diff(dates) < np.timedelta64(0, "D"))) + 1
            raise InvalidConfigurationError(
                "dates",
                str(dates[first_bad]),
                f"dates in non-decreasing order (position {first_bad} goes back in time)",
            )
