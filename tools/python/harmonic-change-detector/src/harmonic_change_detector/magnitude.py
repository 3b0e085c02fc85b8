"""
Harmonic Change Detector — Change Magnitude Reporter
=====================================================
Quantifies each detected change as the difference between the model fitted
after it and the model it replaced, coefficient by coefficient.

For every change event the reporter computes:

* ``diff_raw`` — ``new - old``
* ``diff_pct`` — ``(new - old) / old``; a zero ``old`` coefficient yields
  ``inf`` or ``nan`` rather than an error.

Initial models have no predecessor and are dropped from the report.

Classes:
    MeasuredChange  Coefficient deltas of one change.
    ChangeReport    Date range plus per-pixel measured changes.

Functions:
    measure_record_changes  Measure the changes of one pixel.
    measure_changes         Measure a whole collection, optionally within
                            a date sub-range.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import numpy.typing as npt
import pandas as pd

from harmonic_change_detector.harmonic import COEFFICIENT_NAMES, as_dates
from harmonic_change_detector.raster import RasterChangeCollection
from harmonic_change_detector.segmentation import PixelChangeRecord
from shared.python.exceptions import InvalidConfigurationError
from shared.python.validators import Validators

logger = logging.getLogger("geoscripthub.harmonic_change_detector.magnitude")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MeasuredChange:
    """Coefficient deltas between a model and its predecessor.

    All coefficient tuples follow
    :data:`~harmonic_change_detector.harmonic.COEFFICIENT_NAMES`.

    Attributes:
        position: Raster cell of the pixel (``None`` for a lone series).
        index: Index of the observation that triggered the change.
        date: Date of that observation.
        coefficients: Coefficients of the new model.
        diff_raw: ``new - old``.
        diff_pct: ``(new - old) / old``, non-finite where ``old`` is 0.
    """

    position: int | None
    index: int
    date: dt.date | None
    coefficients: tuple[float, ...]
    diff_raw: tuple[float, ...]
    diff_pct: tuple[float, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "change_index": self.index,
            "change_date": self.date.isoformat() if self.date is not None else None,
            "coefficients": list(self.coefficients),
            "diff_raw": list(self.diff_raw),
            "diff_pct": list(self.diff_pct),
        }


@dataclass(frozen=True)
class ChangeReport:
    """Measured changes for a date range.

    Attributes:
        date_from: First date of the reported range.
        date_to: Last date of the reported range.
        changes: Position → measured changes, in series order.
    """

    date_from: dt.date
    date_to: dt.date
    changes: dict[int | None, tuple[MeasuredChange, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def date_range(self) -> tuple[dt.date, dt.date]:
        return (self.date_from, self.date_to)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dates": {"from": self.date_from.isoformat(), "to": self.date_to.isoformat()},
            "changes": [
                {"position": position, "changes": [m.to_dict() for m in measured]}
                for position, measured in self.changes.items()
            ],
        }

    def to_frame(self) -> pd.DataFrame:
        """Flatten to one row per change and coefficient.

        Columns: ``position``, ``change_index``, ``change_date``,
        ``coefficient``, ``value``, ``diff_raw``, ``diff_pct``.
        """
        rows = [
            {
                "position": position,
                "change_index": m.index,
                "change_date": m.date,
                "coefficient": name,
                "value": value,
                "diff_raw": raw,
                "diff_pct": pct,
            }
            for position, measured in self.changes.items()
            for m in measured
            for name, value, raw, pct in zip(
                COEFFICIENT_NAMES, m.coefficients, m.diff_raw, m.diff_pct
            )
        ]
        columns = [
            "position", "change_index", "change_date",
            "coefficient", "value", "diff_raw", "diff_pct",
        ]
        return pd.DataFrame(rows, columns=columns)


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------


def measure_record_changes(record: PixelChangeRecord) -> list[MeasuredChange]:
    """Pair every change of *record* with the model it replaced.

    Returns:
        One :class:`MeasuredChange` per non-initial event, in order.
    """
    measured: list[MeasuredChange] = []
    events = record.events
    for previous, current in zip(events, events[1:]):
        if current.is_initial:
            continue
        old = previous.model.as_array()
        new = current.model.as_array()
        raw = new - old
        with np.errstate(divide="ignore", invalid="ignore"):
            pct = raw / old
        measured.append(
            MeasuredChange(
                position=record.position,
                index=current.index,  # type: ignore[arg-type]
                date=current.date,
                coefficients=current.model.coefficients,
                diff_raw=tuple(float(v) for v in raw),
                diff_pct=tuple(float(v) for v in pct),
            )
        )
    return measured


def _check_subrange(subrange: Sequence[int], n_dates: int) -> tuple[int, int]:
    if len(subrange) != 2:
        raise InvalidConfigurationError("date_subrange", subrange, "a (start, end) pair")
    start, end = subrange
    Validators.assert_positive_int("date_subrange", start, minimum=0)
    Validators.assert_positive_int("date_subrange", end, minimum=0)
    if not start <= end < n_dates:
        raise InvalidConfigurationError(
            "date_subrange", tuple(subrange), f"0 <= start <= end < {n_dates}"
        )
    return int(start), int(end)


def measure_changes(
    collection: RasterChangeCollection | Mapping[int, PixelChangeRecord],
    dates: Sequence[dt.date | str | np.datetime64] | npt.NDArray,
    date_subrange: Sequence[int] | None = None,
) -> ChangeReport:
    """Measure every change of a collection.

    Args:
        collection: A :class:`RasterChangeCollection` or any mapping of
            position → :class:`PixelChangeRecord`.
        dates: The dates of the analysed series.
        date_subrange: Optional inclusive ``(start, end)`` 0-based indices
            into *dates*.  Only changes triggered inside it are kept, and
            pixels left without any are dropped.

    Returns:
        A :class:`ChangeReport` spanning ``dates[start]..dates[end]`` (or
        the whole series without a sub-range).

    Raises:
        InvalidConfigurationError: If *dates* is empty or the sub-range is
            malformed or out of bounds.

    Example::

        report = measure_changes(collection, dates, date_subrange=(50, 150))
        report.to_frame().groupby("coefficient")["diff_raw"].mean()
    """
    dates = as_dates(dates)
    if dates.size == 0:
        raise InvalidConfigurationError("dates", "[]", "at least one date")
    records = collection.records if isinstance(collection, RasterChangeCollection) else collection

    if date_subrange is None:
        start, end = 0, dates.size - 1
    else:
        start, end = _check_subrange(date_subrange, dates.size)

    changes: dict[int | None, tuple[MeasuredChange, ...]] = {}
    for position, record in records.items():
        measured = measure_record_changes(record)
        if date_subrange is not None:
            measured = [m for m in measured if start <= m.index <= end]
        if measured:
            changes[position] = tuple(measured)

    logger.debug(
        "Measured %d change(s) across %d pixel(s) between %s and %s",
        sum(len(m) for m in changes.values()), len(changes), dates[start], dates[end],
    )
    return ChangeReport(
        date_from=dates[start].item(),
        date_to=dates[end].item(),
        changes=changes,
    )
