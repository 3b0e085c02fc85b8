"""
Harmonic Change Detector — Segmentation Engine
===============================================
Walk-forward change detection for a single pixel's time series, adapted
from CCDC (Zhu & Woodcock, 2014).

A harmonic model is fitted to every observation inside a fitting window.
All later observations are compared with the model's predictions, and the
ones whose residuals exceed a threshold (RMSE, IQR or Z-score based) are
flagged.  A change is confirmed at the first flagged observation whose
flag window holds a large enough share of flagged observations; a new model
is then fitted from that date and the process repeats until the series is
exhausted.

Unlike classic CCDC, windows are defined in days rather than observation
counts, so an irregular (cloud-gapped) cadence does not change sensitivity,
and only one band is examined.

Classes:
    ScanState           States of the flag-window confirmation scan.
    ChangeEvent         Trigger point and model of one segment.
    PixelChangeRecord   All segments of one pixel.
    SeriesSegmenter     Reusable engine bound to one date vector.

Functions:
    detect_series_changes   One-shot convenience wrapper.

Usage::

    from harmonic_change_detector.segmentation import detect_series_changes

    record = detect_series_changes(ndvi, dates, flag_stat="iqr")
    for event in record.changes:
        print(event.index, event.date, event.model.coefficients)
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Sequence

import numpy as np
import numpy.typing as npt
from scipy.stats import norm

from harmonic_change_detector.config import FlagStat, SegmentationConfig
from harmonic_change_detector.harmonic import (
    Model,
    as_dates,
    design_matrix,
    fit_model,
    julian_days,
)
from shared.python.exceptions import InsufficientDataError, InvalidConfigurationError
from shared.python.validators import Validators

logger = logging.getLogger("geoscripthub.harmonic_change_detector.segmentation")

# Residuals smaller than this fraction of the series' magnitude are
# floating-point noise from an exact fit and count as zero.
RESIDUAL_RESOLUTION = 1e-9


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class ScanState(Enum):
    """States of the flag-window confirmation scan.

    ``SCANNING`` moves to ``CONFIRMED`` when a candidate's flag window
    satisfies both ratio conditions, or to ``EXHAUSTED`` when the candidates
    run out or the next flag window would overrun the series.
    """

    SCANNING = "scanning"
    CONFIRMED = "confirmed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ChangeEvent:
    """Start of one segment.

    Attributes:
        index: 0-based position in the series of the observation that
               triggered the change, or ``None`` for the initial model.
        date: Date of that observation, or ``None`` for the initial model.
        model: The model fitted from that point onwards.
    """

    index: int | None
    date: dt.date | None
    model: Model

    @property
    def is_initial(self) -> bool:
        return self.index is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "change_index": self.index,
            "change_date": self.date.isoformat() if self.date is not None else None,
            "coefficients": list(self.model.coefficients),
        }


@dataclass(frozen=True)
class PixelChangeRecord:
    """Ordered change events of one pixel, initial model first.

    Attributes:
        events: One :class:`ChangeEvent` per fitted model.
        position: Linear row-major cell index in the raster, or ``None``
                  for a stand-alone series.
    """

    events: tuple[ChangeEvent, ...] = ()
    position: int | None = None

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[ChangeEvent]:
        return iter(self.events)

    @property
    def models(self) -> list[Model]:
        return [event.model for event in self.events]

    @property
    def changes(self) -> list[ChangeEvent]:
        """Events excluding the initial model."""
        return [event for event in self.events if not event.is_initial]

    @property
    def change_indices(self) -> list[int]:
        return [event.index for event in self.changes]  # type: ignore[misc]

    @property
    def has_changes(self) -> bool:
        return any(not event.is_initial for event in self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "events": [event.to_dict() for event in self.events],
        }


# ---------------------------------------------------------------------------
# Flagging
# ---------------------------------------------------------------------------


def flag_residuals(
    residuals: npt.NDArray[np.float64],
    window: slice,
    flag_stat: FlagStat,
    c: float,
) -> npt.NDArray[np.bool_]:
    """Flag residuals that deviate abnormally from those inside *window*.

    Args:
        residuals: Observed minus predicted values for the whole series.
            Missing observations are NaN and are never flagged.
        window: Slice selecting the fitting window's residuals, from
            which the threshold statistic is computed.
        flag_stat: ``"rmse"`` (one-sided, ``residual >= c * RMSE``),
            ``"iqr"`` (outside ``[Q1 - c*IQR, Q3 + c*IQR]``) or ``"z"``
            (``|z| >= |Φ⁻¹(c)|``).
        c: Threshold constant.

    Returns:
        Boolean mask over the whole series.

    Raises:
        InvalidConfigurationError: If *flag_stat* is unknown.
    """
    in_window = residuals[window]
    in_window = in_window[np.isfinite(in_window)]
    nonzero = residuals != 0.0

    if flag_stat == "rmse":
        rmse = np.sqrt(np.mean(in_window**2))
        flags = residuals >= c * rmse
    elif flag_stat == "iqr":
        q1, q3 = np.percentile(in_window, [25.0, 75.0])
        iqr = q3 - q1
        flags = (residuals < q1 - c * iqr) | (residuals > q3 + c * iqr)
    elif flag_stat == "z":
        mu = np.mean(in_window)
        sigma = np.std(in_window, ddof=1) if in_window.size > 1 else np.nan
        with np.errstate(divide="ignore", invalid="ignore"):
            z = (residuals - mu) / sigma
            flags = np.abs(z) >= abs(norm.ppf(c))
    else:
        raise InvalidConfigurationError("flag_stat", flag_stat, "one of 'rmse', 'iqr', 'z'")

    return flags & nonzero


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SeriesSegmenter:
    """Walk-forward segmentation engine bound to one date vector.

    Dates and parameters are validated once at construction; :meth:`segment`
    can then be called for any number of value vectors sharing those
    dates.  The instance holds no mutable state, so one segmenter may be
    shared across threads.

    Args:
        dates: Observation dates, non-decreasing.
        config: Segmentation parameters.

    Raises:
        InvalidConfigurationError: If the parameters or dates are invalid.
    """

    def __init__(
        self,
        dates: Sequence[dt.date | str | np.datetime64] | npt.NDArray,
        config: SegmentationConfig | None = None,
    ) -> None:
        self.config = config or SegmentationConfig()
        self.config.validate()

        self.dates = as_dates(dates)
        Validators.assert_dates_non_decreasing(self.dates)

        self.julian = julian_days(self.dates)
        self._design = design_matrix(self.julian)
        self._last_date = self.dates[-1]
        self._fit_span = np.timedelta64(self.config.t_fit - 1, "D")
        self._flag_span = np.timedelta64(self.config.t_flag - 1, "D")
        self._half_span = np.timedelta64(self.config.t_flag // 2, "D")
        self._c = self.config.threshold_constant

    def __repr__(self) -> str:
        return f"SeriesSegmenter(n_dates={self.dates.size}, config={self.config!r})"

    def segment(
        self,
        values: Sequence[float] | npt.NDArray,
        position: int | None = None,
    ) -> PixelChangeRecord:
        """Run the segmentation over one series.

        Args:
            values: Observed values, one per date; NaN or ±inf marks a
                    missing observation.
            position: Optional raster cell index stored on the record.

        Returns:
            The :class:`PixelChangeRecord`.  If a fitting window holds fewer
            than two usable observations, segmentation stops there and the
            events found so far are returned.

        Raises:
            InvalidConfigurationError: If *values* and the dates differ in
                length.
        """
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        Validators.assert_lengths_match(values.size, self.dates.size)
        values = np.where(np.isfinite(values), values, np.nan)

        valid = np.isfinite(values)
        cum_valid = np.concatenate(([0], np.cumsum(valid)))
        scale = float(np.max(np.abs(values[valid]))) if valid.any() else 0.0
        tolerance = max(1.0, scale) * RESIDUAL_RESOLUTION

        events: list[ChangeEvent] = []
        trigger: int | None = None
        t_start = self.dates[0]

        while t_start < self._last_date:
            fit_end = t_start + self._fit_span
            lo = int(np.searchsorted(self.dates, t_start, side="left"))
            hi = int(np.searchsorted(self.dates, fit_end, side="right"))

            try:
                model = fit_model(self.julian[lo:hi], values[lo:hi])
            except InsufficientDataError as exc:
                logger.debug(
                    "Segmentation halted at %s (position %s): %s",
                    t_start, position, exc.message,
                )
                break

            events.append(
                ChangeEvent(
                    index=trigger,
                    date=self.dates[trigger].item() if trigger is not None else None,
                    model=model,
                )
            )
            logger.debug(
                "Model %d fitted on %d obs in [%s, %s]",
                len(events), model.n_obs, t_start, fit_end,
            )

            if fit_end >= self._last_date:
                break

            residuals = values - self._design @ model.as_array()
            residuals[np.abs(residuals) <= tolerance] = 0.0

            flags = flag_residuals(residuals, slice(lo, hi), self.config.flag_stat, self._c)
            # Only observations dated after the fitting window can signal change.
            flags[:hi] = False

            state, confirmed = self._scan(np.flatnonzero(flags), flags, cum_valid)
            if state is not ScanState.CONFIRMED:
                break

            trigger = confirmed
            t_start = self.dates[confirmed]
            if t_start >= self._last_date:
                logger.debug(
                    "Change at index %d (position %s) dropped: it falls on the last date, "
                    "leaving nothing to fit",
                    confirmed, position,
                )

        return PixelChangeRecord(events=tuple(events), position=position)

    def _scan(
        self,
        candidates: npt.NDArray[np.intp],
        flags: npt.NDArray[np.bool_],
        cum_valid: npt.NDArray[np.int_],
    ) -> tuple[ScanState, int | None]:
        """Walk the candidates in date order until a change is confirmed.

        Returns the final state and, when ``CONFIRMED``, the index of the
        triggering candidate.
        """
        cum_flags = np.concatenate(([0], np.cumsum(flags)))
        pct_flag = self.config.pct_flag
        first_half = self.config.first_half

        state = ScanState.SCANNING
        confirmed: int | None = None
        cursor = 0

        while state is ScanState.SCANNING:
            if cursor >= candidates.size:
                state = ScanState.EXHAUSTED
                continue

            idx = int(candidates[cursor])
            start = self.dates[idx]
            if start + self._flag_span > self._last_date:
                state = ScanState.EXHAUSTED
                continue

            lo = int(np.searchsorted(self.dates, start, side="left"))
            hi = int(np.searchsorted(self.dates, start + self._flag_span, side="right"))
            mid = int(np.searchsorted(self.dates, start + self._half_span, side="right"))

            n_obs = cum_valid[hi] - cum_valid[lo]
            n_flagged = cum_flags[hi] - cum_flags[lo]
            n_flagged_first_half = cum_flags[mid] - cum_flags[lo]

            if (
                n_flagged >= pct_flag * n_obs
                and n_flagged_first_half >= first_half * pct_flag * n_obs
            ):
                state = ScanState.CONFIRMED
                confirmed = idx
            else:
                cursor += 1

        return state, confirmed


def detect_series_changes(
    values: Sequence[float] | npt.NDArray,
    dates: Sequence[dt.date | str | np.datetime64] | npt.NDArray,
    t_fit: int = 365,
    t_flag: int = 365,
    pct_flag: float = 0.9,
    first_half: float = 0.0,
    flag_stat: FlagStat = "rmse",
    c: float | None = None,
    *,
    position: int | None = None,
) -> PixelChangeRecord:
    """Detect changes in one time series.

    See :class:`~harmonic_change_detector.config.SegmentationConfig` for
    the meaning of each parameter.

    Args:
        values: Observed values; NaN marks a missing observation.
        dates: Observation dates, non-decreasing, one per value.
        position: Optional raster cell index stored on the record.

    Returns:
        A :class:`PixelChangeRecord` whose first event is the initial model.

    Raises:
        InvalidConfigurationError: If any parameter or the input shape is
            invalid.

    Example::

        record = detect_series_changes(values, dates, t_flag=180, flag_stat="z")
        record.change_indices   # e.g. [100, 200]
    """
    config = SegmentationConfig(
        t_fit=t_fit,
        t_flag=t_flag,
        pct_flag=pct_flag,
        first_half=first_half,
        flag_stat=flag_stat,
        c=c,
    )
    return SeriesSegmenter(dates, config).segment(values, position=position)
