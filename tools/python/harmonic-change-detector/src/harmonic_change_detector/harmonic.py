"""
Harmonic Change Detector — Harmonic Regression
===============================================
The seasonal model fitted to every segment of a pixel's time series::

    y = b0 + b1 * sin(2πt / 365) + b2 * cos(2πt / 365) + b3 * t

where ``t`` is the Julian offset in days from 1 January of the year of the
series' first observation.  The sine/cosine pair captures seasonality, the
last term a long-term trend.

Coefficients are always stored in the fixed order of
:data:`COEFFICIENT_NAMES`.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import InsufficientDataError, InvalidConfigurationError

COEFFICIENT_NAMES: tuple[str, str, str, str] = ("intercept", "sin", "cos", "trend")

PERIOD_DAYS = 365.0

MIN_FIT_OBSERVATIONS = 2


def as_dates(dates: Sequence[dt.date | str | np.datetime64] | npt.NDArray) -> npt.NDArray[np.datetime64]:
    """Convert dates (``datetime.date``, ISO strings or ``datetime64``) to ``datetime64[D]``.

    Raises:
        InvalidConfigurationError: If any entry cannot be parsed as a date.
    """
    try:
        return np.asarray(dates, dtype="datetime64[D]").reshape(-1)
    except (TypeError, ValueError) as exc:
        raise InvalidConfigurationError("dates", dates, f"calendar dates ({exc})") from exc


def julian_days(dates: npt.NDArray[np.datetime64]) -> npt.NDArray[np.float64]:
    """Days elapsed since 1 January of the year of ``dates[0]``."""
    origin = dates[0].astype("datetime64[Y]").astype("datetime64[D]")
    return (dates - origin).astype(np.float64)


def design_matrix(julian: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Regressors ``[1, sin, cos, t]`` for each Julian offset, one row each."""
    angle = 2.0 * np.pi * julian / PERIOD_DAYS
    return np.column_stack((np.ones_like(julian), np.sin(angle), np.cos(angle), julian))


@dataclass(frozen=True)
class Model:
    """An immutable fitted harmonic regression.

    Attributes:
        coefficients: ``(intercept, sin, cos, trend)``.
        n_obs: Number of observations the model was fitted on.
    """

    coefficients: tuple[float, float, float, float]
    n_obs: int = 0

    def as_array(self) -> npt.NDArray[np.float64]:
        return np.asarray(self.coefficients, dtype=np.float64)

    def predict(self, julian: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Predicted values at the given Julian offsets."""
        return design_matrix(np.asarray(julian, dtype=np.float64)) @ self.as_array()

    def to_dict(self) -> dict[str, float]:
        return dict(zip(COEFFICIENT_NAMES, self.coefficients))


def fit_model(
    julian: npt.NDArray[np.float64],
    values: npt.NDArray[np.float64],
) -> Model:
    """Ordinary least-squares fit of the harmonic model.

    Missing (NaN) values are ignored.  With fewer than four usable points
    the minimum-norm solution is returned.

    Args:
        julian: Julian offsets of the fitting window's observations.
        values: Observed values, same length as *julian*.

    Returns:
        The fitted :class:`Model`.

    Raises:
        InsufficientDataError: If fewer than two usable observations remain.
    """
    valid = np.isfinite(values)
    n_obs = int(valid.sum())
    if n_obs < MIN_FIT_OBSERVATIONS:
        raise InsufficientDataError(available=n_obs, required=MIN_FIT_OBSERVATIONS)

    coef, *_ = np.linalg.lstsq(design_matrix(julian[valid]), values[valid], rcond=None)
    return Model(coefficients=tuple(float(b) for b in coef), n_obs=n_obs)  # type: ignore[arg-type]
