"""
Shared fixtures — Harmonic Change Detector
===========================================
Synthetic time series used across the test modules.

Every series has 300 observations spaced four days apart from 2020-01-01,
so a 365-day fitting window starting on the first date covers indices
0–91.  The signal is a fixed seasonal cycle plus bounded deterministic
noise (``0.3 * sin(2.3 k)``), which keeps every test reproducible without
a random generator.
"""

from __future__ import annotations

from typing import Callable

import numpy as np
import numpy.typing as npt
import pytest

N_OBS = 300
STEP_DAYS = 4
BASE_LEVEL = 10.0


def _dates() -> npt.NDArray[np.datetime64]:
    return np.datetime64("2020-01-01", "D") + np.arange(N_OBS) * np.timedelta64(STEP_DAYS, "D")


def _series(
    shifts: dict[int, float] | None = None,
    *,
    noise: float = 0.3,
    seasonal: float = 2.0,
) -> npt.NDArray[np.float64]:
    """Seasonal series whose level moves by ``shifts[i]`` from index ``i`` onwards."""
    k = np.arange(N_OBS)
    julian = (k * STEP_DAYS).astype(np.float64)
    angle = 2.0 * np.pi * julian / 365.0
    values = BASE_LEVEL + seasonal * np.sin(angle) + 0.5 * seasonal * np.cos(angle)
    values = values + noise * np.sin(2.3 * k)
    for start, delta in (shifts or {}).items():
        values[start:] += delta
    return values


@pytest.fixture()
def dates() -> npt.NDArray[np.datetime64]:
    """300 dates, four days apart, starting 2020-01-01."""
    return _dates()


@pytest.fixture()
def make_series() -> Callable[..., npt.NDArray[np.float64]]:
    """Factory for seasonal series with level shifts."""
    return _series


@pytest.fixture()
def two_break_series() -> npt.NDArray[np.float64]:
    """+5 level shift at index 100, then −8 at index 200."""
    return _series({100: 5.0, 200: -8.0})


@pytest.fixture()
def constant_series() -> npt.NDArray[np.float64]:
    return np.full(N_OBS, BASE_LEVEL)
