"""
Tests — Segmentation Engine
============================
Unit and scenario tests for
:func:`~harmonic_change_detector.segmentation.detect_series_changes`.

Series come from ``conftest.py``: 300 observations four days apart, so the
first 365-day fitting window ends at index 91 and level shifts at 100 and
200 are only visible to the flagging step.
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from harmonic_change_detector.config import SegmentationConfig
from harmonic_change_detector.segmentation import (
    ScanState,
    SeriesSegmenter,
    detect_series_changes,
    flag_residuals,
)
from shared.python.exceptions import InvalidConfigurationError


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_rmse_detects_only_upward_shift(self, two_break_series, dates) -> None:
        record = detect_series_changes(
            two_break_series, dates, t_fit=365, t_flag=365, pct_flag=0.9, flag_stat="rmse"
        )
        assert record.change_indices == [100]
        assert len(record.models) == 2
        intercept_jump = record.models[1].coefficients[0] - record.models[0].coefficients[0]
        assert 4.0 < intercept_jump < 6.0

    def test_iqr_detects_both_shifts(self, two_break_series, dates) -> None:
        record = detect_series_changes(two_break_series, dates, flag_stat="iqr")
        assert record.change_indices == [100, 200]
        assert record.changes[0].date == dates[100].item()

    def test_z_detects_both_shifts(self, two_break_series, dates) -> None:
        record = detect_series_changes(two_break_series, dates, flag_stat="z")
        assert record.change_indices == [100, 200]

    def test_constant_series_has_single_model(self, constant_series, dates) -> None:
        for stat in ("rmse", "iqr", "z"):
            record = detect_series_changes(constant_series, dates, flag_stat=stat)
            assert len(record) == 1
            assert not record.has_changes
            assert record.events[0].index is None
            assert record.events[0].date is None

    def test_no_break_series_has_single_model(self, make_series, dates) -> None:
        record = detect_series_changes(make_series(), dates, flag_stat="iqr")
        assert record.change_indices == []

    def test_first_half_defers_late_burst(self, make_series, dates) -> None:
        # A lone spike at 100 followed by a lasting shift from 146: the spike's
        # flag window is half flagged, but only in its second half.
        values = make_series({146: 5.0})
        values[100] += 5.0

        eager = detect_series_changes(values, dates, pct_flag=0.5, first_half=0.0)
        strict = detect_series_changes(values, dates, pct_flag=0.5, first_half=0.5)

        assert eager.change_indices[0] == 100
        assert strict.change_indices == [146]


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestProperties:
    @pytest.mark.parametrize("stat", ["rmse", "iqr", "z"])
    def test_change_indices_strictly_increasing(self, stat, dates) -> None:
        rng = np.random.default_rng(7)
        values = rng.normal(0.0, 1.0, dates.size).cumsum()
        record = detect_series_changes(values, dates, t_flag=120, pct_flag=0.6, flag_stat=stat)
        indices = record.change_indices
        assert all(a < b for a, b in zip(indices, indices[1:]))
        assert [e.date for e in record.changes] == [dates[i].item() for i in indices]

    def test_one_model_per_event(self, two_break_series, dates) -> None:
        record = detect_series_changes(two_break_series, dates, flag_stat="iqr")
        assert len(record.models) == len(record.events)
        assert len(record.changes) == len(record.events) - 1

    def test_rerun_is_identical(self, two_break_series, dates) -> None:
        first = detect_series_changes(two_break_series, dates, flag_stat="z")
        second = detect_series_changes(two_break_series, dates, flag_stat="z")
        assert first == second

    def test_default_constant_resolved_per_call(self, two_break_series, dates) -> None:
        # An rmse run must not change the default used by a later iqr run.
        detect_series_changes(two_break_series, dates, flag_stat="rmse")
        explicit = detect_series_changes(two_break_series, dates, flag_stat="iqr", c=1.5)
        implicit = detect_series_changes(two_break_series, dates, flag_stat="iqr")
        assert explicit == implicit


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------


class TestEdgeCases:
    def test_single_observation_returns_empty_record(self) -> None:
        record = detect_series_changes([1.0], ["2020-01-01"])
        assert len(record) == 0
        assert not record.has_changes

    def test_fit_window_shorter_than_series_end(self, two_break_series, dates) -> None:
        # A fitting window longer than the series stops after the first model.
        record = detect_series_changes(two_break_series, dates, t_fit=2000)
        assert len(record) == 1

    def test_too_few_observations_in_first_window(self, two_break_series, dates) -> None:
        values = two_break_series.copy()
        values[1:92] = np.nan
        record = detect_series_changes(values, dates)
        assert len(record) == 0

    def test_insufficient_data_keeps_earlier_events(self, two_break_series, dates) -> None:
        # The shift at 100 is confirmed on a single valid observation, and the
        # next window cannot be fitted, so only the initial model survives.
        values = two_break_series.copy()
        values[101:] = np.nan
        record = detect_series_changes(values, dates)
        assert len(record) == 1
        assert record.events[0].is_initial

    def test_infinite_values_treated_as_missing(self) -> None:
        dates = np.datetime64("2021-01-01", "D") + np.arange(60)
        values = np.full(60, 10.0)
        values[25:30] = np.nan
        values[25] = np.inf
        record = detect_series_changes(values, dates, t_fit=20, t_flag=3, pct_flag=0.9)
        assert record.change_indices == []
        assert len(record) == 1

        values[25] = -np.inf
        assert detect_series_changes(values, dates, t_fit=20, t_flag=3, flag_stat="iqr") == record

    def test_change_on_last_date_is_dropped_and_logged(self, caplog) -> None:
        dates = np.datetime64("2021-01-01", "D") + np.arange(30)
        values = np.full(30, 10.0)
        values[-1] = 50.0
        caplog.set_level(logging.DEBUG, logger="geoscripthub.harmonic_change_detector.segmentation")
        record = detect_series_changes(values, dates, t_fit=10, t_flag=1)
        assert record.change_indices == []
        assert len(record) == 1
        assert "Change at index 29" in caplog.text

    def test_position_is_recorded(self, two_break_series, dates) -> None:
        record = detect_series_changes(two_break_series, dates, position=42)
        assert record.position == 42
        assert record.to_dict()["position"] == 42


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"flag_stat": "mad"},
            {"first_half": 0.7},
            {"first_half": -0.1},
            {"pct_flag": 0.0},
            {"pct_flag": 1.5},
            {"t_fit": 0},
            {"t_flag": 2.5},
            {"flag_stat": "z", "c": 1.2},
            {"c": -1.0},
        ],
    )
    def test_invalid_parameters_raise(self, kwargs, two_break_series, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_series_changes(two_break_series, dates, **kwargs)

    def test_length_mismatch_raises(self, two_break_series, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_series_changes(two_break_series[:-1], dates)

    def test_decreasing_dates_raise(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_series_changes([1.0, 2.0, 3.0], ["2020-01-03", "2020-01-01", "2020-01-05"])

    def test_empty_series_raises(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_series_changes([], [])

    def test_segmenter_rejects_bad_config_before_work(self, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            SeriesSegmenter(dates, SegmentationConfig(flag_stat="bogus"))  # type: ignore[arg-type]


class TestFlagResiduals:
    def test_rmse_is_one_sided(self) -> None:
        residuals = np.array([0.1, -0.1, 0.1, -0.1, 5.0, -5.0])
        flags = flag_residuals(residuals, slice(0, 4), "rmse", 3.0)
        assert flags.tolist() == [False, False, False, False, True, False]

    def test_iqr_is_two_sided(self) -> None:
        residuals = np.array([0.1, -0.1, 0.2, -0.2, 5.0, -5.0])
        flags = flag_residuals(residuals, slice(0, 4), "iqr", 1.5)
        assert flags.tolist() == [False, False, False, False, True, True]

    def test_missing_residuals_never_flagged(self) -> None:
        residuals = np.array([0.1, -0.1, 0.2, -0.2, np.nan])
        flags = flag_residuals(residuals, slice(0, 4), "z", 0.005)
        assert not flags[-1]

    def test_zero_residuals_never_flagged(self) -> None:
        residuals = np.zeros(6)
        residuals[-1] = 1.0
        flags = flag_residuals(residuals, slice(0, 4), "rmse", 3.0)
        assert flags.tolist() == [False] * 5 + [True]

    def test_unknown_stat_raises(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            flag_residuals(np.zeros(3), slice(0, 2), "mad", 1.0)  # type: ignore[arg-type]

    def test_scan_states_are_distinct(self) -> None:
        assert {s.value for s in ScanState} == {"scanning", "confirmed", "exhausted"}
