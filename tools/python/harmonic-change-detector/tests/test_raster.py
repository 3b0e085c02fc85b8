"""
Tests — Raster Driver
======================
Tests for :func:`~harmonic_change_detector.raster.detect_raster_changes`
on small synthetic ``rows × cols × time`` stacks.
"""

from __future__ import annotations

import threading

import numpy as np
import pytest

from harmonic_change_detector.raster import (
    RasterChangeCollection,
    RasterMetadata,
    detect_raster_changes,
    initial_observation_counts,
)
from shared.python.exceptions import InvalidConfigurationError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stack(two_break_series, constant_series, rows: int = 3, cols: int = 3) -> np.ndarray:
    """Constant pixels everywhere except the main diagonal, which breaks twice."""
    stack = np.empty((rows, cols, two_break_series.size))
    stack[:] = constant_series
    for i in range(min(rows, cols)):
        stack[i, i] = two_break_series
    return stack


class _CancelAfter(threading.Event):
    """Event that reads as set once *allowed* chunks have started."""

    def __init__(self, allowed: int) -> None:
        super().__init__()
        self._allowed = allowed
        self._checks = 0
        self._lock = threading.Lock()

    def is_set(self) -> bool:
        with self._lock:
            self._checks += 1
            return self._checks > self._allowed


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class TestRasterMetadata:
    def test_from_shape_defaults(self) -> None:
        meta = RasterMetadata.from_shape(4, 5)
        assert meta.dims == (4, 5)
        assert meta.crs == "unknown"
        assert meta.extent == (0.0, 5.0, 0.0, 4.0)
        assert meta.resolution == (1.0, 1.0)

    def test_to_dict_keys(self) -> None:
        info = RasterMetadata.from_shape(2, 2).to_dict()
        assert list(info) == ["dim", "crs", "ext", "res"]


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class TestDetectRasterChanges:
    def test_only_changed_pixels_kept(self, two_break_series, constant_series, dates) -> None:
        stack = _stack(two_break_series, constant_series)
        collection = detect_raster_changes(stack, dates, flag_stat="iqr")
        assert isinstance(collection, RasterChangeCollection)
        assert list(collection) == [0, 4, 8]
        assert collection.processed == 9
        assert collection.skipped == 0
        for position, record in collection.items():
            assert record.position == position
            assert record.change_indices == [100, 200]

    def test_row_col_round_trip(self, two_break_series, constant_series, dates) -> None:
        collection = detect_raster_changes(
            _stack(two_break_series, constant_series, rows=2, cols=3), dates, flag_stat="iqr"
        )
        assert [collection.row_col(p) for p in collection] == [(0, 0), (1, 1)]

    def test_pixel_without_initial_observations_excluded(
        self, two_break_series, constant_series, dates
    ) -> None:
        stack = _stack(two_break_series, constant_series)
        stack[1, 1, :92] = np.nan
        collection = detect_raster_changes(stack, dates, min_obs_fit=1, flag_stat="iqr")
        assert 4 not in collection
        assert collection.skipped == 1
        assert list(collection) == [0, 8]

    def test_min_obs_fit_threshold(self, two_break_series, constant_series, dates) -> None:
        stack = _stack(two_break_series, constant_series)
        stack[0, 0, 10:92] = np.nan
        counts = initial_observation_counts(stack, dates, 365)
        assert counts[0, 0] == 10
        assert counts[2, 2] == 92
        collection = detect_raster_changes(stack, dates, min_obs_fit=11, flag_stat="iqr")
        assert 0 not in collection
        assert 8 in collection

    def test_threads_match_sequential(self, two_break_series, constant_series, dates) -> None:
        stack = _stack(two_break_series, constant_series, rows=4, cols=4)
        sequential = detect_raster_changes(stack, dates, flag_stat="z")
        threaded = detect_raster_changes(
            stack, dates, flag_stat="z", max_workers=3, chunk_size=2
        )
        assert threaded.records == sequential.records
        assert list(threaded) == list(sequential)

    def test_no_changes_keeps_metadata(self, constant_series, dates) -> None:
        stack = np.broadcast_to(constant_series, (2, 3, constant_series.size)).copy()
        meta = RasterMetadata(
            rows=2, cols=3, crs="EPSG:32612",
            extent=(443880.0, 443970.0, 3923160.0, 3923220.0), resolution=(30.0, 30.0),
        )
        collection = detect_raster_changes(stack, dates, metadata=meta)
        assert len(collection) == 0
        assert collection.metadata is meta
        assert collection.to_dict()["info"]["crs"] == "EPSG:32612"

    def test_all_pixels_skipped(self, constant_series, dates) -> None:
        stack = np.full((2, 2, constant_series.size), np.nan)
        collection = detect_raster_changes(stack, dates)
        assert len(collection) == 0
        assert collection.skipped == 4
        assert collection.metadata.dims == (2, 2)

    def test_progress_callback(self, two_break_series, constant_series, dates) -> None:
        calls: list[tuple[int, int]] = []
        detect_raster_changes(
            _stack(two_break_series, constant_series),
            dates,
            chunk_size=4,
            progress=lambda done, total: calls.append((done, total)),
        )
        assert calls == [(4, 9), (8, 9), (9, 9)]

    def test_cancelled_run_is_marked_aborted(
        self, two_break_series, constant_series, dates
    ) -> None:
        cancel = threading.Event()
        cancel.set()
        collection = detect_raster_changes(
            _stack(two_break_series, constant_series), dates, cancel_event=cancel
        )
        assert collection.aborted
        assert collection.processed == 0
        assert len(collection) == 0

    def test_cancel_mid_run_keeps_completed_chunks(
        self, two_break_series, constant_series, dates
    ) -> None:
        cancel = threading.Event()

        def stop_after_first(done: int, total: int) -> None:
            cancel.set()

        collection = detect_raster_changes(
            _stack(two_break_series, constant_series),
            dates,
            flag_stat="iqr",
            chunk_size=3,
            cancel_event=cancel,
            progress=stop_after_first,
        )
        assert collection.aborted
        assert collection.processed == 3
        assert list(collection) == [0]
        assert collection[0].change_indices == [100, 200]

    def test_cancel_mid_run_with_threads(self, two_break_series, constant_series, dates) -> None:
        # Each 3-pixel chunk holds exactly one diagonal pixel, so whichever
        # chunk runs first contributes one record.
        collection = detect_raster_changes(
            _stack(two_break_series, constant_series),
            dates,
            flag_stat="iqr",
            max_workers=2,
            chunk_size=3,
            cancel_event=_CancelAfter(1),
        )
        assert collection.aborted
        assert collection.processed == 3
        assert len(collection) == 1
        assert set(collection) <= {0, 4, 8}

    def test_to_dict_preserves_sentinel(self, two_break_series, constant_series, dates) -> None:
        out = detect_raster_changes(
            _stack(two_break_series, constant_series), dates, flag_stat="iqr"
        ).to_dict()
        first = out["changes"][0]
        assert first["position"] == 0
        assert first["events"][0]["change_index"] is None
        assert first["events"][1]["change_index"] == 100


class TestDriverValidation:
    def test_two_dimensional_stack_raises(self, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_raster_changes(np.zeros((3, dates.size)), dates)

    def test_date_count_mismatch_raises(self, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_raster_changes(np.zeros((2, 2, dates.size - 1)), dates)

    def test_unknown_engine_param_raises(self, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_raster_changes(np.zeros((2, 2, dates.size)), dates, flagstat="iqr")

    def test_invalid_flag_stat_fails_fast(self, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_raster_changes(np.zeros((2, 2, dates.size)), dates, flag_stat="mad")

    def test_metadata_dims_must_match(self, dates) -> None:
        with pytest.raises(InvalidConfigurationError):
            detect_raster_changes(
                np.zeros((2, 2, dates.size)), dates, metadata=RasterMetadata.from_shape(3, 3)
            )
