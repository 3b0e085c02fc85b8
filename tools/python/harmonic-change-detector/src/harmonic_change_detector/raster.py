"""
Harmonic Change Detector — Raster Driver
=========================================
Applies the segmentation engine to every qualifying pixel of a
``rows × cols × time`` raster stack.

A pixel qualifies when its initial fitting window holds at least
``min_obs_fit`` non-missing observations.  Qualifying pixels are split into
chunks that are processed independently (in-process or on a
:class:`concurrent.futures.ThreadPoolExecutor`) and merged into a
:class:`RasterChangeCollection` once they complete.  Only pixels with at
least one detected change are kept.

Classes:
    RasterMetadata          Dimensions, CRS, extent and resolution.
    RasterChangeCollection  Sparse per-pixel results plus metadata.

Functions:
    initial_observation_counts  Non-missing observations per pixel in the
                                initial fitting window.
    detect_raster_changes       Run the engine over a whole stack.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Iterator, Sequence

import numpy as np
import numpy.typing as npt

from harmonic_change_detector.config import SegmentationConfig
from harmonic_change_detector.harmonic import as_dates
from harmonic_change_detector.segmentation import PixelChangeRecord, SeriesSegmenter
from shared.python.exceptions import InvalidConfigurationError
from shared.python.validators import Validators

logger = logging.getLogger("geoscripthub.harmonic_change_detector.raster")

UNKNOWN_CRS = "unknown"

ProgressCallback = Callable[[int, int], None]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RasterMetadata:
    """Spatial metadata of the analysed raster.

    Attributes:
        rows: Number of rows.
        cols: Number of columns.
        crs: CRS string, or ``"unknown"`` when the raster has none.
        extent: ``(xmin, xmax, ymin, ymax)``.
        resolution: ``(xres, yres)`` pixel size.
    """

    rows: int
    cols: int
    crs: str = UNKNOWN_CRS
    extent: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    resolution: tuple[float, float] = (1.0, 1.0)

    @property
    def dims(self) -> tuple[int, int]:
        return (self.rows, self.cols)

    @classmethod
    def from_shape(cls, rows: int, cols: int) -> RasterMetadata:
        """Metadata for a bare array: unit pixels anchored at the origin."""
        return cls(
            rows=rows,
            cols=cols,
            extent=(0.0, float(cols), 0.0, float(rows)),
            resolution=(1.0, 1.0),
        )

    @classmethod
    def from_dataset(cls, src: Any) -> RasterMetadata:
        """Build metadata from an open :mod:`rasterio` dataset."""
        crs = src.crs.to_string() if src.crs else ""
        left, bottom, right, top = src.bounds
        xres, yres = src.res
        return cls(
            rows=int(src.height),
            cols=int(src.width),
            crs=crs or UNKNOWN_CRS,
            extent=(float(left), float(right), float(bottom), float(top)),
            resolution=(float(xres), float(yres)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dim": [self.rows, self.cols],
            "crs": self.crs,
            "ext": list(self.extent),
            "res": list(self.resolution),
        }


@dataclass
class RasterChangeCollection:
    """Per-pixel change records for a raster, keyed by cell position.

    Positions are row-major cell indices (``row * cols + col``).  Only
    pixels with at least one change past the initial model are present.

    Attributes:
        metadata: Spatial metadata of the raster.
        records: Position → :class:`PixelChangeRecord`, ascending order.
        processed: Number of pixels that passed ``min_obs_fit`` and were
                   segmented.
        skipped: Number of pixels below ``min_obs_fit``.
        aborted: ``True`` when the run was cancelled before every
                 qualifying pixel was processed.
    """

    metadata: RasterMetadata
    records: dict[int, PixelChangeRecord] = field(default_factory=dict)
    processed: int = 0
    skipped: int = 0
    aborted: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[int]:
        return iter(self.records)

    def __contains__(self, position: object) -> bool:
        return position in self.records

    def __getitem__(self, position: int) -> PixelChangeRecord:
        return self.records[position]

    def items(self) -> Iterator[tuple[int, PixelChangeRecord]]:
        return iter(self.records.items())

    def row_col(self, position: int) -> tuple[int, int]:
        """Convert a cell position to ``(row, col)``."""
        return divmod(int(position), self.metadata.cols)

    def to_dict(self) -> dict[str, Any]:
        return {
            "info": {
                **self.metadata.to_dict(),
                "processed": self.processed,
                "skipped": self.skipped,
                "aborted": self.aborted,
            },
            "changes": [record.to_dict() for record in self.records.values()],
        }


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def initial_observation_counts(
    stack: npt.NDArray[np.float64],
    dates: npt.NDArray[np.datetime64],
    t_fit: int,
) -> npt.NDArray[np.int_]:
    """Count non-missing values per pixel dated within the first ``t_fit`` days.

    Args:
        stack: ``rows × cols × time`` array, NaN for missing values.
        dates: ``datetime64[D]`` vector matching the time axis.
        t_fit: Fitting window length in days.

    Returns:
        ``rows × cols`` integer array.
    """
    in_window = dates <= dates[0] + np.timedelta64(t_fit - 1, "D")
    return np.isfinite(stack[:, :, in_window]).sum(axis=2)


def _segment_chunk(
    segmenter: SeriesSegmenter,
    series: npt.NDArray[np.float64],
    positions: npt.NDArray[np.intp],
    cancel_event: threading.Event | None,
) -> dict[int, PixelChangeRecord] | None:
    """Segment the pixels at *positions*; ``None`` if cancelled before starting."""
    if cancel_event is not None and cancel_event.is_set():
        return None

    found: dict[int, PixelChangeRecord] = {}
    for position in positions:
        position = int(position)
        try:
            record = segmenter.segment(series[position], position=position)
        except np.linalg.LinAlgError as exc:
            logger.warning("Pixel %d skipped: regression failed (%s)", position, exc)
            continue
        if record.has_changes:
            found[position] = record
    return found


def _log_progress(done: int, total: int) -> None:
    logger.debug("Segmented %d / %d pixels", done, total)


def detect_raster_changes(
    stack: npt.ArrayLike,
    dates: Sequence[dt.date | str | np.datetime64] | npt.NDArray,
    t_fit: int = 365,
    min_obs_fit: int = 1,
    *,
    metadata: RasterMetadata | None = None,
    max_workers: int = 1,
    chunk_size: int = 256,
    cancel_event: threading.Event | None = None,
    progress: ProgressCallback | None = None,
    **engine_params: Any,
) -> RasterChangeCollection:
    """Detect changes in every qualifying pixel of a raster stack.

    Args:
        stack: ``rows × cols × time`` values; NaN marks missing data.
        dates: One date per time step, non-decreasing.
        t_fit: Fitting window length in days, used both to select
               qualifying pixels and by the engine.
        min_obs_fit: Minimum non-missing observations in the initial
                     fitting window; pixels below it are skipped.
        metadata: Spatial metadata.  Defaults to
                  :meth:`RasterMetadata.from_shape`.
        max_workers: Threads used to process chunks.  ``1`` runs
                     in-process.
        chunk_size: Pixels per unit of work.
        cancel_event: When set, no further chunks start; completed chunks
                      are kept and the collection is marked ``aborted``.
        progress: ``progress(done, total)`` called after each chunk.
        **engine_params: Remaining
            :class:`~harmonic_change_detector.config.SegmentationConfig`
            fields (``t_flag``, ``pct_flag``, ``first_half``,
            ``flag_stat``, ``c``).

    Returns:
        The :class:`RasterChangeCollection`.  Its metadata is populated
        even when no pixel qualifies or changes.

    Raises:
        InvalidConfigurationError: If the stack, dates or any parameter is
            invalid.  Raised before any pixel is processed.

    Example::

        collection = detect_raster_changes(
            stack, dates, min_obs_fit=10, flag_stat="iqr", max_workers=4,
        )
        for position, record in collection.items():
            print(collection.row_col(position), record.change_indices)
    """
    allowed = {f.name for f in fields(SegmentationConfig)} - {"t_fit"}
    unknown = sorted(set(engine_params) - allowed)
    if unknown:
        raise InvalidConfigurationError(
            "engine_params", ", ".join(unknown), f"keys among {', '.join(sorted(allowed))}"
        )
    config = SegmentationConfig(t_fit=t_fit, **engine_params)
    Validators.assert_positive_int("min_obs_fit", min_obs_fit, minimum=0)
    Validators.assert_positive_int("max_workers", max_workers)
    Validators.assert_positive_int("chunk_size", chunk_size)

    stack = np.asarray(stack, dtype=np.float64)
    if stack.ndim != 3:
        raise InvalidConfigurationError(
            "stack", f"shape {stack.shape}", "a rows x cols x time array"
        )
    rows, cols, n_times = stack.shape
    dates = as_dates(dates)
    Validators.assert_lengths_match(n_times, dates.size, "stack time axis", "dates")

    if metadata is None:
        metadata = RasterMetadata.from_shape(rows, cols)
    elif metadata.dims != (rows, cols):
        raise InvalidConfigurationError(
            "metadata", f"dims {metadata.dims}", f"dims {(rows, cols)} matching the stack"
        )

    # Validates config and dates before any pixel work.
    segmenter = SeriesSegmenter(dates, config)

    counts = initial_observation_counts(stack, dates, t_fit).ravel()
    qualifying = np.flatnonzero(counts >= min_obs_fit)
    collection = RasterChangeCollection(
        metadata=metadata,
        skipped=int(counts.size - qualifying.size),
    )
    logger.info(
        "Processing %d of %d pixel(s); %d below min_obs_fit=%d",
        qualifying.size, counts.size, collection.skipped, min_obs_fit,
    )
    if qualifying.size == 0:
        return collection

    series = stack.reshape(rows * cols, n_times)
    chunks = [qualifying[i:i + chunk_size] for i in range(0, qualifying.size, chunk_size)]
    report = progress or _log_progress
    merged: dict[int, PixelChangeRecord] = {}
    done = 0

    if max_workers == 1:
        for chunk in chunks:
            found = _segment_chunk(segmenter, series, chunk, cancel_event)
            if found is None:
                collection.aborted = True
                break
            merged.update(found)
            done += chunk.size
            report(done, qualifying.size)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                pool.submit(_segment_chunk, segmenter, series, chunk, cancel_event): chunk
                for chunk in chunks
            }
            for future in as_completed(futures):
                found = future.result()
                if found is None:
                    collection.aborted = True
                    continue
                merged.update(found)
                done += futures[future].size
                report(done, qualifying.size)

    collection.records = dict(sorted(merged.items()))
    collection.processed = done
    logger.info(
        "Changes detected in %d of %d processed pixel(s)%s",
        len(collection), done, " (aborted)" if collection.aborted else "",
    )
    return collection
