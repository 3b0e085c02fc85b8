"""
Harmonic Change Detector — Core Tool
=====================================
Reads a raster time series, detects changes in every pixel, measures them,
and writes the results to JSON or CSV.

The time series can be given either as one multi-band raster (one band per
date) or as a list of single-date rasters sharing the same grid.  Dates are
read from a text file holding one ISO date (``YYYY-MM-DD``) per line.

Classes:
    ChangeDetectionTool  Primary tool class (inherits GeoTool).

Functions:
    read_raster_stack    Load a ``rows × cols × time`` stack with rasterio.
    read_dates           Load the date vector from a text file.

Usage::

    from pathlib import Path
    from harmonic_change_detector.config import DetectionConfig, SegmentationConfig
    from harmonic_change_detector.detector import ChangeDetectionTool

    tool = ChangeDetectionTool(
        input_paths=[Path("data/ndvi_stack.tif")],
        dates_path=Path("data/dates.txt"),
        output_path=Path("output/changes.json"),
        config=DetectionConfig(segmentation=SegmentationConfig(flag_stat="iqr")),
    )
    tool.run()
    print(len(tool.collection), "pixels changed")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np
import numpy.typing as npt
import rasterio
from rasterio.errors import RasterioIOError

from harmonic_change_detector.config import DetectionConfig
from harmonic_change_detector.harmonic import as_dates
from harmonic_change_detector.magnitude import ChangeReport, measure_changes
from harmonic_change_detector.raster import (
    RasterChangeCollection,
    RasterMetadata,
    detect_raster_changes,
)
from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BandIndexError,
    InputValidationError,
    InvalidConfigurationError,
    RasterError,
)
from shared.python.validators import Validators

logger = logging.getLogger("geoscripthub.harmonic_change_detector")

SUPPORTED_EXTENSIONS = [".tif", ".tiff", ".img", ".vrt", ".nc"]


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


def _read_band(src: rasterio.io.DatasetReader, band: int) -> npt.NDArray[np.float64]:
    """Read one band as float64 with nodata replaced by NaN."""
    data = src.read(band, masked=True).astype(np.float64)
    return np.ma.filled(data, np.nan)


def read_raster_stack(
    paths: Sequence[Path],
    band: int = 1,
) -> tuple[npt.NDArray[np.float64], RasterMetadata]:
    """Load a raster time series as a ``rows × cols × time`` array.

    Args:
        paths: Either a single multi-band raster (every band is a time
               step) or several single-date rasters on the same grid.
        band: Band read from each file when several files are given.

    Returns:
        ``(stack, metadata)`` with nodata as NaN.  Metadata comes from the
        first file.

    Raises:
        RasterError: If a file cannot be opened, the requested band does
            not exist, or the grids differ.
    """
    paths = [Path(p) for p in paths]
    if not paths:
        raise InputValidationError("At least one input raster is required.")

    try:
        if len(paths) == 1:
            with rasterio.open(paths[0]) as src:
                metadata = RasterMetadata.from_dataset(src)
                data = np.ma.filled(src.read(masked=True).astype(np.float64), np.nan)
            logger.info("Read %d time step(s) from %s", data.shape[0], paths[0].name)
            return np.moveaxis(data, 0, -1), metadata

        layers: list[npt.NDArray[np.float64]] = []
        metadata = None
        for path in paths:
            with rasterio.open(path) as src:
                if band > src.count:
                    raise BandIndexError(band, src.count, path.name)
                current = RasterMetadata.from_dataset(src)
                if metadata is None:
                    metadata = current
                elif current.dims != metadata.dims:
                    raise RasterError(
                        f"Grid mismatch: '{path.name}' is {current.dims} but "
                        f"'{paths[0].name}' is {metadata.dims}."
                    )
                layers.append(_read_band(src, band))
    except RasterioIOError as exc:
        raise RasterError(f"Could not open raster: {exc}") from exc

    logger.info("Read %d time step(s) from %d file(s)", len(layers), len(paths))
    return np.stack(layers, axis=-1), metadata  # type: ignore[return-value]


def read_dates(path: Path) -> npt.NDArray[np.datetime64]:
    """Read one ISO date per line; blank lines and ``#`` comments are ignored.

    Raises:
        InputValidationError: If the file cannot be read.
        InvalidConfigurationError: If a line is not a valid date.
    """
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise InputValidationError(f"Failed to read dates file '{path}': {exc}") from exc
    entries = [line.split("#", 1)[0].strip() for line in lines]
    return as_dates([entry for entry in entries if entry])


# ---------------------------------------------------------------------------
# Main tool class
# ---------------------------------------------------------------------------


class ChangeDetectionTool(GeoTool):
    """Detect and measure changes across a raster time series.

    Inherits the Template Method pipeline from :class:`~shared.python.GeoTool`.

    Args:
        input_paths: One multi-band raster or several single-date rasters.
        dates_path: Text file with one ISO date per time step.
        output_path: Destination ``.json`` or ``.csv`` file.  JSON output
            keeps non-finite ``diff_pct`` values as the bare tokens ``NaN``,
            ``Infinity`` and ``-Infinity``: Python's :mod:`json` and pandas
            read them back, strict JSON parsers reject them.
        config: A :class:`DetectionConfig`.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        input_paths: Sequence[Path],
        dates_path: Path,
        output_path: Path,
        config: DetectionConfig | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        super().__init__(input_paths, output_path, verbose=verbose)
        self.dates_path = Path(dates_path)
        self.config = config or DetectionConfig()
        self._collection: RasterChangeCollection | None = None
        self._report: ChangeReport | None = None

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Validate input files, the output location and the configuration.

        Raises:
            InputValidationError: If a file is missing or has an
                unsupported extension.
            InvalidConfigurationError: If a parameter is out of range.
            OutputWriteError: If the output directory cannot be created.
        """
        Validators.assert_files_exist(self.input_paths)
        for path in self.input_paths:
            Validators.assert_supported_extension(path, SUPPORTED_EXTENSIONS)
        Validators.assert_file_exists(self.dates_path)
        Validators.assert_output_dir_writable(self.output_path)
        self.config.validate()

        logger.debug("Inputs validated.")

    def process(self) -> None:
        """Read the stack, detect and measure changes, and write output.

        Raises:
            RasterError: If the rasters cannot be read.
            InvalidConfigurationError: If the dates do not match the stack.
            OutputWriteError: If writing the output file fails.
        """
        stack, metadata = read_raster_stack(self.input_paths, band=self.config.band)
        dates = read_dates(self.dates_path)
        if dates.size != stack.shape[-1]:
            raise InvalidConfigurationError(
                "dates", f"{dates.size} date(s)", f"{stack.shape[-1]} to match the time steps"
            )

        seg = self.config.segmentation
        self._collection = detect_raster_changes(
            stack,
            dates,
            t_fit=seg.t_fit,
            min_obs_fit=self.config.min_obs_fit,
            metadata=metadata,
            max_workers=self.config.max_workers,
            chunk_size=self.config.chunk_size,
            t_flag=seg.t_flag,
            pct_flag=seg.pct_flag,
            first_half=seg.first_half,
            flag_stat=seg.flag_stat,
            c=seg.c,
        )
        self._report = measure_changes(self._collection, dates, self.config.date_subrange)

        if self.config.output_format == "csv":
            self._write_frame(self._report.to_frame())
        else:
            self._write_json(
                {"collection": self._collection.to_dict(), "report": self._report.to_dict()},
                indent=self.config.indent,
            )

    @property
    def collection(self) -> RasterChangeCollection | None:
        """The :class:`RasterChangeCollection` from the last run, or ``None``."""
        return self._collection

    @property
    def report(self) -> ChangeReport | None:
        """The :class:`ChangeReport` from the last run, or ``None``."""
        return self._report
