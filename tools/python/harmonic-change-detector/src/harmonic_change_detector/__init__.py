"""
Harmonic Change Detector
=========================
A GeoScriptHub tool that detects, dates and measures structural changes in
per-pixel satellite time series with a windowed harmonic-regression
variant of CCDC.

Submodules
----------
config        -- Segmentation and run configuration, JSON loader
harmonic      -- Harmonic model, Julian dates, least-squares fit
segmentation  -- Per-series walk-forward change detection
raster        -- Per-pixel driver over a rows x cols x time stack
magnitude     -- Coefficient deltas between consecutive models
detector      -- Raster I/O and the GeoTool pipeline
cli           -- ``geo-change-detect`` command

Public API::

    from harmonic_change_detector import detect_series_changes, detect_raster_changes, measure_changes
"""

from harmonic_change_detector.config import DetectionConfig, SegmentationConfig, load_config
from harmonic_change_detector.harmonic import COEFFICIENT_NAMES, Model
from harmonic_change_detector.magnitude import ChangeReport, MeasuredChange, measure_changes
from harmonic_change_detector.raster import (
    RasterChangeCollection,
    RasterMetadata,
    detect_raster_changes,
)
from harmonic_change_detector.segmentation import (
    ChangeEvent,
    PixelChangeRecord,
    SeriesSegmenter,
    detect_series_changes,
)

__version__ = "1.0.0"
__all__ = [
    "COEFFICIENT_NAMES",
    "ChangeEvent",
    "ChangeReport",
    "DetectionConfig",
    "MeasuredChange",
    "Model",
    "PixelChangeRecord",
    "RasterChangeCollection",
    "RasterMetadata",
    "SegmentationConfig",
    "SeriesSegmenter",
    "detect_raster_changes",
    "detect_series_changes",
    "load_config",
    "measure_changes",
]
