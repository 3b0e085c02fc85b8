"""
Harmonic Change Detector — Configuration
=========================================
Dataclasses holding every tunable of the detector plus a JSON loader.

Classes:
    SegmentationConfig  Parameters of the per-pixel walk-forward segmentation.
    DetectionConfig     Raster-level run settings (wraps a SegmentationConfig).

Functions:
    load_config         Parse a JSON file into a :class:`DetectionConfig`.

Example JSON::

    {
        "segmentation": {"t_fit": 365, "t_flag": 180, "flag_stat": "iqr"},
        "min_obs_fit": 10,
        "max_workers": 4
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

from shared.python.exceptions import InputValidationError, InvalidConfigurationError
from shared.python.validators import Validators

logger = logging.getLogger("geoscripthub.harmonic_change_detector.config")

FlagStat = Literal["rmse", "iqr", "z"]

FLAG_STATS: tuple[str, ...] = ("rmse", "iqr", "z")

# Read-only so a resolved default can never leak between calls.
DEFAULT_THRESHOLD_CONSTANTS = MappingProxyType({"rmse": 3.0, "iqr": 1.5, "z": 0.005})


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SegmentationConfig:
    """Parameters for :func:`~harmonic_change_detector.segmentation.detect_series_changes`.

    Attributes:
        t_fit: Length in whole days of each model-fitting window.  The
               window starts on the day of its first observation, so it
               ends ``t_fit - 1`` days later.
        t_flag: Length in whole days of the window over which flagged
                observations are counted to confirm a change.
        pct_flag: Fraction of the observations in a flag window that must
                  be flagged for a change to be recorded.
        first_half: Fraction (scaled by ``pct_flag``) of the flag window's
                    observations that must be flagged within its first
                    half.  Between 0 and 0.5.
        flag_stat: Residual statistic used to flag observations:
                   ``"rmse"``, ``"iqr"`` or ``"z"``.
        c: Threshold constant.  A multiplier for ``rmse``/``iqr`` and a
           lower-tail probability for ``z``.  ``None`` picks the
           statistic's default (3, 1.5 and 0.005 respectively).
    """

    t_fit: int = 365
    t_flag: int = 365
    pct_flag: float = 0.9
    first_half: float = 0.0
    flag_stat: FlagStat = "rmse"
    c: float | None = None

    def validate(self) -> None:
        """Check every parameter against its accepted domain.

        Raises:
            InvalidConfigurationError: On the first parameter out of range.
        """
        Validators.assert_positive_int("t_fit", self.t_fit)
        Validators.assert_positive_int("t_flag", self.t_flag)
        Validators.assert_in_range("pct_flag", self.pct_flag, 0.0, 1.0, low_inclusive=False)
        Validators.assert_in_range("first_half", self.first_half, 0.0, 0.5)
        Validators.assert_choice("flag_stat", self.flag_stat, FLAG_STATS)
        if self.c is not None:
            if self.flag_stat == "z":
                Validators.assert_in_range(
                    "c", self.c, 0.0, 1.0, low_inclusive=False, high_inclusive=False
                )
            else:
                Validators.assert_in_range(
                    "c", self.c, 0.0, float("inf"), low_inclusive=False, high_inclusive=False
                )

    @property
    def threshold_constant(self) -> float:
        """The effective ``c`` for this configuration's ``flag_stat``."""
        if self.c is not None:
            return float(self.c)
        return DEFAULT_THRESHOLD_CONSTANTS[self.flag_stat]


@dataclass
class DetectionConfig:
    """Configuration for a raster-wide change-detection run.

    Attributes:
        segmentation: Per-pixel segmentation parameters.
        min_obs_fit: Minimum count of non-missing observations inside the
                     initial fitting window for a pixel to be processed.
                     Does not apply to later models.
        max_workers: Thread pool size.  ``1`` processes pixels in-process.
        chunk_size: Number of pixels handed to a worker at once.
        band: 1-based band read from each file when the stack is given as
              a list of single-date rasters.
        date_subrange: Optional inclusive ``(start, end)`` 0-based indices
                       into the dates restricting the magnitude report.
        output_format: ``"json"`` (collection + report) or ``"csv"``
                       (report table).
        indent: JSON indentation level.
    """

    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    min_obs_fit: int = 1
    max_workers: int = 1
    chunk_size: int = 256
    band: int = 1
    date_subrange: tuple[int, int] | None = None
    output_format: Literal["json", "csv"] = "json"
    indent: int = 2

    def validate(self) -> None:
        """Validate run settings and the nested segmentation parameters.

        Raises:
            InvalidConfigurationError: On the first invalid setting.
        """
        self.segmentation.validate()
        Validators.assert_positive_int("min_obs_fit", self.min_obs_fit, minimum=0)
        Validators.assert_positive_int("max_workers", self.max_workers)
        Validators.assert_positive_int("chunk_size", self.chunk_size)
        Validators.assert_positive_int("band", self.band)
        Validators.assert_choice("output_format", self.output_format, ["json", "csv"])
        if self.date_subrange is not None:
            if len(self.date_subrange) != 2:
                raise InvalidConfigurationError(
                    "date_subrange", self.date_subrange, "a (start, end) pair"
                )
            for bound in self.date_subrange:
                Validators.assert_positive_int("date_subrange", bound, minimum=0)


# ---------------------------------------------------------------------------
# Config parser
# ---------------------------------------------------------------------------


def _build(cls: type, raw: dict[str, Any], section: str) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise InvalidConfigurationError(
            section, ", ".join(unknown), f"keys among {', '.join(sorted(known))}"
        )
    return cls(**raw)


def load_config(config_path: Path) -> DetectionConfig:
    """Parse a JSON configuration file into a :class:`DetectionConfig`.

    Missing keys take their dataclass defaults.  The result is validated
    before it is returned.

    Args:
        config_path: Path to the JSON config file.

    Returns:
        A validated ``DetectionConfig`` instance.

    Raises:
        InputValidationError: If the file cannot be read or parsed.
        InvalidConfigurationError: If a key is unknown or a value is
            outside its accepted domain.
    """
    config_path = Path(config_path)
    try:
        raw: dict[str, Any] = json.loads(config_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise InputValidationError(
            f"Failed to read config file '{config_path}': {exc}"
        ) from exc

    if not isinstance(raw, dict):
        raise InputValidationError(
            f"Config file '{config_path}' must contain a JSON object."
        )

    seg_raw = raw.pop("segmentation", {}) or {}
    if not isinstance(seg_raw, dict):
        raise InvalidConfigurationError("segmentation", seg_raw, "a JSON object")
    segmentation = _build(SegmentationConfig, seg_raw, "segmentation")

    if raw.get("date_subrange") is not None:
        raw["date_subrange"] = tuple(raw["date_subrange"])

    config = _build(DetectionConfig, {**raw, "segmentation": segmentation}, "config")
    config.validate()
    logger.debug("Loaded config from %s: %s", config_path, config)
    return config
