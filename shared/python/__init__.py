"""
GeoScriptHub — Shared Python Package
=====================================
Single import point for the pieces every tool builds on: the
:class:`GeoTool` pipeline, the exception hierarchy and :class:`Validators`::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import InvalidConfigurationError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BandIndexError,
    GeoScriptHubError,
    InputValidationError,
    InsufficientDataError,
    InvalidConfigurationError,
    OutputWriteError,
    RasterError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "GeoScriptHubError",
    "InputValidationError",
    "InvalidConfigurationError",
    "InsufficientDataError",
    "RasterError",
    "BandIndexError",
    "OutputWriteError",
]
