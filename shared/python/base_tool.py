"""
GeoScriptHub — Shared Base Tool
================================
Abstract base class for GeoScriptHub tools that turn one or more raster
inputs into a single result file.

Design Pattern:
    Template Method.  ``run()`` fixes the order validate → process →
    report; subclasses supply ``validate_inputs`` and ``process`` and use
    the ``_write_json`` / ``_write_frame`` helpers for output.

Usage::

    from shared.python.base_tool import GeoTool

    class StackTool(GeoTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> None:
            self._write_json({"ok": True})
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from shared.python.exceptions import OutputWriteError

# Parent of every tool logger ("geoscripthub.<tool>.<module>").
logger = logging.getLogger("geoscripthub")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s"


class GeoTool(ABC):
    """Base class for file-in, file-out GeoScriptHub tools.

    Attributes:
        input_paths: Input files in the order given.  Time-series tools
            receive either one multi-band file or one file per date.
        output_path: Destination file.
        verbose: Log at DEBUG instead of INFO.
        elapsed: Wall-clock seconds of the last :meth:`run`, ``None``
            before the first run.
    """

    def __init__(
        self,
        input_paths: Sequence[Path],
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_paths: list[Path] = [Path(p) for p in input_paths]
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose
        self.elapsed: float | None = None

        self._configure_logging()

    @property
    def input_path(self) -> Path | None:
        """The first input file, or ``None`` when no input was given."""
        return self.input_paths[0] if self.input_paths else None

    # ------------------------------------------------------------------
    # Steps supplied by subclasses
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Check files and parameters; raise before any data is read.

        Implementations raise
        :class:`~shared.python.exceptions.InputValidationError` or one of
        its subclasses.
        """

    @abstractmethod
    def process(self) -> None:
        """Read the inputs, compute the result and write :attr:`output_path`."""

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Validate, process and log the outcome.

        Exceptions from either step are not caught here; the CLI layer
        turns them into an exit status.
        """
        logger.info(
            "Starting %s on %d input file(s)", self.__class__.__name__, len(self.input_paths)
        )
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        self.elapsed = time.perf_counter() - start
        self._report_success(self.elapsed)

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    def _write_json(self, payload: Any, *, indent: int | None = 2) -> None:
        """Dump *payload* to :attr:`output_path`.

        Values ``json`` cannot encode (dates, paths) go through ``str``.
        ``NaN`` and ``Infinity`` are written as-is.

        Raises:
            OutputWriteError: If the file cannot be written.
        """
        try:
            with open(self.output_path, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=indent, default=str)
        except OSError as exc:
            raise OutputWriteError(str(self.output_path), str(exc)) from exc

    def _write_frame(self, frame: pd.DataFrame) -> None:
        """Write *frame* to :attr:`output_path` as CSV without the index.

        Raises:
            OutputWriteError: If the file cannot be written.
        """
        try:
            frame.to_csv(self.output_path, index=False)
        except OSError as exc:
            raise OutputWriteError(str(self.output_path), str(exc)) from exc

    def _report_success(self, elapsed: float) -> None:
        logger.info(
            "%s finished in %.2fs → %s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
        )

    def _configure_logging(self) -> None:
        """Attach one console handler to the ``geoscripthub`` logger.

        The handler is added only once per process; the level follows
        :attr:`verbose` on every instantiation.
        """
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        names = ", ".join(p.name for p in self.input_paths)
        return f"{self.__class__.__name__}(inputs=[{names}], output_path={self.output_path!r})"
