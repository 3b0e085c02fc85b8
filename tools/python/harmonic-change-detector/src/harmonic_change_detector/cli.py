"""
Harmonic Change Detector — CLI Entry Point
===========================================
Installed as the ``geo-change-detect`` command via ``pyproject.toml``.

Usage:
    geo-change-detect --input data/ndvi_stack.tif --dates data/dates.txt --output changes.json
    geo-change-detect -i scene_*.tif -d dates.txt -o changes.csv --format csv --flag-stat iqr
    geo-change-detect -i ndvi_stack.tif -d dates.txt -o out.json --config detector.json --workers 4
"""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path

import click

from harmonic_change_detector.config import FLAG_STATS, DetectionConfig, load_config
from harmonic_change_detector.detector import ChangeDetectionTool
from shared.python.exceptions import GeoScriptHubError


@click.command(
    name="geo-change-detect",
    help=(
        "Detect and measure structural changes in every pixel of a raster "
        "time series using windowed harmonic regression.\n\n"
        "Options given on the command line override those from --config."
    ),
)
@click.option(
    "--input", "-i", "input_paths",
    required=True,
    multiple=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Multi-band raster (one band per date), or repeat for one file per date.",
)
@click.option(
    "--dates", "-d", "dates_path",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Text file with one YYYY-MM-DD date per time step.",
)
@click.option(
    "--output", "-o", "output_path",
    required=True,
    type=click.Path(file_okay=True, dir_okay=False, path_type=Path),
    help="Path for the output file.",
)
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON configuration file.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "csv"], case_sensitive=False),
    default=None,
    help=(
        "Output file format.  JSON writes non-finite diff_pct values as bare "
        "NaN/Infinity tokens, which strict JSON parsers reject.  [default: json]"
    ),
)
@click.option("--t-fit", type=int, default=None, help="Model fitting window in days.  [default: 365]")
@click.option("--t-flag", type=int, default=None, help="Change flagging window in days.  [default: 365]")
@click.option("--pct-flag", type=float, default=None, help="Fraction of flagged observations needed.  [default: 0.9]")
@click.option("--first-half", type=float, default=None, help="Share of flags required in the first half of the window.  [default: 0]")
@click.option(
    "--flag-stat",
    type=click.Choice(list(FLAG_STATS), case_sensitive=False),
    default=None,
    help="Residual statistic used to flag observations.  [default: rmse]",
)
@click.option("--threshold", "c", type=float, default=None, help="Threshold constant c (default depends on --flag-stat).")
@click.option("--min-obs-fit", type=int, default=None, help="Minimum observations in the initial window.  [default: 1]")
@click.option("--workers", "max_workers", type=int, default=None, help="Worker threads.  [default: 1]")
@click.option("--band", type=int, default=None, help="Band read from each file when several files are given.  [default: 1]")
@click.option(
    "--subrange",
    type=(int, int),
    default=None,
    help="Inclusive START END indices of the dates to report changes for.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def main(
    input_paths: tuple[Path, ...],
    dates_path: Path,
    output_path: Path,
    config_path: Path | None,
    output_format: str | None,
    t_fit: int | None,
    t_flag: int | None,
    pct_flag: float | None,
    first_half: float | None,
    flag_stat: str | None,
    c: float | None,
    min_obs_fit: int | None,
    max_workers: int | None,
    band: int | None,
    subrange: tuple[int, int] | None,
    verbose: bool,
) -> None:
    """CLI entry point — wires Click options into ChangeDetectionTool."""
    try:
        config = load_config(config_path) if config_path else DetectionConfig()

        seg_overrides = {
            key: value
            for key, value in {
                "t_fit": t_fit,
                "t_flag": t_flag,
                "pct_flag": pct_flag,
                "first_half": first_half,
                "flag_stat": flag_stat.lower() if flag_stat else None,
                "c": c,
            }.items()
            if value is not None
        }
        run_overrides = {
            key: value
            for key, value in {
                "output_format": output_format.lower() if output_format else None,
                "min_obs_fit": min_obs_fit,
                "max_workers": max_workers,
                "band": band,
                "date_subrange": subrange,
            }.items()
            if value is not None
        }
        config = dataclasses.replace(
            config,
            segmentation=dataclasses.replace(config.segmentation, **seg_overrides),
            **run_overrides,
        )

        tool = ChangeDetectionTool(
            list(input_paths), dates_path, output_path, config, verbose=verbose
        )
        tool.run()
    except GeoScriptHubError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    click.echo(f"\nResults written to: {output_path}")
    click.echo(f"  Pixels with changes: {len(tool.collection or ())}")
    click.echo(f"  Pixels skipped (min_obs_fit): {tool.collection.skipped if tool.collection else 0}")
    if tool.report is not None:
        n_changes = sum(len(m) for m in tool.report.changes.values())
        click.echo(
            f"  Changes between {tool.report.date_from} and {tool.report.date_to}: {n_changes}"
        )


if __name__ == "__main__":
    main()
