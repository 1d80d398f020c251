# -*- coding: utf-8 -*-
"""
Tractview Command Line Interface.

This module provides a unified CLI to inspect TRK, TCK and TRX tractograms
using Typer.
"""

from pathlib import Path
from typing import Annotated, Optional

import numpy as np
import typer

from tractview.errors import TractographyError
from tractview.io import load
from tractview.sniffer import detect_format
from tractview.streamlines_ops import (apply_skip_sampling,
                                       compute_bounding_box, compute_length)

DEFAULT_MAX_STREAMLINES = 10000
DEFAULT_SKIP_THRESHOLD = 5000


def _debug_callback(value: bool) -> None:
    """Print environment and dependency diagnostics, then exit.

    Parameters
    ----------
    value : bool
        Whether the ``--debug`` flag was passed.
    """
    if not value:
        return

    import importlib.util
    import sys

    from tractview import __version__
    from tractview.io import get_decode_limits

    typer.echo("Environment diagnostics:")
    typer.echo(f"  Python executable : {sys.executable}")
    typer.echo(f"  tractview version : {__version__}")
    typer.echo(f"  decode limits     : {get_decode_limits()}")

    typer.echo("\nRequired dependencies:")
    for dep in ["nibabel", "numpy", "typer"]:
        spec = importlib.util.find_spec(dep)
        typer.echo(f"  {dep:12s} {'found' if spec else 'NOT FOUND'}")

    raise typer.Exit()


def _main_callback(
    _debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Print environment and dependency diagnostics.",
            callback=_debug_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Tractview - inspect TRK, TCK and TRX tractography files.

    Parameters
    ----------
    _debug : bool, optional
        If True, print environment and dependency diagnostics and exit.
    """


app = typer.Typer(
    name="tractview",
    help="Tractview - inspect TRK, TCK and TRX tractography files.",
    add_completion=False,
    rich_markup_mode="rich",
    callback=_main_callback,
)


def _fail(message: str) -> None:
    """Print an error in red on stderr and exit with code 1."""
    typer.echo(typer.style(f"Error: {message}", fg=typer.colors.RED),
               err=True)
    raise typer.Exit(code=1)


def _load_or_exit(in_tractogram: Path, fmt: Optional[str]):
    if not in_tractogram.is_file():
        _fail(f"{in_tractogram} does not exist.")
    try:
        return load(str(in_tractogram), fmt=fmt)
    except TractographyError as e:
        _fail(f"{in_tractogram.name}: {e}")


def _format_vector(values, precision: int = 2) -> str:
    return "[" + " ".join(f"{v:.{precision}f}" for v in values) + "]"


@app.command("info")
def info(
    in_tractogram: Annotated[
        Path,
        typer.Argument(help="Input tractogram (.trk, .tck or .trx)."),
    ],
    fmt: Annotated[
        Optional[str],
        typer.Option("--format", help="Force the format (trk, tck, trx)."),
    ] = None,
) -> None:
    """Display header information and counts of a tractogram.

    Parameters
    ----------
    in_tractogram : Path
        Input tractogram file.
    fmt : str, optional
        Format to use instead of the one derived from the extension.

    Examples
    --------
    $ tractview info bundle.trk
    $ tractview_info bundle.tck
    """
    data = _load_or_exit(in_tractogram, fmt)
    header = data.header

    typer.echo(f"File: {in_tractogram}")
    typer.echo(str(data))

    declared = header.metadata.get("declared_count")
    if declared is not None and declared != header.nb_streamlines:
        typer.echo(f"declared_count: {declared}")

    for key in ["voxel_order", "scalar_names", "property_names"]:
        if header.metadata.get(key):
            typer.echo(f"{key}: {header.metadata[key]}")


@app.command("sample")
def sample(
    in_tractogram: Annotated[
        Path,
        typer.Argument(help="Input tractogram (.trk, .tck or .trx)."),
    ],
    max_streamlines: Annotated[
        int,
        typer.Option("--max-streamlines", min=0,
                     help="Maximum number of streamlines to keep."),
    ] = DEFAULT_MAX_STREAMLINES,
    skip_threshold: Annotated[
        int,
        typer.Option("--skip-threshold", min=0,
                     help="Streamline count above which stride sampling "
                          "is used."),
    ] = DEFAULT_SKIP_THRESHOLD,
    fmt: Annotated[
        Optional[str],
        typer.Option("--format", help="Force the format (trk, tck, trx)."),
    ] = None,
) -> None:
    """Stride-sample a tractogram and report the extent of the sample.

    Parameters
    ----------
    in_tractogram : Path
        Input tractogram file.
    max_streamlines : int
        Maximum number of streamlines to keep.
    skip_threshold : int
        Total count above which every Nth streamline is kept.
    fmt : str, optional
        Format to use instead of the one derived from the extension.

    Examples
    --------
    $ tractview sample bundle.trx --max-streamlines 1000
    """
    data = _load_or_exit(in_tractogram, fmt)
    result = apply_skip_sampling(data.streamlines, max_streamlines,
                                 skip_threshold)
    bbox = compute_bounding_box(result.sampled)

    typer.echo(f"total_streamlines: {result.total_count}")
    typer.echo(f"displayed_streamlines: {len(result.sampled)}")
    typer.echo(f"skip_factor: {result.skip_factor}")
    typer.echo(f"bbox_min: {_format_vector(bbox.min)}")
    typer.echo(f"bbox_max: {_format_vector(bbox.max)}")
    typer.echo(f"bbox_center: {_format_vector(bbox.center)}")
    typer.echo(f"bbox_size: {bbox.size:.2f}")
    if result.sampled:
        lengths = [compute_length(s) for s in result.sampled]
        typer.echo(f"mean_length: {np.mean(lengths):.2f}")


@app.command("detect")
def detect(
    in_tractogram: Annotated[
        Path,
        typer.Argument(help="File to classify."),
    ],
) -> None:
    """Print the format recognized from the magic bytes of a file.

    Parameters
    ----------
    in_tractogram : Path
        File to classify.
    """
    if not in_tractogram.is_file():
        _fail(f"{in_tractogram} does not exist.")
    with open(in_tractogram, "rb") as f:
        head = f.read(1000)

    fmt = detect_format(head)
    if fmt is None:
        _fail(f"{in_tractogram.name} is not a TRK, TCK or TRX file.")
    typer.echo(fmt)


def main():
    """Entry point for the tractview CLI."""
    app()


def _create_standalone_app(command_func, name: str, help_text: str):
    """Create a standalone Typer app for a single command.

    Parameters
    ----------
    command_func : callable
        The command function to wrap.
    name : str
        Name of the command.
    help_text : str
        Help text for the command.

    Returns
    -------
    callable
        Entry point function.
    """
    standalone = typer.Typer(
        name=name,
        help=help_text,
        add_completion=False,
        rich_markup_mode="rich",
    )
    standalone.command()(command_func)
    return lambda: standalone()


info_cmd = _create_standalone_app(
    info,
    "tractview_info",
    "Display information about a tractogram.",
)

sample_cmd = _create_standalone_app(
    sample,
    "tractview_sample",
    "Stride-sample a tractogram and report its bounding box.",
)


if __name__ == "__main__":
    main()
