"""Decoders for the TRK, TCK and TRX brain tractography file formats."""

try:
    from importlib.metadata import PackageNotFoundError, version
except ImportError:  # pragma: no cover
    __version__ = "0+unknown"
else:
    try:
        __version__ = version("tractview-python")
    except PackageNotFoundError:
        __version__ = "0+unknown"
