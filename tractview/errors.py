# -*- coding: utf-8 -*-
"""Exceptions raised by the tractogram decoders."""


class TractographyError(ValueError):
    """Base class of every decode failure."""


class SizeExceededError(TractographyError):
    """The buffer is larger than the configured maximum size."""

    def __init__(self, size, limit, fmt=None):
        self.size = size
        self.limit = limit
        prefix = '{} file'.format(fmt.upper()) if fmt else 'File'
        super().__init__(
            '{} too large: {:.1f}MB exceeds {:.1f}MB limit'.format(
                prefix, size / 1024 / 1024, limit / 1024 / 1024))


class MissingMagicError(TractographyError):
    """The format identifier (TRACK, mrtrix tracks, ZIP signature) is absent."""


class HeaderMalformedError(TractographyError):
    """A required header field is missing or out of its legal range."""


class MissingRequiredMemberError(TractographyError):
    """A TRX archive lacks header.json, positions or offsets."""


class UnsupportedEncodingError(HeaderMalformedError):
    """Element datatype or container feature that cannot be decoded."""


class RunawayStreamlineError(TractographyError):
    """A streamline exceeds the maximum number of points."""


class TruncatedFileError(TractographyError):
    """The buffer ends in the middle of a required structure."""


class UnsupportedFormatError(TractographyError):
    """The requested format is not one of trk, tck or trx."""
