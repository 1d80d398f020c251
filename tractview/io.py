# -*- coding: utf-8 -*-

import os
import logging

from tractview.errors import SizeExceededError, TractographyError
from tractview.sniffer import format_from_filename, select_format
from tractview.streamlines import DecodeLimits
from tractview.tck import decode_tck
from tractview.trk import decode_trk
from tractview.trx import decode_trx

DECODERS = {
    'trk': decode_trk,
    'tck': decode_tck,
    'trx': decode_trx,
}


class DecodeResult:
    """Tagged outcome of a decode: either data or error is set, never both"""

    def __init__(self, data=None, error=None):
        if (data is None) == (error is None):
            raise ValueError('A DecodeResult holds either data or an error.')
        self.data = data
        self.error = error

    @property
    def ok(self):
        return self.error is None

    def unwrap(self):
        """Return the data, raising the stored error if there is one"""
        if self.error is not None:
            raise self.error
        return self.data

    def __repr__(self):
        if self.ok:
            return 'DecodeResult(ok, {} streamlines)'.format(len(self.data))
        return 'DecodeResult({}: {})'.format(type(self.error).__name__,
                                             self.error)


def get_decode_limits(limits=None):
    """Explicit limits if given, else limits read from the environment"""
    return DecodeLimits.from_env() if limits is None else limits


def decode(buffer, fmt=None, limits=None):
    """Decode a tractogram held in memory.

    Parameters
    ----------
    buffer : bytes, bytearray or memoryview
        The complete file content.
    fmt : str, optional
        'trk', 'tck' or 'trx'. Sniffed from the magic bytes if None, TRK
        when nothing matches.
    limits : DecodeLimits, optional
        Safety caps, read from the environment if None.

    Returns
    -------
    TractographyData
    """
    limits = get_decode_limits(limits)
    limits.check_size(buffer, fmt=fmt)
    fmt = select_format(buffer, hint=fmt)
    logging.debug('Decoding {} bytes as {}.'.format(len(buffer), fmt))
    return DECODERS[fmt](buffer, limits)


def try_decode(buffer, fmt=None, limits=None):
    """Same as :func:`decode`, returning a DecodeResult instead of raising"""
    try:
        return DecodeResult(data=decode(buffer, fmt=fmt, limits=limits))
    except TractographyError as e:
        return DecodeResult(error=e)


def load(filename, fmt=None, limits=None):
    """Read a whole tractogram file and decode it.

    Parameters
    ----------
    filename : str or path-like
        Path of a .trk, .tck or .trx file.
    fmt : str, optional
        Overrides the format derived from the extension.
    limits : DecodeLimits, optional
        Safety caps, read from the environment if None.

    Returns
    -------
    TractographyData
    """
    limits = get_decode_limits(limits)
    if not os.path.isfile(filename):
        raise IOError('{} does not exist'.format(filename))

    if fmt is None:
        fmt = format_from_filename(filename)
        if fmt is None:
            logging.debug('No format from the extension of {}, sniffing '
                          'the content.'.format(filename))

    file_size = os.path.getsize(filename)
    if file_size > limits.max_file_size:
        raise SizeExceededError(file_size, limits.max_file_size, fmt=fmt)

    with open(filename, 'rb') as f:
        buffer = f.read()

    return decode(buffer, fmt=fmt, limits=limits)
