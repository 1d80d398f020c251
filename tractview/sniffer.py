# -*- coding: utf-8 -*-
"""Cheap checks that classify a buffer without parsing it."""

import logging
import struct

from tractview.errors import UnsupportedFormatError
from tractview.streamlines import FORMATS
from tractview.utils import split_name_with_gz

ZIP_LOCAL_FILE_SIGNATURE = 0x04034b50
TRK_MAGIC = 'TRACK'
TCK_MAGIC = 'mrtrix tracks'
TCK_PROBE_SIZE = 100


def is_trk(buffer):
    """True if the first 6 bytes start with TRACK"""
    try:
        if len(buffer) < 6:
            return False
        return bytes(buffer[:6]).decode('ascii').startswith(TRK_MAGIC)
    except (TypeError, ValueError):
        return False


def is_tck(buffer):
    """True if the first 100 bytes contain 'mrtrix tracks' (any case)"""
    try:
        head = bytes(buffer[:TCK_PROBE_SIZE]).decode('ascii', errors='replace')
        return TCK_MAGIC in head.lower()
    except (TypeError, ValueError):
        return False


def is_trx(buffer):
    """True if the buffer starts with a ZIP local file header"""
    try:
        if len(buffer) < 4:
            return False
        return struct.unpack_from('<I', buffer, 0)[0] == \
            ZIP_LOCAL_FILE_SIGNATURE
    except (TypeError, ValueError, struct.error):
        return False


def detect_format(buffer):
    """Classify a buffer by its magic bytes

    Parameters
    ----------
    buffer : bytes-like
        The complete file content.

    Returns
    -------
    str or None
        'trx', 'trk' or 'tck', None if no check matches.
    """
    if is_trx(buffer):
        return 'trx'
    if is_trk(buffer):
        return 'trk'
    if is_tck(buffer):
        return 'tck'
    return None


def format_from_filename(filename):
    """Format tag derived from the file extension, None if unknown"""
    ext = split_name_with_gz(str(filename))[1].lower().lstrip('.')
    return ext if ext in FORMATS else None


def select_format(buffer, hint=None):
    """Pick the decoder for a buffer

    An explicit hint wins, then the sniffed format. Buffers nothing recognizes
    are handed to the TRK decoder, which reports the missing identifier.
    """
    if hint is not None:
        hint = hint.lower().lstrip('.')
        if hint not in FORMATS:
            raise UnsupportedFormatError(
                '{} is an unsupported file format'.format(hint))
        return hint

    fmt = detect_format(buffer)
    if fmt is None:
        logging.debug('Unrecognized magic bytes, falling back to TRK.')
        return 'trk'
    return fmt
