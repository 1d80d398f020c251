# -*- coding: utf-8 -*-
"""MRtrix .tck decoder.

A TCK file starts with a text header ('mrtrix tracks', then 'key: value'
lines, closed by an 'END' line). The binary part holds x, y, z triplets;
a NaN triplet separates two streamlines and an infinite triplet ends the data.
Format reference:
https://mrtrix.readthedocs.io/en/latest/getting_started/image_data.html#tracks-file-format-tck
"""

import logging
import re

import numpy as np

from tractview.errors import (HeaderMalformedError, MissingMagicError,
                              RunawayStreamlineError,
                              UnsupportedEncodingError)
from tractview.streamlines import (DecodeLimits, Streamline,
                                   TractographyData, TractographyHeader)

TCK_DTYPES = {
    'Float32LE': np.dtype('<f4'),
    'Float32BE': np.dtype('>f4'),
    'Float64LE': np.dtype('<f8'),
    'Float64BE': np.dtype('>f8'),
}
DEFAULT_DATATYPE = 'Float32LE'
MAGIC = 'mrtrix tracks'

_END_LINE = re.compile(rb'(?:^|\n)END(\r?\n)')


def _find_header_end(buffer, window):
    """Offset of the first byte after the 'END' line, -1 if absent"""
    # The newline itself may sit just past the window
    match = _END_LINE.search(bytes(buffer[:window + 2]))
    if match is None or match.start(1) - 3 >= window:
        return -1
    return match.end()


def _parse_int(key, value):
    try:
        return int(value)
    except ValueError:
        logging.warning('Ignoring non-integer TCK {} ({}).'.format(key,
                                                                   value))
        return None


def _parse_file_offset(value, default):
    """Read the 'file' field, either '<offset>' or '. <offset>'"""
    parts = value.split()
    if len(parts) >= 2 and parts[0] == '.':
        raw = parts[1]
    elif len(parts) == 1:
        raw = parts[0]
    else:
        return default

    try:
        return int(raw)
    except ValueError:
        raise HeaderMalformedError(
            'Invalid TCK header: file offset ({}) is not an integer'.format(
                value))


def read_tck_header(buffer, limits=None):
    """Parse the text header of a TCK file

    Parameters
    ----------
    buffer : bytes-like
        The complete file content.
    limits : DecodeLimits, optional
        Provides the size of the window searched for the END line.

    Returns
    -------
    dict
        'datatype', 'file_offset', 'count', 'total_count', 'timestamp',
        'magic' (bool), 'first_line' and 'fields' (every raw key/value pair).
    """
    limits = DecodeLimits() if limits is None else limits
    header_end = _find_header_end(buffer, limits.tck_header_window)
    if header_end == -1:
        raise HeaderMalformedError(
            'Invalid TCK file: could not find END marker in the first {} '
            'bytes'.format(limits.tck_header_window))

    text = bytes(buffer[:header_end]).decode('ascii', errors='replace')
    lines = [line for line in re.split(r'\r?\n', text) if line.strip()]

    hdr = {'datatype': DEFAULT_DATATYPE,
           'file_offset': header_end,
           'count': None,
           'total_count': None,
           'timestamp': None,
           'magic': False,
           'first_line': lines[0] if lines else '',
           'fields': {}}

    for line in lines:
        if line.strip() == 'END':
            continue
        if line.strip().lower() == MAGIC:
            hdr['magic'] = True
            continue
        if ':' not in line:
            continue

        key, value = line.split(':', 1)
        key = key.strip().lower()
        value = value.strip()
        hdr['fields'][key] = value

        if key == 'datatype':
            hdr['datatype'] = value
        elif key == 'file':
            hdr['file_offset'] = _parse_file_offset(value, header_end)
        elif key == 'count':
            hdr['count'] = _parse_int(key, value)
        elif key == 'total_count':
            hdr['total_count'] = _parse_int(key, value)
        elif key == 'timestamp':
            try:
                hdr['timestamp'] = float(value)
            except ValueError:
                logging.warning('Ignoring invalid TCK timestamp '
                                '({}).'.format(value))

    hdr['header_end'] = header_end
    return hdr


def _split_streamlines(data, limits):
    """Cut the (N, 3) triplets at the NaN separators and the Inf terminator"""
    inf_rows = np.flatnonzero(np.isinf(data[:, 0]))
    if len(inf_rows):
        data = data[:inf_rows[0]]
    else:
        logging.warning('TCK data ends without the infinite terminator.')

    separators = np.flatnonzero(np.isnan(data).any(axis=1))
    bounds = np.concatenate(([-1], separators, [len(data)]))

    streamlines = []
    for start, end in zip(bounds[:-1] + 1, bounds[1:]):
        nb_points = end - start
        if nb_points > limits.max_points_per_streamline:
            raise RunawayStreamlineError(
                'Malformed TCK file: streamline {} exceeds the maximum point '
                'count ({} > {})'.format(len(streamlines), nb_points,
                                         limits.max_points_per_streamline))
        if nb_points >= 2:
            streamlines.append(Streamline(data[start:end]))

    return streamlines


def decode_tck(buffer, limits=None):
    """Decode a TCK file held in memory

    Parameters
    ----------
    buffer : bytes-like
        The complete file content.
    limits : DecodeLimits, optional
        Size and point-count caps, defaults if None.

    Returns
    -------
    TractographyData
        Streamlines with a 'tck' header (no volume information).
    """
    limits = DecodeLimits() if limits is None else limits
    limits.check_size(buffer, fmt='tck')

    hdr = read_tck_header(buffer, limits)
    if hdr['datatype'] not in TCK_DTYPES:
        raise UnsupportedEncodingError(
            'Unsupported TCK datatype: {}. Supported: {}'.format(
                hdr['datatype'], ', '.join(TCK_DTYPES)))
    dtype = TCK_DTYPES[hdr['datatype']]

    if not hdr['magic'] and MAGIC not in hdr['first_line'].lower():
        raise MissingMagicError(
            'Invalid TCK file: missing "{}" identifier'.format(MAGIC))

    file_offset = hdr['file_offset']
    if file_offset < hdr['header_end']:
        logging.warning('TCK file offset ({}) points inside the header, reading '
                        'from byte {}.'.format(file_offset, hdr['header_end']))
        file_offset = hdr['header_end']

    nb_triplets = max(len(buffer) - file_offset, 0) // (3 * dtype.itemsize)
    if nb_triplets > 0:
        data = np.frombuffer(buffer, dtype=dtype, count=nb_triplets * 3,
                             offset=file_offset).reshape((nb_triplets, 3))
    else:
        data = np.empty((0, 3), dtype=dtype)
    streamlines = _split_streamlines(data, limits)

    metadata = {
        'datatype': hdr['datatype'],
        'file_offset': file_offset,
        'declared_count': hdr['count'],
        'total_count': hdr['total_count'],
        'timestamp': hdr['timestamp'],
        'fields': hdr['fields'],
    }
    header = TractographyHeader('tck', version=1, metadata=metadata)
    logging.debug('Decoded {} of {} declared TCK streamlines.'.format(
        len(streamlines), hdr['count']))

    return TractographyData(header, streamlines)
