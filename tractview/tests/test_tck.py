# -*- coding: utf-8 -*-

from io import BytesIO

from nibabel.streamlines import Tractogram
from nibabel.streamlines.tck import TckFile
import numpy as np
from numpy.testing import assert_allclose, assert_array_equal
import pytest

from tractview.errors import (HeaderMalformedError, MissingMagicError,
                              RunawayStreamlineError, SizeExceededError,
                              UnsupportedEncodingError)
from tractview.streamlines import DecodeLimits
from tractview.tck import decode_tck, read_tck_header

SEPARATOR = [np.nan, np.nan, np.nan]
TERMINATOR = [np.inf, np.inf, np.inf]


def _make_tck(triplets, datatype='Float32LE', fields=None,
              first_line='mrtrix tracks'):
    lines = [first_line, 'datatype: {}'.format(datatype)]
    for key, value in (fields or {}).items():
        lines.append('{}: {}'.format(key, value))
    header = ('\n'.join(lines) + '\nEND\n').encode('ascii')

    dtype = {'Float32LE': '<f4', 'Float32BE': '>f4',
             'Float64LE': '<f8', 'Float64BE': '>f8'}.get(datatype, '<f4')
    body = np.asarray(triplets, dtype=dtype).tobytes() if triplets else b''
    return header + body


def test_decode_single_streamline():
    buffer = _make_tck([[1, 2, 3], [4, 5, 6], SEPARATOR, TERMINATOR],
                       fields={'count': 1})
    data = decode_tck(buffer)

    assert len(data.streamlines) == 1
    assert_array_equal(data.streamlines[0].points, [[1, 2, 3], [4, 5, 6]])
    assert data.header.format == 'tck'
    assert data.header.dimensions == (0, 0, 0)
    assert data.header.voxel_sizes == (1.0, 1.0, 1.0)
    assert data.header.version == 1
    assert data.header.metadata['declared_count'] == 1
    assert data.header.metadata['datatype'] == 'Float32LE'


def test_decode_nibabel_output():
    streamlines = [np.arange(3 * n, dtype=np.float32).reshape((n, 3))
                   for n in (2, 7, 4)]
    f = BytesIO()
    TckFile(Tractogram(streamlines, affine_to_rasmm=np.eye(4))).save(f)

    data = decode_tck(f.getvalue())
    assert len(data.streamlines) == 3
    for decoded, expected in zip(data.streamlines, streamlines):
        assert_allclose(decoded.points, expected)


@pytest.mark.parametrize("datatype",
                         ['Float32LE', 'Float32BE', 'Float64LE', 'Float64BE'])
def test_datatypes(datatype):
    points = [[0.5, 1.5, 2.5], [3.5, 4.5, 5.5], [6.5, 7.5, 8.5]]
    buffer = _make_tck(points + [SEPARATOR, TERMINATOR], datatype=datatype)
    data = decode_tck(buffer)
    assert_allclose(data.streamlines[0].points, points)
    assert data.streamlines[0].points.dtype == np.float32


def test_separators_and_short_runs():
    triplets = [[0, 0, 0], SEPARATOR,
                [1, 1, 1], [2, 2, 2], SEPARATOR,
                SEPARATOR,
                [3, 3, 3], [4, 4, 4], [5, 5, 5], SEPARATOR,
                TERMINATOR]
    data = decode_tck(_make_tck(triplets))
    assert [s.nb_points for s in data.streamlines] == [2, 3]
    assert_array_equal(data.streamlines[1].points[0], [3, 3, 3])


def test_last_streamline_without_separator():
    triplets = [[0, 0, 0], [1, 1, 1], SEPARATOR,
                [2, 2, 2], [3, 3, 3], TERMINATOR]
    data = decode_tck(_make_tck(triplets))
    assert len(data.streamlines) == 2


def test_data_after_terminator_is_ignored():
    triplets = [[0, 0, 0], [1, 1, 1], SEPARATOR, TERMINATOR,
                [5, 5, 5], [6, 6, 6], SEPARATOR]
    data = decode_tck(_make_tck(triplets))
    assert len(data.streamlines) == 1


def test_missing_terminator_keeps_data():
    triplets = [[0, 0, 0], [1, 1, 1], SEPARATOR, [2, 2, 2], [3, 3, 3]]
    data = decode_tck(_make_tck(triplets))
    assert len(data.streamlines) == 2


def test_partial_trailing_triplet_is_dropped():
    buffer = _make_tck([[0, 0, 0], [1, 1, 1], SEPARATOR, TERMINATOR])
    data = decode_tck(buffer + b'\x00' * 5)
    assert len(data.streamlines) == 1


def test_empty_body():
    data = decode_tck(_make_tck([]))
    assert data.streamlines == []
    assert data.header.nb_streamlines == 0


def test_file_offset():
    header = b'mrtrix tracks\ndatatype: Float32LE\nfile: . 64\nEND\n'
    body = np.array([[1, 2, 3], [4, 5, 6], SEPARATOR, TERMINATOR],
                    dtype='<f4').tobytes()
    buffer = header + b'\x00' * (64 - len(header)) + body
    data = decode_tck(buffer)
    assert data.header.metadata['file_offset'] == 64
    assert_array_equal(data.streamlines[0].points, [[1, 2, 3], [4, 5, 6]])


def test_file_offset_inside_header_reads_after_end():
    buffer = _make_tck([[1, 2, 3], [4, 5, 6], SEPARATOR, TERMINATOR],
                       fields={'file': '. 4'})
    data = decode_tck(buffer)
    assert len(data.streamlines) == 1
    assert_array_equal(data.streamlines[0].points, [[1, 2, 3], [4, 5, 6]])
    assert data.header.metadata['file_offset'] == buffer.index(b'END\n') + 4


def test_file_offset_not_integer():
    buffer = _make_tck([TERMINATOR], fields={'file': '. abc'})
    with pytest.raises(HeaderMalformedError):
        decode_tck(buffer)


def test_header_fields():
    buffer = _make_tck([TERMINATOR],
                       fields={'count': 'many', 'total_count': 12,
                               'timestamp': '1700000000.5',
                               'step_size': 0.5})
    hdr = read_tck_header(buffer)
    assert hdr['magic']
    assert hdr['count'] is None
    assert hdr['total_count'] == 12
    assert hdr['timestamp'] == 1700000000.5
    assert hdr['fields']['step_size'] == '0.5'


def test_missing_datatype_defaults_to_float32le():
    header = b'mrtrix tracks\ncount: 1\nEND\n'
    body = np.array([[1, 2, 3], [4, 5, 6], TERMINATOR], dtype='<f4').tobytes()
    data = decode_tck(header + body)
    assert data.header.metadata['datatype'] == 'Float32LE'
    assert len(data.streamlines) == 1


def test_missing_end():
    buffer = b'mrtrix tracks\ndatatype: Float32LE\n' + b'\x00' * 64
    with pytest.raises(HeaderMalformedError, match='END'):
        decode_tck(buffer)


def test_end_outside_window():
    buffer = _make_tck([TERMINATOR],
                       fields={'comment': 'x' * 200})
    with pytest.raises(HeaderMalformedError):
        decode_tck(buffer, limits=DecodeLimits(tck_header_window=64))


def test_missing_magic():
    buffer = _make_tck([TERMINATOR], first_line='not a tractogram')
    with pytest.raises(MissingMagicError):
        decode_tck(buffer)


@pytest.mark.parametrize("datatype", ['Int16', 'Float16LE', 'UInt8'])
def test_unsupported_datatype(datatype):
    buffer = _make_tck([TERMINATOR], datatype=datatype)
    with pytest.raises(UnsupportedEncodingError, match=datatype):
        decode_tck(buffer)


def test_unsupported_datatype_is_header_error():
    buffer = _make_tck([TERMINATOR], datatype='Int16')
    with pytest.raises(HeaderMalformedError):
        decode_tck(buffer)


def test_runaway_streamline():
    triplets = [[i, i, i] for i in range(10)] + [TERMINATOR]
    with pytest.raises(RunawayStreamlineError):
        decode_tck(_make_tck(triplets),
                   limits=DecodeLimits(max_points_per_streamline=5))


def test_size_exceeded_before_parsing():
    with pytest.raises(SizeExceededError, match='TCK'):
        decode_tck(b'\x00' * 100, limits=DecodeLimits(max_file_size=99))


def test_decode_is_deterministic():
    buffer = _make_tck([[1, 2, 3], [4, 5, 6], SEPARATOR,
                        [7, 8, 9], [1, 1, 1], TERMINATOR])
    assert decode_tck(buffer) == decode_tck(buffer)


def test_datatype_checked_before_magic():
    buffer = _make_tck([TERMINATOR], datatype='Int16',
                       first_line='not a tractogram')
    with pytest.raises(UnsupportedEncodingError):
        decode_tck(buffer)
