# -*- coding: utf-8 -*-
"""Tests for CLI commands."""

from io import BytesIO
import json
import os
import zipfile

from deepdiff import DeepDiff
import numpy as np
import pytest

from tractview.io import load
from tractview.trk import TRK_HEADER_DTYPE


def _write_trk(filename, nb_streamlines):
    hdr = np.zeros(1, dtype=TRK_HEADER_DTYPE)
    hdr['id_string'] = b'TRACK'
    hdr['dim'] = (100, 100, 100)
    hdr['voxel_size'] = (1, 1, 1)
    hdr['vox_to_ras'] = np.eye(4)
    hdr['voxel_order'] = b'RAS'
    hdr['n_count'] = nb_streamlines
    hdr['version'] = 2
    hdr['hdr_size'] = 1000

    with open(filename, 'wb') as f:
        f.write(hdr.tobytes())
        for i in range(nb_streamlines):
            points = np.array([[i, 0, 0], [i, 3, 4]], dtype='<f4')
            f.write(np.array([2], dtype='<i4').tobytes())
            f.write(points.tobytes())


def _write_tck(filename):
    header = b'mrtrix tracks\ndatatype: Float32LE\ncount: 2\nEND\n'
    body = np.array([[0, 0, 0], [1, 0, 0], [np.nan] * 3,
                     [0, 0, 0], [0, 2, 0], [np.nan] * 3,
                     [np.inf] * 3], dtype='<f4').tobytes()
    with open(filename, 'wb') as f:
        f.write(header + body)


def _write_trx(filename):
    f = BytesIO()
    with zipfile.ZipFile(f, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr('header.json', json.dumps({
            'VOXEL_TO_RASMM': np.diag([2, 2, 2, 1]).tolist(),
            'DIMENSIONS': [50, 50, 50],
            'NB_STREAMLINES': 1, 'NB_VERTICES': 3}))
        zf.writestr('offsets.uint32', np.array([0], dtype='<u4').tobytes())
        zf.writestr('positions.3.float16',
                    np.array([[0, 0, 0], [1, 1, 1], [2, 2, 2]],
                             dtype='<f2').tobytes())
        zf.writestr('dpv/fa.float32',
                    np.array([0.1, 0.2, 0.3], dtype='<f4').tobytes())
    with open(filename, 'wb') as out:
        out.write(f.getvalue())


@pytest.fixture
def tractograms(tmp_path):
    filenames = {'trk': os.path.join(str(tmp_path), 'bundle.trk'),
                 'tck': os.path.join(str(tmp_path), 'bundle.tck'),
                 'trx': os.path.join(str(tmp_path), 'bundle.trx')}
    _write_trk(filenames['trk'], 20)
    _write_tck(filenames['tck'])
    _write_trx(filenames['trx'])
    return filenames


class TestStandaloneCommands:
    """Tests for standalone CLI commands."""

    def test_help_option_info(self, script_runner):
        ret = script_runner.run(["tractview_info", "--help"])
        assert ret.success

    def test_help_option_sample(self, script_runner):
        ret = script_runner.run(["tractview_sample", "--help"])
        assert ret.success

    def test_execution_info(self, script_runner, tractograms):
        ret = script_runner.run(["tractview_info", tractograms["tck"]])
        assert ret.success
        assert "FORMAT: tck" in ret.stdout
        assert "streamline_count: 2" in ret.stdout


class TestUnifiedCLI:
    """Tests for the unified tractview CLI."""

    def test_help(self, script_runner):
        ret = script_runner.run(["tractview", "--help"])
        assert ret.success
        for command in ["info", "sample", "detect"]:
            assert command in ret.stdout

    def test_debug(self, script_runner):
        ret = script_runner.run(["tractview", "--debug"])
        assert ret.success
        assert "decode limits" in ret.stdout

    @pytest.mark.parametrize("fmt", ["trk", "tck", "trx"])
    def test_info(self, script_runner, tractograms, fmt):
        ret = script_runner.run(["tractview", "info", tractograms[fmt]])
        assert ret.success
        assert "FORMAT: {}".format(fmt) in ret.stdout

    def test_info_trx_details(self, script_runner, tractograms):
        ret = script_runner.run(["tractview", "info", tractograms["trx"]])
        assert ret.success
        assert "VOX_SIZES: [2.00 2.00 2.00]" in ret.stdout
        assert "DIMENSIONS: [50, 50, 50]" in ret.stdout
        assert "scalar_names: ['fa']" in ret.stdout

    def test_info_forced_format(self, script_runner, tractograms):
        ret = script_runner.run(["tractview", "info", tractograms["tck"],
                                 "--format", "trk"])
        assert not ret.success
        assert "TRACK" in ret.stderr

    def test_info_unknown_format(self, script_runner, tractograms):
        ret = script_runner.run(["tractview", "info", tractograms["trk"],
                                 "--format", "nii"])
        assert not ret.success
        assert "Error: " in ret.stderr
        assert "unsupported file format" in ret.stderr
        assert "Traceback" not in ret.stderr

    def test_info_missing_file(self, script_runner, tmp_path):
        ret = script_runner.run(["tractview", "info",
                                 os.path.join(str(tmp_path), "none.trk")])
        assert not ret.success
        assert "does not exist" in ret.stderr

    def test_sample(self, script_runner, tractograms):
        ret = script_runner.run(["tractview", "sample", tractograms["trk"],
                                 "--max-streamlines", "5",
                                 "--skip-threshold", "10"])
        assert ret.success
        assert "total_streamlines: 20" in ret.stdout
        assert "displayed_streamlines: 5" in ret.stdout
        assert "skip_factor: 4" in ret.stdout
        assert "bbox_min: [0.00 0.00 0.00]" in ret.stdout
        assert "bbox_max: [16.00 3.00 4.00]" in ret.stdout
        assert "mean_length: 5.00" in ret.stdout

    def test_sample_below_threshold(self, script_runner, tractograms):
        ret = script_runner.run(["tractview", "sample", tractograms["trk"]])
        assert ret.success
        assert "displayed_streamlines: 20" in ret.stdout
        assert "skip_factor: 1" in ret.stdout

    @pytest.mark.parametrize("fmt", ["trk", "tck", "trx"])
    def test_detect(self, script_runner, tractograms, fmt):
        ret = script_runner.run(["tractview", "detect", tractograms[fmt]])
        assert ret.success
        assert ret.stdout.strip() == fmt

    def test_detect_unknown(self, script_runner, tmp_path):
        filename = os.path.join(str(tmp_path), "noise.bin")
        with open(filename, "wb") as f:
            f.write(b"\x00" * 64)
        ret = script_runner.run(["tractview", "detect", filename])
        assert not ret.success


def test_reload_matches(tractograms):
    first = load(tractograms["trx"])
    second = load(tractograms["trx"])
    assert first == second
    diff = DeepDiff(first.header.metadata, second.header.metadata)
    assert not diff
    assert first.streamlines[0].scalars[0].dtype == np.float32
