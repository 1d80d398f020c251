#! /usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import logging

import nibabel as nib
import numpy as np


def split_name_with_gz(filename):
    """
    Returns the clean basename and extension of a file.
    Means that this correctly manages the ".trk.gz" extensions.

    Parameters
    ----------
    filename: str
        The filename to clean

    Returns
    -------
        base, ext : tuple(str, str)
        Clean basename and the full extension
    """
    base, ext = os.path.splitext(filename)

    if ext == ".gz":
        # Test if we have a .trk/.tck additional extension
        temp_base, add_ext = os.path.splitext(base)

        if add_ext in [".trk", ".tck", ".nii"]:
            ext = add_ext + ext
            base = temp_base

    return base, ext


def get_voxel_sizes(affine):
    """ Voxel sizes encoded in a voxel-to-RASMM transformation.

    Parameters
    ----------
    affine : array-like (4, 4)
        Transformation from voxel to RASMM space.
    Returns
    -------
    voxel_sizes : tuple of float (3,)
        Euclidean norm of each of the first three columns.
    """
    affine = np.asarray(affine, dtype=np.float64)
    return tuple(float(v) for v in nib.affines.voxel_sizes(affine))


def get_voxel_order(affine):
    """ Orientation codes of a voxel-to-RASMM transformation.

    Parameters
    ----------
    affine : array-like (4, 4)
        Transformation from voxel to RASMM space.
    Returns
    -------
    voxel_order : str or None
        Typically 'RAS' or 'LPS', None when the rotation part is all zeros.
    """
    affine = np.asarray(affine, dtype=np.float64)
    if not np.isfinite(affine).all() or not affine[0:3, 0:3].any():
        logging.debug('Affine is all zeros or not finite, cannot determine voxel '
                      'order from transformation.')
        return None
    codes = nib.aff2axcodes(affine)
    if None in codes:
        return None
    return ''.join(codes)


def decode_fixed_string(raw):
    """ Decode a NUL padded ASCII field.

    Parameters
    ----------
    raw : bytes
        Raw field content, as read from a fixed-size header slot.
    Returns
    -------
    output : str
        The text with every NUL removed.
    """
    if isinstance(raw, np.bytes_):
        raw = bytes(raw)
    return raw.decode('ascii', errors='replace').replace('\x00', '')
