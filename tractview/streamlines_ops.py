# -*- coding: utf-8 -*-
"""Post-decode operations shared by every format: sampling and extent."""

import math

import numpy as np

from tractview.streamlines import BoundingBox


class SamplingResult:
    """Outcome of :func:`apply_skip_sampling`."""

    def __init__(self, sampled, skip_factor, total_count):
        self.sampled = sampled
        self.skip_factor = skip_factor
        self.total_count = total_count

    def __iter__(self):
        return iter((self.sampled, self.skip_factor, self.total_count))

    def __repr__(self):
        return 'SamplingResult({} of {}, skip_factor={})'.format(
            len(self.sampled), self.total_count, self.skip_factor)


def apply_skip_sampling(streamlines, max_count, skip_threshold):
    """Keep every Nth streamline so that at most max_count remain.

    Parameters
    ----------
    streamlines : list of Streamline
        The full, ordered list of streamlines.
    max_count : int
        Maximum number of streamlines to return.
    skip_threshold : int
        Below or at this total, the first max_count streamlines are returned
        as-is.

    Returns
    -------
    SamplingResult
        The sampled list (order preserved), the stride used and the total
        number of input streamlines.
    """
    if max_count < 0:
        raise ValueError('max_count must be non-negative.')
    total_count = len(streamlines)

    if total_count <= skip_threshold:
        sampled = list(streamlines[:min(max_count, total_count)])
        return SamplingResult(sampled, 1, total_count)

    target_count = min(max_count, total_count)
    if target_count == 0:
        return SamplingResult([], 1, total_count)
    skip_factor = math.ceil(total_count / target_count)

    sampled = list(streamlines[::skip_factor][:max_count])
    return SamplingResult(sampled, skip_factor, total_count)


def compute_bounding_box(streamlines):
    """Axis-aligned bounding box of every point of the streamlines.

    Parameters
    ----------
    streamlines : iterable of Streamline
        Streamlines to enclose, usually the sampled subset.

    Returns
    -------
    BoundingBox
        Min/max corners, center and diagonal length. Without any point the
        box collapses to the origin with a size of 0.
    """
    mins, maxs = [], []
    for streamline in streamlines:
        if len(streamline.points):
            mins.append(streamline.points.min(axis=0))
            maxs.append(streamline.points.max(axis=0))

    if not mins:
        return BoundingBox((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))

    return BoundingBox(np.min(mins, axis=0).astype(np.float64),
                       np.max(maxs, axis=0).astype(np.float64))


def compute_length(streamline):
    """Arc length of a streamline (sum of its segment lengths).

    Parameters
    ----------
    streamline : Streamline
        Streamline with at least 2 points.

    Returns
    -------
    float
        Length in the units of the coordinates (mm for RASMM data).
    """
    segments = np.diff(streamline.points.astype(np.float64), axis=0)
    return float(np.sum(np.linalg.norm(segments, axis=1)))
