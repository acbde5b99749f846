"""Sub-sampling, reordering, transformation and outlier filtering of frames."""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from vlcalib.frame import Frame

logger = logging.getLogger(__name__)


def _voxel_groups(frame: Frame, voxel_resolution: float) -> list[list[int]]:
    """Group point indices by voxel, in order of each voxel's first point."""
    coords = np.floor(frame.points[:, :3] / voxel_resolution).astype(np.int64)
    groups: dict[tuple[int, int, int], list[int]] = {}
    for index, coord in enumerate(map(tuple, coords)):
        groups.setdefault(coord, []).append(index)
    return list(groups.values())


def sample(frame: Frame, indices: Sequence[int]) -> Frame:
    """Return a new frame holding the points at ``indices`` with all their attributes."""
    idx = np.asarray(indices, dtype=np.int64).reshape(-1)

    def pick(array):
        return None if array is None else array[idx].copy()

    aux = {}
    for name, (elem_size, data) in frame.aux_attributes.items():
        aux[name] = (elem_size, b"".join(data[elem_size * i : elem_size * (i + 1)] for i in idx))

    return Frame(
        points=np.zeros((0, 4)) if frame.points is None else frame.points[idx].copy(),
        times=pick(frame.times),
        normals=pick(frame.normals),
        covs=pick(frame.covs),
        intensities=pick(frame.intensities),
        aux_attributes=aux,
    )


def random_sampling(frame: Frame, sampling_rate: float, rng: np.random.Generator) -> Frame:
    """Keep a random ``sampling_rate`` fraction of the points, preserving order."""
    if sampling_rate >= 0.99:
        return frame.copy()

    num_samples = int(len(frame) * sampling_rate)
    indices = np.sort(rng.choice(len(frame), size=num_samples, replace=False))
    return sample(frame, indices)


def voxelgrid_sampling(frame: Frame, voxel_resolution: float) -> Frame:
    """Replace the points of each voxel with the average of their attributes."""
    groups = _voxel_groups(frame, voxel_resolution)

    def average(array):
        if array is None:
            return None
        return np.stack([array[group].mean(axis=0) for group in groups]) if groups else array[:0].copy()

    if frame.aux_attributes:
        logger.warning("voxelgrid_sampling does not support aux attributes")

    return Frame(
        points=average(frame.points),
        times=average(frame.times),
        normals=average(frame.normals),
        covs=average(frame.covs),
        intensities=average(frame.intensities),
    )


def randomgrid_sampling(
    frame: Frame, voxel_resolution: float, sampling_rate: float, rng: np.random.Generator
) -> Frame:
    """Sample points evenly across voxels so that about ``sampling_rate`` of them remain."""
    if sampling_rate >= 0.99:
        return frame.copy()

    groups = _voxel_groups(frame, voxel_resolution)
    if not groups:
        return sample(frame, [])

    points_per_voxel = math.ceil((sampling_rate * len(frame)) / len(groups))
    max_num_points = int(len(frame) * sampling_rate * 1.2)

    indices: list[int] = []
    for group in groups:
        if len(group) <= points_per_voxel:
            indices.extend(group)
        else:
            chosen = np.sort(rng.choice(len(group), size=points_per_voxel, replace=False))
            indices.extend(group[c] for c in chosen)

    if len(indices) > max_num_points:
        chosen = np.sort(rng.choice(len(indices), size=max_num_points, replace=False))
        indices = [indices[c] for c in chosen]

    return sample(frame, sorted(indices))


def sort_by_time(frame: Frame) -> Frame:
    """Return a copy of the frame with points ordered by their timestamps."""
    if not frame.has_times():
        logger.warning("frame does not have per-point times")
        raise ValueError("frame does not have per-point times")
    return sample(frame, np.argsort(frame.times, kind="stable"))


def _apply(frame: Frame, transformation, affine: bool) -> None:
    matrix = np.asarray(transformation, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise ValueError(f"transformation must be a 4x4 matrix, got {matrix.shape}")

    frame.points = frame.points @ matrix.T

    if frame.normals is not None:
        if affine:
            normal_matrix = np.zeros((4, 4))
            normal_matrix[:3, :3] = np.linalg.inv(matrix[:3, :3]).T
        else:
            normal_matrix = matrix
        frame.normals = frame.normals @ normal_matrix.T

    if frame.covs is not None:
        frame.covs = matrix @ frame.covs @ matrix.T


def transform(frame: Frame, transformation, affine: bool = False) -> Frame:
    """Return a transformed copy of the frame.

    ``transformation`` is a 4x4 homogeneous matrix. With ``affine`` set, normals
    are transformed by the inverse transpose of its linear part.
    """
    transformed = frame.copy()
    _apply(transformed, transformation, affine)
    return transformed


def transform_inplace(frame: Frame, transformation, affine: bool = False) -> None:
    """Transform the frame's points, normals and covariances in place."""
    _apply(frame, transformation, affine)


def find_inlier_points(frame: Frame, neighbors: Sequence[int], k: int, std_thresh: float) -> list[int]:
    """Indices of points whose mean distance to their ``k`` neighbours is not an outlier."""
    num_points = len(frame)
    if num_points == 0:
        return []
    neighbor_array = np.asarray(neighbors, dtype=np.int64).reshape(-1)
    if neighbor_array.size < num_points * k:
        raise ValueError("neighbors must hold k indices for every point")
    neighbor_array = neighbor_array[: num_points * k].reshape(num_points, k)

    points = frame.points
    diffs = points[neighbor_array] - points[:, None, :]
    dists = np.linalg.norm(diffs, axis=2).sum(axis=1) / k

    mean = dists.sum() / num_points
    var = (dists * dists).sum() / num_points - mean * mean
    dist_thresh = mean + math.sqrt(max(var, 0.0)) * std_thresh

    return [int(i) for i in np.flatnonzero(dists < dist_thresh)]