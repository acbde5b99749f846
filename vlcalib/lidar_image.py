"""Rendering of LiDAR intensities into a virtual camera image."""

from __future__ import annotations

import math

import numpy as np

from vlcalib.fov import estimate_camera_fov
from vlcalib.frame import Frame


def _project(proj, pts3: np.ndarray) -> np.ndarray:
    if pts3.shape[0] == 0:
        return np.zeros((0, 2))
    with np.errstate(all="ignore"):
        return np.array([np.asarray(proj.project(p), dtype=np.float64)[:2] for p in pts3])


def generate_lidar_image(proj, image_size, T_camera_lidar, points: Frame):
    """Render the nearest point per pixel.

    Returns ``(intensity_image, index_image)`` of shape (height, width): float64
    intensities (0 where empty) and int32 point indices (-1 where empty).
    """
    if not points.has_intensities():
        raise ValueError("LiDAR points must have intensities")
    width, height = int(image_size[0]), int(image_size[1])
    min_z = math.cos(estimate_camera_fov(proj, (width, height)))
    transform = np.asarray(T_camera_lidar, dtype=np.float64)

    sq_dist_image = np.full((height, width), np.finfo(np.float64).max)
    intensity_image = np.zeros((height, width))
    index_image = np.full((height, width), -1, dtype=np.int32)

    pts_camera = points.points @ transform.T
    xyz = pts_camera[:, :3]
    norms = np.linalg.norm(xyz, axis=1)
    safe = np.where(norms > 0.0, norms, 1.0)
    nz = np.where(norms > 0.0, xyz[:, 2] / safe, 0.0)
    candidates = np.flatnonzero(nz >= min_z)

    projected = _project(proj, xyz[candidates])
    for index, pt_2d in zip(candidates, projected):
        if not np.all(np.isfinite(pt_2d)):
            continue
        x, y = (int(c) for c in np.trunc(np.clip(pt_2d, -1.0, float(max(width, height)))))
        if x < 0 or y < 0 or x >= width or y >= height:
            continue

        sq_dist = float(xyz[index] @ xyz[index])
        if sq_dist_image[y, x] < sq_dist:
            continue

        sq_dist_image[y, x] = sq_dist
        intensity_image[y, x] = points.intensities[index]
        index_image[y, x] = index

    return intensity_image, index_image