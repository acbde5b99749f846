"""Field-of-view estimation for cameras and LiDAR point clouds."""

from __future__ import annotations

import math
import sys

import numpy as np
from scipy.optimize import minimize
from scipy.spatial import ConvexHull, QhullError

from vlcalib.frame import Frame
from vlcalib.sampling import voxelgrid_sampling


def _to_direction(x) -> np.ndarray:
    """Rotate the optical axis about X by ``x[0]`` after rotating about Y by ``x[1]``."""
    a, b = float(x[0]), float(x[1])
    return np.array([math.sin(b), -math.sin(a) * math.cos(b), math.cos(a) * math.cos(b)])


def estimate_direction(proj, pt_2d) -> np.ndarray:
    """Unit bearing vector that ``proj`` maps onto the pixel ``pt_2d``."""
    target = np.asarray(pt_2d, dtype=np.float64)[:2]

    def cost(x) -> float:
        with np.errstate(all="ignore"):
            projected = np.asarray(proj.project(_to_direction(x)), dtype=np.float64)[:2]
            err = float(np.sum((target - projected) ** 2))
        return err if math.isfinite(err) else sys.float_info.max

    result = minimize(
        cost,
        np.zeros(2),
        method="Nelder-Mead",
        options={"xatol": 1e-10, "fatol": 1e-12, "maxiter": 2000},
    )
    return _to_direction(result.x)


def estimate_camera_fov(proj, image_size) -> float:
    """Largest angle from the optical axis over the image corner and edge midpoints."""
    width, height = int(image_size[0]), int(image_size[1])
    corners = [(0.0, 0.0), (float(width // 2), 0.0), (0.0, float(height // 2))]

    max_fov = 0.0
    for corner in corners:
        direction = estimate_direction(proj, corner)
        z = direction[2] / np.linalg.norm(direction)
        max_fov = max(max_fov, math.acos(float(np.clip(z, -1.0, 1.0))))
    return max_fov


def estimate_lidar_fov(frame: Frame) -> float:
    """Widest angle between bearing vectors on the convex hull of the cloud.

    The cloud is downsampled on a 0.2 m grid and points closer than 1 m are dropped.
    """
    cloud = Frame(points=np.asarray(frame.points, dtype=np.float64).copy())
    filtered = voxelgrid_sampling(cloud, 0.2).points[:, :3]
    filtered = filtered[np.linalg.norm(filtered, axis=1) >= 1.0]

    if filtered.shape[0] < 4:
        raise ValueError("at least four points farther than 1 m are needed to estimate the LiDAR FoV")
    try:
        hull = ConvexHull(filtered)
    except QhullError as error:
        raise ValueError(f"failed to compute the convex hull of the points: {error}") from error

    vertices = filtered[hull.vertices]
    dirs = vertices / np.linalg.norm(vertices, axis=1)[:, None]
    cosines = dirs @ dirs.T
    upper = cosines[np.triu_indices(len(dirs), k=1)]

    min_cosine = min(math.pi, float(upper.min()))
    return math.acos(float(np.clip(min_cosine, -1.0, 1.0)))