"""Normalized information distance cost and visibility culling for calibration."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from vlcalib.fov import estimate_camera_fov
from vlcalib.frame import Frame
from vlcalib.sampling import sample


def _project(proj, pts3: np.ndarray) -> np.ndarray:
    if pts3.shape[0] == 0:
        return np.zeros((0, 2))
    with np.errstate(all="ignore"):
        return np.array([np.asarray(proj.project(p), dtype=np.float64)[:2] for p in pts3])


def _pixel_coords(projected: np.ndarray, width: int, height: int):
    """Truncate projections to integer pixels and flag those inside the image."""
    finite = np.all(np.isfinite(projected), axis=1)
    clipped = np.clip(np.where(finite[:, None], projected, 0.0), -1.0, float(max(width, height)))
    coords = np.trunc(clipped).astype(np.int64)
    inside = (
        finite
        & (coords[:, 0] >= 0)
        & (coords[:, 1] >= 0)
        & (coords[:, 0] < width)
        & (coords[:, 1] < height)
    )
    return coords, inside


def _normalized_z(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1)
    safe = np.where(norms > 0.0, norms, 1.0)
    return np.where(norms > 0.0, vectors[:, 2] / safe, 0.0)


@dataclass
class VisualLiDARData:
    """A grayscale camera image paired with a LiDAR point cloud."""

    image: np.ndarray
    points: Frame

    def __post_init__(self):
        self.image = np.asarray(self.image)
        if self.image.ndim != 2:
            raise ValueError(f"image must be a 2-D grayscale array, got shape {self.image.shape}")


@dataclass
class NIDCostParams:
    bins: int = 16


class CostCalculatorNID:
    """Normalized information distance between image pixels and LiDAR intensities."""

    def __init__(self, proj, data: VisualLiDARData, params: NIDCostParams | None = None):
        self.params = params if params is not None else NIDCostParams()
        self.proj = proj
        self.data = data
        height, width = data.image.shape
        self.max_fov = estimate_camera_fov(proj, (width, height))

    def calculate(self, T_camera_lidar) -> float:
        """NID for the given 4x4 camera-from-LiDAR transform; NaN if no point is visible."""
        if not self.data.points.has_intensities():
            raise ValueError("LiDAR points must have intensities")
        transform = np.asarray(T_camera_lidar, dtype=np.float64)
        image = self.data.image
        height, width = image.shape
        bins = self.params.bins

        pts_camera = self.data.points.points @ transform.T
        in_fov = np.flatnonzero(_normalized_z(pts_camera[:, :3]) >= math.cos(self.max_fov))
        coords, inside = _pixel_coords(_project(self.proj, pts_camera[in_fov, :3]), width, height)
        selected = in_fov[inside]
        coords = coords[inside]

        pixels = image[coords[:, 1], coords[:, 0]].astype(np.float64) / 255.0
        intensities = self.data.points.intensities[selected]

        image_bins = np.clip(np.trunc(pixels * bins).astype(np.int64), 0, bins - 1)
        lidar_bins = np.clip(np.trunc(intensities * bins).astype(np.int64), 0, bins - 1)

        hist = np.zeros((bins, bins))
        np.add.at(hist, (image_bins, lidar_bins), 1)
        hist_image = np.bincount(image_bins, minlength=bins).astype(np.float64)
        hist_points = np.bincount(lidar_bins, minlength=bins).astype(np.float64)

        total = hist_image.sum()
        if total == 0:
            return math.nan

        hist_rs = hist / total
        hist_r = hist_image / total
        hist_s = hist_points / total

        h_r = -float(np.sum(hist_r * np.log(hist_r + 1e-6)))
        h_s = -float(np.sum(hist_s * np.log(hist_s + 1e-6)))
        h_rs = -float(np.sum(hist_rs * np.log(hist_rs + 1e-6)))

        mutual_information = h_r + h_s - h_rs
        return (h_rs - mutual_information) / h_rs


@dataclass
class ViewCullingParams:
    enable_depth_buffer_culling: bool = True


class ViewCulling:
    """Removes points outside the camera view and, optionally, occluded points."""

    def __init__(self, proj, image_size, params: ViewCullingParams | None = None):
        self.params = params if params is not None else ViewCullingParams()
        self.proj = proj
        self.image_size = (int(image_size[0]), int(image_size[1]))
        self.min_z = math.cos(estimate_camera_fov(proj, self.image_size))

    def cull(self, points: Frame, T_camera_lidar) -> Frame:
        """Frame of the points visible from the camera at ``T_camera_lidar``."""
        transform = np.asarray(T_camera_lidar, dtype=np.float64)
        points_camera = points.points @ transform.T
        indices = self.view_culling(range(len(points)), points_camera)
        return sample(points, indices)

    def view_culling(self, point_indices: Sequence[int], points_camera) -> list[int]:
        """Indices (from ``point_indices``) of the camera-frame points that remain visible."""
        pts = np.asarray(points_camera, dtype=np.float64).reshape(-1, 4)
        labels = np.asarray(list(point_indices), dtype=np.int64)
        if labels.shape[0] != pts.shape[0]:
            raise ValueError("point_indices and points_camera must have the same length")
        width, height = self.image_size

        # The FoV test normalises the full homogeneous vector.
        candidates = np.flatnonzero(_normalized_z(pts) >= self.min_z)
        coords, inside = _pixel_coords(_project(self.proj, pts[candidates, :3]), width, height)
        kept = candidates[inside]
        coords = coords[inside]

        if not self.params.enable_depth_buffer_culling:
            return [int(i) for i in labels[kept]]

        dists = np.linalg.norm(pts[kept, :3], axis=1)
        dist_map = np.full((height, width), np.inf, dtype=np.float32)
        np.minimum.at(dist_map, (coords[:, 1], coords[:, 0]), dists.astype(np.float32))

        nearest = dist_map[coords[:, 1], coords[:, 0]].astype(np.float64)
        visible = dists <= nearest + 0.1
        return [int(i) for i in labels[kept[visible]]]