"""Accumulation of static LiDAR scans into a voxelised point cloud."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from vlcalib.frame import Frame


@dataclass
class StaticPointCloudIntegratorParams:
    voxel_resolution: float = 0.05
    min_distance: float = 1.0


class StaticPointCloudIntegrator:
    """Keeps the most recently inserted point of every voxel."""

    def __init__(self, params: StaticPointCloudIntegratorParams | None = None):
        self.params = params if params is not None else StaticPointCloudIntegratorParams()
        self.voxelgrid: dict[tuple[int, int, int], tuple[float, float, float, float]] = {}

    def insert_points(self, raw_points: Frame) -> None:
        """Add a scan; points closer than ``min_distance`` are discarded."""
        if not raw_points.has_intensities():
            raise ValueError("points must have intensities")
        points = raw_points.points
        keep = np.linalg.norm(points[:, :3], axis=1) >= self.params.min_distance
        coords = np.floor(points[:, :3] / self.params.voxel_resolution).astype(np.int64)

        for coord, pt, intensity in zip(coords[keep], points[keep], raw_points.intensities[keep]):
            key = (int(coord[0]), int(coord[1]), int(coord[2]))
            self.voxelgrid[key] = (float(pt[0]), float(pt[1]), float(pt[2]), float(intensity))

    def get_points(self) -> Frame:
        """One point per occupied voxel, stored at single precision, with intensities."""
        values = np.array(list(self.voxelgrid.values()), dtype=np.float64).reshape(-1, 4)
        values = values.astype(np.float32).astype(np.float64)
        frame = Frame.from_points(values[:, :3])
        frame.add_intensities(values[:, 3])
        return frame