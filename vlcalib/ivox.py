"""Incremental voxel map (iVox) for approximate nearest-neighbour search."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from vlcalib.frame import Frame

logger = logging.getLogger(__name__)

POINT_ID_BITS = 32
VOXEL_ID_BITS = 32
_POINT_ID_MASK = (1 << POINT_ID_BITS) - 1
_MAX_VOXELS = (1 << VOXEL_ID_BITS) - 1


def _calc_index(voxel_id: int, point_id: int) -> int:
    return (voxel_id << POINT_ID_BITS) | point_id


def _voxel_id(index: int) -> int:
    return index >> POINT_ID_BITS


def _point_id(index: int) -> int:
    return index & _POINT_ID_MASK


class LinearContainer:
    """Points (and their attributes) stored in one voxel."""

    def __init__(self, lru_count: int = 0):
        self.last_lru_count = lru_count
        self.serial_id = 0
        self.points: list[np.ndarray] = []
        self.normals: list[np.ndarray] = []
        self.covs: list[np.ndarray] = []
        self.intensities: list[float] = []

    def __len__(self) -> int:
        return len(self.points)

    def _far_enough(self, point: np.ndarray, insertion_dist_sq_thresh: float) -> bool:
        if not self.points:
            return True
        diffs = np.asarray(self.points) - point
        min_dist = float(np.min(np.einsum("ij,ij->i", diffs, diffs)))
        return min_dist > insertion_dist_sq_thresh

    def insert(self, point, insertion_dist_sq_thresh: float) -> None:
        """Add ``point`` unless an existing point lies within the threshold."""
        point = np.asarray(point, dtype=np.float64)
        if self._far_enough(point, insertion_dist_sq_thresh):
            self.points.append(point.copy())

    def insert_from_frame(self, frame: Frame, index: int, insertion_dist_sq_thresh: float) -> None:
        """Add point ``index`` of ``frame`` together with its attributes."""
        point = frame.points[index]
        if not self._far_enough(point, insertion_dist_sq_thresh):
            return
        self.points.append(point.copy())
        if frame.normals is not None:
            self.normals.append(frame.normals[index].copy())
        if frame.covs is not None:
            self.covs.append(frame.covs[index].copy())
        if frame.intensities is not None:
            self.intensities.append(float(frame.intensities[index]))


def neighbor_offsets(neighbor_voxel_mode: int) -> list[tuple[int, int, int]]:
    """Offsets of the voxels searched around a query voxel (mode 1, 7, 19 or 27)."""
    if neighbor_voxel_mode == 1:
        return [(0, 0, 0)]
    if neighbor_voxel_mode == 7:
        return [(0, 0, 0), (1, 0, 0), (-1, 0, 0), (0, 1, 0), (0, -1, 0), (0, 0, 1), (0, 0, -1)]
    if neighbor_voxel_mode in (19, 27):
        cube = [(i, j, k) for i in (-1, 0, 1) for j in (-1, 0, 1) for k in (-1, 0, 1)]
        if neighbor_voxel_mode == 27:
            return cube
        return [o for o in cube if not all(abs(c) == 1 for c in o)]
    raise ValueError(f"invalid neighbor voxel mode {neighbor_voxel_mode}: must be 1, 7, 19, or 27")


class IVox:
    """Voxel hash map with LRU-based removal of stale voxels."""

    def __init__(self, voxel_resolution: float, insertion_dist_thresh: float, lru_thresh: int):
        self.voxel_resolution = voxel_resolution
        self.insertion_dist_sq_thresh = insertion_dist_thresh * insertion_dist_thresh
        self.lru_cycle = 10
        self.lru_thresh = lru_thresh
        self.lru_count = 0
        self.offsets = neighbor_offsets(7)

        self._points_available = False
        self._normals_available = False
        self._covs_available = False
        self._intensities_available = False

        self.voxelmap: dict[tuple[int, int, int], LinearContainer] = {}
        self.voxels: list[LinearContainer] = []

    def voxel_coord(self, point) -> tuple[int, int, int]:
        """Integer coordinate of the voxel containing ``point``."""
        scaled = np.floor(np.asarray(point, dtype=np.float64)[:3] / self.voxel_resolution)
        return tuple(int(c) for c in scaled)

    def has_points(self) -> bool:
        return self._points_available

    def has_normals(self) -> bool:
        return self._normals_available

    def has_covs(self) -> bool:
        return self._covs_available

    def has_intensities(self) -> bool:
        return self._intensities_available

    def _check_attributes(self, frame: Frame) -> None:
        if not self._points_available:
            self._points_available = frame.has_points()
            self._normals_available = frame.has_normals()
            self._covs_available = frame.has_covs()
            self._intensities_available = frame.has_intensities()
            return
        for name, available in (
            ("points", self._points_available),
            ("normals", self._normals_available),
            ("covs", self._covs_available),
            ("intensities", self._intensities_available),
        ):
            if available != (getattr(frame, name) is not None):
                raise ValueError(f"inconsistent input point attributes ({name})")

    def insert(self, frame: Frame) -> None:
        """Insert all points of ``frame`` and refresh the flattened voxel list."""
        self._check_attributes(frame)
        self.lru_count += 1

        for index in range(len(frame)):
            coord = self.voxel_coord(frame.points[index])
            container = self.voxelmap.get(coord)
            if container is None:
                container = LinearContainer(self.lru_count)
                self.voxelmap[coord] = container
            container.last_lru_count = self.lru_count
            container.insert_from_frame(frame, index, self.insertion_dist_sq_thresh)

        lru_horizon = self.lru_count - self.lru_thresh
        if lru_horizon > 0 and self.lru_count % self.lru_cycle == 0:
            self.voxelmap = {c: v for c, v in self.voxelmap.items() if v.last_lru_count >= lru_horizon}

        if len(self.voxelmap) >= _MAX_VOXELS:
            logger.warning("too many voxels: drop old voxels")
            recent = sorted(self.voxelmap.items(), key=lambda item: item[1].last_lru_count, reverse=True)
            self.voxelmap = dict(recent[:_MAX_VOXELS])

        self.voxels = list(self.voxelmap.values())
        for serial_id, container in enumerate(self.voxels):
            container.serial_id = serial_id

    def _neighbor_containers(self, point: np.ndarray):
        center = self.voxel_coord(point)
        for offset in self.offsets:
            coord = (center[0] + offset[0], center[1] + offset[1], center[2] + offset[2])
            container = self.voxelmap.get(coord)
            if container is None:
                continue
            container.last_lru_count = self.lru_count
            yield container

    @staticmethod
    def _query(pt) -> np.ndarray:
        pt = np.asarray(pt, dtype=np.float64)
        return np.array([pt[0], pt[1], pt[2], 1.0])

    def nearest_neighbor_search(self, pt) -> tuple[list[int], list[float]]:
        """Closest stored point to ``pt``: ``([index], [sq_dist])``, or empty lists."""
        point = self._query(pt)
        best: Optional[tuple[int, float]] = None
        for container in self._neighbor_containers(point):
            for point_id, stored in enumerate(container.points):
                diff = point - stored
                dist = float(diff @ diff)
                if best is not None and dist > best[1]:
                    continue
                best = (_calc_index(container.serial_id, point_id), dist)
        if best is None:
            return [], []
        return [best[0]], [best[1]]

    def knn_search(self, pt, k: int) -> tuple[list[int], list[float]]:
        """Up to ``k`` nearest stored points, sorted by squared distance."""
        if k == 1:
            return self.nearest_neighbor_search(pt)
        point = self._query(pt)
        neighbors: list[tuple[int, float]] = []
        for container in self._neighbor_containers(point):
            for point_id, stored in enumerate(container.points):
                diff = point - stored
                neighbors.append((_calc_index(container.serial_id, point_id), float(diff @ diff)))
        neighbors.sort(key=lambda item: item[1])
        neighbors = neighbors[:k]
        return [i for i, _ in neighbors], [d for _, d in neighbors]

    def point(self, i: int) -> np.ndarray:
        return self.voxels[_voxel_id(i)].points[_point_id(i)]

    def normal(self, i: int) -> np.ndarray:
        return self.voxels[_voxel_id(i)].normals[_point_id(i)]

    def cov(self, i: int) -> np.ndarray:
        return self.voxels[_voxel_id(i)].covs[_point_id(i)]

    def intensity(self, i: int) -> float:
        return self.voxels[_voxel_id(i)].intensities[_point_id(i)]

    def voxel_points(self) -> np.ndarray:
        """All stored points as an (M, 4) array."""
        rows = [p for voxel in self.voxels for p in voxel.points]
        return np.array(rows) if rows else np.zeros((0, 4))

    def voxel_normals(self) -> np.ndarray:
        """All stored normals as an (M, 4) array; empty if normals are unavailable."""
        if not self.has_normals():
            logger.warning("iVox doesn't have normals")
            return np.zeros((0, 4))
        rows = [n for voxel in self.voxels for n in voxel.normals]
        return np.array(rows) if rows else np.zeros((0, 4))

    def voxel_covs(self) -> np.ndarray:
        """All stored covariances as an (M, 4, 4) array; empty if unavailable."""
        if not self.has_covs():
            logger.warning("iVox doesn't have covs")
            return np.zeros((0, 4, 4))
        rows = [c for voxel in self.voxels for c in voxel.covs]
        return np.array(rows) if rows else np.zeros((0, 4, 4))