"""Per-point covariance and normal estimation from nearest neighbours."""

from __future__ import annotations

import enum
from typing import Optional, Sequence

import numpy as np


class RegularizationMethod(enum.Enum):
    NONE = enum.auto()
    PLANE = enum.auto()
    NORMALIZED_MIN_EIG = enum.auto()
    FROBENIUS = enum.auto()


class CloudCovarianceEstimation:
    """Estimate regularised point covariances from k-nearest-neighbour lists."""

    def __init__(self, num_threads: int = 1, regularization_method: RegularizationMethod = RegularizationMethod.PLANE):
        self.num_threads = num_threads
        self.regularization_method = regularization_method

    @staticmethod
    def _neighbor_table(points, neighbors, k_neighbors: Optional[int]):
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 4:
            raise ValueError(f"points must have shape (N, 4), got {points.shape}")
        neighbor_array = np.asarray(neighbors, dtype=np.int64).reshape(-1)
        num_points = points.shape[0]
        if num_points == 0:
            raise ValueError("points must not be empty")
        k_correspondences = neighbor_array.size // num_points
        if k_correspondences * num_points != neighbor_array.size:
            raise ValueError("k * points.size() != neighbors.size()")
        k = k_correspondences if k_neighbors is None else int(k_neighbors)
        if k > k_correspondences or k <= 0:
            raise ValueError(f"k_neighbors must be in 1..{k_correspondences}, got {k}")
        table = neighbor_array.reshape(num_points, k_correspondences)[:, :k]
        return points, table, k

    @staticmethod
    def _sums(points: np.ndarray, table: np.ndarray):
        neighbor_points = points[table]
        sum_points = neighbor_points.sum(axis=1)
        sum_cross = np.einsum("nki,nkj->nij", neighbor_points, neighbor_points)
        return sum_points, sum_cross

    def _regularize_batch(self, covs: np.ndarray):
        """Regularise (N, 4, 4) covariances, returning results and eigen decompositions."""
        block = covs[:, :3, :3]
        eigenvalues, eigenvectors = np.linalg.eigh(block)
        method = self.regularization_method

        if method == RegularizationMethod.NONE:
            return covs.copy(), eigenvalues, eigenvectors

        result = np.zeros_like(covs)
        if method == RegularizationMethod.PLANE:
            values = np.broadcast_to(np.array([1e-3, 1.0, 1.0]), eigenvalues.shape)
            result[:, :3, :3] = np.einsum("nij,nj,nkj->nik", eigenvectors, values, eigenvectors)
        elif method == RegularizationMethod.NORMALIZED_MIN_EIG:
            values = np.maximum(eigenvalues / eigenvalues[:, 2:3], 1e-3)
            result[:, :3, :3] = np.einsum("nij,nj,nkj->nik", eigenvectors, values, eigenvectors)
        else:
            c = block + 1e-3 * np.eye(3)
            c_inv = np.linalg.inv(c)
            norms = np.linalg.norm(c_inv, axis=(1, 2))
            result[:, :3, :3] = np.linalg.inv(c_inv / norms[:, None, None])
        return result, eigenvalues, eigenvectors

    def regularize(self, cov) -> np.ndarray:
        """Regularise one 4x4 covariance according to the configured method."""
        matrix = np.asarray(cov, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"cov must be a 4x4 matrix, got {matrix.shape}")
        return self._regularize_batch(matrix[None])[0][0]

    def estimate(self, points, neighbors: Sequence[int], k_neighbors: Optional[int] = None) -> np.ndarray:
        """Covariances (N, 4, 4) from flat neighbour lists using the sample (k-1) estimator."""
        points, table, k = self._neighbor_table(points, neighbors, k_neighbors)
        sum_points, sum_cross = self._sums(points, table)
        mean = sum_points / k
        covs = (sum_cross - np.einsum("ni,nj->nij", mean, sum_points)) / (k - 1)
        result, _, _ = self._regularize_batch(covs)
        result[:, 3, 3] = 0.0
        return result

    def estimate_with_normals(self, points, neighbors: Sequence[int], k_neighbors: Optional[int] = None):
        """Return ``(normals, covs)``; normals point away from the points' direction."""
        points, table, k = self._neighbor_table(points, neighbors, k_neighbors)
        sum_points, sum_cross = self._sums(points, table)
        mean = sum_points / k
        covs = (sum_cross - np.einsum("ni,nj->nij", mean, sum_points)) / k
        result, _, eigenvectors = self._regularize_batch(covs)
        result[:, 3, 3] = 0.0

        normals = np.zeros((points.shape[0], 4))
        normals[:, :3] = eigenvectors[:, :, 0]
        flip = np.einsum("ni,ni->n", points, normals) > 0.0
        normals[flip] = -normals[flip]
        return normals, result