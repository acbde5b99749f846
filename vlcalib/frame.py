"""Point cloud frames with optional per-point attributes and on-disk loading."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

_ATTRIBUTES = ("times", "points", "normals", "covs", "intensities")
_AUX_NAME_PATTERN = re.compile(r"/aux_([^_]+).bin")


def _as_vectors(values, kind: str) -> np.ndarray:
    array = np.asarray(values, dtype=np.float64)
    if array.ndim != 2 or array.shape[1] not in (3, 4):
        raise ValueError(f"{kind} must have shape (N, 3) or (N, 4), got {array.shape}")
    return array


@dataclass
class Frame:
    """A point cloud whose points are stored as homogeneous 4-vectors.

    ``points`` and ``normals`` are (N, 4) arrays, ``covs`` is (N, 4, 4),
    ``times`` and ``intensities`` are (N,). Missing attributes are ``None``.
    ``aux_attributes`` maps a name to ``(element_size, raw_bytes)``.
    """

    points: Optional[np.ndarray] = None
    times: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    covs: Optional[np.ndarray] = None
    intensities: Optional[np.ndarray] = None
    aux_attributes: dict[str, tuple[int, bytes]] = field(default_factory=dict)

    @classmethod
    def from_points(cls, points) -> "Frame":
        """Build a frame from (N, 3) or (N, 4) point coordinates."""
        frame = cls()
        frame.add_points(points)
        return frame

    def __len__(self) -> int:
        return 0 if self.points is None else int(self.points.shape[0])

    def copy(self) -> "Frame":
        """Return a deep copy of the frame and all of its attributes."""

        def dup(array):
            return None if array is None else array.copy()

        return Frame(
            points=dup(self.points),
            times=dup(self.times),
            normals=dup(self.normals),
            covs=dup(self.covs),
            intensities=dup(self.intensities),
            aux_attributes={name: (size, bytes(data)) for name, (size, data) in self.aux_attributes.items()},
        )

    def has_times(self) -> bool:
        return self.times is not None

    def has_points(self) -> bool:
        return self.points is not None

    def has_normals(self) -> bool:
        return self.normals is not None

    def has_covs(self) -> bool:
        return self.covs is not None

    def has_intensities(self) -> bool:
        return self.intensities is not None

    def check(self, attribute: str) -> bool:
        """Report whether ``attribute`` is present, logging a warning if it is not."""
        if attribute not in _ATTRIBUTES:
            raise ValueError(f"unknown frame attribute: {attribute!r}")
        present = getattr(self, attribute) is not None
        if not present:
            logger.warning("frame doesn't have %s", attribute)
        return present

    def _checked_length(self, values: np.ndarray, kind: str) -> None:
        if values.shape[0] != len(self):
            raise ValueError(f"number of {kind} ({values.shape[0]}) does not match number of points ({len(self)})")

    def add_points(self, points) -> None:
        """Set the points; 3-D input gets a homogeneous coordinate of 1."""
        array = _as_vectors(points, "points")
        storage = np.zeros((array.shape[0], 4))
        storage[:, 3] = 1.0
        storage[:, : array.shape[1]] = array
        self.points = storage

    def add_times(self, times) -> None:
        array = np.asarray(times, dtype=np.float64).reshape(-1)
        self._checked_length(array, "times")
        self.times = array.copy()

    def add_normals(self, normals) -> None:
        """Set the normals; 3-D input gets a homogeneous coordinate of 0."""
        array = _as_vectors(normals, "normals")
        self._checked_length(array, "normals")
        storage = np.zeros((array.shape[0], 4))
        storage[:, : array.shape[1]] = array
        self.normals = storage

    def add_covs(self, covs) -> None:
        """Set the covariances; 3x3 input is embedded in a zero 4x4 matrix."""
        array = np.asarray(covs, dtype=np.float64)
        if array.ndim != 3 or array.shape[1:] not in ((3, 3), (4, 4)):
            raise ValueError(f"covs must have shape (N, 3, 3) or (N, 4, 4), got {array.shape}")
        self._checked_length(array, "covs")
        dim = array.shape[1]
        storage = np.zeros((array.shape[0], 4, 4))
        storage[:, :dim, :dim] = array
        self.covs = storage

    def add_intensities(self, intensities) -> None:
        array = np.asarray(intensities, dtype=np.float64).reshape(-1)
        self._checked_length(array, "intensities")
        self.intensities = array.copy()


def _read(path: Path, dtype: str, count: int) -> np.ndarray:
    data = np.fromfile(path, dtype=dtype, count=count)
    if data.size < count:
        raise ValueError(f"{path} is truncated: expected {count} values, found {data.size}")
    return data.astype(np.float64)


def _load_full(frame: Frame, path: Path) -> None:
    points_path = path / "points.bin"
    num_points = points_path.stat().st_size // (4 * 8)
    frame.points = _read(points_path, "<f8", num_points * 4).reshape(num_points, 4)

    if (path / "times.bin").exists():
        frame.times = _read(path / "times.bin", "<f8", num_points)
    if (path / "normals.bin").exists():
        frame.normals = _read(path / "normals.bin", "<f8", num_points * 4).reshape(num_points, 4)
    if (path / "covs.bin").exists():
        # Matrices are stored column-major.
        raw = _read(path / "covs.bin", "<f8", num_points * 16).reshape(num_points, 4, 4)
        frame.covs = np.ascontiguousarray(raw.transpose(0, 2, 1))
    if (path / "intensities.bin").exists():
        frame.intensities = _read(path / "intensities.bin", "<f8", num_points)


def _load_compact(frame: Frame, path: Path) -> None:
    points_path = path / "points_compact.bin"
    num_points = points_path.stat().st_size // (3 * 4)
    xyz = _read(points_path, "<f4", num_points * 3).reshape(num_points, 3)
    frame.points = np.hstack([xyz, np.ones((num_points, 1))])

    if (path / "times_compact.bin").exists():
        frame.times = _read(path / "times_compact.bin", "<f4", num_points)
    if (path / "normals_compact.bin").exists():
        normals = _read(path / "normals_compact.bin", "<f4", num_points * 3).reshape(num_points, 3)
        frame.normals = np.hstack([normals, np.zeros((num_points, 1))])
    if (path / "covs_compact.bin").exists():
        c = _read(path / "covs_compact.bin", "<f4", num_points * 6).reshape(num_points, 6)
        covs = np.zeros((num_points, 4, 4))
        covs[:, 0, 0] = c[:, 0]
        covs[:, 0, 1] = covs[:, 1, 0] = c[:, 1]
        covs[:, 0, 2] = covs[:, 2, 0] = c[:, 2]
        covs[:, 1, 1] = c[:, 3]
        covs[:, 1, 2] = covs[:, 2, 1] = c[:, 4]
        covs[:, 2, 2] = c[:, 5]
        frame.covs = covs
    if (path / "intensities_compact.bin").exists():
        frame.intensities = _read(path / "intensities_compact.bin", "<f4", num_points)


def load_frame(path) -> Frame:
    """Load a frame from a directory of ``*.bin`` (or ``*_compact.bin``) files."""
    path = Path(path)
    frame = Frame()

    if (path / "points.bin").exists():
        _load_full(frame, path)
    elif (path / "points_compact.bin").exists():
        _load_compact(frame, path)
    else:
        raise FileNotFoundError(f"{path} does not contain points(_compact)?.bin")

    num_points = len(frame)
    for entry in sorted(path.iterdir()):
        matched = _AUX_NAME_PATTERN.search(entry.as_posix())
        if not matched:
            continue
        name = matched.group(1)
        data = entry.read_bytes()
        elem_size = len(data) // num_points if num_points else 0
        if elem_size * num_points != len(data):
            logger.warning(
                "elem_size=%d num_points=%d bytes=%d: bytes != elem_size * num_points",
                elem_size,
                num_points,
                len(data),
            )
        frame.aux_attributes[name] = (elem_size, data)

    return frame