"""Validation and normalisation of LiDAR and IMU timestamps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class RawPoints:
    """A raw LiDAR scan: frame stamp, points and optional per-point times."""

    stamp: float
    points: np.ndarray
    times: np.ndarray = field(default_factory=lambda: np.zeros(0))
    intensities: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64)
        self.times = np.asarray(self.times, dtype=np.float64).reshape(-1)
        self.intensities = np.asarray(self.intensities, dtype=np.float64).reshape(-1)

    def __len__(self) -> int:
        return int(self.points.shape[0])


@dataclass
class AbsPointTimeParams:
    """How absolute per-point timestamps are converted to relative ones."""

    replace_frame_timestamp: bool = True
    wrt_first_frame_timestamp: bool = True


def _resized(values: np.ndarray, size: int) -> np.ndarray:
    result = np.zeros(size)
    n = min(size, values.size)
    result[:n] = values[:n]
    return result


class TimeKeeper:
    """Checks timestamp order and rewrites per-point times to be scan-relative."""

    def __init__(self, abs_params: AbsPointTimeParams | None = None):
        self.abs_params = abs_params if abs_params is not None else AbsPointTimeParams()
        self.first_warning = True
        self.last_points_stamp = -1.0
        self.last_imu_stamp = -1.0
        self.num_scans = 0
        self.first_points_stamp = 0.0
        self.estimated_scan_duration = -1.0
        self.point_time_offset = 0.0

    def validate_imu_stamp(self, imu_stamp: float) -> bool:
        """Accept an IMU stamp unless it goes back in time."""
        imu_diff = imu_stamp - self.last_imu_stamp
        if self.last_imu_stamp < 0.0:
            pass
        elif imu_stamp < self.last_imu_stamp:
            logger.warning(
                "IMU timestamp rewind detected: current:%.6f last:%.6f diff:%.6f",
                imu_stamp, self.last_imu_stamp, imu_diff,
            )
            return False
        elif imu_diff > 0.1:
            logger.warning(
                "large time gap between consecutive IMU data: current:%.6f last:%.6f diff:%.6f",
                imu_stamp, self.last_imu_stamp, imu_diff,
            )
        self.last_imu_stamp = imu_stamp

        points_diff = imu_stamp - self.last_points_stamp
        if self.last_points_stamp > 0.0 and abs(points_diff) > 1.0:
            logger.warning(
                "large time difference between points and imu: points:%.6f imu:%.6f diff:%.6f",
                self.last_points_stamp, imu_stamp, points_diff,
            )
        return True

    def process(self, points: RawPoints) -> bool:
        """Normalise the scan's times; return False if its stamp rewinds."""
        self.replace_points_stamp(points)

        time_diff = points.stamp - self.last_points_stamp
        if self.last_points_stamp < 0.0:
            pass
        elif time_diff < 0.0:
            logger.warning(
                "point timestamp rewind detected: current:%.6f last:%.6f diff:%.6f",
                points.stamp, self.last_points_stamp, time_diff,
            )
            return False
        elif time_diff > 0.5:
            logger.warning(
                "large time gap between consecutive LiDAR frames: current:%.6f last:%.6f diff:%.6f",
                points.stamp, self.last_points_stamp, time_diff,
            )

        self.last_points_stamp = points.stamp
        return True

    def replace_points_stamp(self, points: RawPoints) -> None:
        """Fill in or convert per-point times so that they are relative to the scan."""
        size = len(points)

        if points.times.size == 0:
            if self.first_warning:
                logger.warning("per-point timestamps are not given: use pseudo timestamps based on point order")
                self.first_warning = False
            points.times = np.zeros(size)
            scan_duration = self.estimate_scan_duration(points.stamp)
            if scan_duration > 0.0 and size:
                points.times = scan_duration * np.arange(size, dtype=np.float64) / size
            return

        if points.times.size != size:
            logger.warning("# of timestamps and # of points mismatch")
            points.times = _resized(points.times, size)
            return

        if points.times[0] < 0.0 or points.times[-1] < 0.0:
            min_time = float(points.times.min())
            logger.warning(
                "negative per-point timestamp (%.6f or %.6f) found: min_stamp=%.6f",
                points.times[0], points.times[-1], min_time,
            )
            points.times = points.times - min_time
            points.stamp -= min_time

        if points.times[0] < 1.0:
            return

        if self.first_warning:
            logger.warning(
                "large point timestamp (%.6f > 1.0) found: assume absolute times "
                "(replace_frame_stamp=%d wrt_first_frame_timestamp=%d)",
                points.times[-1],
                self.abs_params.replace_frame_timestamp,
                self.abs_params.wrt_first_frame_timestamp,
            )

        if points.times[0] > 1e16:
            if self.first_warning:
                logger.warning("too large point timestamp (%.6f > 1e16): convert nanosec to sec", points.times[0])
            points.times = points.times * 1e-9

        if self.abs_params.replace_frame_timestamp:
            first = float(points.times[0])
            if not self.abs_params.wrt_first_frame_timestamp or abs(points.stamp - first) < 1.0:
                if self.first_warning:
                    logger.warning("use first point timestamp as frame timestamp: frame=%.6f point=%.6f", points.stamp, first)
                self.point_time_offset = 0.0
                points.stamp = first
            else:
                if self.first_warning:
                    logger.warning(
                        "point timestamp is too apart from frame timestamp: frame=%.6f point=%.6f diff=%.6f",
                        points.stamp, first, points.stamp - first,
                    )
                    self.point_time_offset = points.stamp - first
                points.stamp = first + self.point_time_offset

            points.times = points.times - first

        self.first_warning = False

    def estimate_scan_duration(self, stamp: float) -> float:
        """Average interval between scans seen so far; -1 before it can be known."""
        if self.estimated_scan_duration > 0.0:
            return self.estimated_scan_duration

        self.num_scans += 1
        if self.num_scans == 1:
            self.first_points_stamp = stamp
            return -1.0

        scan_duration = (stamp - self.first_points_stamp) / (self.num_scans - 1)
        if self.num_scans == 1000:
            logger.warning("estimated scan duration: %f", scan_duration)
            self.estimated_scan_duration = scan_duration
        return scan_duration