"""Point cloud frames, sampling, voxel maps, timestamps and NID costs for camera-LiDAR calibration."""

__version__ = "0.1.0"