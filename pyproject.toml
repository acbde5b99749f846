[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vlcalib"
version = "0.1.0"
description = "Point cloud frames, voxel maps and image-based cost functions for camera-LiDAR calibration"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "scipy",
]
keywords = ["lidar", "camera", "calibration", "point cloud", "voxel", "mutual information"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vlcalib"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
