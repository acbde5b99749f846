# vlcalib

Building blocks for targetless camera–LiDAR calibration: point cloud frames,
voxel-based sampling and neighbour search, per-point covariance estimation,
LiDAR timestamp handling and a normalized-information-distance (NID) cost
between camera images and LiDAR intensities.

## Installation

```
pip install .
```

Run the tests with:

```
pip install .[test]
pytest
```

## Modules

- `vlcalib.frame`: `Frame`, a point cloud stored as homogeneous (N, 4)
  points with optional `times`, `normals`, `covs`, `intensities` and
  `aux_attributes`. `Frame.from_points` accepts (N, 3) or (N, 4) input;
  `add_times`, `add_normals`, `add_covs` and `add_intensities` raise
  `ValueError` when their length differs from the number of points.
  `load_frame(path)` reads a directory holding `points.bin` (float64) or
  `points_compact.bin` (float32) together with the matching optional
  `times`, `normals`, `covs` and `intensities` files and any `aux_<name>.bin`
  files; it raises `FileNotFoundError` if neither points file exists.
- `vlcalib.sampling`: `sample`, `random_sampling`, `voxelgrid_sampling`,
  `randomgrid_sampling`, `sort_by_time` (raises `ValueError` for a frame
  without times), `transform` and `transform_inplace` (4x4 matrices; with
  `affine=True` normals use the inverse transpose of the linear part) and
  `find_inlier_points` (statistical outlier removal from flat neighbour
  lists). The random samplers take a `numpy.random.Generator`.
- `vlcalib.covariance`: `CloudCovarianceEstimation` with `estimate` and
  `estimate_with_normals`, regularised by one of the `RegularizationMethod`
  values `NONE`, `PLANE`, `NORMALIZED_MIN_EIG` and `FROBENIUS`.
- `vlcalib.ivox`: `IVox`, an incremental voxel map with LRU-based removal of
  stale voxels, `nearest_neighbor_search` and `knn_search` (both return
  `(indices, squared_distances)` lists), and accessors `point`, `normal`,
  `cov`, `intensity`, `voxel_points`, `voxel_normals`, `voxel_covs`.
  `neighbor_offsets` gives the searched voxel offsets for modes 1, 7, 19
  and 27.
- `vlcalib.time_keeper`: `TimeKeeper`, which checks `RawPoints` scans and
  IMU stamps for rewinds (`process` and `validate_imu_stamp` return `False`)
  and turns absolute or missing per-point times into scan-relative ones as
  set by `AbsPointTimeParams`.
- `vlcalib.fov`: `estimate_direction`, `estimate_camera_fov` and
  `estimate_lidar_fov`.
- `vlcalib.calib`: `VisualLiDARData` (a 2-D grayscale image with a `Frame`),
  `CostCalculatorNID` with `NIDCostParams`, whose `calculate` returns `nan`
  when no point falls in the image, and `ViewCulling` with
  `ViewCullingParams`, which keeps points inside the camera view and,
  optionally, drops points hidden behind nearer ones.
- `vlcalib.lidar_image`: `generate_lidar_image`, returning an intensity
  image (float64, 0 where empty) and an index image (int32, -1 where empty)
  of the nearest point per pixel.
- `vlcalib.integrator`: `StaticPointCloudIntegrator`, which keeps the most
  recently inserted point of every voxel, discarding points closer than
  `min_distance`.

Camera models passed as `proj` are any object with a `project(point_3d)`
method returning pixel coordinates `(x, y)`.

## Example

```python
import numpy as np

from vlcalib.frame import Frame
from vlcalib.sampling import transform, voxelgrid_sampling

points = np.random.default_rng(0).uniform(-5.0, 5.0, size=(1000, 3))
frame = Frame.from_points(points)
frame.add_intensities(np.linspace(0.0, 1.0, len(frame)))

downsampled = voxelgrid_sampling(frame, 1.0)
shifted = transform(downsampled, np.eye(4))
print(len(downsampled), len(shifted))
```

## What this package does not do

It is a library only. It has no command-line tool, does not read recorded
sensor logs or write image and point files, includes no camera models, no
pose optimiser that searches for the camera–LiDAR transform, and no viewer.
Those are left to the code that uses it.