import numpy as np
import pytest

from vlcalib.frame import Frame
from vlcalib.lidar_image import generate_lidar_image


class PinholeCamera:
    def __init__(self, fx, fy, cx, cy):
        self.fx, self.fy, self.cx, self.cy = fx, fy, cx, cy

    def project(self, point):
        p = np.asarray(point, dtype=float)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.array([self.fx * p[0] / p[2] + self.cx, self.fy * p[1] / p[2] + self.cy])


@pytest.fixture
def camera():
    return PinholeCamera(100.0, 100.0, 50.0, 40.0)


def _frame(points, intensities):
    frame = Frame.from_points(points)
    frame.add_intensities(intensities)
    return frame


def test_image_shapes_and_types(camera):
    intensities, indices = generate_lidar_image(camera, (100, 80), np.eye(4), _frame([[0.0, 0.0, 3.0]], [0.2]))
    assert intensities.shape == (80, 100)
    assert indices.shape == (80, 100)
    assert indices.dtype == np.int32


def test_single_point_is_rendered(camera):
    intensities, indices = generate_lidar_image(camera, (100, 80), np.eye(4), _frame([[0.0, 0.0, 3.0]], [0.2]))
    assert indices[40, 50] == 0
    assert intensities[40, 50] == pytest.approx(0.2)
    assert np.count_nonzero(indices >= 0) == 1
    assert np.count_nonzero(intensities) == 1


@pytest.mark.parametrize("order", [(0, 1), (1, 0)])
def test_nearest_point_wins(camera, order):
    points = np.array([[0.0, 0.0, 3.0], [0.0, 0.0, 6.0]])[list(order)]
    values = np.array([0.2, 0.7])[list(order)]
    intensities, indices = generate_lidar_image(camera, (100, 80), np.eye(4), _frame(points, values))
    assert intensities[40, 50] == pytest.approx(0.2)
    assert indices[40, 50] == order.index(0)


def test_point_behind_camera_is_ignored(camera):
    intensities, indices = generate_lidar_image(camera, (100, 80), np.eye(4), _frame([[0.0, 0.0, -3.0]], [0.5]))
    assert np.all(indices == -1)
    assert np.all(intensities == 0.0)


def test_transform_is_applied(camera):
    flip = np.diag([1.0, -1.0, -1.0, 1.0])
    intensities, indices = generate_lidar_image(camera, (100, 80), flip, _frame([[0.0, 0.0, -3.0]], [0.5]))
    assert indices[40, 50] == 0
    assert intensities[40, 50] == pytest.approx(0.5)


def test_requires_intensities(camera):
    with pytest.raises(ValueError):
        generate_lidar_image(camera, (100, 80), np.eye(4), Frame.from_points([[0.0, 0.0, 3.0]]))