import logging

import numpy as np
import pytest

from vlcalib.frame import Frame, load_frame


def _points3():
    return np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0], [-1.0, 0.5, 2.5]])


def test_from_points_3d_is_homogeneous():
    frame = Frame.from_points(_points3())
    assert len(frame) == 3
    assert frame.points.shape == (3, 4)
    np.testing.assert_allclose(frame.points[:, :3], _points3())
    np.testing.assert_allclose(frame.points[:, 3], 1.0)


def test_from_points_4d_keeps_all_components():
    pts = np.array([[1.0, 2.0, 3.0, 0.5], [4.0, 5.0, 6.0, 2.0]])
    frame = Frame.from_points(pts)
    np.testing.assert_allclose(frame.points, pts)


def test_from_points_rejects_bad_shape():
    with pytest.raises(ValueError):
        Frame.from_points(np.zeros((4, 2)))


def test_empty_frame_has_no_attributes():
    frame = Frame()
    assert len(frame) == 0
    assert not frame.has_points()
    assert not frame.has_times()
    assert not frame.has_normals()
    assert not frame.has_covs()
    assert not frame.has_intensities()


def test_add_attributes_and_has():
    frame = Frame.from_points(_points3())
    frame.add_times([0.0, 0.1, 0.2])
    frame.add_intensities([0.3, 0.4, 0.5])
    frame.add_normals(np.array([[0.0, 0.0, 1.0]] * 3))
    frame.add_covs(np.stack([np.eye(3)] * 3))
    assert frame.has_points() and frame.has_times() and frame.has_intensities()
    assert frame.has_normals() and frame.has_covs()
    np.testing.assert_allclose(frame.times, [0.0, 0.1, 0.2])
    np.testing.assert_allclose(frame.intensities, [0.3, 0.4, 0.5])


def test_add_normals_3d_has_zero_w():
    frame = Frame.from_points(_points3())
    normals = np.array([[0.0, 1.0, 0.0]] * 3)
    frame.add_normals(normals)
    np.testing.assert_allclose(frame.normals[:, :3], normals)
    np.testing.assert_allclose(frame.normals[:, 3], 0.0)


def test_add_covs_3x3_embedded_in_zeros():
    frame = Frame.from_points(_points3())
    cov = np.arange(9, dtype=float).reshape(3, 3)
    frame.add_covs(np.stack([cov] * 3))
    assert frame.covs.shape == (3, 4, 4)
    np.testing.assert_allclose(frame.covs[:, :3, :3], np.stack([cov] * 3))
    np.testing.assert_allclose(frame.covs[:, 3, :], 0.0)
    np.testing.assert_allclose(frame.covs[:, :, 3], 0.0)


@pytest.mark.parametrize(
    "add, has",
    [
        (lambda f: f.add_times([0.0, 1.0]), lambda f: f.has_times()),
        (lambda f: f.add_intensities([0.0]), lambda f: f.has_intensities()),
        (lambda f: f.add_normals(np.zeros((2, 3))), lambda f: f.has_normals()),
        (lambda f: f.add_covs(np.zeros((5, 4, 4))), lambda f: f.has_covs()),
    ],
)
def test_length_mismatch_raises(add, has):
    frame = Frame.from_points(_points3())
    with pytest.raises(ValueError):
        add(frame)
    assert has(frame) is False
    assert len(frame) == 3


def test_add_covs_rejects_bad_shape():
    frame = Frame.from_points(_points3())
    with pytest.raises(ValueError):
        frame.add_covs(np.zeros((3, 2, 2)))


def test_check_reports_and_warns(caplog):
    frame = Frame.from_points(_points3())
    with caplog.at_level(logging.WARNING):
        assert frame.check("points") is True
        assert frame.check("times") is False
    assert "frame doesn't have times" in caplog.text


def test_check_unknown_attribute():
    with pytest.raises(ValueError):
        Frame().check("colors")


def test_copy_is_independent():
    frame = Frame.from_points(_points3())
    frame.add_intensities([1.0, 2.0, 3.0])
    frame.aux_attributes["label"] = (1, b"\x01\x02\x03")
    copied = frame.copy()
    copied.points[0, 0] = 100.0
    copied.intensities[0] = 100.0
    copied.aux_attributes["label"] = (1, b"\x00\x00\x00")
    assert frame.points[0, 0] == 1.0
    assert frame.intensities[0] == 1.0
    assert frame.aux_attributes["label"] == (1, b"\x01\x02\x03")
    assert not copied.has_times()


def test_load_full_format(tmp_path):
    pts = np.array([[1.0, 2.0, 3.0, 1.0], [4.0, 5.0, 6.0, 1.0]])
    times = np.array([0.0, 0.05])
    normals = np.array([[0.0, 0.0, 1.0, 0.0], [1.0, 0.0, 0.0, 0.0]])
    covs = np.stack([np.arange(16, dtype=float).reshape(4, 4), np.eye(4)])
    intensities = np.array([0.25, 0.75])

    pts.astype("<f8").tofile(tmp_path / "points.bin")
    times.astype("<f8").tofile(tmp_path / "times.bin")
    normals.astype("<f8").tofile(tmp_path / "normals.bin")
    # column-major storage
    covs.transpose(0, 2, 1).astype("<f8").tofile(tmp_path / "covs.bin")
    intensities.astype("<f8").tofile(tmp_path / "intensities.bin")

    frame = load_frame(tmp_path)
    assert len(frame) == 2
    np.testing.assert_allclose(frame.points, pts)
    np.testing.assert_allclose(frame.times, times)
    np.testing.assert_allclose(frame.normals, normals)
    np.testing.assert_allclose(frame.covs, covs)
    np.testing.assert_allclose(frame.intensities, intensities)
    assert frame.aux_attributes == {}


def test_load_full_format_points_only(tmp_path):
    pts = np.array([[1.0, 2.0, 3.0, 1.0]])
    pts.astype("<f8").tofile(tmp_path / "points.bin")
    frame = load_frame(tmp_path)
    np.testing.assert_allclose(frame.points, pts)
    assert not frame.has_times()
    assert not frame.has_covs()


def test_load_compact_format(tmp_path):
    xyz = np.array([[1.0, 2.0, 3.0], [0.5, -0.5, 1.5]], dtype="<f4")
    xyz.tofile(tmp_path / "points_compact.bin")
    np.array([0.0, 0.5], dtype="<f4").tofile(tmp_path / "times_compact.bin")
    np.array([[0.0, 1.0, 0.0], [0.0, 0.0, 1.0]], dtype="<f4").tofile(tmp_path / "normals_compact.bin")
    upper = np.array([[1, 2, 3, 4, 5, 6], [1, 0, 0, 1, 0, 1]], dtype="<f4")
    upper.tofile(tmp_path / "covs_compact.bin")
    np.array([0.25, 0.5], dtype="<f4").tofile(tmp_path / "intensities_compact.bin")

    frame = load_frame(tmp_path)
    assert len(frame) == 2
    np.testing.assert_allclose(frame.points[:, :3], xyz)
    np.testing.assert_allclose(frame.points[:, 3], 1.0)
    np.testing.assert_allclose(frame.times, [0.0, 0.5])
    np.testing.assert_allclose(frame.normals[:, 3], 0.0)
    np.testing.assert_allclose(frame.normals[0, :3], [0.0, 1.0, 0.0])
    expected_first = np.array(
        [[1, 2, 3, 0], [2, 4, 5, 0], [3, 5, 6, 0], [0, 0, 0, 0]], dtype=float
    )
    np.testing.assert_allclose(frame.covs[0], expected_first)
    np.testing.assert_allclose(frame.covs[1][:3, :3], np.eye(3))
    np.testing.assert_allclose(frame.intensities, [0.25, 0.5])


def test_load_aux_attributes(tmp_path):
    np.zeros((3, 4), dtype="<f8").tofile(tmp_path / "points.bin")
    (tmp_path / "aux_label.bin").write_bytes(b"\x01\x00\x02\x00\x03\x00")
    frame = load_frame(tmp_path)
    assert frame.aux_attributes["label"] == (2, b"\x01\x00\x02\x00\x03\x00")


def test_load_aux_size_mismatch_warns(tmp_path, caplog):
    np.zeros((3, 4), dtype="<f8").tofile(tmp_path / "points.bin")
    (tmp_path / "aux_odd.bin").write_bytes(b"\x01\x02\x03\x04")
    with caplog.at_level(logging.WARNING):
        frame = load_frame(tmp_path)
    assert frame.aux_attributes["odd"] == (1, b"\x01\x02\x03\x04")
    assert "bytes != elem_size * num_points" in caplog.text


def test_load_missing_points_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_frame(tmp_path)


def test_load_truncated_attribute_raises(tmp_path):
    np.zeros((3, 4), dtype="<f8").tofile(tmp_path / "points.bin")
    np.zeros(2, dtype="<f8").tofile(tmp_path / "times.bin")
    with pytest.raises(ValueError):
        load_frame(tmp_path)