"""Gaze vector -> display pixel mapping"""

import pytest

from gaze_system.estimation.config import DeviceGeometry
from gaze_system.estimation.display import DisplayMapper, DisplayPoint, GazeVector


@pytest.fixture
def mapper():
    return DisplayMapper(DeviceGeometry(), (0.01, 0.01))


def test_gaze_at_display_origin(mapper):
    point = mapper.map(GazeVector(-15.2, 11.7))
    assert point.x_px == pytest.approx(0.0, abs=1e-6)
    assert point.y_px == pytest.approx(0.0, abs=1e-6)


def test_gaze_at_camera(mapper):
    point = mapper.map(GazeVector(0.0, 0.0))
    assert point == DisplayPoint(pytest.approx(1520.0), pytest.approx(1170.0))


def test_gaze_up_moves_point_up(mapper):
    below = mapper.map(GazeVector(0.0, -1.0))
    above = mapper.map(GazeVector(0.0, 1.0))
    assert above.y_px < below.y_px
    assert above.y_px == pytest.approx(1070.0)


def test_off_screen_points_not_clamped(mapper):
    point = mapper.map(GazeVector(-40.0, 30.0))
    assert point.x_px < 0
    assert point.y_px < 0


def test_unequal_pixel_sizes():
    mapper = DisplayMapper(DeviceGeometry(dx_cm=2.0, dy_cm=3.0), (0.02, 0.05))
    assert mapper.map(GazeVector(1.0, 1.0)) == DisplayPoint(pytest.approx(150.0), pytest.approx(40.0))


def test_landscape_rotates_gaze_axes():
    mapper = DisplayMapper(DeviceGeometry(dx_cm=5.0, dy_cm=5.0, orientation='landscape'), (1.0, 1.0))

    assert mapper.to_display_axes(GazeVector(1.0, 0.0)) == (0, 1)
    assert mapper.map(GazeVector(1.0, 0.0)) == DisplayPoint(pytest.approx(5.0), pytest.approx(4.0))


def test_reverse_portrait_flips_both_axes():
    mapper = DisplayMapper(DeviceGeometry(orientation='reverse_portrait'), (1.0, 1.0))
    assert mapper.to_display_axes(GazeVector(2.0, -3.0)) == (-2.0, 3.0)


def test_invalid_pixel_size():
    with pytest.raises(ValueError):
        DisplayMapper(DeviceGeometry(), (0.0, 0.01))
