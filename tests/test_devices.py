"""Face landmarks -> Face, camera frame delivery and the gaze overlay"""

from types import SimpleNamespace

import numpy as np
import pygame as pg
import pytest

from gaze_system.devices.camera import CameraFrame, CameraSource, create_camera
from gaze_system.devices.face_detector import ContourKind, MediaPipeFaceDetector, face_from_landmarks
from gaze_system.devices.overlay import GazeOverlay
from gaze_system.estimation.config import GazeConfig
from gaze_system.estimation.display import DisplayPoint
from gaze_system.estimation.geometry import Rect


def landmark(x, y):
    return SimpleNamespace(x=x, y=y)


def test_face_from_landmarks():
    landmarks = [landmark(0.125, 0.25), landmark(0.5, 0.25), landmark(0.25, 0.75), landmark(0.375, 0.5)]

    face = face_from_landmarks(landmarks, 200, 100, left_eye_indices=(1, 3), right_eye_indices=(0,))

    assert face.bounding_box == Rect(25, 25, 100, 75)
    assert face.contour(ContourKind.LEFT_EYE) == [(100.0, 25.0), (75.0, 50.0)]
    assert face.contour(ContourKind.RIGHT_EYE) == [(25.0, 25.0)]


def test_missing_contour_is_empty():
    face = face_from_landmarks([landmark(0.5, 0.5)], 10, 10, (), ())
    assert face.contour(ContourKind.LEFT_EYE) == []


def test_detector_requires_start():
    detector = MediaPipeFaceDetector(GazeConfig())
    with pytest.raises(RuntimeError):
        detector.detect(np.zeros((4, 4, 4), dtype=np.uint8))
    assert detector.get_status() == {'running': False, 'detections': 0}


def test_camera_frame_release_once():
    calls = []
    frame = CameraFrame(np.zeros((2, 2, 3), dtype=np.uint8), lambda: calls.append(1))

    frame.release()
    frame.release()

    assert frame.released
    assert calls == [1]


class ListSource(CameraSource):
    name = "ListSource"

    def _open(self):
        pass

    def _read(self):
        return None

    def _close(self):
        pass


def test_delivered_frame_is_rgb_at_preview_size():
    received = []
    source = ListSource(8, 6, on_frame=received.append)
    bgr = np.zeros((12, 16, 3), dtype=np.uint8)
    bgr[..., 0] = 200  # blue

    source._deliver(bgr)

    frame = received[0]
    assert frame.pixels.shape == (6, 8, 3)
    assert (frame.pixels[..., 2] == 200).all()
    assert (frame.pixels[..., 0] == 0).all()


def test_next_frame_waits_for_release():
    received = []
    source = ListSource(4, 4, on_frame=received.append)

    source._deliver(np.zeros((4, 4, 3), dtype=np.uint8))
    assert not source._released.is_set()

    received[0].release()
    assert source._released.is_set()


def test_callback_error_releases_frame():
    def explode(frame):
        raise RuntimeError("consumer failed")

    source = ListSource(4, 4, on_frame=explode)
    source._deliver(np.zeros((4, 4, 3), dtype=np.uint8))

    assert source.callback_errors == 1
    assert source._released.is_set()


def test_unknown_camera_kind():
    with pytest.raises(ValueError):
        create_camera('webcam', 640, 480)


def test_overlay_latest_point():
    overlay = GazeOverlay()
    assert overlay.latest() is None

    overlay.publish(DisplayPoint(10.0, 20.0))
    overlay.publish(DisplayPoint(30.0, 40.0))

    assert overlay.latest() == DisplayPoint(30.0, 40.0)
    assert overlay.publish_count == 2


def test_overlay_repaint_flag():
    overlay = GazeOverlay()
    assert overlay.consume_repaint() is False

    overlay.request_repaint()
    overlay.request_repaint()

    assert overlay.consume_repaint() is True
    assert overlay.consume_repaint() is False


def test_overlay_draws_dot():
    overlay = GazeOverlay(dot_radius=3, dot_colour=(255, 0, 0))
    surface = pg.Surface((50, 50))
    overlay.publish(DisplayPoint(20.4, 30.6))

    assert overlay.draw(surface) == (20, 31)
    assert tuple(surface.get_at((20, 31)))[:3] == (255, 0, 0)


def test_overlay_skips_off_screen_point():
    overlay = GazeOverlay()
    surface = pg.Surface((50, 50))
    overlay.publish(DisplayPoint(-5.0, 10.0))

    assert overlay.draw(surface) is None
