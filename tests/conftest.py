"""
Shared mock collaborators for the gaze pipeline tests.

No camera, MediaPipe or TFLite model is needed: every external component
is replaced by a small recording fake.
"""

import threading
import time
from concurrent.futures import Future

import numpy as np
import pytest

from gaze_system.devices.face_detector import ContourKind, Face
from gaze_system.estimation.geometry import Point, Rect


class MockEngine:
    """Records every run() and fills the gaze output with a fixed value."""

    def __init__(self, output=(-15.2, 11.7), delay_s=0.0, error=None):
        self.output = np.array([output], dtype=np.float32)
        self.delay_s = delay_s
        self.error = error
        self.calls = []
        self.num_threads = None
        self.use_nnapi = False

        self._lock = threading.Lock()
        self._active = 0
        self.max_concurrent = 0

    def run(self, inputs, outputs):
        with self._lock:
            self._active += 1
            self.max_concurrent = max(self.max_concurrent, self._active)
        try:
            self.calls.append([buffer.as_array().copy() for buffer in inputs])
            if self.delay_s:
                time.sleep(self.delay_s)
            if self.error is not None:
                raise self.error
            for index, target in outputs.items():
                target[...] = self.output
        finally:
            with self._lock:
                self._active -= 1

    def set_num_threads(self, num_threads):
        self.num_threads = num_threads

    def set_use_nnapi(self, use_nnapi):
        self.use_nnapi = use_nnapi


class MockDetector:
    """
    detect() hands back a Future per call.

    With auto_faces set, the future is completed immediately; otherwise the
    test completes it through `futures`.
    """

    def __init__(self, auto_faces=None):
        self.auto_faces = auto_faces
        self.futures = []
        self.images = []
        self.started = False
        self.stopped = False

    def detect(self, image):
        future = Future()
        self.images.append(image)
        self.futures.append(future)
        if self.auto_faces is not None:
            future.set_result(list(self.auto_faces))
        return future

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


class MockOverlay:
    def __init__(self):
        self.points = []
        self.repaints = 0
        self._lock = threading.Lock()

    def publish(self, point):
        with self._lock:
            self.points.append(point)

    def request_repaint(self):
        with self._lock:
            self.repaints += 1


class MockTelemetry:
    def __init__(self):
        self.rows = []
        self.started = False
        self.stopped = False

    def write(self, face_ms, inference_ms):
        self.rows.append((face_ms, inference_ms))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


class MockCamera:
    def __init__(self):
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


class MockFrame:
    """Preview frame that counts releases."""

    def __init__(self, width=120, height=160, value=128):
        self.pixels = np.full((height, width, 3), value, dtype=np.uint8)
        self.release_count = 0

    def release(self):
        self.release_count += 1


class ScriptedClock:
    """Frame counter plus uptime_ms() values taken from a script."""

    def __init__(self, uptimes=()):
        self._uptimes = list(uptimes)
        self._frame = 0

    def next_frame(self):
        self._frame += 1
        return self._frame

    def uptime_ms(self):
        if self._uptimes:
            return self._uptimes.pop(0)
        return 0

    def get_stats(self):
        return {'frames': self._frame}


def eye_hexagon(cx, cy):
    """Ten pixel wide eye contour centred on (cx, cy)."""
    return [
        Point(cx - 5, cy), Point(cx - 2, cy - 3), Point(cx + 2, cy - 3),
        Point(cx + 5, cy), Point(cx + 2, cy + 3), Point(cx - 2, cy + 3),
    ]


def make_face():
    """Face well inside a 120x160 working frame with two hexagonal eyes."""
    return Face(
        bounding_box=Rect(20, 30, 100, 130),
        contours={
            ContourKind.LEFT_EYE: eye_hexagon(75, 70),
            ContourKind.RIGHT_EYE: eye_hexagon(45, 70),
        },
    )


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def face():
    return make_face()


@pytest.fixture
def engine():
    return MockEngine()


@pytest.fixture
def overlay():
    return MockOverlay()


@pytest.fixture
def telemetry():
    return MockTelemetry()
