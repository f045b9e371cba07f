"""
Camera Sources
Capture threads delivering RGB preview frames to a callback

A delivered frame must be released (frame.release()) before the source
reads the next one, so at most one preview buffer is outstanding.
"""

import logging
import threading
import time
from typing import Callable, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraFrame:
    """One preview frame: H x W x 3 RGB pixels plus a release hook."""

    def __init__(self, pixels: np.ndarray, release: Optional[Callable[[], None]] = None):
        self.pixels = pixels
        self._release = release
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self):
        if self._released:
            return
        self._released = True
        if self._release is not None:
            self._release()


class CameraSource:
    """
    Base capture loop. Subclasses implement _open(), _read() and _close().

    _read() returns a BGR frame or None when nothing is available yet.
    """

    name = "camera"

    def __init__(self, width: int, height: int, on_frame: Optional[Callable[[CameraFrame], object]] = None,
                 release_timeout_s: float = 5.0):
        """
        Args:
            width:             Preview width delivered to the callback.
            height:            Preview height delivered to the callback.
            on_frame:          Callback taking a CameraFrame.
            release_timeout_s: How long to wait for a frame to be released.
        """
        self.width = width
        self.height = height
        self.on_frame = on_frame
        self.release_timeout_s = release_timeout_s

        self.stop_event = threading.Event()
        self._released = threading.Event()
        self._released.set()
        self.capture_thread: Optional[threading.Thread] = None
        self.is_running = False

        self.frames_captured = 0
        self.read_failures = 0
        self.callback_errors = 0

    def _open(self):
        raise NotImplementedError

    def _read(self) -> Optional[np.ndarray]:
        raise NotImplementedError

    def _close(self):
        raise NotImplementedError

    def start(self):
        """
        Open the device and start the capture thread.

        Returns:
            None.
        """
        if self.is_running:
            logger.warning(f"{self.name} already running")
            return

        self._open()
        self.stop_event.clear()
        self.is_running = True
        self.capture_thread = threading.Thread(
            target=self._capture_loop,
            name=f"{self.name}-Capture",
            daemon=True,
        )
        self.capture_thread.start()
        logger.info(f"✓ {self.name} started ({self.width}x{self.height})")

    def stop(self):
        if not self.is_running:
            return

        self.stop_event.set()
        if self.capture_thread and self.capture_thread.is_alive():
            self.capture_thread.join(timeout=5)
        self._close()
        self.is_running = False
        logger.info(f"✓ {self.name} stopped ({self.frames_captured} frames)")

    def _capture_loop(self):
        while not self.stop_event.is_set():
            if not self._released.wait(timeout=self.release_timeout_s):
                logger.warning(f"{self.name}: previous frame not released, waiting")
                continue

            bgr = self._read()
            if bgr is None:
                self.read_failures += 1
                time.sleep(0.005)
                continue

            self._deliver(bgr)

    def _deliver(self, bgr: np.ndarray):
        if bgr.shape[1] != self.width or bgr.shape[0] != self.height:
            bgr = cv2.resize(bgr, (self.width, self.height), interpolation=cv2.INTER_LINEAR)
        rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)

        self._released.clear()
        frame = CameraFrame(rgb, self._released.set)
        self.frames_captured += 1

        if self.on_frame is None:
            frame.release()
            return

        try:
            self.on_frame(frame)
        except Exception as e:
            self.callback_errors += 1
            logger.error(f"Frame callback failed: {e}", exc_info=True)
            frame.release()

    def get_status(self) -> dict:
        return {
            'running': self.is_running,
            'frames': self.frames_captured,
            'read_failures': self.read_failures,
            'callback_errors': self.callback_errors,
        }


class OpenCVCamera(CameraSource):
    """USB / built-in webcam through cv2.VideoCapture."""

    name = "OpenCVCamera"

    def __init__(self, width: int, height: int, on_frame=None, index: int = 0, **kwargs):
        super().__init__(width, height, on_frame, **kwargs)
        self.index = index
        self.cap = None

    def _open(self):
        self.cap = cv2.VideoCapture(self.index)
        if not self.cap.isOpened():
            self.cap = None
            raise RuntimeError(f"Could not open camera {self.index}")
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

    def _read(self) -> Optional[np.ndarray]:
        ok, frame = self.cap.read()
        return frame if ok else None

    def _close(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class DepthAICamera(CameraSource):
    """OAK colour camera preview stream (requires the depthai extra)."""

    name = "DepthAICamera"

    def __init__(self, width: int, height: int, on_frame=None, **kwargs):
        super().__init__(width, height, on_frame, **kwargs)
        self.device = None
        self.queue = None

    def _open(self):
        import depthai as dai

        pipeline = dai.Pipeline()
        cam  = pipeline.create(dai.node.ColorCamera)
        xout = pipeline.create(dai.node.XLinkOut)
        xout.setStreamName("rgb")
        cam.setInterleaved(False)
        cam.setResolution(dai.ColorCameraProperties.SensorResolution.THE_1080_P)
        cam.setColorOrder(dai.ColorCameraProperties.ColorOrder.BGR)
        cam.setPreviewSize(self.width, self.height)
        cam.preview.link(xout.input)
        self.device = dai.Device(pipeline)
        self.queue  = self.device.getOutputQueue("rgb", maxSize=4, blocking=False)

    def _read(self) -> Optional[np.ndarray]:
        packet = self.queue.tryGet()
        if packet is None:
            return None
        return packet.getCvFrame()

    def _close(self):
        if self.device is not None:
            self.device.close()
        self.device = self.queue = None


def create_camera(kind: str, width: int, height: int, on_frame=None, **kwargs) -> CameraSource:
    """
    Build a camera source by name.

    Args:
        kind: 'opencv' or 'depthai'.

    Returns:
        CameraSource, not yet started.
    """
    if kind == 'opencv':
        return OpenCVCamera(width, height, on_frame, **kwargs)
    if kind == 'depthai':
        return DepthAICamera(width, height, on_frame, **kwargs)
    raise ValueError(f"Unknown camera '{kind}', expected 'opencv' or 'depthai'")
