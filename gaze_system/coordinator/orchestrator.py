"""
Frame Orchestrator
Admission gate and per-frame pipeline: preview -> working frame -> face
detection -> face / eye / grid crops -> inference -> display point -> overlay

Threads:
    camera thread  process_image(): admission, preview copy, warp
    worker thread  single message channel driving the state machine
                   IDLE -> DETECTING -> INFERRING -> PUBLISHING -> IDLE
    detector       completes on its own executor, re-enters via the channel
"""

import enum
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

import numpy as np

from gaze_system.devices.face_detector import ContourKind
from gaze_system.estimation.display import GazeVector
from gaze_system.estimation.geometry import (
    Rect,
    affine_from_preview_to_work,
    eye_bounding_rect,
)
from gaze_system.estimation.marshaller import resize_nearest

from .admission import AdmissionGate, AdmissionTicket
from .clock import FrameClock

if TYPE_CHECKING:
    from gaze_system.estimation.display import DisplayMapper
    from gaze_system.estimation.inference import GazeInferenceAdaptor

logger = logging.getLogger(__name__)


class PipelineState(enum.Enum):
    IDLE = 'idle'
    DETECTING = 'detecting'
    INFERRING = 'inferring'
    PUBLISHING = 'publishing'


# Worker channel message kinds
MSG_DETECT    = 'detect'
MSG_FACES     = 'faces'
MSG_INFER     = 'infer'
MSG_CONFIGURE = 'configure'


@dataclass
class _Message:
    kind: str
    ticket: Optional[AdmissionTicket]
    payload: Dict[str, Any] = field(default_factory=dict)


class FrameOrchestrator:
    """
    Drives one preview frame at a time through detection and inference.

    Frames arriving while a frame is in flight are released straight back to
    the camera and dropped: no queue, no retry. The admission ticket taken in
    process_image() is released exactly once on every terminal path of that
    frame, including exceptions.
    """

    def __init__(
            self,
            detector,
            adaptor: 'GazeInferenceAdaptor',
            mapper: 'DisplayMapper',
            overlay,
            telemetry=None,
            clock: Optional[FrameClock] = None,
            crop_size: Tuple[int, int] = (960, 1280),
            input_size: int = 224,
            grid_size: int = 25,
            watchdog_timeout_s: Optional[float] = None,
    ):
        """
        Args:
            detector:           Face detector, detect(image) -> Future[List[Face]].
            adaptor:            GazeInferenceAdaptor (or compatible recognize_gaze()).
            mapper:             DisplayMapper for gaze -> display pixel.
            overlay:            Overlay with publish(point) and request_repaint().
            telemetry:          Optional sink with write(face_ms, inference_ms).
            clock:              FrameClock for frame timestamps and timings.
            crop_size:          Working frame (width, height).
            input_size:         S, side length of face / eye crops.
            grid_size:          Side length of the face grid.
            watchdog_timeout_s: Admission watchdog bound; None disables it.
        """
        self.detector  = detector
        self.adaptor   = adaptor
        self.mapper    = mapper
        self.overlay   = overlay
        self.telemetry = telemetry
        self.clock     = clock or FrameClock()

        self.crop_width, self.crop_height = crop_size
        self.input_size = input_size
        self.grid_size  = grid_size

        self.gate = AdmissionGate(watchdog_timeout_s)

        # Preview / working frame state (set by configure_preview)
        self.preview_width  = 0
        self.preview_height = 0
        self._preview: Optional[np.ndarray] = None
        self.frame_to_crop = None
        self.crop_to_frame = None

        # Worker channel
        self._channel: 'queue.Queue[Optional[_Message]]' = queue.Queue()
        self.stop_event    = threading.Event()
        self.worker_thread: Optional[threading.Thread] = None
        self.is_running    = False

        self._state = PipelineState.IDLE
        self._state_lock = threading.Lock()
        self._idle = threading.Condition()
        self._pending = 0
        self._current_ticket: Optional[AdmissionTicket] = None

        # Counters
        self.frames_seen     = 0
        self.frames_admitted = 0
        self.frames_dropped  = 0
        self.frames_rejected = 0
        self.inference_count = 0
        self.error_count     = 0
        self.last_error: Optional[BaseException] = None
        self.last_point = None

        logger.info(
            f"FrameOrchestrator created (work {self.crop_width}x{self.crop_height}, "
            f"S={input_size}, watchdog={watchdog_timeout_s})"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def configure_preview(self, width: int, height: int, rotation_deg: int = 0, maintain_aspect: bool = False):
        """
        Allocate the preview image and build both transforms.

        Called once per preview-size change, before process_image().

        Args:
            width:           Preview width in pixels.
            height:          Preview height in pixels.
            rotation_deg:    Sensor orientation relative to the screen.
            maintain_aspect: Keep the preview aspect ratio when warping.
        """
        self.preview_width  = width
        self.preview_height = height
        self._preview = np.zeros((height, width, 4), dtype=np.uint8)
        self._preview[..., 3] = 255

        self.frame_to_crop = affine_from_preview_to_work(
            width, height, self.crop_width, self.crop_height, rotation_deg, maintain_aspect
        )
        self.crop_to_frame = self.frame_to_crop.invert()

        logger.info(
            f"Preview {width}x{height} configured, rotation {rotation_deg}, "
            f"working frame {self.crop_width}x{self.crop_height}"
        )

    def start(self):
        """
        Start the worker thread.

        Returns:
            None.
        """
        if self.is_running:
            logger.warning("FrameOrchestrator already running")
            return

        self.stop_event.clear()
        self.is_running = True
        self.worker_thread = threading.Thread(
            target=self._worker_loop,
            name="GazeWorker-Thread",
            daemon=True,
        )
        self.worker_thread.start()
        logger.info("✓ FrameOrchestrator started")

    def stop(self):
        """
        Stop the worker thread. Messages still queued are discarded and any
        held admission is released.

        Returns:
            None.
        """
        if not self.is_running:
            return

        self.stop_event.set()
        self._channel.put(None)
        if self.worker_thread and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=5)

        while True:
            try:
                message = self._channel.get_nowait()
            except queue.Empty:
                break
            if message is None:
                continue
            if message.ticket is not None:
                self._finish(message.ticket)
            self._task_done()

        # A detection still running on the detector's executor holds the gate
        if self._current_ticket is not None:
            self._finish(self._current_ticket)

        self.is_running = False
        self._set_state(PipelineState.IDLE)
        logger.info(
            f"✓ FrameOrchestrator stopped ({self.frames_seen} frames, "
            f"{self.inference_count} inferences)"
        )

    def process_image(self, frame) -> bool:
        """
        Handle one preview frame on the camera thread.

        Args:
            frame: Camera frame with `pixels` (H x W x 3 RGB uint8) and release().

        Returns:
            True if the frame was admitted, False if it was dropped.
        """
        timestamp = self.clock.next_frame()
        self.frames_seen += 1
        self.overlay.request_repaint()

        if self._preview is None:
            frame.release()
            raise RuntimeError("configure_preview() must be called before process_image()")

        ticket = self.gate.try_acquire(timestamp)
        if ticket is None:
            self.frames_dropped += 1
            frame.release()
            logger.debug(f"Frame {timestamp} dropped, detection in flight")
            return False

        self.frames_admitted += 1
        self._current_ticket = ticket
        logger.debug(f"Preparing image {timestamp} for detection in bg thread")

        try:
            try:
                self._copy_into_preview(frame.pixels)
            finally:
                frame.release()
            working = self.frame_to_crop.warp(self._preview, (self.crop_width, self.crop_height))
        except Exception:
            self._finish(ticket)
            raise

        self._post(_Message(MSG_DETECT, ticket, {'image': working}))
        return True

    def set_num_threads(self, num_threads: int):
        """Change inference threads on the worker, between inferences."""
        self._post(_Message(MSG_CONFIGURE, None, {'num_threads': num_threads}))

    def set_use_nnapi(self, use_nnapi: bool):
        self._post(_Message(MSG_CONFIGURE, None, {'use_nnapi': use_nnapi}))

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no frame is in flight and the channel is drained.

        Returns:
            True when idle, False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: self._pending == 0 and not self.gate.held,
                timeout=timeout,
            )

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    @property
    def computing_detection(self) -> bool:
        """True while a frame holds the admission gate."""
        return self.gate.held

    def get_status(self) -> dict:
        """
        Return the current orchestrator state.

        Returns:
            Dict with state, frame counters, inference count and last error.
        """
        return {
            'is_running':          self.is_running,
            'state':               self.state.value,
            'computing_detection': self.computing_detection,
            'frames_seen':         self.frames_seen,
            'frames_admitted':     self.frames_admitted,
            'frames_dropped':      self.frames_dropped,
            'frames_rejected':     self.frames_rejected,
            'inferences':          self.inference_count,
            'errors':              self.error_count,
            'watchdog_revocations': self.gate.revoked_count,
            'last_error':          repr(self.last_error) if self.last_error else None,
            'last_point':          self.last_point,
        }

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _worker_loop(self):
        logger.info("Gaze worker loop started")

        while not self.stop_event.is_set():
            try:
                message = self._channel.get(timeout=0.1)
            except queue.Empty:
                continue

            if message is None:
                break

            try:
                self._handle(message)
            except Exception as e:
                self.error_count += 1
                self.last_error = e
                logger.error(f"Error handling '{message.kind}' message: {e}", exc_info=True)
                if message.ticket is not None:
                    self._finish(message.ticket)
            finally:
                self._task_done()

        logger.info("Gaze worker loop stopped")

    def _handle(self, message: _Message):
        if message.kind == MSG_CONFIGURE:
            self._on_configure(message)
            return

        if not message.ticket.valid:
            logger.warning(
                f"Discarding '{message.kind}' for frame {message.ticket.frame}: admission revoked"
            )
            return

        if message.kind == MSG_DETECT:
            self._on_detect(message)
        elif message.kind == MSG_FACES:
            self._on_faces(message)
        elif message.kind == MSG_INFER:
            self._on_infer(message)
        else:
            raise ValueError(f"Unknown message kind '{message.kind}'")

    def _on_detect(self, message: _Message):
        ticket = message.ticket
        image = message.payload['image']

        self._set_state(PipelineState.DETECTING)
        logger.debug(f"Running detection on image {ticket.frame}")

        start_ms = self.clock.uptime_ms()
        future = self.detector.detect(image)
        future.add_done_callback(
            lambda done: self._post(_Message(MSG_FACES, ticket, {
                'future': done,
                'image': image,
                'start_ms': start_ms,
            }))
        )

    def _on_faces(self, message: _Message):
        ticket = message.ticket
        future = message.payload['future']
        image = message.payload['image']

        error = future.exception()
        if error is not None:
            logger.warning(f"Face detection failed for frame {ticket.frame}: {error}")
            self._finish(ticket)
            return

        faces = future.result()
        if not faces:
            logger.debug(f"No face in frame {ticket.frame}")
            self._finish(ticket)
            return

        height, width = image.shape[:2]
        face = faces[0]
        bounds = face.bounding_box

        if not (bounds.is_inside(width, height) and bounds.width > 0 and bounds.height > 0):
            self.frames_rejected += 1
            logger.debug(f"Face {bounds} outside working frame or empty, frame {ticket.frame} dropped")
            self._finish(ticket)
            return

        left_points = face.contour(ContourKind.LEFT_EYE)
        right_points = face.contour(ContourKind.RIGHT_EYE)
        if not left_points or not right_points:
            self.frames_rejected += 1
            logger.debug(f"Missing eye contour in frame {ticket.frame}")
            self._finish(ticket)
            return

        left_rect = eye_bounding_rect(left_points)
        right_rect = eye_bounding_rect(right_points)
        if not (left_rect.is_inside(width, height) and right_rect.is_inside(width, height)
                and left_rect.width > 0 and left_rect.height > 0
                and right_rect.width > 0 and right_rect.height > 0):
            self.frames_rejected += 1
            logger.debug(f"Eye boxes {left_rect} / {right_rect} unusable, frame {ticket.frame} dropped")
            self._finish(ticket)
            return

        size = self.input_size
        face_image = resize_nearest(bounds.crop(image), size)
        left_image = resize_nearest(left_rect.crop(image), size)
        right_image = resize_nearest(right_rect.crop(image), size)
        grid_image = self._render_grid(bounds, width, height)

        face_ms = self.clock.uptime_ms() - message.payload['start_ms']

        self._set_state(PipelineState.INFERRING)
        self._post(_Message(MSG_INFER, ticket, {
            'face': face_image,
            'left': left_image,
            'right': right_image,
            'grid': grid_image,
            'face_ms': face_ms,
        }))

    def _on_infer(self, message: _Message):
        ticket = message.ticket
        payload = message.payload

        start_ms = self.clock.uptime_ms()
        recognized = self.adaptor.recognize_gaze(
            payload['face'], payload['left'], payload['right'], payload['grid']
        )
        inference_ms = self.clock.uptime_ms() - start_ms
        self.inference_count += 1

        if not ticket.valid:
            logger.warning(f"Inference for frame {ticket.frame} finished after revocation, discarded")
            return

        self._set_state(PipelineState.PUBLISHING)
        gaze = GazeVector(float(recognized[0][0]), float(recognized[0][1]))
        point = self.mapper.map(gaze)
        self.last_point = point

        self.overlay.publish(point)
        self.overlay.request_repaint()

        if self.telemetry is not None:
            self.telemetry.write(payload['face_ms'], inference_ms)

        logger.debug(
            f"Frame {ticket.frame}: gaze ({gaze.gx_cm:.2f}, {gaze.gy_cm:.2f}) cm -> "
            f"({point.x_px:.0f}, {point.y_px:.0f}) px"
        )
        self._finish(ticket)

    def _on_configure(self, message: _Message):
        if 'num_threads' in message.payload:
            self.adaptor.set_num_threads(message.payload['num_threads'])
            logger.info(f"Inference threads set to {message.payload['num_threads']}")
        if 'use_nnapi' in message.payload:
            self.adaptor.set_use_nnapi(message.payload['use_nnapi'])
            logger.info(f"NNAPI {'enabled' if message.payload['use_nnapi'] else 'disabled'}")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _copy_into_preview(self, pixels: np.ndarray):
        pixels = np.asarray(pixels)
        expected = (self.preview_height, self.preview_width)
        if pixels.shape[:2] != expected:
            raise ValueError(f"Camera frame is {pixels.shape[:2]}, expected {expected}")
        self._preview[..., :3] = pixels[..., :3]

    def _render_grid(self, bounds: Rect, width: int, height: int) -> np.ndarray:
        """Black working-size frame, white face rectangle, downscaled to the grid."""
        grid = np.zeros((height, width, 4), dtype=np.uint8)
        grid[..., 3] = 255
        grid[bounds.top:bounds.bottom, bounds.left:bounds.right, :3] = 255
        return resize_nearest(grid, self.grid_size)

    def _post(self, message: _Message):
        with self._idle:
            self._pending += 1
        self._channel.put(message)

    def _task_done(self):
        with self._idle:
            self._pending = max(0, self._pending - 1)
            self._idle.notify_all()

    def _finish(self, ticket: AdmissionTicket):
        if ticket.release():
            self._set_state(PipelineState.IDLE)
        with self._idle:
            self._idle.notify_all()

    def _set_state(self, state: PipelineState):
        with self._state_lock:
            self._state = state

    def __repr__(self):
        return f"<FrameOrchestrator(state={self.state.value}, frames={self.frames_seen})>"
