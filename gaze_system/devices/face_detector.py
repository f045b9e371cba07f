"""
Face Detector
Asynchronous face / eye-contour detection on the working frame.

The orchestrator only needs detect(image) -> Future[List[Face]]; each Face
exposes bounding_box and contour(kind) in working-frame pixels.
MediaPipeFaceDetector provides that on top of MediaPipe FaceMesh.
"""

import enum
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

import numpy as np

from gaze_system.estimation.geometry import Point, Rect

if TYPE_CHECKING:
    from gaze_system.estimation.config import GazeConfig

logger = logging.getLogger(__name__)


class ContourKind(enum.Enum):
    LEFT_EYE = 'left_eye'
    RIGHT_EYE = 'right_eye'


@dataclass
class Face:
    """One detected face in working-frame pixel space."""

    bounding_box: Rect
    contours: Dict[ContourKind, List[Point]] = field(default_factory=dict)

    def contour(self, kind: ContourKind) -> List[Point]:
        return self.contours.get(kind, [])


def face_from_landmarks(
        landmarks: Sequence,
        width: int,
        height: int,
        left_eye_indices: Sequence[int],
        right_eye_indices: Sequence[int]
) -> Face:
    """
    Build a Face from normalised FaceMesh landmarks.

    Args:
        landmarks:         Landmarks with .x / .y in [0, 1].
        width:             Image width in pixels.
        height:            Image height in pixels.
        left_eye_indices:  Landmark ring of the subject's left eye.
        right_eye_indices: Landmark ring of the subject's right eye.

    Returns:
        Face with the landmark bounding box and both eye contours.
    """
    xs = np.array([lm.x for lm in landmarks], dtype=float) * width
    ys = np.array([lm.y for lm in landmarks], dtype=float) * height

    bounds = Rect(
        int(np.floor(xs.min())),
        int(np.floor(ys.min())),
        int(np.ceil(xs.max())),
        int(np.ceil(ys.max())),
    )

    def ring(indices):
        return [Point(float(xs[i]), float(ys[i])) for i in indices]

    return Face(
        bounding_box=bounds,
        contours={
            ContourKind.LEFT_EYE: ring(left_eye_indices),
            ContourKind.RIGHT_EYE: ring(right_eye_indices),
        },
    )


class MediaPipeFaceDetector:
    """
    FaceMesh-backed detector running on its own single-thread executor.

    FaceMesh keeps tracking state between calls, so requests are serialised
    on one thread.
    """

    def __init__(self, config: 'GazeConfig'):
        self.config = config
        self.face_mesh = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self.detection_count = 0

    def start(self):
        """
        Create FaceMesh and the detection executor.

        Returns:
            None.
        """
        if self._executor is not None:
            return

        import mediapipe as mp

        self.face_mesh = mp.solutions.face_mesh.FaceMesh(
            static_image_mode=self.config.mp_static_image_mode,
            max_num_faces=self.config.mp_max_num_faces,
            refine_landmarks=self.config.mp_refine_landmarks,
            min_detection_confidence=self.config.mp_min_detection_confidence,
            min_tracking_confidence=self.config.mp_min_tracking_confidence,
        )
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="FaceDetector")
        logger.info("✓ MediaPipe face detector started")

    def stop(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.face_mesh:
            self.face_mesh.close()
            self.face_mesh = None
        logger.info(f"✓ Face detector stopped ({self.detection_count} detections)")

    def detect(self, image: np.ndarray) -> 'Future[List[Face]]':
        """
        Detect faces asynchronously.

        Args:
            image: RGBA (or RGB) working frame.

        Returns:
            Future resolving to a list of Face, empty if none found.
        """
        if self._executor is None:
            raise RuntimeError("Face detector not started")
        return self._executor.submit(self._detect_sync, image)

    def _detect_sync(self, image: np.ndarray) -> List[Face]:
        rgb = np.ascontiguousarray(image[..., :3])
        results = self.face_mesh.process(rgb)
        self.detection_count += 1

        if not results.multi_face_landmarks:
            return []

        height, width = image.shape[:2]
        return [
            face_from_landmarks(
                face_landmarks.landmark,
                width,
                height,
                self.config.left_eye_indices,
                self.config.right_eye_indices,
            )
            for face_landmarks in results.multi_face_landmarks
        ]

    def get_status(self) -> dict:
        return {
            'running': self._executor is not None,
            'detections': self.detection_count,
        }
