"""
Device Adapters
Camera sources, face detector, gaze overlay and timing telemetry
"""

from .camera import CameraFrame, CameraSource, DepthAICamera, OpenCVCamera, create_camera
from .face_detector import ContourKind, Face, MediaPipeFaceDetector, face_from_landmarks
from .overlay import GazeOverlay
from .telemetry import CsvTelemetrySink

__all__ = [
    'CameraFrame',
    'CameraSource',
    'DepthAICamera',
    'OpenCVCamera',
    'create_camera',
    'ContourKind',
    'Face',
    'MediaPipeFaceDetector',
    'face_from_landmarks',
    'GazeOverlay',
    'CsvTelemetrySink',
]
