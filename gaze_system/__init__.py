"""
Gaze System
On-device gaze estimation from a front camera: face detection, a
face + eyes + face-grid TFLite model and a gaze dot on the display

Packages:
- estimation:  Tensor marshalling, geometry, model adaptor, display mapping, config
- coordinator: Admission gate, frame orchestrator, clock, component lifecycle
- devices:     Camera sources, MediaPipe face detector, overlay, timing telemetry
"""

__version__ = '1.0.0'
