"""
Gaze Estimation Configuration
Model, working-frame, device geometry and detector parameters
"""

import json
import math
import os
import tempfile
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Tuple


# Display rotation of the camera axes relative to the display axes, in degrees
ORIENTATIONS = {
    'portrait': 0,
    'landscape': 90,
    'reverse_portrait': 180,
    'reverse_landscape': 270,
}


@dataclass(frozen=True)
class DeviceGeometry:
    """
    Physical placement of the camera relative to the display.

    dx_cm / dy_cm are measured from the display's top-left corner to the
    camera, with the device held in `orientation`.
    """

    dx_cm: float = 15.2
    dy_cm: float = 11.7
    orientation: str = 'portrait'

    def __post_init__(self):
        for name in ('dx_cm', 'dy_cm'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")
        if self.orientation not in ORIENTATIONS:
            raise ValueError(
                f"orientation must be one of {sorted(ORIENTATIONS)}, got {self.orientation!r}"
            )

    @property
    def rotation_deg(self) -> int:
        return ORIENTATIONS[self.orientation]


@dataclass
class GazeConfig:
    """Gaze estimation configuration - defaults match the reference tablet build"""

    # Model
    input_size: int = 224            # S, side length of face / eye tensors
    is_quantized: bool = False
    grid_size: int = 25
    model_path: str = 'assets/converted_model.tflite'
    label_path: str = 'assets/labelmap.txt'
    num_threads: int = 4
    use_nnapi: bool = False

    # Mean images (present but not wired into the live path)
    asset_dir: str = 'assets'
    cache_dir: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), 'gaze_system_cache')
    )

    # Working frame the face detector runs on
    crop_width: int = 960
    crop_height: int = 1280
    maintain_aspect: bool = False

    # Desired camera preview
    preview_width: int = 960
    preview_height: int = 1280
    sensor_rotation_deg: int = 0

    # Display metrics (normally read from the OS)
    display_width_px: int = 1200
    display_height_px: int = 1920
    xdpi: float = 224.0
    ydpi: float = 224.0

    # Camera offset from display top-left
    device: DeviceGeometry = field(default_factory=DeviceGeometry)

    # MediaPipe FaceMesh settings
    mp_static_image_mode: bool = False
    mp_max_num_faces: int = 1
    mp_refine_landmarks: bool = False
    mp_min_detection_confidence: float = 0.5
    mp_min_tracking_confidence: float = 0.5

    # FaceMesh eye contour rings (subject's left / right eye)
    left_eye_indices: Tuple[int, ...] = (
        263, 249, 390, 373, 374, 380, 381, 382,
        362, 398, 384, 385, 386, 387, 388, 466,
    )
    right_eye_indices: Tuple[int, ...] = (
        33, 7, 163, 144, 145, 153, 154, 155,
        133, 173, 157, 158, 159, 160, 161, 246,
    )

    # Telemetry
    telemetry_dir: str = 'gazeEsti_time'
    telemetry_enabled: bool = True

    # Admission watchdog; None keeps the stall-forever behaviour
    watchdog_timeout_s: Optional[float] = 2.0

    # Overlay
    dot_radius: int = 20
    dot_colour: Tuple[int, int, int] = (255, 0, 0)

    @property
    def tensor_elements(self) -> int:
        """Float count of one face / eye tensor (1 x S x S x 3)."""
        return self.input_size * self.input_size * 3

    @property
    def grid_elements(self) -> int:
        """Float count of the face-grid tensor (1 x 25 x 25 x 1)."""
        return self.grid_size * self.grid_size

    @property
    def crop_size(self) -> Tuple[int, int]:
        return self.crop_width, self.crop_height

    def validate(self):
        """
        Check value ranges.

        Raises:
            ValueError listing every problem found.

        Returns:
            None.
        """
        errors = []

        if self.input_size <= 0:
            errors.append("input_size must be positive")
        if self.grid_size <= 0:
            errors.append("grid_size must be positive")
        if self.crop_width <= 0 or self.crop_height <= 0:
            errors.append("crop_width and crop_height must be positive")
        if self.preview_width <= 0 or self.preview_height <= 0:
            errors.append("preview_width and preview_height must be positive")
        if self.sensor_rotation_deg % 90 != 0:
            errors.append("sensor_rotation_deg must be a multiple of 90")
        if self.xdpi <= 0 or self.ydpi <= 0:
            errors.append("xdpi and ydpi must be positive")
        if self.num_threads < 1:
            errors.append("num_threads must be at least 1")
        if self.watchdog_timeout_s is not None and self.watchdog_timeout_s <= 0:
            errors.append("watchdog_timeout_s must be positive or None")
        if not self.left_eye_indices or not self.right_eye_indices:
            errors.append("eye contour indices must not be empty")

        if errors:
            raise ValueError("Invalid gaze configuration: " + "; ".join(errors))

    @classmethod
    def for_model(cls, input_size: int, **overrides) -> 'GazeConfig':
        """
        Configuration for a trained model with a given input side length.

        Args:
            input_size: S, typically 64 or 224.
            overrides:  Any other field to change.

        Returns:
            GazeConfig with input_size set.
        """
        return cls(input_size=input_size, **overrides)

    @classmethod
    def from_json(cls, path: str) -> 'GazeConfig':
        """
        Load a JSON file on top of the defaults.

        Unknown keys are rejected so typos do not silently fall back to
        defaults. The nested "device" object maps onto DeviceGeometry and
        "display" onto the display_* / dpi fields.

        Args:
            path: Path to the JSON configuration file.

        Returns:
            GazeConfig with the file's values applied.
        """
        with open(path, 'r', encoding='utf-8') as f:
            loaded = json.load(f)

        return cls().updated(loaded)

    def updated(self, values: dict) -> 'GazeConfig':
        """Return a copy with `values` merged in."""
        changes = dict(values)

        # "display": {"width_px", "height_px", "xdpi", "ydpi"}
        display = changes.pop('display', None)
        if display is not None:
            for key, value in display.items():
                name = key if key in ('xdpi', 'ydpi') else f'display_{key}'
                changes[name] = value

        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")

        if 'device' in changes:
            device = changes['device']
            if isinstance(device, dict):
                changes['device'] = replace(self.device, **device)
        for key in ('left_eye_indices', 'right_eye_indices', 'dot_colour'):
            if key in changes:
                changes[key] = tuple(changes[key])

        return replace(self, **changes)
