"""
Gaze Geometry Utilities
Preview/working-frame transforms, physical distance calibration and
eye-contour bounding boxes
"""

import logging
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Sequence, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

CM_PER_INCH = 2.54


class Point(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    """Axis-aligned integer rectangle, right/bottom exclusive."""

    left: int
    top: int
    right: int
    bottom: int

    def __post_init__(self):
        if self.left > self.right or self.top > self.bottom:
            raise ValueError(f"Degenerate rectangle {self}")

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def center(self) -> Point:
        return Point((self.left + self.right) / 2.0, (self.top + self.bottom) / 2.0)

    def is_inside(self, width: int, height: int) -> bool:
        """
        Check the rectangle lies fully within a width x height image.

        Args:
            width:  Image width in pixels.
            height: Image height in pixels.

        Returns:
            True if cropping this rectangle cannot go out of range.
        """
        return (
            self.left >= 0 and self.right <= width
            and self.top >= 0 and self.bottom <= height
        )

    def crop(self, image: np.ndarray) -> np.ndarray:
        """Slice this rectangle out of an (H, W, ...) image. Caller validates bounds."""
        return image[self.top:self.bottom, self.left:self.right]


@dataclass(frozen=True)
class DisplayMetrics:
    """Display size and density as reported by the OS."""

    width_px: int
    height_px: int
    xdpi: float
    ydpi: float

    @property
    def width_cm(self) -> float:
        return (self.width_px / self.xdpi) * CM_PER_INCH

    @property
    def height_cm(self) -> float:
        return (self.height_px / self.ydpi) * CM_PER_INCH


@dataclass(frozen=True)
class DistanceCalibration:
    """Centimetres covered by one working-frame pixel and one display pixel."""

    cm_per_work_x: float
    cm_per_work_y: float
    cm_per_display_x: float
    cm_per_display_y: float

    @property
    def cm_per_display_px(self) -> Tuple[float, float]:
        return self.cm_per_display_x, self.cm_per_display_y


# ---------------------------------------------------------------------------
# Affine transforms
# ---------------------------------------------------------------------------

def _translation(tx: float, ty: float) -> np.ndarray:
    return np.array([
        [1, 0, tx],
        [0, 1, ty],
        [0, 0, 1]
    ], dtype=float)


def _rotation(deg: int) -> np.ndarray:
    # Exact values for quarter turns so round trips stay clean
    cos_sin = {0: (1, 0), 90: (0, 1), 180: (-1, 0), 270: (0, -1)}
    ca, sa = cos_sin[deg]
    return np.array([
        [ca, -sa, 0],
        [sa, ca, 0],
        [0, 0, 1]
    ], dtype=float)


def _scale(sx: float, sy: float) -> np.ndarray:
    return np.array([
        [sx, 0, 0],
        [0, sy, 0],
        [0, 0, 1]
    ], dtype=float)


def normalize_rotation(rotation_deg: int) -> int:
    """
    Fold a quarter-turn rotation into {0, 90, 180, 270}.

    Args:
        rotation_deg: Rotation in degrees, may be negative.

    Returns:
        Equivalent rotation in [0, 360).

    Raises:
        ValueError if the rotation is not a multiple of 90.
    """
    if rotation_deg % 90 != 0:
        raise ValueError(f"Rotation must be a multiple of 90 degrees, got {rotation_deg}")
    return rotation_deg % 360


class AffineTransform:
    """3x3 homogeneous 2-D transform between preview and working frames."""

    def __init__(self, matrix: np.ndarray):
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != (3, 3):
            raise ValueError(f"Affine matrix must be 3x3, got {matrix.shape}")
        if abs(np.linalg.det(matrix[:2, :2])) < 1e-12:
            raise ValueError("Affine matrix is not invertible")
        self.matrix = matrix

    def invert(self) -> 'AffineTransform':
        """Inverse transform, used to map working-frame points back to the preview."""
        return AffineTransform(np.linalg.inv(self.matrix))

    def map_points(self, points: Iterable[Sequence[float]]) -> np.ndarray:
        """
        Apply the transform to a list of (x, y) points.

        Args:
            points: Iterable of (x, y) pairs.

        Returns:
            Nx2 float array of mapped points.
        """
        pts = np.asarray(list(points), dtype=float).reshape(-1, 2)
        homogeneous = np.hstack([pts, np.ones((len(pts), 1))])
        mapped = homogeneous @ self.matrix.T
        return mapped[:, :2]

    def map_point(self, x: float, y: float) -> Point:
        mapped = self.map_points([(x, y)])[0]
        return Point(float(mapped[0]), float(mapped[1]))

    def warp(self, image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
        """
        Render `image` through this transform into a new image.

        Nearest-neighbour sampling, matching an unfiltered canvas draw.

        Args:
            image: Source (H, W, C) image.
            size:  Destination (width, height).

        Returns:
            Warped image with the source's dtype and channel count.
        """
        return cv2.warpAffine(
            image,
            self.matrix[:2],
            size,
            flags=cv2.INTER_NEAREST,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )

    def __repr__(self):
        return f"<AffineTransform({self.matrix[:2].round(4).tolist()})>"


def affine_from_preview_to_work(
        preview_width: int,
        preview_height: int,
        crop_width: int,
        crop_height: int,
        rotation_deg: int,
        maintain_aspect: bool
) -> AffineTransform:
    """
    Build the preview -> working-frame transform.

    The preview is centred on the origin, rotated, scaled to the working
    frame (stretched, or by the larger factor when keeping aspect so the
    frame is filled and centre-cropped) and moved to the working-frame centre.

    Args:
        preview_width:   Camera preview width in pixels.
        preview_height:  Camera preview height in pixels.
        crop_width:      Working frame width.
        crop_height:     Working frame height.
        rotation_deg:    Sensor rotation, multiple of 90.
        maintain_aspect: Keep the preview's aspect ratio.

    Returns:
        AffineTransform mapping preview pixels to working-frame pixels.
    """
    rotation = normalize_rotation(rotation_deg)

    transpose = rotation in (90, 270)
    in_width = preview_height if transpose else preview_width
    in_height = preview_width if transpose else preview_height

    scale_x = crop_width / float(in_width)
    scale_y = crop_height / float(in_height)
    if maintain_aspect:
        scale_x = scale_y = max(scale_x, scale_y)

    matrix = (
        _translation(crop_width / 2.0, crop_height / 2.0)
        @ _scale(scale_x, scale_y)
        @ _rotation(rotation)
        @ _translation(-preview_width / 2.0, -preview_height / 2.0)
    )

    logger.debug(
        f"Preview {preview_width}x{preview_height} -> work {crop_width}x{crop_height} "
        f"(rotation={rotation}, aspect={maintain_aspect})"
    )
    return AffineTransform(matrix)


# ---------------------------------------------------------------------------
# Physical calibration
# ---------------------------------------------------------------------------

def cal_distance_per_pixel(
        preview_width: int,
        preview_height: int,
        crop_width: int,
        crop_height: int,
        metrics: DisplayMetrics
) -> DistanceCalibration:
    """
    Physical size of one working-frame pixel and one display pixel.

    Args:
        preview_width:  Width of the preview as drawn on the display (px).
        preview_height: Height of the preview as drawn on the display (px).
        crop_width:     Working frame width.
        crop_height:    Working frame height.
        metrics:        Display metrics (pixels and dpi).

    Returns:
        DistanceCalibration in centimetres per pixel.
    """
    cm_per_display_x = CM_PER_INCH / metrics.xdpi
    cm_per_display_y = CM_PER_INCH / metrics.ydpi

    calibration = DistanceCalibration(
        cm_per_work_x=(preview_width / float(crop_width)) * cm_per_display_x,
        cm_per_work_y=(preview_height / float(crop_height)) * cm_per_display_y,
        cm_per_display_x=cm_per_display_x,
        cm_per_display_y=cm_per_display_y,
    )
    logger.debug(
        f"Display {metrics.width_cm:.2f}x{metrics.height_cm:.2f} cm, "
        f"{calibration.cm_per_work_x:.4f}/{calibration.cm_per_work_y:.4f} cm per work px"
    )
    return calibration


# ---------------------------------------------------------------------------
# Eye contours
# ---------------------------------------------------------------------------

def eye_bounding_rect(points: Sequence[Sequence[float]]) -> Rect:
    """
    Square-ish box around an eye contour, widened to include lid and brow.

    The contour's bounding box of width w is padded by w/2 on each side and
    given a height of 2w, centred on the contour's vertical middle.
    Not clamped to any image.

    Args:
        points: Contour points (x, y) in working-frame pixels.

    Returns:
        Rect(left - pad, ymid - 2*pad, right + pad, ymid + 2*pad).
    """
    if len(points) == 0:
        raise ValueError("Eye contour has no points")

    xs = [int(p[0]) for p in points]
    ys = [int(p[1]) for p in points]
    left, right = min(xs), max(xs)
    top, bottom = min(ys), max(ys)

    pad = (right - left) // 2
    ymid = top + (bottom - top) // 2

    return Rect(left - pad, ymid - pad * 2, right + pad, ymid + pad * 2)
