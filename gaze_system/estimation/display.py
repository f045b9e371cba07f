"""
Display Mapper
Converts a camera-frame gaze vector in centimetres to a display pixel
"""

import logging
from typing import NamedTuple, Tuple

from .config import DeviceGeometry

logger = logging.getLogger(__name__)


class GazeVector(NamedTuple):
    """Gaze displacement from the camera, x towards display-right, y towards display-up."""
    gx_cm: float
    gy_cm: float


class DisplayPoint(NamedTuple):
    x_px: float
    y_px: float


# Camera axes -> display axes for each orientation's rotation
_AXES = {
    0:   ((1, 0), (0, 1)),
    90:  ((0, -1), (1, 0)),
    180: ((-1, 0), (0, -1)),
    270: ((0, 1), (-1, 0)),
}


class DisplayMapper:
    """
    Maps gaze vectors onto the display.

    realX = dx_cm + gx, realY = dy_cm - gy (y flips because the camera frame
    is y-up), then divided by the physical size of one display pixel.
    No clamping: off-screen points are returned as-is.
    """

    def __init__(self, geometry: DeviceGeometry, cm_per_display_px: Tuple[float, float]):
        """
        Args:
            geometry:          Camera offset and orientation.
            cm_per_display_px: Centimetres per display pixel along (x, y).
        """
        cm_x, cm_y = cm_per_display_px
        if cm_x <= 0 or cm_y <= 0:
            raise ValueError(f"cm_per_display_px must be positive, got {cm_per_display_px}")

        self.geometry = geometry
        self.cm_per_display_px = (float(cm_x), float(cm_y))

    def to_display_axes(self, gaze: GazeVector) -> GazeVector:
        """Rotate a camera-frame vector into the display's (right, up) axes."""
        (ax, ay), (bx, by) = _AXES[self.geometry.rotation_deg]
        gx, gy = gaze
        return GazeVector(ax * gx + ay * gy, bx * gx + by * gy)

    def map(self, gaze: GazeVector) -> DisplayPoint:
        """
        Convert a gaze vector to display pixels.

        Args:
            gaze: (gx_cm, gy_cm) in the camera frame.

        Returns:
            DisplayPoint, possibly outside the display.
        """
        gx, gy = self.to_display_axes(GazeVector(*gaze))
        real_x = self.geometry.dx_cm + gx
        real_y = self.geometry.dy_cm - gy

        cm_x, cm_y = self.cm_per_display_px
        return DisplayPoint(real_x / cm_x, real_y / cm_y)

    def __repr__(self):
        return (
            f"<DisplayMapper(offset=({self.geometry.dx_cm}, {self.geometry.dy_cm}) cm, "
            f"{self.geometry.orientation})>"
        )
