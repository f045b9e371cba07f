"""
Gaze Overlay
Holds the latest published gaze point for the UI thread and draws it
"""

import logging
import threading
from typing import Optional, Tuple

import pygame as pg

logger = logging.getLogger(__name__)


class GazeOverlay:
    """
    Latest gaze point, written by the worker thread and read by the UI thread.

    publish() / latest() go through a lock so the UI never sees a torn point.
    request_repaint() is non-blocking; the UI loop polls consume_repaint().
    """

    def __init__(self, dot_radius: int = 20, dot_colour: Tuple[int, int, int] = (255, 0, 0)):
        self.dot_radius = dot_radius
        self.dot_colour = dot_colour

        self._point = None
        self._point_lock = threading.Lock()
        self._repaint = threading.Event()

        self.publish_count = 0

    def publish(self, point):
        """
        Publish a display point.

        Args:
            point: DisplayPoint (x_px, y_px), possibly off-screen.
        """
        with self._point_lock:
            self._point = point
            self.publish_count += 1

    def latest(self):
        """
        Thread-safe read of the latest point.

        Returns:
            The last published DisplayPoint, or None before the first one.
        """
        with self._point_lock:
            return self._point

    def request_repaint(self):
        self._repaint.set()

    def consume_repaint(self) -> bool:
        """True if a repaint was requested since the last call."""
        if self._repaint.is_set():
            self._repaint.clear()
            return True
        return False

    def draw(self, surface: 'pg.Surface') -> Optional[Tuple[int, int]]:
        """
        Draw the latest point as a filled circle.

        Points outside the surface are skipped.

        Returns:
            The integer pixel drawn, or None.
        """
        point = self.latest()
        if point is None:
            return None

        x, y = int(round(point[0])), int(round(point[1]))
        if not surface.get_rect().collidepoint(x, y):
            return None

        pg.draw.circle(surface, self.dot_colour, (x, y), self.dot_radius)
        return x, y

    def get_status(self) -> dict:
        return {
            'published': self.publish_count,
            'latest': self.latest(),
        }
