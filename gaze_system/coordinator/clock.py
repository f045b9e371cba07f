"""
Frame Clock
Monotonic frame counter and uptime milliseconds for the gaze pipeline
"""

import threading
import logging
import time

logger = logging.getLogger(__name__)


class FrameClock:
    """
    Thread-safe frame counter and uptime clock

    - next_frame(): strictly increasing frame timestamp, one per preview frame
    - uptime_ms():  monotonic milliseconds, used for face-detection and
                    inference timings (unaffected by wall-clock changes)
    """

    def __init__(self):
        """Initialize frame clock"""
        self._lock = threading.Lock()
        self._timestamp = 0
        self._origin = time.monotonic()

        logger.info("Frame clock initialized")

    def next_frame(self) -> int:
        """
        Advance the frame counter

        Returns:
            int: Timestamp of the new frame (1 for the first frame)
        """
        with self._lock:
            self._timestamp += 1
            return self._timestamp

    @property
    def timestamp(self) -> int:
        with self._lock:
            return self._timestamp

    def uptime_ms(self) -> int:
        """
        Milliseconds since the clock was created

        Returns:
            int: Monotonic uptime in milliseconds
        """
        return int((time.monotonic() - self._origin) * 1000)

    def reset(self):
        """Reset the frame counter (useful for testing)"""
        with self._lock:
            self._timestamp = 0
            logger.info("Frame clock reset")

    def get_stats(self) -> dict:
        """
        Get clock statistics

        Returns:
            dict: Frame count and uptime
        """
        return {
            'frames': self.timestamp,
            'uptime_ms': self.uptime_ms(),
        }

    def __repr__(self):
        return f"<FrameClock(frames={self._timestamp})>"
