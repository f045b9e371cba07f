"""
Admission Gate
One-slot gate that drops preview frames while a detection / inference is in flight
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class AdmissionTicket:
    """
    Proof of holding the gate for one frame.

    release() is idempotent, so every terminal path may call it; only the
    first call has any effect. A ticket revoked by the watchdog is stale and
    releasing it does nothing.
    """

    def __init__(self, gate: 'AdmissionGate', generation: int, frame: int):
        self._gate = gate
        self.generation = generation
        self.frame = frame
        self._released = False

    @property
    def valid(self) -> bool:
        """True while this ticket still holds the gate."""
        return not self._released and self._gate._holds(self.generation)

    def release(self) -> bool:
        """
        Give the gate back.

        Returns:
            True if this call released the gate.
        """
        if self._released:
            return False
        self._released = True
        return self._gate._release(self.generation)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    def __repr__(self):
        return f"<AdmissionTicket(frame={self.frame}, gen={self.generation}, valid={self.valid})>"


class AdmissionGate:
    """
    Single-slot admission with an optional watchdog.

    try_acquire() never blocks: it hands out a ticket when the gate is free
    and returns None otherwise. With a watchdog bound, a holder older than
    the bound is revoked on the next try_acquire() and the new caller is
    admitted instead.
    """

    def __init__(
            self,
            watchdog_timeout_s: Optional[float] = None,
            time_fn: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            watchdog_timeout_s: Longest time a ticket may hold the gate; None disables the watchdog.
            time_fn:            Monotonic seconds source.
        """
        self.watchdog_timeout_s = watchdog_timeout_s
        self._time = time_fn
        self._cond = threading.Condition(threading.Lock())
        self._generation = 0
        self._held = False
        self._acquired_at = 0.0
        self.revoked_count = 0

    @property
    def held(self) -> bool:
        with self._cond:
            return self._held

    def try_acquire(self, frame: int = 0) -> Optional[AdmissionTicket]:
        """
        Take the gate if it is free.

        Args:
            frame: Frame timestamp, recorded on the ticket for logging.

        Returns:
            AdmissionTicket, or None if another frame holds the gate.
        """
        with self._cond:
            now = self._time()
            if self._held:
                held_for = now - self._acquired_at
                if self.watchdog_timeout_s is None or held_for < self.watchdog_timeout_s:
                    return None
                self.revoked_count += 1
                logger.warning(
                    f"Admission watchdog: gate held {held_for:.2f}s by generation "
                    f"{self._generation}, revoking"
                )

            self._generation += 1
            self._held = True
            self._acquired_at = now
            return AdmissionTicket(self, self._generation, frame)

    def wait_released(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the gate is free.

        Returns:
            True if free, False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._held, timeout=timeout)

    def _holds(self, generation: int) -> bool:
        with self._cond:
            return self._held and self._generation == generation

    def _release(self, generation: int) -> bool:
        with self._cond:
            if not self._held or generation != self._generation:
                return False
            self._held = False
            self._cond.notify_all()
            return True

    def __repr__(self):
        return f"<AdmissionGate(held={self._held}, generation={self._generation})>"
