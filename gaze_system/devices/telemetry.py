"""
Timing Telemetry
Per-session CSV of face-detection and inference durations
"""

import csv
import logging
import os
import threading
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


def session_file_name(now: Optional[datetime] = None) -> str:
    """yyyyMMdd_HHmmss_SSS.csv for the session start time."""
    now = now or datetime.now()
    return now.strftime('%Y%m%d_%H%M%S_%f')[:-3] + '.csv'


class CsvTelemetrySink:
    """
    Appends one `faceDetMs,inferenceMs` line per published frame.

    Every row is flushed straight away. I/O failures are logged and dropped;
    telemetry never interrupts the pipeline.
    """

    def __init__(self, directory: str, file_name: Optional[str] = None):
        """
        Args:
            directory: Folder for session files, created if missing.
            file_name: Override the timestamped session file name.
        """
        self.directory = directory
        self.path = os.path.join(directory, file_name or session_file_name())

        self._lock = threading.Lock()
        self._file = None
        self._writer = None
        self.rows_written = 0
        self.write_errors = 0

    def _open(self):
        os.makedirs(self.directory, exist_ok=True)
        self._file = open(self.path, 'a', newline='', encoding='utf-8')
        self._writer = csv.writer(self._file, lineterminator='\n')
        logger.info(f"✓ Telemetry file: {self.path}")

    def write(self, face_ms, inference_ms):
        """
        Append one timing row.

        Args:
            face_ms:      Face detection duration in milliseconds.
            inference_ms: Model invocation duration in milliseconds.
        """
        with self._lock:
            try:
                if self._file is None:
                    self._open()
                self._writer.writerow([int(face_ms), int(inference_ms)])
                self._file.flush()
                self.rows_written += 1
            except OSError as e:
                self.write_errors += 1
                logger.warning(f"✗ Telemetry write failed: {e}")

    def start(self):
        pass

    def stop(self):
        self.close()

    def close(self):
        with self._lock:
            if self._file is None:
                return
            try:
                self._file.close()
            except OSError as e:
                logger.warning(f"✗ Error closing telemetry file: {e}")
            finally:
                self._file = None
                self._writer = None

    def get_status(self) -> dict:
        return {
            'path': self.path,
            'rows': self.rows_written,
            'errors': self.write_errors,
        }
