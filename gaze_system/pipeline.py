"""
Gaze System - Pipeline
======================
Owns the full lifecycle of the on-device gaze estimator.

Usage in run.py:
    pipeline = GazePipeline(config)
    pipeline.start()
    # ... UI loop draws pipeline.overlay ...
    pipeline.stop()

Components managed:
    - Face detector : MediaPipe FaceMesh on its own executor
    - Orchestrator  : admission gate + worker thread (detect -> infer -> publish)
    - Telemetry     : per-session timing CSV
    - Camera        : OpenCV or DepthAI preview source

Failure policy:
    A model that cannot be loaded is fatal: start() raises ModelLoadError.
    So is a mean image that cannot be read: start() raises MeanImageLoadError.
"""

import logging
from typing import Optional

from gaze_system.coordinator.clock import FrameClock
from gaze_system.coordinator.coordinator import ComponentCoordinator
from gaze_system.coordinator.orchestrator import FrameOrchestrator
from gaze_system.devices.camera import create_camera
from gaze_system.devices.face_detector import MediaPipeFaceDetector
from gaze_system.devices.overlay import GazeOverlay
from gaze_system.devices.telemetry import CsvTelemetrySink
from gaze_system.estimation.config import GazeConfig
from gaze_system.estimation.display import DisplayMapper
from gaze_system.estimation.geometry import DisplayMetrics, cal_distance_per_pixel
from gaze_system.estimation.inference import GazeInferenceAdaptor, ModelLoadError
from gaze_system.estimation.mean_store import MeanImageLoadError, get_mean_store

logger = logging.getLogger(__name__)


# Component names registered with the ComponentCoordinator
COMPONENT_DETECTOR     = 'face_detector'
COMPONENT_ORCHESTRATOR = 'orchestrator'
COMPONENT_TELEMETRY    = 'telemetry'
COMPONENT_CAMERA       = 'camera'


class GazePipeline:
    """
    Builds and wires every gaze component for one run.

    Responsibilities:
      - Load the model and the mean images (fatal on failure)
      - Derive display calibration and the gaze -> pixel mapper
      - Register components with the ComponentCoordinator in start order
      - Provide a clean start() / stop() interface for run.py

    Any collaborator may be injected, which is how the tests run without
    a camera, MediaPipe or a TFLite model.
    """

    def __init__(
            self,
            config: Optional[GazeConfig] = None,
            camera_kind: str = 'opencv',
            clock: Optional[FrameClock] = None,
            adaptor=None,
            detector=None,
            overlay=None,
            telemetry=None,
            camera=None,
    ):
        """
        Args:
            config:      GazeConfig; defaults are used if omitted.
            camera_kind: 'opencv' or 'depthai', ignored when camera is given.
            clock:       Shared FrameClock.
            adaptor:     Pre-built GazeInferenceAdaptor.
            detector:    Face detector with detect(image) -> Future.
            overlay:     GazeOverlay (or compatible publish / request_repaint).
            telemetry:   Timing sink with write(face_ms, inference_ms).
            camera:      Camera source with start() / stop().
        """
        self.config = config or GazeConfig()
        self.config.validate()

        self.camera_kind = camera_kind
        self.clock = clock or FrameClock()
        self.coordinator = ComponentCoordinator(self.clock)

        self.adaptor   = adaptor
        self.detector  = detector
        self.overlay   = overlay
        self.telemetry = telemetry
        self.camera    = camera

        self.mapper = None
        self.calibration = None
        self.orchestrator: Optional[FrameOrchestrator] = None
        self.mean_store = None
        self._built = False

        logger.info(f"GazePipeline created (S={self.config.input_size}, camera={camera_kind})")

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def build(self):
        """
        Construct every component that was not injected.

        Raises:
            ModelLoadError if the gaze model cannot be loaded.
            MeanImageLoadError if a mean image asset cannot be read.
        """
        if self._built:
            return

        config = self.config

        self._init_adaptor()
        self._load_mean_images()

        metrics = DisplayMetrics(
            config.display_width_px, config.display_height_px, config.xdpi, config.ydpi
        )
        self.calibration = cal_distance_per_pixel(
            config.preview_width, config.preview_height,
            config.crop_width, config.crop_height,
            metrics,
        )
        self.mapper = DisplayMapper(config.device, self.calibration.cm_per_display_px)

        if self.detector is None:
            self.detector = MediaPipeFaceDetector(config)
        if self.overlay is None:
            self.overlay = GazeOverlay(config.dot_radius, config.dot_colour)
        if self.telemetry is None and config.telemetry_enabled:
            self.telemetry = CsvTelemetrySink(config.telemetry_dir)

        self.orchestrator = FrameOrchestrator(
            detector=self.detector,
            adaptor=self.adaptor,
            mapper=self.mapper,
            overlay=self.overlay,
            telemetry=self.telemetry,
            clock=self.clock,
            crop_size=config.crop_size,
            input_size=config.input_size,
            grid_size=config.grid_size,
            watchdog_timeout_s=config.watchdog_timeout_s,
        )
        self.orchestrator.configure_preview(
            config.preview_width,
            config.preview_height,
            config.sensor_rotation_deg,
            config.maintain_aspect,
        )
        if config.use_nnapi:
            self.orchestrator.set_use_nnapi(True)

        if self.camera is None:
            self.camera = create_camera(
                self.camera_kind,
                config.preview_width,
                config.preview_height,
                on_frame=self.orchestrator.process_image,
            )

        self.coordinator.register(COMPONENT_DETECTOR, self.detector)
        if self.telemetry is not None:
            self.coordinator.register(COMPONENT_TELEMETRY, self.telemetry)
        self.coordinator.register(COMPONENT_ORCHESTRATOR, self.orchestrator)
        self.coordinator.register(COMPONENT_CAMERA, self.camera)

        self._built = True

    def start(self):
        """Build if needed, then start components in order."""
        logger.info("=" * 55)
        logger.info("  Gaze Pipeline - starting")
        logger.info("=" * 55)

        self.build()
        self.coordinator.start_all()

        logger.info(f"Pipeline ready - components: {self.coordinator.started}")

    def stop(self):
        """Stop the camera first, then the worker, then the detector."""
        logger.info("Stopping gaze pipeline...")
        self.coordinator.stop_all()
        logger.info("✓ Gaze pipeline stopped")

    def get_status(self) -> dict:
        """
        Return a summary of component states for logging / UI display.
        """
        return {
            'input_size'  : self.config.input_size,
            'camera'      : self.camera_kind,
            'built'       : self._built,
            'coordinator' : self.coordinator.get_coordinator_status(),
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    # -----------------------------------------------------------------------
    # Private - initialisation helpers
    # -----------------------------------------------------------------------

    def _init_adaptor(self):
        if self.adaptor is not None:
            return

        config = self.config
        try:
            self.adaptor = GazeInferenceAdaptor.create(
                config.model_path,
                config.label_path,
                config.input_size,
                is_quantized=config.is_quantized,
                num_threads=config.num_threads,
            )
        except ModelLoadError as e:
            logger.error(f"✗ Gaze model unavailable: {e}")
            raise

        logger.info(f"✓ Gaze model loaded from {config.model_path}")

    def _load_mean_images(self):
        self.mean_store = get_mean_store(self.config.asset_dir, self.config.cache_dir)
        try:
            self.mean_store.load_all()
        except MeanImageLoadError as e:
            logger.error(f"✗ Mean images unavailable: {e}")
            raise

        logger.info(f"✓ Mean images ready in {self.config.cache_dir}")
