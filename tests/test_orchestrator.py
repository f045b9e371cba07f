"""
Frame orchestrator scenarios: admission, detection, inference, publication
and telemetry, driven by mock collaborators on a 120x160 working frame.
"""

import pytest

from gaze_system.coordinator.admission import AdmissionGate
from gaze_system.coordinator.orchestrator import FrameOrchestrator, PipelineState
from gaze_system.devices.face_detector import ContourKind
from gaze_system.estimation.config import DeviceGeometry
from gaze_system.estimation.display import DisplayMapper
from gaze_system.estimation.geometry import Point, Rect
from gaze_system.estimation.inference import GazeInferenceAdaptor

from conftest import (
    MockDetector,
    MockEngine,
    MockFrame,
    MockOverlay,
    MockTelemetry,
    ScriptedClock,
    eye_hexagon,
    wait_until,
)

WIDTH, HEIGHT = 120, 160
SIZE = 16


def build(detector, engine=None, overlay=None, telemetry=None, clock=None, watchdog=None,
          width=WIDTH, height=HEIGHT):
    engine = engine or MockEngine()
    orchestrator = FrameOrchestrator(
        detector=detector,
        adaptor=GazeInferenceAdaptor(engine, SIZE),
        mapper=DisplayMapper(DeviceGeometry(), (0.01, 0.01)),
        overlay=overlay or MockOverlay(),
        telemetry=telemetry,
        clock=clock,
        crop_size=(width, height),
        input_size=SIZE,
        watchdog_timeout_s=watchdog,
    )
    orchestrator.configure_preview(width, height)
    orchestrator.start()
    return orchestrator


@pytest.fixture
def stopper():
    started = []
    yield started.append
    for orchestrator in started:
        orchestrator.stop()


def test_no_face_releases_gate(stopper):
    detector = MockDetector()
    overlay = MockOverlay()
    orchestrator = build(detector, overlay=overlay)
    stopper(orchestrator)
    frame = MockFrame()

    assert orchestrator.process_image(frame) is True
    assert frame.release_count == 1
    assert wait_until(lambda: len(detector.futures) == 1)
    assert orchestrator.computing_detection

    detector.futures[0].set_result([])

    assert orchestrator.wait_idle(timeout=2.0)
    assert not orchestrator.computing_detection
    assert overlay.points == []
    assert orchestrator.state == PipelineState.IDLE


def test_frame_dropped_while_detecting(stopper):
    detector = MockDetector()
    orchestrator = build(detector)
    stopper(orchestrator)

    assert orchestrator.process_image(MockFrame()) is True
    assert wait_until(lambda: len(detector.futures) == 1)

    dropped = MockFrame()
    assert orchestrator.process_image(dropped) is False
    assert dropped.release_count == 1
    assert orchestrator.frames_dropped == 1

    detector.futures[0].set_result([])
    assert orchestrator.wait_idle(timeout=2.0)
    assert len(detector.futures) == 1


def test_face_published_to_overlay(stopper, face):
    engine = MockEngine(output=(-15.2, 11.7))
    overlay = MockOverlay()
    telemetry = MockTelemetry()
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine, overlay=overlay, telemetry=telemetry)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame())

    assert orchestrator.wait_idle(timeout=2.0)
    assert len(overlay.points) == 1
    point = overlay.points[0]
    assert point.x_px == pytest.approx(0.0, abs=1e-3)
    assert point.y_px == pytest.approx(0.0, abs=1e-3)
    assert overlay.repaints >= 2
    assert len(telemetry.rows) == 1
    assert orchestrator.inference_count == 1
    assert not orchestrator.computing_detection


def test_inputs_reach_engine_in_model_order(stopper, face):
    engine = MockEngine()
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame())
    assert orchestrator.wait_idle(timeout=2.0)

    sizes = [tensor.size for tensor in engine.calls[0]]
    assert sizes == [SIZE * SIZE * 3] * 3 + [625]
    grid = engine.calls[0][3].reshape(25, 25)
    assert set(grid.ravel().tolist()) == {0.0, 1.0}


def test_face_outside_frame_rejected(stopper, face):
    face.bounding_box = Rect(-10, 30, 100, 130)
    overlay = MockOverlay()
    engine = MockEngine()
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine, overlay=overlay)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame())

    assert orchestrator.wait_idle(timeout=2.0)
    assert orchestrator.frames_rejected == 1
    assert engine.calls == []
    assert overlay.points == []


def test_detector_failure_releases_gate(stopper):
    detector = MockDetector()
    orchestrator = build(detector)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame())
    assert wait_until(lambda: len(detector.futures) == 1)
    detector.futures[0].set_exception(RuntimeError("face mesh crashed"))

    assert orchestrator.wait_idle(timeout=2.0)
    assert not orchestrator.computing_detection
    assert orchestrator.process_image(MockFrame()) is True


def test_inference_exception_clears_flag(stopper, face):
    engine = MockEngine(error=RuntimeError("interpreter failed"))
    overlay = MockOverlay()
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine, overlay=overlay)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame())

    assert orchestrator.wait_idle(timeout=2.0)
    assert orchestrator.error_count == 1
    assert isinstance(orchestrator.last_error, RuntimeError)
    assert not orchestrator.computing_detection
    assert overlay.points == []


def test_stale_result_after_watchdog_discarded(stopper, face):
    detector = MockDetector()
    overlay = MockOverlay()
    orchestrator = build(detector, overlay=overlay)
    stopper(orchestrator)

    now = [0.0]
    orchestrator.gate = AdmissionGate(1.0, time_fn=lambda: now[0])

    assert orchestrator.process_image(MockFrame()) is True
    assert wait_until(lambda: len(detector.futures) == 1)

    now[0] = 5.0
    assert orchestrator.process_image(MockFrame()) is True
    assert wait_until(lambda: len(detector.futures) == 2)
    assert orchestrator.gate.revoked_count == 1

    detector.futures[0].set_result([face])
    detector.futures[1].set_result([face])

    assert orchestrator.wait_idle(timeout=2.0)
    assert len(overlay.points) == 1
    assert orchestrator.inference_count == 1


def test_telemetry_records_detection_and_inference_time(stopper, face):
    telemetry = MockTelemetry()
    clock = ScriptedClock(uptimes=[0, 42, 100, 117])
    orchestrator = build(MockDetector(auto_faces=[face]), telemetry=telemetry, clock=clock)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame())

    assert orchestrator.wait_idle(timeout=2.0)
    assert telemetry.rows == [(42, 17)]


def test_single_inference_in_flight(stopper, face):
    engine = MockEngine(delay_s=0.01)
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine)
    stopper(orchestrator)

    results = [orchestrator.process_image(MockFrame()) for _ in range(30)]

    assert orchestrator.wait_idle(timeout=5.0)
    assert engine.max_concurrent == 1
    assert results.count(True) == orchestrator.frames_admitted
    assert orchestrator.frames_admitted + orchestrator.frames_dropped == 30
    assert len(engine.calls) == orchestrator.frames_admitted


def test_unconfigured_preview_rejected():
    orchestrator = FrameOrchestrator(
        detector=MockDetector(),
        adaptor=GazeInferenceAdaptor(MockEngine(), SIZE),
        mapper=DisplayMapper(DeviceGeometry(), (0.01, 0.01)),
        overlay=MockOverlay(),
    )
    frame = MockFrame()

    with pytest.raises(RuntimeError):
        orchestrator.process_image(frame)
    assert frame.release_count == 1


def test_wrong_frame_size_releases_gate(stopper):
    orchestrator = build(MockDetector())
    stopper(orchestrator)

    with pytest.raises(ValueError):
        orchestrator.process_image(MockFrame(width=64, height=64))
    assert not orchestrator.computing_detection


def test_thread_count_applied_on_worker(stopper):
    engine = MockEngine()
    orchestrator = build(MockDetector(), engine=engine)
    stopper(orchestrator)

    orchestrator.set_num_threads(2)
    orchestrator.set_use_nnapi(True)

    assert orchestrator.wait_idle(timeout=2.0)
    assert engine.num_threads == 2
    assert engine.use_nnapi is True


def test_stop_releases_held_gate():
    detector = MockDetector()
    orchestrator = build(detector)

    orchestrator.process_image(MockFrame())
    assert wait_until(lambda: len(detector.futures) == 1)
    orchestrator.stop()

    assert not orchestrator.computing_detection
    assert orchestrator.get_status()['is_running'] is False


def test_burst_during_slow_detection_runs_one_inference(stopper, face):
    detector = MockDetector()
    engine = MockEngine()
    orchestrator = build(detector, engine=engine)
    stopper(orchestrator)

    frames = [MockFrame() for _ in range(10)]
    admitted = [orchestrator.process_image(frame) for frame in frames]
    assert wait_until(lambda: len(detector.futures) == 1)

    detector.futures[0].set_result([face])

    assert orchestrator.wait_idle(timeout=2.0)
    assert admitted == [True] + [False] * 9
    assert all(frame.release_count == 1 for frame in frames)
    assert len(engine.calls) == 1
    assert orchestrator.frames_dropped == 9
    assert not orchestrator.computing_detection


def test_face_partly_outside_640x480_frame(stopper, face):
    face.bounding_box = Rect(-5, 10, 100, 200)
    engine = MockEngine()
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine, width=640, height=480)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame(width=640, height=480))

    assert orchestrator.wait_idle(timeout=2.0)
    assert engine.calls == []
    assert not orchestrator.computing_detection


def test_zero_gaze_lands_on_camera_position(stopper, face):
    face.bounding_box = Rect(100, 100, 300, 300)
    engine = MockEngine(output=(0.0, 0.0))
    overlay = MockOverlay()
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine, overlay=overlay,
                         width=640, height=480)
    stopper(orchestrator)

    orchestrator.process_image(MockFrame(width=640, height=480))

    assert orchestrator.wait_idle(timeout=2.0)
    assert overlay.points == [(pytest.approx(15.2 / 0.01), pytest.approx(11.7 / 0.01))]


def assert_rejected_without_inference(face):
    engine = MockEngine()
    overlay = MockOverlay()
    orchestrator = build(MockDetector(auto_faces=[face]), engine=engine, overlay=overlay)
    try:
        assert orchestrator.process_image(MockFrame()) is True
        assert orchestrator.wait_idle(timeout=2.0)

        assert orchestrator.frames_rejected == 1
        assert orchestrator.error_count == 0
        assert engine.calls == []
        assert overlay.points == []
        assert not orchestrator.computing_detection
    finally:
        orchestrator.stop()


def test_eye_box_past_frame_edge_rejected(face):
    face.bounding_box = Rect(0, 30, 100, 130)
    face.contours[ContourKind.RIGHT_EYE] = eye_hexagon(8, 70)

    assert_rejected_without_inference(face)


def test_missing_eye_contour_rejected(face):
    face.contours[ContourKind.RIGHT_EYE] = []

    assert_rejected_without_inference(face)


def test_degenerate_eye_contour_rejected(face):
    face.contours[ContourKind.LEFT_EYE] = [Point(75, 70)] * 6

    assert_rejected_without_inference(face)


def test_empty_face_box_rejected(face):
    face.bounding_box = Rect(50, 50, 50, 80)

    assert_rejected_without_inference(face)
