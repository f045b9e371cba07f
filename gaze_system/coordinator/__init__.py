"""
Gaze Pipeline Coordinator
Frame admission, per-frame orchestration and component lifecycle
"""

from .admission import AdmissionGate, AdmissionTicket
from .clock import FrameClock
from .coordinator import ComponentCoordinator
from .orchestrator import FrameOrchestrator, PipelineState

__all__ = [
    'AdmissionGate',
    'AdmissionTicket',
    'FrameClock',
    'ComponentCoordinator',
    'FrameOrchestrator',
    'PipelineState',
]

__version__ = '1.0.0'
