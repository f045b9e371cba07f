"""
Component Coordinator
Manages lifecycle of the gaze pipeline's running components
"""

import logging
from typing import Dict, List, Optional, Any

from .clock import FrameClock

logger = logging.getLogger(__name__)


class ComponentCoordinator:
    """
    Coordinates the pipeline's components with a shared frame clock

    Responsibilities:
    - Manage component lifecycle (start in registration order, stop in reverse)
    - Provide the shared FrameClock
    - Track component status
    - Handle graceful shutdown
    """

    def __init__(self, clock: Optional[FrameClock] = None):
        """
        Initialize component coordinator

        Args:
            clock: Shared frame clock; a new one is created if omitted
        """
        self.clock = clock or FrameClock()

        # Component registry, insertion ordered
        self.components: Dict[str, Any] = {}
        self.started: List[str] = []

        logger.info("Component Coordinator initialized")

    def register(self, name: str, component: Any):
        """
        Register a component with the coordinator

        Args:
            name: Unique identifier (e.g., 'orchestrator', 'camera')
            component: Object with start() and stop()
        """
        if name in self.components:
            logger.warning(f"Component '{name}' already registered, replacing")

        self.components[name] = component
        logger.info(f"✓ Registered component: {name}")

    def start(self, name: str):
        """
        Start a registered component

        Args:
            name: Name of component to start
        """
        if name not in self.components:
            logger.error(f"Component '{name}' not registered")
            raise ValueError(f"Unknown component: {name}")

        try:
            self.components[name].start()
            if name not in self.started:
                self.started.append(name)
            logger.info(f"✓ Started component: {name}")
        except Exception as e:
            logger.error(f"✗ Failed to start component '{name}': {e}", exc_info=True)
            raise

    def stop(self, name: str):
        """
        Stop a registered component

        Args:
            name: Name of component to stop
        """
        if name not in self.components:
            logger.warning(f"Component '{name}' not registered")
            return

        try:
            self.components[name].stop()
            logger.info(f"✓ Stopped component: {name}")
        except Exception as e:
            logger.error(f"✗ Error stopping component '{name}': {e}", exc_info=True)
        finally:
            if name in self.started:
                self.started.remove(name)

    def start_all(self):
        """
        Start all registered components in order.
        Stops whatever already started and re-raises if one fails.
        """
        logger.info(f"Starting {len(self.components)} components...")

        for name in list(self.components):
            try:
                self.start(name)
            except Exception:
                logger.error(f"Failed to start {name}, stopping started components")
                self.stop_all()
                raise

        logger.info("✓ All components started")

    def stop_all(self):
        """Stop all started components, most recent first"""
        logger.info(f"Stopping {len(self.started)} components...")

        for name in reversed(list(self.started)):
            self.stop(name)

        logger.info("✓ All components stopped")

    def get_status(self, name: str) -> Optional[dict]:
        """
        Get status of a specific component

        Args:
            name: Name of component

        Returns:
            dict: Component status or None if not found
        """
        if name not in self.components:
            return None

        component = self.components[name]

        if hasattr(component, 'get_status'):
            return component.get_status()

        return {'component': name, 'running': name in self.started}

    def get_coordinator_status(self) -> dict:
        """
        Get overall coordinator status

        Returns:
            dict: Coordinator status information
        """
        return {
            'registered': list(self.components.keys()),
            'started': list(self.started),
            'clock_stats': self.clock.get_stats(),
            'components': {name: self.get_status(name) for name in self.components},
        }

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - cleanup"""
        self.stop_all()

    def __repr__(self):
        return f"<ComponentCoordinator(components={len(self.components)}, started={len(self.started)})>"
