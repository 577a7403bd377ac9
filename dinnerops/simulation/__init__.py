"""
Simulated meal-planning service used as a metric source for local runs.

Usage:
    python -m dinnerops.agent.run --source simulated --duration 600
"""

from .models import FailureType, SimulationConfig
from .service_state import ServiceState
from .source import SimulatedMetricSource

__all__ = ["FailureType", "ServiceState", "SimulatedMetricSource", "SimulationConfig"]
