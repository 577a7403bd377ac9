"""
Data models for the simulated meal-planning service.
"""

from dataclasses import dataclass
from enum import Enum


class FailureType(Enum):
    """Failure modes that can be injected into the simulated service"""

    LATENCY_SPIKE = "latency_spike"
    ERROR_BURST = "error_burst"
    MEMORY_LEAK = "memory_leak"
    CPU_SPIKE = "cpu_spike"
    POOL_EXHAUSTION = "pool_exhaustion"
    COST_SURGE = "cost_surge"


@dataclass
class SimulationConfig:
    """Configuration for the simulated metric source"""

    service_name: str = "recipe-api"
    step_seconds: float = 5.0
    max_catch_up_steps: int = 60
    failure_probability: float = 0.02
    enabled_failures: list[FailureType] | None = None

    def __post_init__(self):
        if self.enabled_failures is None:
            self.enabled_failures = list(FailureType)
