"""
State of a simulated meal-planning service and generation of its metrics.
"""

import random
from datetime import datetime

from .models import FailureType


class ServiceState:
    """Tracks a simulated service so consecutive snapshots evolve smoothly"""

    def __init__(self, service_name: str):
        self.service_name = service_name

        # Base values
        self.base_latency_ms = random.uniform(150, 400)
        self.base_error_rate = random.uniform(0.002, 0.01)
        self.base_cpu = random.uniform(25, 45)
        self.base_memory = random.uniform(40, 55)
        self.base_pool = random.uniform(0.2, 0.4)
        self.base_ai_cost = random.uniform(5, 15)
        self.base_satisfaction = random.uniform(4.2, 4.7)

        self.memory_drift = 0.0

        # Active failure
        self.active_failure: FailureType | None = None
        self.failure_duration: int = 0

    def generate_metrics(
        self, now: datetime, inject_failure: FailureType | None = None
    ) -> dict[str, float]:
        """Generate one snapshot of every catalog metric"""
        if inject_failure:
            self.active_failure = inject_failure
            self.failure_duration = random.randint(10, 40)

        latency_mult = error_mult = cpu_mult = pool_mult = cost_mult = 1.0

        if self.active_failure:
            if self.active_failure == FailureType.LATENCY_SPIKE:
                latency_mult = random.uniform(5.0, 12.0)
            elif self.active_failure == FailureType.ERROR_BURST:
                error_mult = random.uniform(10.0, 30.0)
            elif self.active_failure == FailureType.MEMORY_LEAK:
                self.memory_drift = min(45.0, self.memory_drift + random.uniform(1.0, 3.0))
            elif self.active_failure == FailureType.CPU_SPIKE:
                cpu_mult = random.uniform(2.0, 2.5)
            elif self.active_failure == FailureType.POOL_EXHAUSTION:
                pool_mult = random.uniform(2.5, 3.0)
            elif self.active_failure == FailureType.COST_SURGE:
                cost_mult = random.uniform(8.0, 15.0)

            self.failure_duration -= 1
            if self.failure_duration <= 0:
                self.active_failure = None
                self.memory_drift = 0.0

        # Dinner-time traffic peak
        peak = 1.3 if 17 <= now.hour <= 20 else 1.0

        latency = self.base_latency_ms * peak * latency_mult * random.uniform(0.9, 1.1)
        error_rate = min(1.0, self.base_error_rate * error_mult * random.uniform(0.8, 1.2))
        satisfaction = self.base_satisfaction - (0.8 if latency > 2000 or error_rate > 0.05 else 0)

        return {
            "response_time_ms": round(latency, 2),
            "error_rate": round(error_rate, 5),
            "cpu_usage_percent": round(min(100.0, self.base_cpu * peak * cpu_mult
                                           * random.uniform(0.9, 1.1)), 2),
            "memory_usage_percent": round(min(100.0, self.base_memory + self.memory_drift
                                              + random.uniform(-1.5, 1.5)), 2),
            "db_connection_pool_utilization": round(min(1.0, self.base_pool * peak * pool_mult
                                                        * random.uniform(0.9, 1.1)), 4),
            "ai_cost_per_hour": round(self.base_ai_cost * peak * cost_mult
                                      * random.uniform(0.9, 1.1), 2),
            "satisfaction_score": round(satisfaction + random.uniform(-0.1, 0.1), 2),
        }
