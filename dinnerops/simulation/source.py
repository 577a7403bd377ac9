"""
MetricSource backed by a simulated service, for demos and local runs.
"""

import random
import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from dinnerops.agent.models import MetricSample, utcnow
from dinnerops.agent.sources import MetricSource

from .models import SimulationConfig
from .service_state import ServiceState

logger = structlog.get_logger(__name__)


class SimulatedMetricSource(MetricSource):
    """Generates snapshots on demand, one per elapsed step since the last pull"""

    def __init__(
        self,
        config: SimulationConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or SimulationConfig()
        self.clock = clock
        self.state = ServiceState(self.config.service_name)
        self._lock = threading.Lock()
        self._samples: deque[MetricSample] = deque(maxlen=5000)
        self._last_step: datetime | None = None
        self.failures_injected = 0

    def _advance(self) -> None:
        now = self.clock()
        step = timedelta(seconds=self.config.step_seconds)

        if self._last_step is None:
            steps = 1
            self._last_step = now - step
        else:
            steps = min(self.config.max_catch_up_steps, int((now - self._last_step) / step))

        for _ in range(steps):
            self._last_step += step
            failure = None
            if random.random() < self.config.failure_probability:
                failure = random.choice(self.config.enabled_failures)
                self.failures_injected += 1
                logger.info("Injecting simulated failure", failure=failure.value)

            snapshot = self.state.generate_metrics(self._last_step, inject_failure=failure)
            tags = {"service": self.config.service_name}
            for name, value in snapshot.items():
                self._samples.append(MetricSample(name, value, self._last_step, tags))

        if self._last_step < now - step * self.config.max_catch_up_steps:
            self._last_step = now

    def pull(self, metric_name: str, since: datetime | None, limit: int = 100) -> list[MetricSample]:
        with self._lock:
            self._advance()
            matching = [
                s for s in self._samples
                if s.metric_name == metric_name and (since is None or s.timestamp > since)
            ]
        return matching[-limit:]
