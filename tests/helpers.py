"""
Shared test helpers: fake clock, static metric source, fake channel and
record builders.
"""

from datetime import UTC, datetime, timedelta

from dinnerops.agent.channels import NotificationChannel
from dinnerops.agent.errors import DeliveryFailure
from dinnerops.agent.models import AnomalyRecord, MetricSample, Severity
from dinnerops.agent.sources import MetricSource

T0 = datetime(2025, 10, 2, 18, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class StaticSource(MetricSource):
    """Metric source serving a fixed list of samples"""

    def __init__(self, samples: list[MetricSample] | None = None, healthy: bool = True):
        self.samples = list(samples or [])
        self.healthy = healthy
        self.closed = False
        self.calls = 0

    def pull(self, metric_name, since, limit=100):
        self.calls += 1
        matching = [
            s for s in self.samples
            if s.metric_name == metric_name and (since is None or s.timestamp > since)
        ]
        return matching[-limit:]

    def check_health(self) -> bool:
        return self.healthy

    def close(self) -> None:
        self.closed = True


def make_samples(metric_name: str, values: list[float], start: datetime = T0, step: float = 60):
    return [
        MetricSample(metric_name, v, start + timedelta(seconds=i * step), {"service": "recipe-api"})
        for i, v in enumerate(values)
    ]


def make_anomaly(**overrides) -> AnomalyRecord:
    fields = {
        "metric_name": "response_time_ms",
        "algorithm": "zscore",
        "raw_score": 3.0,
        "normalized_score": 1.2,
        "severity": Severity.CRITICAL,
        "confidence": 0.95,
        "category": "performance",
        "observed_value": 4200.0,
        "suggested_actions": ("Enable response caching",),
        "auto_remediation_eligible": True,
        "context": {"tags": {"service": "recipe-api"}},
        "detected_at": T0,
    }
    fields.update(overrides)
    return AnomalyRecord(**fields)


class FakeChannel(NotificationChannel):
    """Records messages; fails the first `fail_times` sends"""

    def __init__(self, name="fake", fail_times=0):
        self._name = name
        self.fail_times = fail_times
        self.sent = []
        self.attempts = 0
        self.closed = 0

    @property
    def name(self):
        return self._name

    def send(self, message, severity):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise DeliveryFailure(f"{self._name} unavailable")
        self.sent.append((message, severity))

    def close(self):
        self.closed += 1
