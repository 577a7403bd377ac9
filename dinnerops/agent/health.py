"""
Health-check stage: summarizes the latest value of every catalog metric into a
HealthSnapshot.
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from .config import AgentConfig
from .models import HealthSnapshot, HealthStatus, Severity, utcnow
from .sources import MetricSource
from .store import AgentStore
from .thresholds import breach_ratio, severity_for_ratio

logger = structlog.get_logger(__name__)

COMPONENT_SCORES = {
    "ok": 100.0,
    Severity.MEDIUM: 75.0,
    Severity.HIGH: 50.0,
    Severity.CRITICAL: 20.0,
}
DEGRADED_SCORE = 80.0


class HealthMonitor:
    def __init__(
        self,
        config: AgentConfig,
        store: AgentStore,
        source: MetricSource,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.store = store
        self.source = source
        self.clock = clock

    def check(self) -> HealthSnapshot:
        """Build, store and return the current health snapshot"""
        metrics: dict[str, float] = {}
        issues: list[str] = []
        scores: list[float] = []
        critical = False
        degraded = False

        if not self.source.check_health():
            issues.append("metric source unreachable")
            critical = True

        for metric_name in self.config.metrics:
            sample = self.store.latest_sample(metric_name)
            if sample is None:
                continue
            metrics[metric_name] = sample.value

            rule = self.config.threshold_rules.get(metric_name)
            if rule is None or not rule.breached(sample.value):
                scores.append(COMPONENT_SCORES["ok"])
                continue

            severity = severity_for_ratio(breach_ratio(rule, sample.value))
            scores.append(COMPONENT_SCORES[severity])
            issues.append(
                f"{metric_name}={sample.value} breaches {rule.operator} {rule.threshold} "
                f"({severity.value})"
            )
            if severity == Severity.CRITICAL:
                critical = True
            else:
                degraded = True

        score = sum(scores) / len(scores) if scores else (0.0 if critical else 100.0)

        if critical:
            overall = HealthStatus.CRITICAL
        elif degraded or score < DEGRADED_SCORE:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        snapshot = HealthSnapshot(
            timestamp=self.clock(),
            overall=overall,
            score=round(score, 1),
            metrics=metrics,
            issues=issues,
        )
        self.store.set_health(snapshot)

        log = logger.warning if overall != HealthStatus.HEALTHY else logger.info
        log("Health check", overall=overall.value, score=snapshot.score, issues=len(issues))
        return snapshot
