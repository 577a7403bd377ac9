"""
Static threshold checks on the latest sample of each metric.

Severity is bucketed on the breach ratio (observed/threshold for "gt" rules,
threshold/observed for "lt" rules): >= 3 critical, >= 1.5 high, otherwise
medium.
"""

import threading
from collections.abc import Callable
from datetime import datetime

import structlog

from .catalog import category_for, suggested_actions_for
from .config import AgentConfig
from .models import AnomalyRecord, MetricSample, Severity, ThresholdRule, utcnow

logger = structlog.get_logger(__name__)

CRITICAL_RATIO = 3.0
HIGH_RATIO = 1.5


def breach_ratio(rule: ThresholdRule, value: float) -> float:
    if rule.operator == "lt":
        return rule.threshold / max(value, 1e-9)
    return value / rule.threshold


def severity_for_ratio(ratio: float) -> Severity:
    if ratio >= CRITICAL_RATIO:
        return Severity.CRITICAL
    if ratio >= HIGH_RATIO:
        return Severity.HIGH
    return Severity.MEDIUM


class ThresholdChecker:
    """Compares samples against static per-metric rules"""

    def __init__(self, config: AgentConfig, clock: Callable[[], datetime] = utcnow):
        self.config = config
        self.clock = clock
        self._lock = threading.Lock()

    def rule_for(self, metric_name: str) -> ThresholdRule | None:
        with self._lock:
            rule = self.config.threshold_rules.get(metric_name)
            return ThresholdRule(rule.metric_name, rule.threshold, rule.operator) if rule else None

    def update_threshold(self, metric_name: str, threshold: float) -> None:
        """Replace a rule's threshold. Called only when an adjustment is approved."""
        with self._lock:
            rule = self.config.threshold_rules.get(metric_name)
            if rule is None:
                raise KeyError(f"No threshold rule for metric '{metric_name}'")
            previous = rule.threshold
            rule.threshold = threshold
        logger.info(
            "Threshold rule updated", metric=metric_name, previous=previous, current=threshold
        )

    def check(self, sample: MetricSample) -> AnomalyRecord | None:
        """Return a threshold-violation record when the sample breaches its rule"""
        rule = self.rule_for(sample.metric_name)
        if rule is None or not rule.breached(sample.value):
            return None

        ratio = breach_ratio(rule, sample.value)
        severity = severity_for_ratio(ratio)
        confidence = max(0.0, min(0.95, (ratio - 1.0) * 2))

        violation = AnomalyRecord(
            metric_name=sample.metric_name,
            algorithm="threshold",
            raw_score=sample.value,
            normalized_score=ratio,
            severity=severity,
            confidence=confidence,
            category=category_for(sample.metric_name, self.config.metric_categories),
            observed_value=sample.value,
            suggested_actions=suggested_actions_for(sample.metric_name),
            auto_remediation_eligible=severity >= Severity.HIGH,
            context={
                "threshold": rule.threshold,
                "operator": rule.operator,
                "tags": dict(sample.tags),
            },
            detected_at=self.clock(),
        )

        logger.warning(
            "Threshold violated",
            metric=sample.metric_name,
            value=sample.value,
            threshold=rule.threshold,
            operator=rule.operator,
            severity=severity.value,
        )
        return violation
