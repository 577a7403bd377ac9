"""
Anomaly detector.

Runs the configured detection methods over a metric's recent window and
combines their normalized scores into a single AnomalyRecord.

Combination rules:
- each method's normalized score is its raw score over its threshold
- combined score is the mean over the methods that flagged the window, or
  over every method that produced a result when none flagged it
- the window is anomalous when the combined score exceeds anomaly_threshold
- severity: >= 0.9 critical, >= 0.7 high, >= 0.5 medium, otherwise low
- confidence: min(0.95, combined * 2)
"""

from collections import Counter
from collections.abc import Callable
from datetime import datetime

import numpy as np
import structlog

from .catalog import category_for, suggested_actions_for
from .config import AgentConfig
from .detection import DetectionMethod, DetectionResult, get_method
from .errors import InsufficientDataError
from .models import AnomalyRecord, MetricSample, Severity, utcnow

logger = structlog.get_logger(__name__)

ADJUSTABLE_PARAMETERS = (
    "z_threshold",
    "moving_average_threshold",
    "correlation_threshold",
    "anomaly_threshold",
)


def severity_for_score(score: float) -> Severity:
    if score >= 0.9:
        return Severity.CRITICAL
    if score >= 0.7:
        return Severity.HIGH
    if score >= 0.5:
        return Severity.MEDIUM
    return Severity.LOW


def confidence_for_score(score: float) -> float:
    return max(0.0, min(0.95, score * 2))


class AnomalyDetector:
    """Statistical detector combining z-score, moving-average and correlation methods"""

    def __init__(self, config: AgentConfig, clock: Callable[[], datetime] = utcnow):
        self.config = config
        self.clock = clock
        self.methods: dict[str, DetectionMethod] = {}
        self._build_methods()

        self.stats = {
            "windows_analyzed": 0,
            "anomalies_detected": 0,
            "insufficient_data": 0,
        }
        self._by_severity: Counter = Counter()
        self._by_algorithm: Counter = Counter()
        self._by_metric: Counter = Counter()
        self._confidence_total = 0.0
        self._reported_peaks: dict[str, datetime] = {}

    def _build_methods(self) -> None:
        self.methods = {
            "zscore": get_method("zscore", {"z_threshold": self.config.z_threshold}),
            "moving_average": get_method(
                "moving_average",
                {
                    "window": self.config.moving_average_window,
                    "threshold": self.config.moving_average_threshold,
                },
            ),
            "correlation": get_method(
                "correlation",
                {
                    "threshold": self.config.correlation_threshold,
                    "baselines": self.config.baselines,
                },
            ),
        }

    @property
    def z_threshold(self) -> float:
        return self.config.z_threshold

    def update_parameter(self, parameter: str, value: float) -> None:
        """Change a detection parameter. Called only when an adjustment is approved."""
        if parameter not in ADJUSTABLE_PARAMETERS:
            raise ValueError(f"Unknown adjustable parameter '{parameter}'")
        if value <= 0 or (parameter == "correlation_threshold" and value >= 1):
            raise ValueError(f"{parameter} value {value} is out of range")
        previous = getattr(self.config, parameter)
        setattr(self.config, parameter, value)
        self._build_methods()
        logger.info("Detection parameter updated", parameter=parameter, previous=previous, current=value)

    def update_z_threshold(self, value: float) -> None:
        self.update_parameter("z_threshold", value)

    def evaluate(self, metric_name: str, values: np.ndarray) -> tuple[float, list[DetectionResult]]:
        """Run every enabled method and return (combined score, results that were produced)"""
        results = []
        for method_name in self.config.methods_for(metric_name):
            method = self.methods[method_name]
            try:
                results.append(method.detect(values, metric_name))
            except InsufficientDataError as e:
                logger.debug(
                    "Detection method skipped", metric=metric_name, method=method_name, reason=str(e)
                )

        if not results:
            return 0.0, []

        flagged = [r for r in results if r.is_anomaly]
        combined = float(np.mean([r.normalized_score for r in (flagged or results)]))
        return combined, results

    def analyze(self, metric_name: str, samples: list[MetricSample]) -> AnomalyRecord | None:
        """Analyse a metric window. Returns an AnomalyRecord when the window is anomalous."""
        if not samples:
            return None

        values = np.asarray([s.value for s in samples], dtype=float)
        combined, results = self.evaluate(metric_name, values)
        self.stats["windows_analyzed"] += 1

        if not results:
            self.stats["insufficient_data"] += 1
            return None

        if combined <= self.config.anomaly_threshold:
            return None

        contributors = [r for r in results if r.is_anomaly] or results
        algorithm = contributors[0].method if len(contributors) == 1 else "ensemble"
        dominant = max(contributors, key=lambda r: r.normalized_score)

        # A lone z-score peak stays in the window for many ticks; report it once
        peak_at = None
        if algorithm == "zscore":
            peak_at = samples[dominant.details["max_deviation_index"]].timestamp
            if self._reported_peaks.get(metric_name) == peak_at:
                logger.debug("Peak already reported", metric=metric_name, peak_at=peak_at)
                return None

        severity = severity_for_score(combined)
        confidence = confidence_for_score(combined)
        latest = samples[-1]

        anomaly = AnomalyRecord(
            metric_name=metric_name,
            algorithm=algorithm,
            raw_score=dominant.raw_score,
            normalized_score=combined,
            severity=severity,
            confidence=confidence,
            category=category_for(metric_name, self.config.metric_categories),
            observed_value=latest.value,
            suggested_actions=suggested_actions_for(metric_name),
            auto_remediation_eligible=severity >= Severity.HIGH,
            context={
                "methods": {r.method: r.to_dict() for r in results},
                "flagged_by": [r.method for r in results if r.is_anomaly],
                "window_size": len(samples),
                "tags": dict(latest.tags),
            },
            detected_at=self.clock(),
        )

        if peak_at is not None:
            self._reported_peaks[metric_name] = peak_at

        self.stats["anomalies_detected"] += 1
        self._by_severity[severity.value] += 1
        self._by_algorithm[algorithm] += 1
        self._by_metric[metric_name] += 1
        self._confidence_total += confidence

        logger.info(
            "Anomaly detected",
            metric=metric_name,
            algorithm=algorithm,
            combined_score=round(combined, 3),
            severity=severity.value,
            confidence=round(confidence, 3),
            value=latest.value,
        )
        return anomaly

    def detection_statistics(self) -> dict:
        """Counts by severity, algorithm and metric, plus average confidence"""
        detected = self.stats["anomalies_detected"]
        return {
            "total_anomalies": detected,
            "by_severity": dict(self._by_severity),
            "by_algorithm": dict(self._by_algorithm),
            "by_metric": dict(self._by_metric),
            "average_confidence": self._confidence_total / detected if detected else 0.0,
        }
