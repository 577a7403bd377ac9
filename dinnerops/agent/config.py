"""
Configuration for the monitoring and remediation agent.
"""

from dataclasses import dataclass, field, replace

from .catalog import DEFAULT_METRIC_CATEGORIES, DEFAULT_METRICS, DEFAULT_THRESHOLD_RULES
from .errors import ConfigurationError
from .models import ThresholdRule

DETECTION_METHODS = ("zscore", "moving_average", "correlation")


@dataclass
class AgentConfig:
    """Configuration for the agent control loop"""

    metrics: list[str] = field(default_factory=lambda: list(DEFAULT_METRICS))

    # Schedules (seconds)
    health_check_interval: float = 30.0
    anomaly_detection_interval: float = 60.0
    optimization_interval: float = 300.0
    learning_interval: float = 1800.0
    shutdown_grace_seconds: float = 30.0

    # Detection
    detection_window_size: int = 100
    z_threshold: float = 2.5
    moving_average_window: int = 10
    moving_average_threshold: float = 0.3
    correlation_threshold: float = 0.5
    anomaly_threshold: float = 0.7
    metric_methods: dict[str, list[str]] = field(default_factory=dict)
    baselines: dict[str, list[float]] = field(default_factory=dict)
    metric_query_timeout_seconds: float = 10.0

    # Threshold checker
    threshold_rules: dict[str, ThresholdRule] = field(
        default_factory=lambda: {k: replace(v) for k, v in DEFAULT_THRESHOLD_RULES.items()}
    )
    metric_categories: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_METRIC_CATEGORIES)
    )

    # Decision gate
    min_confidence: float = 0.75
    max_risk_level: float = 0.7
    remediation_timeout_seconds: float = 30.0
    remediation_workers: int = 4

    # Alerting
    dedup_window_seconds: float = 900.0
    escalation_timeout_seconds: float = 900.0
    delivery_max_attempts: int = 3
    delivery_backoff_seconds: float = 0.5
    delivery_timeout_seconds: float = 10.0

    # Learning
    history_capacity: int = 1000
    pattern_min_occurrences: int = 3
    pattern_lookback_seconds: float = 86400.0
    adjustment_step: float = 0.1
    effectiveness_min_outcomes: int = 5
    auto_apply_adjustments: bool = False

    def methods_for(self, metric_name: str) -> list[str]:
        return list(self.metric_methods.get(metric_name, DETECTION_METHODS))

    def validate(self) -> None:
        """Raise ConfigurationError listing every invalid option"""
        problems = []

        if not self.metrics:
            problems.append("metrics must not be empty")

        for name in (
            "health_check_interval",
            "anomaly_detection_interval",
            "optimization_interval",
            "learning_interval",
            "metric_query_timeout_seconds",
            "remediation_timeout_seconds",
            "delivery_timeout_seconds",
            "z_threshold",
            "moving_average_threshold",
            "anomaly_threshold",
        ):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be > 0")

        for name in ("shutdown_grace_seconds", "dedup_window_seconds",
                     "escalation_timeout_seconds", "delivery_backoff_seconds"):
            if getattr(self, name) < 0:
                problems.append(f"{name} must be >= 0")

        if self.detection_window_size < 3:
            problems.append("detection_window_size must be >= 3")
        if self.moving_average_window < 1:
            problems.append("moving_average_window must be >= 1")
        if not 0 < self.correlation_threshold < 1:
            problems.append("correlation_threshold must be in (0, 1)")
        if not 0 <= self.min_confidence <= 1:
            problems.append("min_confidence must be in [0, 1]")
        if not 0 <= self.max_risk_level <= 1:
            problems.append("max_risk_level must be in [0, 1]")
        if self.delivery_max_attempts < 1:
            problems.append("delivery_max_attempts must be >= 1")
        if self.remediation_workers < 1:
            problems.append("remediation_workers must be >= 1")
        if self.history_capacity < 1:
            problems.append("history_capacity must be >= 1")
        if self.adjustment_step <= 0:
            problems.append("adjustment_step must be > 0")

        for metric, methods in self.metric_methods.items():
            unknown = [m for m in methods if m not in DETECTION_METHODS]
            if unknown:
                problems.append(f"metric_methods[{metric}] has unknown methods: {unknown}")

        for metric, rule in self.threshold_rules.items():
            if rule.operator not in ("gt", "lt"):
                problems.append(f"threshold_rules[{metric}].operator must be 'gt' or 'lt'")
            if rule.threshold <= 0:
                problems.append(f"threshold_rules[{metric}].threshold must be > 0")

        if problems:
            raise ConfigurationError(problems)
