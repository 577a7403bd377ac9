"""
Pattern correlation: Pearson correlation between the latest samples and a
known-good baseline sequence for the metric. Low correlation means the
metric stopped following its usual shape.
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ..errors import InsufficientDataError
from .base import DetectionMethod, DetectionResult


@dataclass
class CorrelationConfig:
    threshold: float = 0.5
    baselines: dict[str, list[float]] = field(default_factory=dict)


class CorrelationMethod(DetectionMethod):
    def __init__(self, config: dict):
        self.config = CorrelationConfig(**config)

    @property
    def name(self) -> str:
        return "correlation"

    def get_config(self) -> dict[str, Any]:
        return {"threshold": self.config.threshold, "baselines": sorted(self.config.baselines)}

    def detect(self, values: np.ndarray, metric_name: str) -> DetectionResult:
        baseline = self.config.baselines.get(metric_name)
        if not baseline or len(baseline) < 2:
            raise InsufficientDataError(f"{metric_name}: no baseline configured")

        baseline = np.asarray(baseline, dtype=float)
        n = len(baseline)
        self.require_samples(values, n)
        recent = values[-n:]

        if np.std(recent) == 0 or np.std(baseline) == 0:
            raise InsufficientDataError(f"{metric_name}: correlation undefined on flat series")

        r = float(np.corrcoef(recent, baseline)[0, 1])
        threshold = self.config.threshold

        return DetectionResult(
            method=self.name,
            is_anomaly=r < threshold,
            raw_score=r,
            threshold=threshold,
            normalized_score=max(0.0, (1.0 - r) / (1.0 - threshold)),
            details={"baseline_length": n},
        )
