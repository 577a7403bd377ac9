"""
Moving-average delta: relative change between the mean of the latest
`window` samples and the mean of the `window` samples before them.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from ..errors import InsufficientDataError
from .base import DetectionMethod, DetectionResult


@dataclass
class MovingAverageConfig:
    window: int = 10
    threshold: float = 0.3


class MovingAverageMethod(DetectionMethod):
    def __init__(self, config: dict):
        self.config = MovingAverageConfig(**config)

    @property
    def name(self) -> str:
        return "moving_average"

    def get_config(self) -> dict[str, Any]:
        return {"window": self.config.window, "threshold": self.config.threshold}

    def detect(self, values: np.ndarray, metric_name: str) -> DetectionResult:
        w = self.config.window
        self.require_samples(values, 2 * w)

        recent = float(np.mean(values[-w:]))
        prior = float(np.mean(values[-2 * w : -w]))
        if prior == 0:
            raise InsufficientDataError(f"{metric_name}: prior window mean is zero")

        change = abs(recent - prior) / abs(prior)

        return DetectionResult(
            method=self.name,
            is_anomaly=change > self.config.threshold,
            raw_score=change,
            threshold=self.config.threshold,
            normalized_score=change / self.config.threshold,
            details={"recent_mean": recent, "prior_mean": prior, "window": w},
        )
