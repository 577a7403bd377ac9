"""
Z-score detection: how far the most extreme sample in the window sits from
the window mean, in population standard deviations.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from ..errors import InsufficientDataError
from .base import DetectionMethod, DetectionResult


@dataclass
class ZScoreConfig:
    z_threshold: float = 2.5
    min_samples: int = 3


class ZScoreMethod(DetectionMethod):
    def __init__(self, config: dict):
        self.config = ZScoreConfig(**config)

    @property
    def name(self) -> str:
        return "zscore"

    def get_config(self) -> dict[str, Any]:
        return {"z_threshold": self.config.z_threshold, "min_samples": self.config.min_samples}

    def detect(self, values: np.ndarray, metric_name: str) -> DetectionResult:
        self.require_samples(values, self.config.min_samples)

        mean = float(np.mean(values))
        std = float(np.std(values))
        if std == 0:
            raise InsufficientDataError(f"{metric_name}: zero variance window")

        z_scores = np.abs(values - mean) / std
        idx = int(np.argmax(z_scores))
        z = float(z_scores[idx])

        return DetectionResult(
            method=self.name,
            is_anomaly=z > self.config.z_threshold,
            raw_score=z,
            threshold=self.config.z_threshold,
            normalized_score=z / self.config.z_threshold,
            details={
                "mean": mean,
                "std": std,
                "max_deviation_value": float(values[idx]),
                "max_deviation_index": idx,
                "window_size": len(values),
            },
        )
