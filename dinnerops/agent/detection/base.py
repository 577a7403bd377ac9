"""
Base interface for statistical detection methods.

A method looks at the recent window of one metric and either returns a
DetectionResult or raises InsufficientDataError when it cannot say anything
(too few samples, flat series, no baseline).
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any

import numpy as np

from ..errors import InsufficientDataError


@dataclass
class DetectionResult:
    """Output of one detection method on one window"""

    method: str
    is_anomaly: bool
    raw_score: float
    threshold: float
    normalized_score: float
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DetectionMethod(ABC):
    """Abstract base class for detection methods"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name of the method"""

    @abstractmethod
    def detect(self, values: np.ndarray, metric_name: str) -> DetectionResult:
        """Analyse a window of values (oldest first)

        Raises:
            InsufficientDataError: when the window cannot be analysed
        """

    @abstractmethod
    def get_config(self) -> dict[str, Any]:
        """Get method configuration"""

    def require_samples(self, values: np.ndarray, needed: int) -> None:
        if len(values) < needed:
            raise InsufficientDataError(
                f"{self.name} needs {needed} samples, got {len(values)}"
            )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(config={self.get_config()})"
