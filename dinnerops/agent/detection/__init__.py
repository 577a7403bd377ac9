"""
Detection methods registry and factory.
"""

from .base import DetectionMethod, DetectionResult
from .correlation import CorrelationMethod
from .moving_average import MovingAverageMethod
from .zscore import ZScoreMethod

METHOD_REGISTRY = {
    "zscore": ZScoreMethod,
    "moving_average": MovingAverageMethod,
    "correlation": CorrelationMethod,
}


def get_method(method_name: str, config: dict) -> DetectionMethod:
    """Factory to create a detection method

    Args:
        method_name: Name of the method (e.g., 'zscore')
        config: Configuration dict for the method

    Returns:
        Instance of the detection method

    Raises:
        ValueError: If method_name is not registered
    """
    if method_name not in METHOD_REGISTRY:
        available = ", ".join(METHOD_REGISTRY.keys())
        raise ValueError(f"Unknown method '{method_name}'. Available methods: {available}")

    return METHOD_REGISTRY[method_name](config)


def list_methods() -> list[str]:
    return list(METHOD_REGISTRY.keys())


__all__ = [
    "CorrelationMethod",
    "DetectionMethod",
    "DetectionResult",
    "MovingAverageMethod",
    "ZScoreMethod",
    "get_method",
    "list_methods",
]
