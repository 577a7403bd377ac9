"""
Metric catalog: default threshold rules, metric categories and the
operator-facing suggested actions attached to anomalies.
"""

from .models import ThresholdRule

DEFAULT_METRICS = [
    "error_rate",
    "response_time_ms",
    "memory_usage_percent",
    "cpu_usage_percent",
    "satisfaction_score",
    "db_connection_pool_utilization",
    "ai_cost_per_hour",
]

DEFAULT_THRESHOLD_RULES = {
    "error_rate": ThresholdRule("error_rate", 0.05, "gt"),
    "response_time_ms": ThresholdRule("response_time_ms", 2000.0, "gt"),
    "memory_usage_percent": ThresholdRule("memory_usage_percent", 85.0, "gt"),
    "cpu_usage_percent": ThresholdRule("cpu_usage_percent", 90.0, "gt"),
    "satisfaction_score": ThresholdRule("satisfaction_score", 3.5, "lt"),
    "db_connection_pool_utilization": ThresholdRule("db_connection_pool_utilization", 0.8, "gt"),
    "ai_cost_per_hour": ThresholdRule("ai_cost_per_hour", 100.0, "gt"),
}

DEFAULT_METRIC_CATEGORIES = {
    "error_rate": "error",
    "response_time_ms": "performance",
    "cpu_usage_percent": "performance",
    "memory_usage_percent": "availability",
    "db_connection_pool_utilization": "availability",
    "ai_cost_per_hour": "cost",
    "satisfaction_score": "user_experience",
}

SUGGESTED_ACTIONS = {
    "error_rate": [
        "Check error logs for the failing endpoints",
        "Review recent deployments",
        "Enable the circuit breaker on failing dependencies",
        "Scale up the affected service",
    ],
    "response_time_ms": [
        "Optimize slow database queries",
        "Enable response caching",
        "Check for resource bottlenecks",
        "Review recently changed endpoints",
    ],
    "memory_usage_percent": [
        "Check for memory leaks",
        "Review large in-memory data structures",
        "Tune garbage collection",
        "Scale memory resources",
    ],
    "cpu_usage_percent": [
        "Profile CPU-intensive operations",
        "Review hot code paths",
        "Rebalance load across instances",
        "Scale CPU resources",
    ],
    "ai_cost_per_hour": [
        "Review AI model usage per feature",
        "Batch AI requests",
        "Shorten prompts",
        "Consider a cheaper model for low-value calls",
    ],
    "db_connection_pool_utilization": [
        "Look for leaked or long-held connections",
        "Raise the pool size",
        "Scale the database tier",
    ],
    "satisfaction_score": [
        "Review recent user feedback",
        "Correlate with latency and error metrics",
    ],
}

DEFAULT_SUGGESTED_ACTIONS = ["Investigate the issue", "Check system logs"]


def suggested_actions_for(metric_name: str) -> tuple[str, ...]:
    return tuple(SUGGESTED_ACTIONS.get(metric_name, DEFAULT_SUGGESTED_ACTIONS))


def category_for(metric_name: str, categories: dict[str, str] | None = None) -> str:
    """Resolve the anomaly category of a metric, falling back to name heuristics"""
    if categories and metric_name in categories:
        return categories[metric_name]

    name = metric_name.lower()
    if "error" in name:
        return "error"
    if "latency" in name or "response_time" in name or "cpu" in name:
        return "performance"
    if "cost" in name:
        return "cost"
    return "availability"
