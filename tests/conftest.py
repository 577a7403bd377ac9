"""
Pytest configuration and shared fixtures.
"""

import pytest

from dinnerops.agent.config import AgentConfig
from dinnerops.agent.store import AgentStore
from tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def agent_config():
    """Agent configuration with fast timings for tests."""
    return AgentConfig(
        metrics=["error_rate", "response_time_ms"],
        health_check_interval=0.05,
        anomaly_detection_interval=0.05,
        optimization_interval=0.05,
        learning_interval=0.05,
        shutdown_grace_seconds=1.0,
        remediation_timeout_seconds=1.0,
        delivery_backoff_seconds=0.01,
        delivery_timeout_seconds=1.0,
        metric_query_timeout_seconds=1.0,
    )


@pytest.fixture
def store(agent_config):
    return AgentStore(agent_config.detection_window_size, agent_config.history_capacity)
