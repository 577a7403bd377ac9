"""
Tests for the AgentOrchestrator lifecycle, schedules and pipeline.
"""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from dinnerops.agent.alerting import ChannelRoute
from dinnerops.agent.config import AgentConfig
from dinnerops.agent.errors import ConfigurationError, RemediationTimeout
from dinnerops.agent.models import DecisionState, HealthStatus, Severity, ThresholdAdjustment
from dinnerops.agent.orchestrator import SCHEDULES, AgentOrchestrator
from dinnerops.agent.remediation import dry_run_registry
from tests.helpers import FakeChannel, StaticSource, make_anomaly, make_samples

ERROR_RATES = [0.01] * 19 + [0.12]
RESPONSE_TIMES = [450.0, 452.0, 448.0] * 6 + [450.0, 452.0]


@pytest.fixture
def channel():
    return FakeChannel("ops")


@pytest.fixture
def source():
    return StaticSource(
        make_samples("error_rate", ERROR_RATES) + make_samples("response_time_ms", RESPONSE_TIMES)
    )


@pytest.fixture
def agent(agent_config, source, store, channel, clock):
    agent = AgentOrchestrator(
        agent_config,
        source,
        store=store,
        routes=[ChannelRoute(channel)],
        clock=clock,
        sleep=MagicMock(),
    )
    yield agent
    agent.stop()


class TestLifecycle:
    """Tests for start/stop"""

    def test_invalid_config_rejected(self, source):
        """Test that an invalid configuration prevents construction"""
        config = AgentConfig(metrics=[], min_confidence=1.5)

        with pytest.raises(ConfigurationError) as exc_info:
            AgentOrchestrator(config, source)

        assert len(exc_info.value.problems) == 2

    def test_start_is_idempotent(self, agent):
        """Test that a second start does not launch more schedules"""
        agent.start()
        threads = dict(agent._threads)
        agent.start()

        assert agent.running
        assert agent._threads == threads
        assert set(threads) == set(SCHEDULES)

    def test_stop_is_idempotent(self, agent, source):
        """Test that stop can be called repeatedly"""
        agent.start()
        agent.stop()
        agent.stop()

        assert not agent.running
        assert source.closed

    def test_stop_before_start_releases_resources(self, agent, source, channel):
        """Test that an agent that never started still closes what it opened"""
        agent.stop()
        agent.stop()

        assert not agent.running
        assert source.closed
        assert channel.closed == 1
        with pytest.raises(RemediationTimeout):
            agent.executor.execute("cache", "enable_caching", {}, "cache:api")
        with pytest.raises(RuntimeError, match="cannot be restarted"):
            agent.start()

    def test_cannot_restart(self, agent):
        """Test that a stopped agent refuses to start again"""
        agent.start()
        agent.stop()

        with pytest.raises(RuntimeError, match="cannot be restarted"):
            agent.start()

    def test_schedules_run_until_stopped(self, agent, source):
        """Test that every schedule ticks while running"""
        agent.start()
        time.sleep(0.3)
        agent.stop()

        for name in SCHEDULES:
            assert agent.stats[f"{name}_ticks"] >= 1
        assert source.calls >= 2

    def test_stop_abandons_remediation(self, agent):
        """Test that remediation calls after stop fail instead of running"""
        agent.start()
        agent.stop()

        with pytest.raises(RemediationTimeout):
            agent.executor.execute("cache", "enable_caching", {}, "cache:api")

    def test_stop_respects_grace_period(self, agent_config, source, store, clock):
        """Test that a hung tick does not block stop for long"""
        agent_config.shutdown_grace_seconds = 0.1
        agent = AgentOrchestrator(agent_config, source, store=store, clock=clock)
        release = threading.Event()
        agent.learning.run_cycle = lambda: release.wait(5)

        agent.start()
        time.sleep(0.1)
        started = time.monotonic()
        agent.stop()
        release.set()

        assert time.monotonic() - started < 2.5

    def test_status(self, agent, clock):
        """Test the status report"""
        agent.start()
        agent.run_tick("health_check")

        status = agent.status()

        assert status["running"] is True
        assert status["started_at"] == clock().isoformat()
        assert status["last_health"]["overall"] in ("healthy", "degraded", "critical")
        assert set(status) >= {"anomaly_count", "decision_count", "alert_count", "insight_count", "ticks"}


class TestTicks:
    """Tests for individual schedule ticks"""

    def test_tick_exception_is_isolated(self, agent):
        """Test that a raising tick is logged and the next tick still runs"""
        with patch.object(agent.health, "check", side_effect=[RuntimeError("boom"), MagicMock(overall=HealthStatus.HEALTHY)]):
            assert agent.run_tick("health_check") is False
            assert agent.run_tick("health_check") is True

        assert agent.stats["health_check_errors"] == 1
        assert agent.stats["health_check_ticks"] == 2

    def test_detection_tick_end_to_end(self, agent, store):
        """Test that an error-rate spike is detected, remediated, alerted and learned from"""
        agent.run_tick("anomaly_detection")

        anomalies = store.anomalies()
        assert {a.metric_name for a in anomalies} == {"error_rate"}
        assert "threshold" in {a.algorithm for a in anomalies}

        actions = store.actions()
        assert actions
        assert all(a.action_type == "enable_circuit_breaker" for a in actions)
        assert all(a.state == DecisionState.EXECUTED for a in actions)

        outcome_ids = [i.action_id for i in store.insights() if i.type == "decision_outcome"]
        assert sorted(outcome_ids) == sorted(a.id for a in actions)

    def test_detection_tick_without_new_samples(self, agent, store):
        """Test that a second tick over the same samples reports nothing new"""
        agent.run_tick("anomaly_detection")
        count = len(store.anomalies())

        agent.run_tick("anomaly_detection")

        assert len(store.anomalies()) == count

    def test_failing_metric_does_not_stop_others(self, agent, source, store):
        """Test that one metric's pull failure skips only that metric"""
        pull = source.pull

        def flaky_pull(metric_name, since, limit=100):
            if metric_name == "error_rate":
                raise ConnectionError("metric store unavailable")
            return pull(metric_name, since, limit)

        source.pull = flaky_pull

        assert agent.run_tick("anomaly_detection") is True
        assert store.window("error_rate") == []
        assert len(store.window("response_time_ms")) == len(RESPONSE_TIMES)

    def test_slow_query_times_out(self, agent_config, store, clock):
        """Test that a metric query exceeding its timeout is skipped"""
        agent_config.metric_query_timeout_seconds = 0.1
        release = threading.Event()
        source = StaticSource()
        source.pull = lambda metric_name, since, limit=100: release.wait(5) or []
        agent = AgentOrchestrator(agent_config, source, store=store, clock=clock)

        started = time.monotonic()
        assert agent.run_tick("anomaly_detection") is True
        release.set()

        assert time.monotonic() - started < 2
        agent.stop()

    def test_critical_health_sends_alert(self, agent_config, store, channel, clock):
        """Test that an unreachable metric source raises a health alert"""
        agent = AgentOrchestrator(
            agent_config,
            StaticSource(healthy=False),
            store=store,
            routes=[ChannelRoute(channel)],
            clock=clock,
        )

        agent.run_tick("health_check")

        assert [a.dedup_key for a in store.alerts()] == ["system:health"]
        assert channel.sent[0][1] == Severity.CRITICAL
        agent.stop()

    def test_optimization_tick_reviews_proposals(self, agent_config, store, source, clock):
        """Test that pending proposals go through the gate when auto-apply is on"""
        agent_config.auto_apply_adjustments = True
        agent = AgentOrchestrator(agent_config, source, store=store, clock=clock)
        proposal = ThresholdAdjustment(
            metric_name="error_rate",
            parameter="static_threshold",
            current_value=0.05,
            proposed_value=0.055,
            confidence=0.8,
            rationale="recurring violations",
        )
        store.add_proposal(proposal)

        agent.run_tick("optimization")

        assert proposal.status == "applied"
        assert agent.thresholds.rule_for("error_rate").threshold == 0.055
        agent.stop()

    def test_optimization_tick_leaves_proposals_without_auto_apply(self, agent, store):
        """Test that proposals stay pending by default"""
        proposal = ThresholdAdjustment(
            metric_name="error_rate",
            parameter="static_threshold",
            current_value=0.05,
            proposed_value=0.055,
            confidence=0.8,
            rationale="recurring violations",
        )
        store.add_proposal(proposal)

        agent.run_tick("optimization")

        assert proposal.status == "proposed"


class TestProcessAnomaly:
    """Tests for the per-anomaly pipeline"""

    def test_eligible_anomaly_is_remediated(self, agent, store, channel):
        """Test the detect, decide, execute, alert, learn ordering"""
        anomaly = make_anomaly()

        agent.process_anomaly(anomaly)

        assert store.anomalies() == [anomaly]
        action = store.actions()[0]
        assert action.source_anomaly_id == anomaly.id
        assert action.state == DecisionState.EXECUTED
        assert agent.registry.get("cache").calls == [("enable_caching", action.params)]
        assert store.alerts()[0].source == "decision"
        assert store.insights()[0].action_id == action.id

    def test_ineligible_anomaly_is_alerted(self, agent, store):
        """Test that medium anomalies are alerted without a decision"""
        agent.process_anomaly(make_anomaly(severity=Severity.MEDIUM, auto_remediation_eligible=False))

        assert store.actions() == []
        assert [a.source for a in store.alerts()] == ["anomaly"]

    def test_custom_registry(self, agent_config, source, store, clock):
        """Test that an injected registry is used by the executor"""
        registry = dry_run_registry()
        agent = AgentOrchestrator(agent_config, source, store=store, registry=registry, clock=clock)

        agent.process_anomaly(make_anomaly())

        assert len(registry.get("cache").calls) == 1
        agent.stop()
