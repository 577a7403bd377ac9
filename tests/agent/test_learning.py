"""
Tests for the LearningRecorder.
"""

from datetime import timedelta

import pytest

from dinnerops.agent.learning import LearningRecorder
from dinnerops.agent.models import DecisionAction, DecisionState, Outcome
from tests.helpers import T0, make_anomaly


def make_action(final_state, action_type="enable_caching"):
    action = DecisionAction(
        source_anomaly_id="anom_1",
        metric_name="response_time_ms",
        category="performance",
        action_type=action_type,
        capability="cache",
        risk_level=0.1,
        required_confidence=0.75,
        confidence=0.9,
    )
    if final_state == DecisionState.ESCALATED:
        action.transition(DecisionState.ESCALATED, reason="manual")
    elif final_state in (DecisionState.EXECUTED, DecisionState.FAILED):
        action.transition(DecisionState.APPROVED)
        action.transition(final_state)
    elif final_state == DecisionState.APPROVED:
        action.transition(DecisionState.APPROVED)
    return action


@pytest.fixture
def learning(agent_config, store, clock):
    return LearningRecorder(agent_config, store, clock)


class TestRecordOutcome:
    """Tests for per-decision outcome insights"""

    @pytest.mark.parametrize(
        "state,outcome",
        [
            (DecisionState.EXECUTED, Outcome.SUCCESS),
            (DecisionState.FAILED, Outcome.FAILURE),
            (DecisionState.ESCALATED, Outcome.PARTIAL),
        ],
    )
    def test_outcome_mapping(self, learning, state, outcome):
        """Test that terminal states map onto outcomes"""
        insight = learning.record_outcome(make_action(state))

        assert insight.type == "decision_outcome"
        assert insight.outcome == outcome
        assert insight.source_data["state"] == state.value

    def test_idempotent_per_action(self, learning, store):
        """Test that recording the same action twice yields one insight"""
        action = make_action(DecisionState.EXECUTED)

        first = learning.record_outcome(action)
        second = learning.record_outcome(action)

        assert first is second
        assert [i.action_id for i in store.insights()] == [action.id]

    def test_outcome_cache_is_bounded(self, agent_config, store, clock):
        """Test that remembered outcomes never exceed the history capacity"""
        agent_config.history_capacity = 10
        learning = LearningRecorder(agent_config, store, clock)

        actions = [make_action(DecisionState.ESCALATED) for _ in range(50)]
        for action in actions:
            learning.record_outcome(action)

        assert len(learning._by_action) == 10
        assert list(learning._by_action) == [a.id for a in actions[-10:]]

    @pytest.mark.parametrize("state", [DecisionState.PROPOSED, DecisionState.APPROVED])
    def test_non_terminal_action_rejected(self, learning, state):
        """Test that unfinished actions cannot be recorded"""
        with pytest.raises(ValueError, match="not terminal"):
            learning.record_outcome(make_action(state))


class TestAnalyzePatterns:
    """Tests for recurring anomaly patterns"""

    def add_anomalies(self, store, count, when=T0, **overrides):
        for i in range(count):
            store.add_anomaly(make_anomaly(detected_at=when + timedelta(minutes=i), **overrides))

    def test_recurring_threshold_violations_propose_adjustment(self, learning, store, clock):
        """Test that more than three violations produce a static threshold proposal"""
        self.add_anomalies(store, 4, metric_name="error_rate", algorithm="threshold", category="error")
        clock.advance(3600)

        insights = learning.analyze_patterns()

        assert len(insights) == 1
        insight = insights[0]
        assert insight.type == "pattern"
        assert insight.confidence == 0.8
        assert insight.source_data["occurrences"] == 4
        assert insight.proposal["parameter"] == "static_threshold"
        assert insight.proposal["current_value"] == 0.05
        assert insight.proposal["proposed_value"] == 0.055

        proposals = store.proposals(status="proposed")
        assert len(proposals) == 1
        assert proposals[0].metric_name == "error_rate"

    def test_proposals_are_not_applied(self, learning, store, agent_config, clock):
        """Test that the recorder never changes configuration itself"""
        self.add_anomalies(store, 5, metric_name="error_rate", algorithm="threshold", category="error")
        clock.advance(60 * 10)

        learning.analyze_patterns()

        assert agent_config.threshold_rules["error_rate"].threshold == 0.05

    def test_statistical_pattern_proposes_z_threshold(self, learning, store, clock):
        """Test that recurring z-score anomalies propose a higher z threshold"""
        self.add_anomalies(store, 4)
        clock.advance(600)

        insight = learning.analyze_patterns()[0]

        assert insight.proposal["parameter"] == "z_threshold"
        assert insight.proposal["current_value"] == 2.5
        assert insight.proposal["proposed_value"] == 2.75

    @pytest.mark.parametrize(
        "algorithm,parameter,current,proposed",
        [
            ("moving_average", "moving_average_threshold", 0.3, 0.33),
            ("correlation", "correlation_threshold", 0.5, 0.45),
            ("ensemble", "anomaly_threshold", 0.7, 0.77),
        ],
    )
    def test_proposal_targets_the_method_that_fired(
        self, learning, store, clock, algorithm, parameter, current, proposed
    ):
        """Test that each detection method gets its own parameter relaxed"""
        self.add_anomalies(store, 4, algorithm=algorithm)
        clock.advance(600)

        insight = learning.analyze_patterns()[0]

        assert insight.proposal["parameter"] == parameter
        assert insight.proposal["current_value"] == current
        assert insight.proposal["proposed_value"] == proposed

    def test_unknown_algorithm_has_no_proposal(self, learning, store, clock):
        """Test that an algorithm with no tunable parameter still yields an insight"""
        self.add_anomalies(store, 4, algorithm="seasonal")
        clock.advance(600)

        insight = learning.analyze_patterns()[0]

        assert insight.proposal is None
        assert store.proposals() == []

    def test_lower_bound_rule_proposal_moves_down(self, learning, store, clock):
        """Test that "lt" rules are relaxed by lowering the threshold"""
        self.add_anomalies(
            store, 4, metric_name="satisfaction_score", algorithm="threshold", category="user_experience"
        )
        clock.advance(600)

        insight = learning.analyze_patterns()[0]

        assert insight.proposal["proposed_value"] == 3.15

    def test_three_occurrences_is_not_a_pattern(self, learning, store, clock):
        """Test that the occurrence count must exceed the minimum"""
        self.add_anomalies(store, 3)
        clock.advance(600)

        assert learning.analyze_patterns() == []

    def test_old_anomalies_are_ignored(self, learning, store, clock):
        """Test that only anomalies inside the lookback are counted"""
        self.add_anomalies(store, 6, when=T0 - timedelta(days=2))

        assert learning.analyze_patterns() == []

    def test_pattern_reported_once_per_lookback(self, learning, store, clock):
        """Test that a known pattern is not re-reported every cycle"""
        self.add_anomalies(store, 4)
        clock.advance(600)

        assert len(learning.analyze_patterns()) == 1
        clock.advance(600)
        assert learning.analyze_patterns() == []
        assert len(store.proposals()) == 1


class TestAnalyzeEffectiveness:
    """Tests for action effectiveness insights"""

    def test_success_rate_per_action(self, learning, store):
        """Test that an effectiveness insight appears once five outcomes exist"""
        for state in [DecisionState.EXECUTED] * 4 + [DecisionState.FAILED]:
            learning.record_outcome(make_action(state))

        insights = learning.analyze_effectiveness()

        assert len(insights) == 1
        assert insights[0].type == "effectiveness"
        assert insights[0].source_data == {
            "action_type": "enable_caching",
            "total": 5,
            "success_rate": 0.8,
        }
        assert insights[0].outcome == Outcome.SUCCESS

    def test_not_enough_outcomes(self, learning):
        """Test that fewer than five outcomes produce nothing"""
        for _ in range(4):
            learning.record_outcome(make_action(DecisionState.EXECUTED))

        assert learning.analyze_effectiveness() == []

    def test_run_cycle_combines_both(self, learning, store, clock):
        """Test that run_cycle returns pattern and effectiveness insights"""
        for i in range(4):
            store.add_anomaly(make_anomaly(detected_at=T0 + timedelta(minutes=i)))
        for _ in range(5):
            learning.record_outcome(make_action(DecisionState.ESCALATED))
        clock.advance(600)

        insights = learning.run_cycle()

        assert sorted(i.type for i in insights) == ["effectiveness", "pattern"]
