"""
Tests for the AnomalyDetector combination logic.
"""

from datetime import timedelta

import numpy as np
import pytest

from dinnerops.agent.config import AgentConfig
from dinnerops.agent.detector import AnomalyDetector, confidence_for_score, severity_for_score
from dinnerops.agent.models import Severity
from tests.helpers import T0, make_samples

BASELINE = [100.0, 100.2]


class TestSeverityBuckets:
    """Tests for score to severity and confidence mapping."""

    @pytest.mark.parametrize(
        "score,severity",
        [
            (0.95, Severity.CRITICAL),
            (0.9, Severity.CRITICAL),
            (0.75, Severity.HIGH),
            (0.7, Severity.HIGH),
            (0.6, Severity.MEDIUM),
            (0.2, Severity.LOW),
        ],
    )
    def test_severity_for_score(self, score, severity):
        """Test severity bucket boundaries."""
        assert severity_for_score(score) == severity

    @pytest.mark.parametrize("score,confidence", [(0.2, 0.4), (0.8, 0.95), (-1.0, 0.0)])
    def test_confidence_for_score(self, score, confidence):
        """Test confidence is twice the score, capped at 0.95 and floored at 0."""
        assert confidence_for_score(score) == pytest.approx(confidence)


class TestAnomalyDetector:
    """Tests for AnomalyDetector.analyze."""

    def test_constant_window_not_anomalous(self, clock):
        """Test that a constant window yields no anomaly and a zero score."""
        detector = AnomalyDetector(AgentConfig(), clock)
        samples = make_samples("response_time_ms", [250.0] * 30)

        combined, results = detector.evaluate(
            "response_time_ms", np.array([s.value for s in samples])
        )

        assert detector.analyze("response_time_ms", samples) is None
        assert "zscore" not in [r.method for r in results]
        assert combined == 0.0

    @pytest.mark.parametrize("baseline_size", [10, 20, 60])
    def test_five_sigma_spike_is_high_or_critical(self, clock, baseline_size):
        """Test that a mean+5 sigma spike over a low-variance baseline is reported."""
        detector = AnomalyDetector(AgentConfig(), clock)
        values = BASELINE * (baseline_size // 2) + [100.1 + 5 * 0.1]
        samples = make_samples("response_time_ms", values)

        anomaly = detector.analyze("response_time_ms", samples)

        assert anomaly is not None
        assert anomaly.severity >= Severity.HIGH
        assert anomaly.auto_remediation_eligible is True
        assert anomaly.category == "performance"
        assert "zscore" in anomaly.context["flagged_by"]
        assert anomaly.suggested_actions

    def test_insufficient_data(self, clock):
        """Test that windows no method can score produce nothing."""
        detector = AnomalyDetector(AgentConfig(), clock)

        assert detector.analyze("error_rate", make_samples("error_rate", [0.01, 0.02])) is None
        assert detector.analyze("error_rate", []) is None
        assert detector.stats["insufficient_data"] == 1

    def test_mean_shift_flagged_by_moving_average(self, clock):
        """Test that a sustained mean shift is reported by the moving-average method."""
        config = AgentConfig(metric_methods={"response_time_ms": ["moving_average"]})
        detector = AnomalyDetector(config, clock)
        samples = make_samples("response_time_ms", [200.0] * 10 + [320.0] * 10)

        anomaly = detector.analyze("response_time_ms", samples)

        assert anomaly is not None
        assert anomaly.algorithm == "moving_average"
        assert anomaly.normalized_score == pytest.approx(0.6 / 0.3)
        assert anomaly.severity == Severity.CRITICAL

    def test_ensemble_when_several_methods_flag(self, clock):
        """Test that the record is labelled ensemble when more than one method flags."""
        detector = AnomalyDetector(AgentConfig(), clock)
        values = [100.0, 100.2] * 10 + [100.0, 100.2] * 4 + [100.0, 500.0]
        samples = make_samples("response_time_ms", values)

        anomaly = detector.analyze("response_time_ms", samples)

        assert anomaly is not None
        assert anomaly.algorithm == "ensemble"
        assert set(anomaly.context["flagged_by"]) == {"zscore", "moving_average"}

    def test_same_peak_reported_once(self, clock):
        """Test that an unchanged z-score peak is not re-reported on the next tick."""
        config = AgentConfig(metric_methods={"cpu_usage_percent": ["zscore"]})
        detector = AnomalyDetector(config, clock)
        values = BASELINE * 5 + [100.6]
        samples = make_samples("cpu_usage_percent", values)

        later = make_samples("cpu_usage_percent", [100.1], start=T0 + timedelta(minutes=30))

        first = detector.analyze("cpu_usage_percent", samples)
        second = detector.analyze("cpu_usage_percent", samples + later)

        assert first is not None
        assert second is None

    def test_detection_statistics(self, clock):
        """Test counts by severity, algorithm and metric."""
        detector = AnomalyDetector(AgentConfig(), clock)
        samples = make_samples("response_time_ms", BASELINE * 5 + [100.6])
        detector.analyze("response_time_ms", samples)

        stats = detector.detection_statistics()

        assert stats["total_anomalies"] == 1
        assert stats["by_metric"] == {"response_time_ms": 1}
        assert stats["by_algorithm"] == {"zscore": 1}
        assert 0 < stats["average_confidence"] <= 0.95

    def test_update_z_threshold(self, clock):
        """Test that raising the z threshold rebuilds the method."""
        config = AgentConfig()
        detector = AnomalyDetector(config, clock)

        detector.update_z_threshold(4.0)

        assert config.z_threshold == 4.0
        assert detector.methods["zscore"].get_config()["z_threshold"] == 4.0

    def test_update_parameter_rebuilds_only_that_method(self, clock):
        """Test that a correlation adjustment leaves the z-score method alone."""
        config = AgentConfig()
        detector = AnomalyDetector(config, clock)

        detector.update_parameter("correlation_threshold", 0.45)

        assert config.correlation_threshold == 0.45
        assert detector.methods["correlation"].get_config()["threshold"] == 0.45
        assert detector.methods["zscore"].get_config()["z_threshold"] == 2.5

    @pytest.mark.parametrize(
        "parameter,value",
        [("moving_average_window", 12), ("correlation_threshold", 1.2), ("z_threshold", 0)],
    )
    def test_update_parameter_rejects_invalid(self, clock, parameter, value):
        """Test that unknown parameters and out-of-range values are refused."""
        detector = AnomalyDetector(AgentConfig(), clock)

        with pytest.raises(ValueError):
            detector.update_parameter(parameter, value)

    def test_detected_at_uses_clock(self, clock):
        """Test that records are stamped with the injected clock."""
        detector = AnomalyDetector(AgentConfig(), clock)

        anomaly = detector.analyze(
            "response_time_ms", make_samples("response_time_ms", BASELINE * 5 + [100.6])
        )

        assert anomaly.detected_at == T0
