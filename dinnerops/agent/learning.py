"""
Learning recorder.

Records one outcome insight per finished decision, and on the learning
schedule aggregates anomaly history into recurring-pattern insights and
per-action effectiveness insights. Pattern insights carry threshold
adjustment proposals; the recorder never applies them.
"""

import threading
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta

import pandas as pd
import structlog

from .config import AgentConfig
from .models import (
    DecisionAction,
    DecisionState,
    LearningInsight,
    Outcome,
    ThresholdAdjustment,
    utcnow,
)
from .store import AgentStore

logger = structlog.get_logger(__name__)

OUTCOME_BY_STATE = {
    DecisionState.EXECUTED: Outcome.SUCCESS,
    DecisionState.FAILED: Outcome.FAILURE,
    DecisionState.ESCALATED: Outcome.PARTIAL,
}

PATTERN_CONFIDENCE = 0.8

# Detector parameter relaxed for each algorithm, and the direction that quiets it.
# Correlation flags low r, so its threshold moves down.
DETECTOR_TUNING = {
    "zscore": ("z_threshold", 1),
    "moving_average": ("moving_average_threshold", 1),
    "correlation": ("correlation_threshold", -1),
    "ensemble": ("anomaly_threshold", 1),
}


class LearningRecorder:
    """Turns decisions and anomaly history into learning insights"""

    def __init__(
        self,
        config: AgentConfig,
        store: AgentStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.store = store
        self.clock = clock
        self._lock = threading.Lock()
        self._by_action: OrderedDict[str, LearningInsight] = OrderedDict()
        self._patterns_seen: dict[tuple[str, str], datetime] = {}

    def record_outcome(self, action: DecisionAction) -> LearningInsight:
        """Record the outcome of a terminal action. Repeated calls return the same insight."""
        if not action.is_terminal:
            raise ValueError(f"Action {action.id} is not terminal ({action.state.value})")

        with self._lock:
            existing = self._by_action.get(action.id)
            if existing is not None:
                return existing

            outcome = OUTCOME_BY_STATE[action.state]
            insight = LearningInsight(
                type="decision_outcome",
                description=(
                    f"{action.action_type} on {action.metric_name} ended {action.state.value}"
                ),
                confidence=action.confidence,
                outcome=outcome,
                source_data={
                    "action_id": action.id,
                    "anomaly_id": action.source_anomaly_id,
                    "action_type": action.action_type,
                    "category": action.category,
                    "state": action.state.value,
                    "risk_level": action.risk_level,
                    "reason": action.reason,
                },
                action_id=action.id,
                recorded_at=self.clock(),
            )
            self._by_action[action.id] = insight
            while len(self._by_action) > self.config.history_capacity:
                self._by_action.popitem(last=False)

        self.store.add_insight(insight)
        logger.debug(
            "Decision outcome recorded",
            action_id=action.id,
            outcome=outcome.value,
        )
        return insight

    def run_cycle(self) -> list[LearningInsight]:
        """Pattern and effectiveness analysis over the recorded history"""
        insights = self.analyze_patterns()
        insights.extend(self.analyze_effectiveness())
        logger.info("Learning cycle completed", new_insights=len(insights))
        return insights

    def analyze_patterns(self) -> list[LearningInsight]:
        now = self.clock()
        lookback = timedelta(seconds=self.config.pattern_lookback_seconds)
        anomalies = self.store.anomalies()
        if not anomalies:
            return []

        df = pd.DataFrame(
            [
                {
                    "metric_name": a.metric_name,
                    "algorithm": a.algorithm,
                    "detected_at": a.detected_at,
                    "value": a.observed_value,
                    "confidence": a.confidence,
                }
                for a in anomalies
            ]
        )
        df = df[df["detected_at"] >= now - lookback]
        if df.empty:
            return []

        grouped = df.groupby(["metric_name", "algorithm"]).agg(
            occurrences=("value", "size"),
            mean_value=("value", "mean"),
            max_value=("value", "max"),
            mean_confidence=("confidence", "mean"),
        )
        recurring = grouped[grouped["occurrences"] > self.config.pattern_min_occurrences]

        insights = []
        for (metric_name, algorithm), row in recurring.iterrows():
            key = (metric_name, algorithm)
            with self._lock:
                seen_at = self._patterns_seen.get(key)
                if seen_at is not None and now - seen_at < lookback:
                    continue
                self._patterns_seen[key] = now

            proposal = self._propose_adjustment(metric_name, algorithm, int(row["occurrences"]))
            insight = LearningInsight(
                type="pattern",
                description=(
                    f"Recurring {algorithm} anomalies on {metric_name}: "
                    f"{int(row['occurrences'])} in the last "
                    f"{self.config.pattern_lookback_seconds / 3600:.0f}h"
                ),
                confidence=PATTERN_CONFIDENCE,
                outcome=Outcome.PARTIAL,
                source_data={
                    "metric_name": metric_name,
                    "algorithm": algorithm,
                    "occurrences": int(row["occurrences"]),
                    "mean_value": float(row["mean_value"]),
                    "max_value": float(row["max_value"]),
                    "mean_confidence": float(row["mean_confidence"]),
                },
                proposal=proposal.to_dict() if proposal else None,
                recorded_at=now,
            )
            self.store.add_insight(insight)
            if proposal is not None:
                self.store.add_proposal(proposal)
            insights.append(insight)

            logger.info(
                "Recurring anomaly pattern",
                metric=metric_name,
                algorithm=algorithm,
                occurrences=int(row["occurrences"]),
                proposal=proposal.id if proposal else None,
            )

        return insights

    def _propose_adjustment(
        self, metric_name: str, algorithm: str, occurrences: int
    ) -> ThresholdAdjustment | None:
        step = self.config.adjustment_step
        rationale = (
            f"{occurrences} {algorithm} anomalies on {metric_name} within the lookback "
            f"window suggest the current limit is too sensitive"
        )

        if algorithm == "threshold":
            rule = self.config.threshold_rules.get(metric_name)
            if rule is None:
                return None
            current = rule.threshold
            factor = 1 - step if rule.operator == "lt" else 1 + step
            return ThresholdAdjustment(
                metric_name=metric_name,
                parameter="static_threshold",
                current_value=current,
                proposed_value=round(current * factor, 6),
                confidence=PATTERN_CONFIDENCE,
                rationale=rationale,
                created_at=self.clock(),
            )

        tuning = DETECTOR_TUNING.get(algorithm)
        if tuning is None:
            return None
        parameter, direction = tuning
        current = getattr(self.config, parameter)
        return ThresholdAdjustment(
            metric_name=metric_name,
            parameter=parameter,
            current_value=current,
            proposed_value=round(current * (1 + direction * step), 6),
            confidence=PATTERN_CONFIDENCE,
            rationale=rationale,
            created_at=self.clock(),
        )

    def analyze_effectiveness(self) -> list[LearningInsight]:
        """Success rate per action type once enough outcomes exist"""
        outcomes = [i for i in self.store.insights() if i.type == "decision_outcome"]
        if len(outcomes) < self.config.effectiveness_min_outcomes:
            return []

        df = pd.DataFrame(
            [
                {
                    "action_type": i.source_data["action_type"],
                    "success": i.outcome == Outcome.SUCCESS,
                }
                for i in outcomes
            ]
        )
        summary = df.groupby("action_type")["success"].agg(["size", "mean"])

        insights = []
        for action_type, row in summary.iterrows():
            total = int(row["size"])
            if total < self.config.effectiveness_min_outcomes:
                continue
            rate = float(row["mean"])
            insight = LearningInsight(
                type="effectiveness",
                description=f"{action_type} succeeded in {rate:.0%} of {total} decisions",
                confidence=min(0.95, total / (total + 5)),
                outcome=Outcome.SUCCESS if rate >= 0.5 else Outcome.FAILURE,
                source_data={"action_type": action_type, "total": total, "success_rate": rate},
                recorded_at=self.clock(),
            )
            self.store.add_insight(insight)
            insights.append(insight)

        return insights
