"""
In-process state shared by the agent schedules.

Ring buffers of recent metric samples and bounded histories of anomalies,
decisions, alerts, insights and proposals, all behind one lock. Readers get
copies. Every history write is also appended to the configured InsightStore;
a failed write there is logged and never interrupts the caller.
"""

import threading
from collections import deque
from datetime import datetime
from typing import Any

import structlog

from .insights import InMemoryInsightStore, InsightStore
from .models import (
    AlertRecord,
    AnomalyRecord,
    DecisionAction,
    HealthSnapshot,
    LearningInsight,
    MetricSample,
    ThresholdAdjustment,
)

logger = structlog.get_logger(__name__)


class AgentStore:
    """Bounded shared state of a running agent"""

    def __init__(
        self,
        window_size: int = 100,
        history_capacity: int = 1000,
        insight_store: InsightStore | None = None,
    ):
        self.window_size = window_size
        self.history_capacity = history_capacity
        self.insight_store = insight_store or InMemoryInsightStore(history_capacity)

        self._lock = threading.Lock()
        self._windows: dict[str, deque[MetricSample]] = {}
        self._last_seen: dict[str, datetime] = {}
        self._anomalies: deque[AnomalyRecord] = deque(maxlen=history_capacity)
        self._actions: deque[DecisionAction] = deque(maxlen=history_capacity)
        self._alerts: deque[AlertRecord] = deque(maxlen=history_capacity)
        self._insights: deque[LearningInsight] = deque(maxlen=history_capacity)
        self._proposals: deque[ThresholdAdjustment] = deque(maxlen=history_capacity)
        self._health: HealthSnapshot | None = None
        self._closed = False

    # Metric windows

    def append_samples(self, samples: list[MetricSample]) -> int:
        """Add samples to their metric windows, oldest evicted first. Returns count added."""
        added = 0
        with self._lock:
            for sample in sorted(samples, key=lambda s: s.timestamp):
                last = self._last_seen.get(sample.metric_name)
                if last is not None and sample.timestamp <= last:
                    continue
                window = self._windows.setdefault(
                    sample.metric_name, deque(maxlen=self.window_size)
                )
                window.append(sample)
                self._last_seen[sample.metric_name] = sample.timestamp
                added += 1
        return added

    def window(self, metric_name: str) -> list[MetricSample]:
        with self._lock:
            return list(self._windows.get(metric_name, ()))

    def latest_sample(self, metric_name: str) -> MetricSample | None:
        with self._lock:
            window = self._windows.get(metric_name)
            return window[-1] if window else None

    def last_seen(self, metric_name: str) -> datetime | None:
        with self._lock:
            return self._last_seen.get(metric_name)

    # Histories

    def add_anomaly(self, anomaly: AnomalyRecord) -> None:
        with self._lock:
            self._anomalies.append(anomaly)
        self._persist("anomaly", anomaly.to_dict())

    def add_action(self, action: DecisionAction) -> None:
        with self._lock:
            self._actions.append(action)

    def save_action(self, action: DecisionAction) -> None:
        """Persist the current state of an action (call after every transition)"""
        self._persist("decision", action.to_dict())

    def add_alert(self, alert: AlertRecord) -> None:
        with self._lock:
            self._alerts.append(alert)
        self._persist("alert", alert.to_dict())

    def save_alert(self, alert: AlertRecord) -> None:
        self._persist("alert", alert.to_dict())

    def add_insight(self, insight: LearningInsight) -> None:
        with self._lock:
            self._insights.append(insight)
        self._persist("insight", insight.to_dict())

    def add_proposal(self, proposal: ThresholdAdjustment) -> None:
        with self._lock:
            self._proposals.append(proposal)
        self._persist("proposal", proposal.to_dict())

    def save_proposal(self, proposal: ThresholdAdjustment) -> None:
        self._persist("proposal", proposal.to_dict())

    def set_health(self, snapshot: HealthSnapshot) -> None:
        with self._lock:
            self._health = snapshot
        self._persist("health", snapshot.to_dict())

    def anomalies(self) -> list[AnomalyRecord]:
        with self._lock:
            return list(self._anomalies)

    def actions(self) -> list[DecisionAction]:
        with self._lock:
            return list(self._actions)

    def alerts(self) -> list[AlertRecord]:
        with self._lock:
            return list(self._alerts)

    def insights(self) -> list[LearningInsight]:
        with self._lock:
            return list(self._insights)

    def proposals(self, status: str | None = None) -> list[ThresholdAdjustment]:
        with self._lock:
            proposals = list(self._proposals)
        if status is None:
            return proposals
        return [p for p in proposals if p.status == status]

    def health(self) -> HealthSnapshot | None:
        with self._lock:
            return self._health

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {
                "anomaly_count": len(self._anomalies),
                "decision_count": len(self._actions),
                "alert_count": len(self._alerts),
                "insight_count": len(self._insights),
            }

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.insight_store.close()
        except Exception as e:
            logger.error("Failed to close insight store", error=str(e))

    def _persist(self, kind: str, record: dict[str, Any]) -> None:
        try:
            ok = self.insight_store.append(kind, record)
        except Exception as e:
            logger.error("Insight store write failed", kind=kind, error=str(e))
            return
        if not ok:
            logger.warning("Insight store write rejected", kind=kind, record_id=record.get("id"))
