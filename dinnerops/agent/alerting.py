"""
Alert routing, deduplication, escalation and delivery.

An AlertEvent fans out to every tier-0 route whose filters match it, creating
one AlertRecord per channel. Events sharing a dedup key inside the dedup
window are suppressed; the window restarts only when an alert is actually
sent. Unacknowledged critical alerts are promoted to the next tier after the
escalation timeout. Deliveries retry with exponential backoff and a per-call
timeout; exhausted deliveries are logged and never re-alerted.
"""

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from .channels import NotificationChannel
from .config import AgentConfig
from .models import AlertRecord, AnomalyRecord, DecisionAction, HealthSnapshot, Severity, utcnow
from .store import AgentStore

logger = structlog.get_logger(__name__)


@dataclass
class AlertEvent:
    """Something worth telling a human about"""

    title: str
    message: str
    severity: Severity
    source: str
    dedup_key: str
    category: str | None = None
    metric_name: str | None = None

    def render(self) -> str:
        return f"[{self.severity.value.upper()}] {self.title}\n{self.message}"


@dataclass
class ChannelRoute:
    """Routing rule: empty filter sets match everything"""

    channel: NotificationChannel
    severities: set[Severity] = field(default_factory=set)
    sources: set[str] = field(default_factory=set)
    categories: set[str] = field(default_factory=set)
    tier: int = 0

    def matches(self, event: AlertEvent) -> bool:
        if self.severities and event.severity not in self.severities:
            return False
        if self.sources and event.source not in self.sources:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


@dataclass
class _PendingEscalation:
    event: AlertEvent
    records: list[AlertRecord]
    tier: int
    sent_at: datetime


def anomaly_event(anomaly: AnomalyRecord) -> AlertEvent:
    actions = "\n".join(f"- {a}" for a in anomaly.suggested_actions)
    message = (
        f"Metric: {anomaly.metric_name}\n"
        f"Value: {anomaly.observed_value}\n"
        f"Detected by: {anomaly.algorithm} (score {anomaly.normalized_score:.2f})\n"
        f"Confidence: {anomaly.confidence:.0%}\n"
        f"Suggested actions:\n{actions}"
    )
    return AlertEvent(
        title=f"Anomaly detected in {anomaly.metric_name}",
        message=message,
        severity=anomaly.severity,
        source="anomaly",
        dedup_key=f"{anomaly.metric_name}:{anomaly.algorithm}",
        category=anomaly.category,
        metric_name=anomaly.metric_name,
    )


def decision_event(action: DecisionAction, severity: Severity) -> AlertEvent:
    state = action.state.value
    if state == "escalated":
        title = f"Approval required: {action.action_type} for {action.metric_name}"
    elif state == "failed":
        title = f"Remediation failed: {action.action_type} for {action.metric_name}"
    else:
        title = f"Remediation executed: {action.action_type} for {action.metric_name}"

    message = (
        f"Action: {action.action_type} ({action.capability or 'no capability'})\n"
        f"State: {state}\n"
        f"Risk: {action.risk_level:.2f}, confidence: {action.confidence:.2f} "
        f"(required {action.required_confidence:.2f})\n"
        f"Reason: {action.reason or '-'}\n"
        f"Rollback: {action.rollback_ref or '-'}"
    )
    return AlertEvent(
        title=title,
        message=message,
        severity=severity,
        source="decision",
        dedup_key=f"{action.metric_name}:decision_{state}",
        category=action.category,
        metric_name=action.metric_name,
    )


def health_event(snapshot: HealthSnapshot) -> AlertEvent:
    issues = "\n".join(f"- {i}" for i in snapshot.issues) or "- none reported"
    return AlertEvent(
        title=f"System health is {snapshot.overall.value.upper()}",
        message=f"Health score: {snapshot.score:.0f}/100\nIssues:\n{issues}",
        severity=Severity.CRITICAL,
        source="health",
        dedup_key="system:health",
        category="availability",
    )


class AlertingSystem:
    """Routes alert events to channels with dedup, escalation and retries"""

    def __init__(
        self,
        config: AgentConfig,
        store: AgentStore,
        routes: list[ChannelRoute],
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.store = store
        self.routes = list(routes)
        self.clock = clock
        self.sleep = sleep

        self._lock = threading.Lock()
        self._last_sent: dict[str, datetime] = {}
        self._pending: dict[str, _PendingEscalation] = {}
        self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="alert-delivery")

        self.stats = {"sent": 0, "suppressed": 0, "delivery_failures": 0, "escalated": 0}

    def notify(self, event: AlertEvent) -> list[AlertRecord]:
        """Route an event. Returns the AlertRecords created (empty when suppressed)."""
        now = self.clock()
        window = timedelta(seconds=self.config.dedup_window_seconds)
        routes = [r for r in self.routes if r.tier == 0 and r.matches(event)]

        if not routes:
            logger.debug("No route matches alert", dedup_key=event.dedup_key, source=event.source)
            return []

        with self._lock:
            last = self._last_sent.get(event.dedup_key)
            if last is not None and now - last < window:
                self.stats["suppressed"] += 1
                logger.debug("Alert suppressed as duplicate", dedup_key=event.dedup_key)
                return []
            self._last_sent[event.dedup_key] = now

        records = self._send_to_routes(event, routes, tier=0, sent_at=now)

        if event.severity == Severity.CRITICAL and records:
            with self._lock:
                self._pending[records[0].id] = _PendingEscalation(event, records, 0, now)

        return records

    def _send_to_routes(
        self, event: AlertEvent, routes: list[ChannelRoute], tier: int, sent_at: datetime
    ) -> list[AlertRecord]:
        records = []
        for route in routes:
            delivered, attempts = self._deliver(route.channel, event)
            record = AlertRecord(
                channel=route.channel.name,
                severity=event.severity,
                dedup_key=event.dedup_key,
                title=event.title,
                source=event.source,
                category=event.category,
                escalation_tier=tier,
                delivered=delivered,
                attempts=attempts,
                sent_at=sent_at,
            )
            self.store.add_alert(record)
            records.append(record)
            if delivered:
                with self._lock:
                    self.stats["sent"] += 1
        return records

    def _deliver(self, channel: NotificationChannel, event: AlertEvent) -> tuple[bool, int]:
        """Send with per-call timeout and exponential backoff. Returns (delivered, attempts)."""
        message = event.render()
        max_attempts = self.config.delivery_max_attempts

        for attempt in range(max_attempts):
            future = self._pool.submit(channel.send, message, event.severity)
            try:
                future.result(timeout=self.config.delivery_timeout_seconds)
                logger.debug(
                    "Alert delivered", channel=channel.name, dedup_key=event.dedup_key,
                    attempt=attempt + 1,
                )
                return True, attempt + 1
            except FutureTimeout:
                future.cancel()
                error = f"timed out after {self.config.delivery_timeout_seconds}s"
            except Exception as e:
                error = str(e)

            logger.warning(
                "Alert delivery attempt failed",
                channel=channel.name,
                dedup_key=event.dedup_key,
                attempt=attempt + 1,
                max_attempts=max_attempts,
                error=error,
            )
            if attempt < max_attempts - 1:
                self.sleep(self.config.delivery_backoff_seconds * (2**attempt))

        with self._lock:
            self.stats["delivery_failures"] += 1
        logger.error(
            "Alert delivery failed after retries",
            channel=channel.name,
            dedup_key=event.dedup_key,
            attempts=max_attempts,
        )
        return False, max_attempts

    def acknowledge(self, alert_id: str) -> bool:
        """Acknowledge an alert (and its siblings from the same send). Stops its escalation."""
        now = self.clock()
        target = next((a for a in self.store.alerts() if a.id == alert_id), None)
        if target is None:
            logger.warning("Cannot acknowledge unknown alert", alert_id=alert_id)
            return False

        with self._lock:
            siblings = [target]
            for key, pending in list(self._pending.items()):
                if any(r.id == alert_id for r in pending.records):
                    siblings = pending.records
                    del self._pending[key]
                    break
            for record in siblings:
                if record.acknowledged_at is None:
                    record.acknowledged_at = now

        for record in siblings:
            self.store.save_alert(record)
        logger.info("Alert acknowledged", alert_id=alert_id, dedup_key=target.dedup_key)
        return True

    def escalate_overdue(self) -> list[AlertRecord]:
        """Promote unacknowledged critical alerts older than the escalation timeout"""
        now = self.clock()
        timeout = timedelta(seconds=self.config.escalation_timeout_seconds)

        with self._lock:
            overdue = [
                (key, p) for key, p in self._pending.items()
                if now - p.sent_at >= timeout
            ]
            for key, _ in overdue:
                del self._pending[key]

        created = []
        for _, pending in overdue:
            if any(r.acknowledged for r in pending.records):
                continue

            next_tier = pending.tier + 1
            routes = [r for r in self.routes if r.tier == next_tier and r.matches(pending.event)]
            for record in pending.records:
                record.escalated_at = now
                self.store.save_alert(record)

            if not routes:
                logger.warning(
                    "No further escalation tier",
                    dedup_key=pending.event.dedup_key,
                    tier=pending.tier,
                )
                continue

            logger.warning(
                "Escalating unacknowledged alert",
                dedup_key=pending.event.dedup_key,
                from_tier=pending.tier,
                to_tier=next_tier,
            )
            records = self._send_to_routes(pending.event, routes, tier=next_tier, sent_at=now)
            with self._lock:
                self.stats["escalated"] += 1
            created.extend(records)
            if records:
                with self._lock:
                    self._pending[records[0].id] = _PendingEscalation(
                        pending.event, records, next_tier, now
                    )

        return created

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
        channels = {id(r.channel): r.channel for r in self.routes}
        for channel in channels.values():
            try:
                channel.close()
            except Exception as e:
                logger.error("Failed to close channel", channel=channel.name, error=str(e))
