"""
Decision engine: turns eligible anomalies into remediation actions behind a
safety gate.

An action is executed autonomously only when the anomaly confidence meets
min_confidence and the action's catalog risk does not exceed max_risk_level.
Everything else is escalated to a human. Execution failures are not retried;
they are escalated as alerts. Every action that reaches a terminal state is
handed to the learning recorder exactly once.
"""

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from .alerting import AlertingSystem, decision_event
from .config import AgentConfig
from .detector import ADJUSTABLE_PARAMETERS, AnomalyDetector
from .errors import DecisionDenied, RemediationFailure
from .learning import LearningRecorder
from .models import (
    AnomalyRecord,
    DecisionAction,
    DecisionState,
    Severity,
    ThresholdAdjustment,
    utcnow,
)
from .remediation import RemediationExecutor
from .store import AgentStore
from .thresholds import ThresholdChecker

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ActionSpec:
    """Catalog entry for a remediation action"""

    action_type: str
    capability: str
    risk_level: float
    rollback_ref: str
    description: str


ACTION_SPECS = {
    "enable_caching": ActionSpec(
        "enable_caching", "cache", 0.1, "disable_caching",
        "Enable response caching for slow endpoints",
    ),
    "enable_request_batching": ActionSpec(
        "enable_request_batching", "batching", 0.3, "disable_request_batching",
        "Batch AI requests to cut per-call cost",
    ),
    "enable_circuit_breaker": ActionSpec(
        "enable_circuit_breaker", "circuit_breaker", 0.4, "disable_circuit_breaker",
        "Open circuit breakers on failing dependencies",
    ),
    "scale_resources": ActionSpec(
        "scale_resources", "scale", 0.6, "scale_down_resources",
        "Add instances to the affected service",
    ),
    "restart_service": ActionSpec(
        "restart_service", "restart", 0.8, "no_rollback",
        "Restart the affected service",
    ),
}

DEFAULT_ACTION_CATALOG = {
    "performance": "enable_caching",
    "error": "enable_circuit_breaker",
    "cost": "enable_request_batching",
    "availability": "scale_resources",
}

ADJUSTMENT_ACTION = "adjust_threshold"


class DecisionEngine:
    """Safety-gated remediation decisions"""

    def __init__(
        self,
        config: AgentConfig,
        store: AgentStore,
        executor: RemediationExecutor,
        alerting: AlertingSystem,
        learning: LearningRecorder,
        thresholds: ThresholdChecker | None = None,
        detector: AnomalyDetector | None = None,
        action_catalog: dict[str, str] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.store = store
        self.executor = executor
        self.alerting = alerting
        self.learning = learning
        self.thresholds = thresholds
        self.detector = detector
        self.action_catalog = dict(action_catalog or DEFAULT_ACTION_CATALOG)
        self.clock = clock

    def decide(self, anomaly: AnomalyRecord) -> DecisionAction | None:
        """Run one anomaly through the gate and, if approved, the executor"""
        if not anomaly.auto_remediation_eligible:
            logger.debug("Anomaly not eligible for remediation", anomaly_id=anomaly.id)
            return None

        in_flight = self._in_flight_for(anomaly)
        if in_flight is not None:
            logger.info(
                "Remediation skipped",
                anomaly_id=anomaly.id,
                metric=anomaly.metric_name,
                reason="action already in flight",
                in_flight_action=in_flight.id,
            )
            return None

        action = self._propose(anomaly)
        self.store.add_action(action)
        self.store.save_action(action)

        try:
            self._check_gate(action)
        except DecisionDenied as e:
            self._escalate(action, e.reason, anomaly.severity)
            return action

        action.transition(DecisionState.APPROVED, reason="passed safety gate")
        self.store.save_action(action)
        self._execute(action, anomaly)
        return action

    def _propose(self, anomaly: AnomalyRecord) -> DecisionAction:
        service = anomaly.context.get("tags", {}).get("service", "default")
        action_name = self.action_catalog.get(anomaly.category)
        spec = ACTION_SPECS.get(action_name) if action_name else None

        if spec is None:
            return DecisionAction(
                source_anomaly_id=anomaly.id,
                metric_name=anomaly.metric_name,
                category=anomaly.category,
                action_type="manual_investigation",
                capability=None,
                risk_level=1.0,
                required_confidence=self.config.min_confidence,
                confidence=anomaly.confidence,
                params={"service": service},
                created_at=self.clock(),
            )

        return DecisionAction(
            source_anomaly_id=anomaly.id,
            metric_name=anomaly.metric_name,
            category=anomaly.category,
            action_type=spec.action_type,
            capability=spec.capability,
            risk_level=spec.risk_level,
            required_confidence=self.config.min_confidence,
            confidence=anomaly.confidence,
            rollback_ref=spec.rollback_ref,
            params={
                "service": service,
                "metric": anomaly.metric_name,
                "observed_value": anomaly.observed_value,
                "severity": anomaly.severity.value,
            },
            created_at=self.clock(),
        )

    def _check_gate(self, action: DecisionAction) -> None:
        if action.capability is None:
            raise DecisionDenied(f"no catalog action for category '{action.category}'")
        if action.confidence < action.required_confidence:
            raise DecisionDenied(
                f"confidence {action.confidence:.2f} below required "
                f"{action.required_confidence:.2f}"
            )
        if action.risk_level > self.config.max_risk_level:
            raise DecisionDenied(
                f"risk {action.risk_level:.2f} above maximum {self.config.max_risk_level:.2f}"
            )

    def _in_flight_for(self, anomaly: AnomalyRecord) -> DecisionAction | None:
        for action in self.store.actions():
            if (
                action.state == DecisionState.APPROVED
                and action.metric_name == anomaly.metric_name
                and action.category == anomaly.category
            ):
                return action
        return None

    def _escalate(self, action: DecisionAction, reason: str, severity: Severity) -> None:
        action.transition(DecisionState.ESCALATED, reason=reason)
        self.store.save_action(action)
        logger.warning(
            "Action escalated for human approval",
            action_id=action.id,
            action=action.action_type,
            metric=action.metric_name,
            reason=reason,
        )
        self.alerting.notify(decision_event(action, max(severity, Severity.HIGH)))
        self.learning.record_outcome(action)

    def _execute(self, action: DecisionAction, anomaly: AnomalyRecord) -> None:
        resource = f"{action.capability}:{action.params.get('service', 'default')}"
        try:
            action.result = self.executor.execute(
                action.capability, action.action_type, action.params, resource
            )
        except RemediationFailure as e:
            action.transition(DecisionState.FAILED, reason=str(e))
            action.executed_at = self.clock()
            self.store.save_action(action)
            logger.error(
                "Remediation failed",
                action_id=action.id,
                action=action.action_type,
                metric=action.metric_name,
                error=str(e),
            )
            self.alerting.notify(decision_event(action, max(anomaly.severity, Severity.HIGH)))
            self.learning.record_outcome(action)
            return

        action.transition(DecisionState.EXECUTED, reason="remediation completed")
        action.executed_at = self.clock()
        self.store.save_action(action)
        logger.info(
            "Remediation executed",
            action_id=action.id,
            action=action.action_type,
            metric=action.metric_name,
            resource=resource,
        )
        self.alerting.notify(decision_event(action, Severity.LOW))
        self.learning.record_outcome(action)

    def review_adjustment(self, proposal: ThresholdAdjustment) -> DecisionAction:
        """Apply a threshold proposal through the same safety gate as remediation"""
        action = DecisionAction(
            source_anomaly_id=proposal.id,
            metric_name=proposal.metric_name,
            category="configuration",
            action_type=ADJUSTMENT_ACTION,
            capability=proposal.parameter,
            risk_level=min(1.0, proposal.relative_change),
            required_confidence=self.config.min_confidence,
            confidence=proposal.confidence,
            rollback_ref=f"{proposal.parameter}={proposal.current_value}",
            params={"parameter": proposal.parameter, "value": proposal.proposed_value},
            created_at=self.clock(),
        )
        self.store.add_action(action)
        self.store.save_action(action)

        try:
            self._check_gate(action)
        except DecisionDenied as e:
            proposal.status = "escalated"
            self.store.save_proposal(proposal)
            self._escalate(action, e.reason, Severity.MEDIUM)
            return action

        action.transition(DecisionState.APPROVED, reason="passed safety gate")
        try:
            self._apply_adjustment(proposal)
        except (KeyError, ValueError) as e:
            action.transition(DecisionState.FAILED, reason=str(e))
            proposal.status = "failed"
        else:
            action.transition(DecisionState.EXECUTED, reason="configuration updated")
            proposal.status = "applied"
            logger.info(
                "Configuration change applied",
                proposal_id=proposal.id,
                metric=proposal.metric_name,
                parameter=proposal.parameter,
                previous=proposal.current_value,
                current=proposal.proposed_value,
            )

        action.executed_at = self.clock()
        self.store.save_action(action)
        self.store.save_proposal(proposal)
        self.learning.record_outcome(action)
        return action

    def _apply_adjustment(self, proposal: ThresholdAdjustment) -> None:
        if proposal.parameter == "static_threshold":
            if self.thresholds is None:
                raise ValueError("no threshold checker attached")
            self.thresholds.update_threshold(proposal.metric_name, proposal.proposed_value)
        elif proposal.parameter in ADJUSTABLE_PARAMETERS:
            if self.detector is None:
                raise ValueError("no detector attached")
            self.detector.update_parameter(proposal.parameter, proposal.proposed_value)
        else:
            raise ValueError(f"Unknown adjustable parameter '{proposal.parameter}'")

    def decision_stats(self) -> dict:
        actions = self.store.actions()
        return {
            "total": len(actions),
            "by_state": dict(Counter(a.state.value for a in actions)),
            "by_action": dict(Counter(a.action_type for a in actions)),
        }
