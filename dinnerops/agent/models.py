"""
Data models shared by the agent components.

Records are dataclasses with to_dict/from_dict so they can be written to the
insight store as JSON.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _parse_ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _serialize(data: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
        elif isinstance(value, Enum):
            out[key] = value.value
        else:
            out[key] = value
    return out


class Severity(Enum):
    """Alert and anomaly severity, ordered from low to critical"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __ge__(self, other: "Severity") -> bool:
        return self.rank >= other.rank

    def __gt__(self, other: "Severity") -> bool:
        return self.rank > other.rank

    def __le__(self, other: "Severity") -> bool:
        return self.rank <= other.rank

    def __lt__(self, other: "Severity") -> bool:
        return self.rank < other.rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class DecisionState(Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    EXECUTED = "executed"
    FAILED = "failed"
    ESCALATED = "escalated"


ALLOWED_TRANSITIONS = {
    DecisionState.PROPOSED: {DecisionState.APPROVED, DecisionState.ESCALATED},
    DecisionState.APPROVED: {DecisionState.EXECUTED, DecisionState.FAILED},
    DecisionState.EXECUTED: set(),
    DecisionState.FAILED: set(),
    DecisionState.ESCALATED: set(),
}

TERMINAL_STATES = {DecisionState.EXECUTED, DecisionState.FAILED, DecisionState.ESCALATED}


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MetricSample:
    """A single observed metric value"""

    metric_name: str
    value: float
    timestamp: datetime
    tags: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricSample":
        return cls(
            metric_name=data["metric_name"],
            value=float(data["value"]),
            timestamp=_parse_ts(data["timestamp"]),
            tags=dict(data.get("tags") or {}),
        )


@dataclass(frozen=True)
class AnomalyRecord:
    """An anomaly produced by the detector or the threshold checker. Never mutated."""

    metric_name: str
    algorithm: str
    raw_score: float
    normalized_score: float
    severity: Severity
    confidence: float
    category: str
    observed_value: float
    suggested_actions: tuple[str, ...] = ()
    auto_remediation_eligible: bool = False
    context: dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("anom"))

    def to_dict(self) -> dict[str, Any]:
        data = _serialize(asdict(self))
        data["suggested_actions"] = list(self.suggested_actions)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnomalyRecord":
        return cls(
            id=data["id"],
            metric_name=data["metric_name"],
            algorithm=data["algorithm"],
            raw_score=data["raw_score"],
            normalized_score=data["normalized_score"],
            severity=Severity(data["severity"]),
            confidence=data["confidence"],
            category=data["category"],
            observed_value=data["observed_value"],
            suggested_actions=tuple(data.get("suggested_actions") or ()),
            auto_remediation_eligible=data.get("auto_remediation_eligible", False),
            context=data.get("context") or {},
            detected_at=_parse_ts(data["detected_at"]),
        )


@dataclass
class DecisionAction:
    """A proposed remediation and its progress through the safety gate"""

    source_anomaly_id: str
    metric_name: str
    category: str
    action_type: str
    capability: str | None
    risk_level: float
    required_confidence: float
    confidence: float
    rollback_ref: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    state: DecisionState = DecisionState.PROPOSED
    reason: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)
    executed_at: datetime | None = None
    id: str = field(default_factory=lambda: new_id("act"))

    def transition(self, new_state: DecisionState, reason: str | None = None) -> None:
        """Move to new_state, refusing edges outside the decision state machine"""
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Action {self.id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state
        if reason is not None:
            self.reason = reason

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class AlertRecord:
    """One delivery of an alert to one channel"""

    channel: str
    severity: Severity
    dedup_key: str
    title: str
    source: str
    category: str | None = None
    escalation_tier: int = 0
    delivered: bool = False
    attempts: int = 0
    sent_at: datetime = field(default_factory=utcnow)
    acknowledged_at: datetime | None = None
    escalated_at: datetime | None = None
    id: str = field(default_factory=lambda: new_id("alert"))

    @property
    def acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class ThresholdRule:
    """Static limit for a metric. operator is "gt" (breach above) or "lt" (breach below)."""

    metric_name: str
    threshold: float
    operator: str = "gt"

    def breached(self, value: float) -> bool:
        if self.operator == "lt":
            return value < self.threshold
        return value > self.threshold


@dataclass
class ThresholdAdjustment:
    """A proposed change to a detection parameter. Only applied through the decision gate."""

    metric_name: str
    parameter: str
    current_value: float
    proposed_value: float
    confidence: float
    rationale: str
    status: str = "proposed"
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("adj"))

    @property
    def relative_change(self) -> float:
        if self.current_value == 0:
            return 1.0
        return abs(self.proposed_value - self.current_value) / abs(self.current_value)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class LearningInsight:
    """Append-only record of something the agent learned"""

    type: str
    description: str
    confidence: float
    outcome: Outcome
    source_data: dict[str, Any] = field(default_factory=dict)
    action_id: str | None = None
    proposal: dict[str, Any] | None = None
    recorded_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("ins"))

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class HealthSnapshot:
    timestamp: datetime
    overall: HealthStatus
    score: float
    metrics: dict[str, float] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))
