"""
Monitoring, anomaly detection and auto-remediation agent.

Architecture:
- Detection: statistical methods (z-score, moving-average delta, pattern
  correlation) plus static threshold checks over recent metric windows
- Decision: safety-gated remediation (confidence and risk limits), with
  everything else escalated to a human
- Alerting: routed channels with deduplication, escalation tiers and retries
- Learning: outcome records, recurring-pattern analysis and threshold
  proposals that go back through the decision gate

Usage:
    python -m dinnerops.agent.run
"""

from .config import AgentConfig
from .models import AnomalyRecord, DecisionAction, LearningInsight, MetricSample
from .orchestrator import AgentOrchestrator

__all__ = [
    "AgentConfig",
    "AgentOrchestrator",
    "AnomalyRecord",
    "DecisionAction",
    "LearningInsight",
    "MetricSample",
]
