"""
Error taxonomy for the agent.

Only ConfigurationError is fatal. Everything else is caught at the
orchestrator tick boundary, logged, and the loop keeps going.
"""


class AgentError(Exception):
    """Base class for all agent errors"""


class InsufficientDataError(AgentError):
    """Not enough samples for a detection method to produce a result"""


class DetectorFailure(AgentError):
    """A metric could not be pulled or analysed for this tick"""

    def __init__(self, metric_name: str, message: str):
        super().__init__(f"{metric_name}: {message}")
        self.metric_name = metric_name


class DecisionDenied(AgentError):
    """The safety gate refused autonomous execution"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class RemediationFailure(AgentError):
    """A remediation capability failed, was unknown, or the resource was busy"""


class RemediationTimeout(RemediationFailure):
    """A remediation call exceeded its timeout or was abandoned on shutdown"""


class DeliveryFailure(AgentError):
    """A notification channel could not deliver a message"""


class ConfigurationError(AgentError):
    """Invalid configuration; prevents the agent from starting"""

    def __init__(self, problems: list[str]):
        super().__init__("Invalid configuration: " + "; ".join(problems))
        self.problems = problems


class InvalidTransitionError(AgentError):
    """A decision action was moved along an edge the state machine does not allow"""
