"""
Notification channels used by the alerting system.

A channel delivers one formatted message and raises DeliveryFailure when it
cannot. Retries and timeouts are handled by the caller.
"""

import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime

import httpx
import structlog
from kafka import KafkaProducer

from .errors import DeliveryFailure
from .models import Severity

logger = structlog.get_logger(__name__)

SEVERITY_COLORS = {
    Severity.LOW: "#36a64f",
    Severity.MEDIUM: "#ffcc00",
    Severity.HIGH: "#ff9900",
    Severity.CRITICAL: "#ff0000",
}


class NotificationChannel(ABC):
    """Destination for alert messages"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique channel name used in routes and alert records"""

    @abstractmethod
    def send(self, message: str, severity: Severity) -> None:
        """Deliver a message

        Raises:
            DeliveryFailure: when the message could not be delivered
        """

    def close(self) -> None:  # noqa: B027
        pass


class LogChannel(NotificationChannel):
    """Writes alerts to the structured log"""

    def __init__(self, name: str = "log"):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def send(self, message: str, severity: Severity) -> None:
        if severity >= Severity.HIGH:
            logger.warning("ALERT", channel=self._name, severity=severity.value, message=message)
        else:
            logger.info("ALERT", channel=self._name, severity=severity.value, message=message)


class WebhookChannel(NotificationChannel):
    """Posts Slack-compatible JSON payloads to an incoming webhook URL"""

    def __init__(self, name: str, url: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self._name = name
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    @property
    def name(self) -> str:
        return self._name

    def send(self, message: str, severity: Severity) -> None:
        payload = {
            "text": message,
            "attachments": [
                {
                    "color": SEVERITY_COLORS[severity],
                    "fields": [{"title": "Severity", "value": severity.value, "short": True}],
                }
            ],
        }
        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryFailure(f"Webhook {self._name} failed: {e}") from e

    def close(self) -> None:
        self.client.close()


class KafkaChannel(NotificationChannel):
    """Publishes alerts to a Kafka topic for downstream incident tooling"""

    def __init__(self, name: str, bootstrap_servers: str, topic: str = "agent-alerts"):
        self._name = name
        self.topic = topic
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                acks="all",
                retries=0,
            )
            logger.info(
                "Kafka alert channel initialized",
                bootstrap_servers=bootstrap_servers,
                topic=topic,
            )
        except Exception as e:
            logger.error("Failed to initialize Kafka producer", error=str(e))
            raise

    @property
    def name(self) -> str:
        return self._name

    def send(self, message: str, severity: Severity) -> None:
        event = {
            "type": "agent_alert",
            "timestamp": datetime.now(UTC).isoformat(),
            "severity": severity.value,
            "message": message,
        }
        try:
            self.producer.send(self.topic, value=event).get(timeout=10)
        except Exception as e:
            raise DeliveryFailure(f"Kafka channel {self._name} failed: {e}") from e

    def close(self) -> None:
        self.producer.flush()
        self.producer.close()
