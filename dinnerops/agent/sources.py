"""
Metric sources the agent pulls samples from.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime

import structlog

from dinnerops.core.database import PostgresConnection

from .models import MetricSample

logger = structlog.get_logger(__name__)


class MetricSource(ABC):
    """Read-only access to recent metric samples"""

    @abstractmethod
    def pull(self, metric_name: str, since: datetime | None, limit: int = 100) -> list[MetricSample]:
        """Samples for metric_name newer than `since`, oldest first.

        With since=None the most recent `limit` samples are returned.
        """

    def check_health(self) -> bool:
        return True

    def close(self) -> None:  # noqa: B027
        pass


class PostgresMetricSource(MetricSource):
    """Reads samples from the `system_metrics` table

    Expected columns: metric_type, value, timestamp, metadata (jsonb).
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        query_timeout_seconds: float = 10.0,
        table: str = "system_metrics",
    ):
        self.db = PostgresConnection(
            host=host,
            port=port,
            database=database,
            user=user,
            password=password,
            statement_timeout_ms=int(query_timeout_seconds * 1000),
        )
        self.table = table

    def pull(self, metric_name: str, since: datetime | None, limit: int = 100) -> list[MetricSample]:
        if since is None:
            query = f"""
                SELECT metric_type, value, timestamp, metadata FROM (
                    SELECT metric_type, value, timestamp, metadata
                    FROM {self.table}
                    WHERE metric_type = %s
                    ORDER BY timestamp DESC
                    LIMIT %s
                ) recent
                ORDER BY timestamp ASC
            """
            params = (metric_name, limit)
        else:
            query = f"""
                SELECT metric_type, value, timestamp, metadata
                FROM {self.table}
                WHERE metric_type = %s AND timestamp > %s
                ORDER BY timestamp ASC
                LIMIT %s
            """
            params = (metric_name, since, limit)

        rows = self.db.fetch_all(query, params)
        samples = [self._to_sample(row) for row in rows]
        logger.debug("Metric samples pulled", metric=metric_name, count=len(samples))
        return samples

    @staticmethod
    def _to_sample(row: tuple) -> MetricSample:
        metric_type, value, timestamp, metadata = row
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        tags = {k: str(v) for k, v in (metadata or {}).items()}
        return MetricSample(
            metric_name=metric_type,
            value=float(value),
            timestamp=timestamp,
            tags=tags,
        )

    def check_health(self) -> bool:
        return self.db.check_health()

    def close(self) -> None:
        self.db.close()
