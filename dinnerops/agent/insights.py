"""
Persistence for audit records (anomalies, decisions, alerts, insights,
threshold proposals, health snapshots).
"""

import json
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Any

import redis
import structlog

logger = structlog.get_logger(__name__)

RECORD_KINDS = ("anomaly", "decision", "alert", "insight", "proposal", "health")


class InsightStore(ABC):
    """Append-only store of serialized agent records, grouped by kind"""

    @abstractmethod
    def append(self, kind: str, record: dict[str, Any]) -> bool:
        """Persist one record. Returns False when the write failed."""

    @abstractmethod
    def read(self, kind: str, limit: int = 100) -> list[dict[str, Any]]:
        """Return up to `limit` most recent records of a kind, newest first"""

    def close(self) -> None:  # noqa: B027
        pass


class InMemoryInsightStore(InsightStore):
    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self._records: dict[str, deque] = {}
        self._lock = threading.Lock()

    def append(self, kind: str, record: dict[str, Any]) -> bool:
        with self._lock:
            self._records.setdefault(kind, deque(maxlen=self.capacity)).append(dict(record))
        return True

    def read(self, kind: str, limit: int = 100) -> list[dict[str, Any]]:
        with self._lock:
            records = list(self._records.get(kind, ()))
        return list(reversed(records))[:limit]


class RedisInsightStore(InsightStore):
    """Redis-backed store: one capped list per record kind, JSON values"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
        capacity: int = 1000,
        prefix: str = "dinnerops",
    ):
        try:
            self.redis = redis.Redis(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
            )
            self.redis.ping()
            logger.info("Redis insight store initialized", host=host, port=port)
        except Exception as e:
            logger.error("Failed to initialize Redis", error=str(e))
            raise
        self.capacity = capacity
        self.prefix = prefix

    def append(self, kind: str, record: dict[str, Any]) -> bool:
        key = self._make_key(kind)
        try:
            pipe = self.redis.pipeline()
            pipe.lpush(key, json.dumps(record, default=str))
            pipe.ltrim(key, 0, self.capacity - 1)
            pipe.execute()
            return True
        except Exception as e:
            logger.error("Failed to write record to Redis", key=key, error=str(e))
            return False

    def read(self, kind: str, limit: int = 100) -> list[dict[str, Any]]:
        key = self._make_key(kind)
        try:
            return [json.loads(item) for item in self.redis.lrange(key, 0, limit - 1)]
        except Exception as e:
            logger.error("Failed to read records from Redis", key=key, error=str(e))
            return []

    def close(self) -> None:
        self.redis.close()

    def _make_key(self, kind: str) -> str:
        return f"{self.prefix}:agent:{kind}"
