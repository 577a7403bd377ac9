"""
PostgreSQL connection management for the metric store.
"""

from contextlib import contextmanager
from typing import Any

import psycopg2
import structlog

logger = structlog.get_logger(__name__)


class PostgresConnection:
    """Thin wrapper around a psycopg2 connection with reconnect and read helpers"""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        statement_timeout_ms: int | None = None,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.statement_timeout_ms = statement_timeout_ms
        self.connection = None
        self._connect()

    def _connect(self):
        """Open a new connection, applying the statement timeout if configured"""
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": 10,
        }
        if self.statement_timeout_ms:
            kwargs["options"] = f"-c statement_timeout={int(self.statement_timeout_ms)}"

        try:
            self.connection = psycopg2.connect(**kwargs)
            logger.info(
                "PostgreSQL connection established",
                host=self.host,
                database=self.database,
            )
        except Exception as e:
            logger.error("Failed to connect to PostgreSQL", host=self.host, error=str(e))
            raise

    def _ensure_connection(self):
        if self.connection is None or getattr(self.connection, "closed", 0):
            logger.warning("PostgreSQL connection lost, reconnecting", host=self.host)
            self._connect()

    @contextmanager
    def get_cursor(self):
        """Cursor context manager: commit on success, rollback on error"""
        self._ensure_connection()
        cursor = self.connection.cursor()
        try:
            yield cursor
            self.connection.commit()
        except Exception as e:
            self.connection.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            cursor.close()

    def fetch_all(self, query: str, params: tuple | dict | None = None) -> list[tuple]:
        """Run a read query and return every row. Errors propagate to the caller."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params or ())
            return cursor.fetchall()

    def check_health(self) -> bool:
        """Check if database connection is healthy"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute("SELECT 1")
                return cursor.fetchone()[0] == 1
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False

    def close(self):
        """Close database connection"""
        if self.connection:
            self.connection.close()
            self.connection = None
            logger.info("PostgreSQL connection closed")
