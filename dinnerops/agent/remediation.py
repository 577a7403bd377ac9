"""
Remediation capabilities and the executor that runs them.

Capabilities are registered by name. The executor runs each call in a worker
pool under a timeout and holds a single-flight lock per resource, so two
actions against the same resource never overlap.
"""

import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any

import structlog

from .errors import RemediationFailure, RemediationTimeout

logger = structlog.get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.05


class RemediationCapability(ABC):
    """Something the agent can do to the running system"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name (e.g. 'scale', 'cache', 'restart')"""

    @abstractmethod
    def execute(self, action_type: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Perform the action and return a result payload. Raise on failure."""


class LoggingCapability(RemediationCapability):
    """Dry-run capability: records what would have been done"""

    def __init__(self, name: str):
        self._name = name
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def name(self) -> str:
        return self._name

    def execute(self, action_type: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        self.calls.append((action_type, dict(params)))
        logger.info("Dry-run remediation", capability=self._name, action=action_type, params=params)
        return {"dry_run": True, "action": action_type}


class CapabilityRegistry:
    def __init__(self):
        self._capabilities: dict[str, RemediationCapability] = {}
        self._lock = threading.Lock()

    def register(self, capability: RemediationCapability) -> None:
        with self._lock:
            self._capabilities[capability.name] = capability
        logger.debug("Remediation capability registered", capability=capability.name)

    def get(self, name: str) -> RemediationCapability:
        with self._lock:
            capability = self._capabilities.get(name)
        if capability is None:
            raise RemediationFailure(f"Unknown remediation capability '{name}'")
        return capability

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._capabilities)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._capabilities


class RemediationExecutor:
    """Runs capability calls with a timeout and per-resource mutual exclusion"""

    def __init__(self, registry: CapabilityRegistry, timeout: float = 30.0, max_workers: int = 4):
        self.registry = registry
        self.timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="remediation")
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._abandon = threading.Event()

        self.stats = {"executed": 0, "failed": 0, "timed_out": 0}

    def _lock_for(self, resource: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(resource, threading.Lock())

    def execute(
        self,
        capability: str,
        action_type: str,
        params: dict[str, Any],
        resource: str,
    ) -> dict[str, Any]:
        """Run one remediation call

        Raises:
            RemediationFailure: unknown capability, busy resource or capability error
            RemediationTimeout: timeout exceeded or executor abandoned on shutdown
        """
        if self._abandon.is_set():
            raise RemediationTimeout("Executor is shutting down")

        impl = self.registry.get(capability)
        lock = self._lock_for(resource)

        if not lock.acquire(timeout=self.timeout):
            self.stats["failed"] += 1
            raise RemediationFailure(f"Resource '{resource}' is busy")

        logger.info(
            "Executing remediation",
            capability=capability,
            action=action_type,
            resource=resource,
        )
        try:
            future = self._pool.submit(impl.execute, action_type, params, self.timeout)
        except RuntimeError as e:
            lock.release()
            raise RemediationTimeout(f"{action_type} not started: {e}") from e

        # The resource stays locked until the worker returns, even after a timeout
        future.add_done_callback(lambda _: lock.release())
        deadline = time.monotonic() + self.timeout

        while True:
            if self._abandon.is_set():
                future.cancel()
                self.stats["timed_out"] += 1
                raise RemediationTimeout(f"{action_type} abandoned during shutdown")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                self.stats["timed_out"] += 1
                raise RemediationTimeout(f"{action_type} timed out after {self.timeout}s")
            done, _ = wait([future], timeout=min(POLL_INTERVAL_SECONDS, remaining))
            if not done:
                continue
            try:
                result = future.result()
                break
            except Exception as e:
                self.stats["failed"] += 1
                raise RemediationFailure(f"{action_type} failed: {e}") from e

        self.stats["executed"] += 1
        return result or {}

    def abandon(self) -> None:
        """Make in-flight and future calls fail with RemediationTimeout"""
        self._abandon.set()

    def shutdown(self) -> None:
        self.abandon()
        self._pool.shutdown(wait=False, cancel_futures=True)


DRY_RUN_CAPABILITIES = ("cache", "batching", "circuit_breaker", "scale", "restart")


def dry_run_registry() -> CapabilityRegistry:
    """Registry with a logging-only implementation of every catalog capability"""
    registry = CapabilityRegistry()
    for name in DRY_RUN_CAPABILITIES:
        registry.register(LoggingCapability(name))
    return registry
