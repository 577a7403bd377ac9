"""
Agent orchestrator.

Wires the components together and runs four independent schedules, one
thread each: health check, anomaly detection, optimization/remediation sweep
and learning. Every tick is isolated: an exception is logged and the
schedule carries on. Stopping waits for in-flight ticks up to the grace
period, then abandons outstanding remediation calls.
"""

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any

import structlog

from .alerting import AlertingSystem, ChannelRoute, anomaly_event, health_event
from .channels import LogChannel
from .config import AgentConfig
from .decision import DecisionEngine
from .detector import AnomalyDetector
from .errors import DetectorFailure
from .health import HealthMonitor
from .learning import LearningRecorder
from .models import AnomalyRecord, HealthStatus, MetricSample, utcnow
from .remediation import CapabilityRegistry, RemediationExecutor, dry_run_registry
from .sources import MetricSource
from .store import AgentStore
from .thresholds import ThresholdChecker

logger = structlog.get_logger(__name__)

SCHEDULES = ("health_check", "anomaly_detection", "optimization", "learning")


class AgentOrchestrator:
    """Runs the monitoring, detection, remediation and learning loop"""

    def __init__(
        self,
        config: AgentConfig,
        source: MetricSource,
        store: AgentStore | None = None,
        routes: list[ChannelRoute] | None = None,
        registry: CapabilityRegistry | None = None,
        action_catalog: dict[str, str] | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        config.validate()
        self.config = config
        self.source = source
        self.clock = clock

        self.store = store or AgentStore(config.detection_window_size, config.history_capacity)
        self.detector = AnomalyDetector(config, clock)
        self.thresholds = ThresholdChecker(config, clock)
        self.alerting = AlertingSystem(
            config, self.store, routes or [ChannelRoute(LogChannel())], clock, sleep
        )
        self.registry = registry or dry_run_registry()
        self.executor = RemediationExecutor(
            self.registry, config.remediation_timeout_seconds, config.remediation_workers
        )
        self.learning = LearningRecorder(config, self.store, clock)
        self.decisions = DecisionEngine(
            config,
            self.store,
            self.executor,
            self.alerting,
            self.learning,
            thresholds=self.thresholds,
            detector=self.detector,
            action_catalog=action_catalog,
            clock=clock,
        )
        self.health = HealthMonitor(config, self.store, source, clock)

        self._ticks: dict[str, Callable[[], None]] = {
            "health_check": self._health_tick,
            "anomaly_detection": self._detection_tick,
            "optimization": self._optimization_tick,
            "learning": self._learning_tick,
        }
        self._intervals = {
            "health_check": config.health_check_interval,
            "anomaly_detection": config.anomaly_detection_interval,
            "optimization": config.optimization_interval,
            "learning": config.learning_interval,
        }

        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._threads: dict[str, threading.Thread] = {}
        self._query_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="metric-query")
        self._running = False
        self._stopped = False
        self.started_at: datetime | None = None

        self.stats: dict[str, int] = {}
        for name in SCHEDULES:
            self.stats[f"{name}_ticks"] = 0
            self.stats[f"{name}_errors"] = 0

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Validate configuration and launch every schedule. No-op when already running."""
        with self._lifecycle_lock:
            if self._running:
                logger.debug("Agent already running")
                return
            if self._stopped:
                raise RuntimeError("Agent was stopped and cannot be restarted; create a new one")

            self.config.validate()
            self._stop_event.clear()

            for name in SCHEDULES:
                thread = threading.Thread(
                    target=self._run_schedule,
                    args=(name,),
                    name=f"agent-{name}",
                    daemon=True,
                )
                self._threads[name] = thread

            self._running = True
            self.started_at = self.clock()
            for thread in self._threads.values():
                thread.start()

        logger.info(
            "Agent started",
            metrics=self.config.metrics,
            intervals=self._intervals,
        )

    def stop(self) -> None:
        """Stop schedules, wait up to the grace period, then abandon in-flight work.

        An agent that never started still releases its pools, source and store.
        """
        with self._lifecycle_lock:
            if self._stopped:
                return
            if not self._running:
                self._release()
                self._stopped = True
                logger.info("Agent closed without starting")
                return

            logger.info("Stopping agent", grace_seconds=self.config.shutdown_grace_seconds)
            self._stop_event.set()

            deadline = time.monotonic() + self.config.shutdown_grace_seconds
            for thread in self._threads.values():
                thread.join(timeout=max(0.0, deadline - time.monotonic()))

            self.executor.abandon()
            lingering = [name for name, t in self._threads.items() if t.is_alive()]
            if lingering:
                logger.warning("Abandoning in-flight work", schedules=lingering)
                for name in lingering:
                    self._threads[name].join(timeout=1.0)

            self._release()
            self._running = False
            self._stopped = True

        logger.info("Agent stopped", stats=self.stats)

    def _release(self) -> None:
        self.executor.shutdown()
        self.alerting.close()
        self._query_pool.shutdown(wait=False, cancel_futures=True)
        try:
            self.source.close()
        except Exception as e:
            logger.error("Failed to close metric source", error=str(e))
        self.store.close()

    def status(self) -> dict[str, Any]:
        health = self.store.health()
        return {
            "running": self._running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_health": health.to_dict() if health else None,
            **self.store.counts(),
            "ticks": dict(self.stats),
        }

    # Schedules

    def _run_schedule(self, name: str) -> None:
        interval = self._intervals[name]
        logger.info("Schedule started", schedule=name, interval_seconds=interval)
        while not self._stop_event.is_set():
            self.run_tick(name)
            if self._stop_event.wait(interval):
                break
        logger.info("Schedule stopped", schedule=name)

    def run_tick(self, name: str) -> bool:
        """Run one tick of a schedule. Returns False when the tick raised."""
        tick = self._ticks[name]
        self.stats[f"{name}_ticks"] += 1
        try:
            tick()
            return True
        except Exception as e:
            self.stats[f"{name}_errors"] += 1
            logger.error("Schedule tick failed", schedule=name, error=str(e), exc_info=True)
            return False

    def _health_tick(self) -> None:
        snapshot = self.health.check()
        if snapshot.overall == HealthStatus.CRITICAL:
            self.alerting.notify(health_event(snapshot))

    def _detection_tick(self) -> None:
        for metric_name in self.config.metrics:
            if self._stop_event.is_set():
                break
            try:
                self._detect_metric(metric_name)
            except DetectorFailure as e:
                logger.warning("Metric skipped for this tick", metric=metric_name, error=str(e))
            except Exception as e:
                logger.error(
                    "Metric detection failed", metric=metric_name, error=str(e), exc_info=True
                )

    def _detect_metric(self, metric_name: str) -> None:
        samples = self._pull(metric_name)
        if not self.store.append_samples(samples):
            return

        window = self.store.window(metric_name)
        anomaly = self.detector.analyze(metric_name, window)
        violation = self.thresholds.check(window[-1])

        for record in (anomaly, violation):
            if record is not None:
                self.process_anomaly(record)

    def _pull(self, metric_name: str) -> list[MetricSample]:
        since = self.store.last_seen(metric_name)
        future = self._query_pool.submit(
            self.source.pull, metric_name, since, self.config.detection_window_size
        )
        try:
            return future.result(timeout=self.config.metric_query_timeout_seconds)
        except FutureTimeout:
            future.cancel()
            raise DetectorFailure(
                metric_name, f"query timed out after {self.config.metric_query_timeout_seconds}s"
            ) from None
        except Exception as e:
            raise DetectorFailure(metric_name, str(e)) from e

    def process_anomaly(self, anomaly: AnomalyRecord) -> None:
        """Detection -> decision -> remediation/alert -> learning for one record"""
        self.store.add_anomaly(anomaly)

        if anomaly.auto_remediation_eligible:
            action = self.decisions.decide(anomaly)
            if action is not None:
                return

        self.alerting.notify(anomaly_event(anomaly))

    def _optimization_tick(self) -> None:
        escalated = self.alerting.escalate_overdue()
        if escalated:
            logger.info("Alerts escalated", count=len(escalated))

        if self.config.auto_apply_adjustments:
            for proposal in self.store.proposals(status="proposed"):
                self.decisions.review_adjustment(proposal)

    def _learning_tick(self) -> None:
        self.learning.run_cycle()
