"""
CLI for the monitoring and auto-remediation agent.

Usage:
    python -m dinnerops.agent.run [options]
"""

import argparse
import logging
import os
import sys
import time

import structlog

from dinnerops.core.logger import setup_logging
from dinnerops.simulation import SimulatedMetricSource

from .alerting import ChannelRoute
from .catalog import DEFAULT_METRICS
from .channels import KafkaChannel, LogChannel, WebhookChannel
from .config import AgentConfig
from .errors import ConfigurationError
from .insights import InMemoryInsightStore, RedisInsightStore
from .models import Severity
from .orchestrator import AgentOrchestrator
from .sources import PostgresMetricSource
from .store import AgentStore

logger = structlog.get_logger(__name__)

STATS_LOG_INTERVAL_SECONDS = 60


def parse_arguments(argv: list[str] | None = None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Monitoring, anomaly detection and auto-remediation agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Run against the production metric store
        python -m dinnerops.agent.run

        # Local demo on simulated metrics for 10 minutes, short cadences
        python -m dinnerops.agent.run --source simulated --duration 600 \\
            --detection-interval 5 --health-interval 5

        # Stricter gate, Slack webhook for critical alerts
        python -m dinnerops.agent.run --min-confidence 0.85 \\
            --webhook-url https://hooks.slack.com/services/...
        """,
    )

    # Metric source
    parser.add_argument(
        "--source",
        choices=["postgres", "simulated"],
        default=os.getenv("AGENT_METRIC_SOURCE", "postgres"),
        help="Where metric samples come from (default: postgres)",
    )
    parser.add_argument(
        "--metrics",
        nargs="+",
        default=DEFAULT_METRICS,
        help="Metrics to monitor (default: the full catalog)",
    )

    # Schedules
    parser.add_argument(
        "--health-interval",
        type=float,
        default=float(os.getenv("AGENT_HEALTH_CHECK_INTERVAL", "30")),
        help="Health check cadence in seconds (default: 30)",
    )
    parser.add_argument(
        "--detection-interval",
        type=float,
        default=float(os.getenv("AGENT_ANOMALY_DETECTION_INTERVAL", "60")),
        help="Anomaly detection cadence in seconds (default: 60)",
    )
    parser.add_argument(
        "--optimization-interval",
        type=float,
        default=float(os.getenv("AGENT_OPTIMIZATION_INTERVAL", "300")),
        help="Remediation sweep cadence in seconds (default: 300)",
    )
    parser.add_argument(
        "--learning-interval",
        type=float,
        default=float(os.getenv("AGENT_LEARNING_INTERVAL", "1800")),
        help="Learning cadence in seconds (default: 1800)",
    )

    # Detection and safety gate
    parser.add_argument("--z-threshold", type=float, default=2.5, help="Z-score threshold")
    parser.add_argument(
        "--min-confidence",
        type=float,
        default=float(os.getenv("AGENT_MIN_CONFIDENCE", "0.75")),
        help="Minimum confidence for autonomous remediation (default: 0.75)",
    )
    parser.add_argument(
        "--max-risk",
        type=float,
        default=float(os.getenv("AGENT_MAX_RISK_LEVEL", "0.7")),
        help="Maximum action risk for autonomous remediation (default: 0.7)",
    )
    parser.add_argument(
        "--auto-apply-adjustments",
        action="store_true",
        help="Let the sweep push learned threshold proposals through the decision gate",
    )

    # Alert channels
    parser.add_argument(
        "--webhook-url",
        default=os.getenv("AGENT_WEBHOOK_URL"),
        help="Slack-compatible webhook for high and critical alerts",
    )
    parser.add_argument(
        "--escalation-webhook-url",
        default=os.getenv("AGENT_ESCALATION_WEBHOOK_URL"),
        help="Webhook for escalated critical alerts (tier 1)",
    )
    parser.add_argument(
        "--kafka-servers",
        default=os.getenv("KAFKA_BOOTSTRAP_SERVERS"),
        help="Publish alerts to Kafka when set",
    )
    parser.add_argument(
        "--alert-topic",
        default=os.getenv("AGENT_ALERT_TOPIC", "agent-alerts"),
        help="Kafka topic for alerts (default: agent-alerts)",
    )

    # Insight store
    parser.add_argument(
        "--insight-store",
        choices=["memory", "redis"],
        default=os.getenv("AGENT_INSIGHT_STORE", "memory"),
        help="Where audit records are persisted (default: memory)",
    )
    parser.add_argument("--redis-host", default=os.getenv("REDIS_HOST", "localhost"))
    parser.add_argument("--redis-port", type=int, default=int(os.getenv("REDIS_PORT", "6379")))

    # PostgreSQL settings
    parser.add_argument("--postgres-host", default=os.getenv("POSTGRES_HOST", "localhost"))
    parser.add_argument(
        "--postgres-port", type=int, default=int(os.getenv("POSTGRES_PORT", "5432"))
    )
    parser.add_argument("--postgres-db", default=os.getenv("POSTGRES_DB", "dinnerops"))
    parser.add_argument("--postgres-user", default=os.getenv("POSTGRES_USER", "dinnerops"))
    parser.add_argument("--postgres-password", default=os.getenv("POSTGRES_PASSWORD", ""))

    # Runtime settings
    parser.add_argument(
        "--duration",
        type=int,
        help="Run for N seconds then stop (default: infinite)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args) -> AgentConfig:
    """Build configuration from arguments"""
    return AgentConfig(
        metrics=list(args.metrics),
        health_check_interval=args.health_interval,
        anomaly_detection_interval=args.detection_interval,
        optimization_interval=args.optimization_interval,
        learning_interval=args.learning_interval,
        z_threshold=args.z_threshold,
        min_confidence=args.min_confidence,
        max_risk_level=args.max_risk,
        auto_apply_adjustments=args.auto_apply_adjustments,
    )


def build_routes(args) -> list[ChannelRoute]:
    """Log channel for everything, plus optional webhook and Kafka channels"""
    routes = [ChannelRoute(LogChannel())]

    if args.webhook_url:
        routes.append(
            ChannelRoute(
                WebhookChannel("webhook", args.webhook_url),
                severities={Severity.HIGH, Severity.CRITICAL},
            )
        )
    if args.escalation_webhook_url:
        routes.append(
            ChannelRoute(
                WebhookChannel("escalation", args.escalation_webhook_url),
                severities={Severity.CRITICAL},
                tier=1,
            )
        )
    if args.kafka_servers:
        routes.append(ChannelRoute(KafkaChannel("kafka", args.kafka_servers, args.alert_topic)))

    return routes


def build_source(args, config: AgentConfig):
    if args.source == "simulated":
        return SimulatedMetricSource()

    return PostgresMetricSource(
        host=args.postgres_host,
        port=args.postgres_port,
        database=args.postgres_db,
        user=args.postgres_user,
        password=args.postgres_password,
        query_timeout_seconds=config.metric_query_timeout_seconds,
    )


def build_store(args, config: AgentConfig) -> AgentStore:
    if args.insight_store == "redis":
        insight_store = RedisInsightStore(
            host=args.redis_host, port=args.redis_port, capacity=config.history_capacity
        )
    else:
        insight_store = InMemoryInsightStore(config.history_capacity)
    return AgentStore(config.detection_window_size, config.history_capacity, insight_store)


def run_agent(agent: AgentOrchestrator, duration_seconds: int | None = None) -> None:
    """Start the agent and block until the duration elapses or the user interrupts"""
    agent.start()
    start_time = time.time()
    last_log_time = start_time

    try:
        while True:
            time.sleep(1)
            elapsed = time.time() - start_time

            if time.time() - last_log_time >= STATS_LOG_INTERVAL_SECONDS:
                status = agent.status()
                logger.info(
                    "Agent stats",
                    anomalies=status["anomaly_count"],
                    decisions=status["decision_count"],
                    alerts=status["alert_count"],
                    insights=status["insight_count"],
                    health=(status["last_health"] or {}).get("overall"),
                    elapsed_sec=round(elapsed, 1),
                )
                last_log_time = time.time()

            if duration_seconds and elapsed >= duration_seconds:
                logger.info("Duration limit reached", duration_seconds=duration_seconds)
                break
    finally:
        agent.stop()


def main(argv: list[str] | None = None):
    """Main entry point"""
    args = parse_arguments(argv)
    setup_logging(level=getattr(logging, args.log_level))

    logger.info("Starting agent", source=args.source)

    try:
        config = build_config(args)
        config.validate()
        source = build_source(args, config)
        store = build_store(args, config)
        agent = AgentOrchestrator(config, source, store=store, routes=build_routes(args))
        run_agent(agent, duration_seconds=args.duration)

        logger.info("Agent completed successfully", decisions=agent.decisions.decision_stats())
        return 0

    except ConfigurationError as e:
        logger.error("Invalid configuration", problems=e.problems)
        return 2

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error("Agent failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
