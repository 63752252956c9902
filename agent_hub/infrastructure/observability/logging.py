import structlog
import logging
import sys
import os
from typing import Dict, Any, Optional

from agent_hub.errors import ConfigError


_RENDERERS = {
    "json": structlog.processors.JSONRenderer,
    "console": structlog.dev.ConsoleRenderer,
}


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "agent-hub"
) -> None:
    """Route structlog through stdlib logging with a JSON or console renderer"""

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {log_level}")
    renderer = _RENDERERS.get(log_format)
    if renderer is None:
        raise ConfigError(f"Unknown log format: {log_format} (expected one of {sorted(_RENDERERS)})")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # agent_id bound around broadcast fan-out is merged in by merge_contextvars
    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development")
    )


class AgentLogger:
    """Specialized logger for agent operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_agent_event(
        self,
        event_type: str,
        agent_id: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log agent lifecycle and conversation events"""

        self.logger.info(
            "agent_event",
            event_type=event_type,
            agent_id=agent_id,
            data=data or {},
            **kwargs
        )

    def log_request(
        self,
        method: str,
        endpoint: str,
        status_code: Optional[int] = None,
        duration_ms: Optional[float] = None,
        attempt: int = 1,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log a request-layer round trip"""

        log = self.logger.info if success else self.logger.warning
        log(
            "http_request",
            method=method,
            endpoint=endpoint,
            status_code=status_code,
            duration_ms=duration_ms,
            attempt=attempt,
            success=success,
            error=error
        )

    def log_context_update(
        self,
        agent_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log context window changes"""

        self.logger.info(
            "context_update",
            agent_id=agent_id,
            action=action,
            details=details or {}
        )


# Global logger instance
agent_logger = AgentLogger("agent_hub")


class MetricsCollector:
    """In-process request and agent counters, surfaced on /health"""

    def __init__(self):
        self.latencies: Dict[str, Dict[str, float]] = {}
        self.counters: Dict[str, int] = {}

    def record_latency(self, operation: str, duration_ms: float):
        stats = self.latencies.setdefault(
            operation, {"count": 0, "sum": 0.0, "min": duration_ms, "max": duration_ms}
        )
        stats["count"] += 1
        stats["sum"] += duration_ms
        stats["min"] = min(stats["min"], duration_ms)
        stats["max"] = max(stats["max"], duration_ms)

    def increment_counter(self, name: str, value: int = 1):
        self.counters[name] = self.counters.get(name, 0) + value

    def record_agent_request(self, agent_id: str, duration_ms: float, success: bool):
        """Fold one finished agent request into the process-wide totals"""
        outcome = "succeeded" if success else "failed"
        self.increment_counter(f"agent.requests.{outcome}")
        self.increment_counter(f"agent.{agent_id}.requests.{outcome}")
        self.record_latency("agent_response", duration_ms)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Latency aggregates keyed latency.<operation>, plus raw counters"""

        summary: Dict[str, Any] = dict(self.counters)
        for operation, stats in self.latencies.items():
            summary[f"latency.{operation}"] = {
                "count": stats["count"],
                "avg": stats["sum"] / stats["count"],
                "min": stats["min"],
                "max": stats["max"]
            }
        return summary

    def reset(self):
        self.latencies.clear()
        self.counters.clear()


# Global metrics collector
metrics = MetricsCollector()
