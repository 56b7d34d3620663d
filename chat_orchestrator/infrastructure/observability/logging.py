import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "chat-orchestrator"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the conversation identity bound for the current turn into every event"""

    context = structlog.contextvars.get_contextvars()
    for key in ("request_id", "user_id", "scope_id"):
        value = context.get(key)
        if value and key not in event_dict:
            event_dict[key] = value

    return event_dict


class ChatEventLogger:
    """Specialized logger for turn-level events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_action_execution(
        self,
        action_type: str,
        conversation: str,
        result: str,
        duration_ms: Optional[float] = None,
        success: bool = True
    ):
        """Log one executed action"""

        self.logger.info(
            "action_execution",
            action_type=action_type,
            conversation=conversation,
            result=result[:200],
            duration_ms=duration_ms,
            success=success
        )

    def log_follow_up_call(
        self,
        conversation: str,
        outcome: str,
        triggering_actions: List[str],
        duration_ms: Optional[float] = None,
        ignored_actions: Optional[List[str]] = None
    ):
        """Log the bounded follow-up model call"""

        self.logger.info(
            "follow_up_call",
            conversation=conversation,
            outcome=outcome,
            triggering_actions=triggering_actions,
            ignored_actions=ignored_actions or [],
            duration_ms=duration_ms
        )

    def log_history_update(
        self,
        conversation: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log conversation history mutations"""

        self.logger.debug(
            "history_update",
            conversation=conversation,
            action=action,
            details=details or {}
        )


chat_logger = ChatEventLogger("chat")


class MetricsCollector:
    """In-process counters, gauges and latency aggregates, each also emitted as a log event"""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.latencies: Dict[str, Dict[str, float]] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        entry = self.latencies.setdefault(operation, {"count": 0, "total": 0.0, "max": 0.0})
        entry["count"] += 1
        entry["total"] += duration_ms
        entry["max"] = max(entry["max"], duration_ms)
        chat_logger.logger.debug("metric", metric_type="latency", operation=operation, duration_ms=duration_ms, tags=tags or {})

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        chat_logger.logger.debug("metric", metric_type="counter", name=name, value=value, tags=tags or {})

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        self.gauges[name] = value
        chat_logger.logger.debug("metric", metric_type="gauge", name=name, value=value, tags=tags or {})

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Counters and gauges as-is; latencies as count/avg/max in milliseconds"""

        summary: Dict[str, Any] = {**self.counters, **self.gauges}
        for operation, entry in self.latencies.items():
            summary[f"latency.{operation}"] = {
                "count": entry["count"],
                "avg": entry["total"] / entry["count"],
                "max": entry["max"],
            }
        return summary


metrics = MetricsCollector()
