import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "planner"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
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

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add owner and session context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    bound = structlog.contextvars.get_contextvars()
    for key in ("owner_id", "session_id"):
        if key not in event_dict and bound.get(key):
            event_dict[key] = bound[key]

    return event_dict


class PlannerLogger:
    """Specialized logger for planning session events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_workflow_transition(
        self,
        session_id: str,
        from_state: str,
        to_state: str,
        condition: Optional[str] = None,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        """Log session state machine transitions"""

        self.logger.info(
            "workflow_transition",
            session_id=session_id,
            from_state=from_state,
            to_state=to_state,
            condition=condition,
            state_summary=state_summary or {}
        )

    def log_context_update(
        self,
        session_id: str,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log slot and control flag updates"""

        self.logger.info(
            "context_update",
            session_id=session_id,
            context_type=context_type,
            action=action,
            details=details or {}
        )

    def log_guardrail(
        self,
        session_id: str,
        guardrail: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log a controller override of an external signal"""

        self.logger.warning(
            "guardrail_applied",
            session_id=session_id,
            guardrail=guardrail,
            details=details or {}
        )

    def log_gateway_call(
        self,
        session_id: str,
        mode: str,
        duration_ms: Optional[float] = None,
        success: bool = True,
        ready_to_generate: Optional[bool] = None,
        error: Optional[str] = None
    ):
        """Log language model gateway calls"""

        log = self.logger.info if success else self.logger.error
        log(
            "gateway_call",
            session_id=session_id,
            mode=mode,
            duration_ms=duration_ms,
            success=success,
            ready_to_generate=ready_to_generate,
            error=error
        )

    def log_materialization(
        self,
        owner_id: str,
        activity_id: Optional[str],
        path: str,
        task_count: int,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log plan materialization outcomes"""

        log = self.logger.info if success else self.logger.error
        log(
            "plan_materialization",
            owner_id=owner_id,
            activity_id=activity_id,
            path=path,
            task_count=task_count,
            success=success,
            error=error
        )

    def log_rollback_failure(
        self,
        owner_id: str,
        activity_id: str,
        original_error: str,
        rollback_errors: Any
    ):
        """Log an inconsistent durable state that needs manual reconciliation"""

        self.logger.critical(
            "rollback_failure",
            owner_id=owner_id,
            activity_id=activity_id,
            original_error=original_error,
            rollback_errors=rollback_errors,
            requires_manual_reconciliation=True
        )


# Global logger instance
planner_logger = PlannerLogger("planner")


class MetricsCollector:
    """Collect planner counters and latencies and summarize service health"""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.breakdowns: Dict[str, Dict[str, Dict[str, int]]] = {}
        self.latencies: Dict[str, Dict[str, float]] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        stats = self.latencies.setdefault(operation, {"count": 0, "sum": 0.0, "min": float("inf"), "max": 0.0})
        stats["count"] += 1
        stats["sum"] += duration_ms
        stats["min"] = min(stats["min"], duration_ms)
        stats["max"] = max(stats["max"], duration_ms)

        planner_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter and its per-tag breakdown"""

        self.counters[name] = self.counters.get(name, 0) + value
        for tag, tag_value in (tags or {}).items():
            by_value = self.breakdowns.setdefault(name, {}).setdefault(tag, {})
            by_value[tag_value] = by_value.get(tag_value, 0) + value

        planner_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def counts_by(self, name: str, tag: str) -> Dict[str, int]:
        """Counter totals split by one tag, e.g. turns by route"""
        return dict(self.breakdowns.get(name, {}).get(tag, {}))

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        summary: Dict[str, Any] = dict(self.counters)
        for operation, stats in self.latencies.items():
            summary[f"latency.{operation}"] = {
                "count": stats["count"],
                "avg": stats["sum"] / stats["count"] if stats["count"] > 0 else 0,
                "min": stats["min"] if stats["min"] != float("inf") else 0,
                "max": stats["max"]
            }
        return summary

    def planner_health(self) -> Dict[str, Any]:
        """Planner view of the metrics for the health endpoint"""

        gateway_latency = self.latencies.get("gateway_call", {})
        succeeded = int(gateway_latency.get("count", 0))
        failed = self.counters.get("gateway.failed", 0)
        attempts = succeeded + failed

        return {
            "sessions_started": self.counters.get("session.started", 0),
            "sessions_by_mode": self.counts_by("session.started", "mode"),
            "turns_by_route": self.counts_by("turn.processed", "route"),
            "gateway": {
                "calls": attempts,
                "failed": failed,
                "failure_rate": round(failed / attempts, 3) if attempts else 0.0,
                "avg_latency_ms": round(gateway_latency["sum"] / succeeded, 1) if succeeded else 0.0
            },
            "guardrails": {
                name.split(".", 1)[1]: count
                for name, count in self.counters.items()
                if name.startswith("guardrail.")
            },
            "plans": {
                "materialized": self.counters.get("plan.materialized", 0),
                "failed": self.counters.get("plan.materialization_failed", 0),
                "rolled_back": self.counters.get("plan.rolled_back", 0),
                "rollback_failed": self.counters.get("plan.rollback_failed", 0)
            },
            # Orphaned records from a failed rollback need manual cleanup
            "requires_reconciliation": self.counters.get("plan.rollback_failed", 0) > 0
        }

    def reset(self):
        """Drop all recorded metrics"""
        self.counters.clear()
        self.breakdowns.clear()
        self.latencies.clear()


# Global metrics collector
metrics = MetricsCollector()
