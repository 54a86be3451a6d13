"""Observability - Structured logging and sync metrics"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Callable, Optional

import json


# ============ Structured Logging ============

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields
        if hasattr(record, "extra"):
            log_data.update(record.extra)

        # Add exception info
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", json_format: bool = True) -> logging.Logger:
    """
    Setup structured logging for the sync engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format for logs

    Returns:
        Configured logger
    """
    logger = logging.getLogger("wikimirror")
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    logger.addHandler(handler)
    return logger


# Global logger
logger = setup_logging()


def get_logger(name: str) -> logging.Logger:
    """Child logger under the wikimirror namespace"""
    return logger.getChild(name)


def log_with_context(base: Optional[logging.Logger] = None, **context):
    """Create a logger adapter that attaches context to every record"""
    class ContextAdapter(logging.LoggerAdapter):
        def process(self, msg, kwargs):
            kwargs.setdefault("extra", {})
            kwargs["extra"]["extra"] = {**self.extra, **kwargs["extra"].get("extra", {})}
            return msg, kwargs

    return ContextAdapter(base or logger, context)


# ============ Metrics ============

@dataclass
class SyncMetrics:
    """In-memory counters for one process"""

    # Remote
    request_count: int = 0
    retry_count: int = 0
    rate_limit_waits: int = 0
    points_estimated: int = 0

    # Store
    entities_saved: int = 0
    entities_deleted: int = 0
    entities_failed: int = 0
    versions_opened: int = 0
    revisions_written: int = 0
    votes_written: int = 0

    request_latencies: list[float] = field(default_factory=list)

    def increment(self, name: str, value: int = 1) -> None:
        """Increment a counter"""
        if hasattr(self, name):
            setattr(self, name, getattr(self, name) + value)

    def record_latency(self, latency_ms: float) -> None:
        """Record a remote request latency"""
        self.request_latencies.append(latency_ms)
        # Keep last 1000 measurements
        if len(self.request_latencies) > 1000:
            self.request_latencies.pop(0)

    def get_percentile(self, percentile: float) -> Optional[float]:
        """Get percentile from the request latency histogram"""
        if not self.request_latencies:
            return None
        sorted_latencies = sorted(self.request_latencies)
        idx = int(len(sorted_latencies) * percentile / 100)
        return sorted_latencies[min(idx, len(sorted_latencies) - 1)]

    def to_dict(self) -> dict:
        """Export metrics as dictionary"""
        return {
            "remote": {
                "requests": self.request_count,
                "retries": self.retry_count,
                "rate_limit_waits": self.rate_limit_waits,
                "points_estimated": self.points_estimated,
                "latency_p50": self.get_percentile(50),
                "latency_p95": self.get_percentile(95),
            },
            "store": {
                "entities_saved": self.entities_saved,
                "entities_deleted": self.entities_deleted,
                "entities_failed": self.entities_failed,
                "versions_opened": self.versions_opened,
                "revisions_written": self.revisions_written,
                "votes_written": self.votes_written,
            },
        }

    def reset(self) -> None:
        """Reset all metrics"""
        for name in (
            "request_count", "retry_count", "rate_limit_waits", "points_estimated",
            "entities_saved", "entities_deleted", "entities_failed",
            "versions_opened", "revisions_written", "votes_written",
        ):
            setattr(self, name, 0)
        self.request_latencies.clear()


# Global metrics instance
metrics = SyncMetrics()


# ============ Decorators ============

def track_latency(func: Callable):
    """Decorator recording latency and count of remote requests"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            metrics.record_latency((time.perf_counter() - start) * 1000)
            metrics.increment("request_count")

    return wrapper
