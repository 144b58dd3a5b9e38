"""
Structured logging system for brandsync.

Provides centralized logging with console and file outputs plus
call metrics for monitoring remote CRM health and cache behaviour.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for remote calls and cache usage.
    """

    def __init__(
        self,
        name: str = "brandsync",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()

        self.metrics = {
            "api_calls": 0,
            "remote_attempted": 0,
            "remote_successful": 0,
            "remote_failed": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "cache_repairs": 0,
            "cache_evictions": 0,
            "snapshot_writes": 0,
            "brands_changed": 0,
            "errors_by_type": {},
            "object_success_rate": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"brandsync_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_api_call(self):
        """Increment API call counter (one per HTTP request sent)."""
        self.metrics["api_calls"] += 1

    def record_remote_attempt(self, object_type: str):
        """Record a logical remote operation against an object type."""
        self.metrics["remote_attempted"] += 1
        if object_type not in self.metrics["object_success_rate"]:
            self.metrics["object_success_rate"][object_type] = {
                "attempts": 0,
                "successes": 0
            }
        self.metrics["object_success_rate"][object_type]["attempts"] += 1

    def record_remote_success(self, object_type: str):
        self.metrics["remote_successful"] += 1
        if object_type in self.metrics["object_success_rate"]:
            self.metrics["object_success_rate"][object_type]["successes"] += 1

    def record_remote_failure(self, object_type: str, error_type: str):
        self.metrics["remote_failed"] += 1
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def record_cache_lookup(self, hit: bool):
        if hit:
            self.metrics["cache_hits"] += 1
        else:
            self.metrics["cache_misses"] += 1

    def record_cache_repair(self, evicted: bool = False):
        """A cached resolution was repaired in place, or evicted as unusable."""
        if evicted:
            self.metrics["cache_evictions"] += 1
        else:
            self.metrics["cache_repairs"] += 1

    def record_snapshot_write(self, changed: int):
        self.metrics["snapshot_writes"] += 1
        self.metrics["brands_changed"] += changed

    def get_metrics(self) -> dict:
        """Return current metrics with per-object success rates filled in."""
        metrics_copy = self.metrics.copy()
        for object_type, stats in metrics_copy["object_success_rate"].items():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        metrics = self.get_metrics()

        total_attempts = metrics["remote_attempted"]
        total_successes = metrics["remote_successful"]
        overall_rate = 0
        if total_attempts > 0:
            overall_rate = round(total_successes / total_attempts * 100, 1)

        self.info("=== Brand Sync Session Metrics ===")
        self.info(f"CRM API calls: {metrics['api_calls']}")
        self.info(f"CRM operations: {total_successes}/{total_attempts} ({overall_rate}% success)")
        self.info(
            f"Name resolution cache: {metrics['cache_hits']} hits, {metrics['cache_misses']} misses, "
            f"{metrics['cache_repairs']} repaired, {metrics['cache_evictions']} evicted"
        )
        if metrics["snapshot_writes"]:
            self.info(
                f"Brand snapshot: {metrics['snapshot_writes']} writes, "
                f"{metrics['brands_changed']} brands added, updated or removed"
            )

        if metrics["object_success_rate"]:
            self.info("Per object type:")
            for object_type, stats in metrics["object_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {object_type}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Failures by error:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "brandsync",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
