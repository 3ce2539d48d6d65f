"""
Structured logging for the intake core.

Provides centralized logging with console and file outputs plus counters
for field validations, candidate searches, duplicate resolutions and
submissions.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics used to monitor validator and collaborator health.
    """

    def __init__(
        self,
        name: str = "intake",
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
        self.logger.propagate = False

        self.metrics: Dict[str, Any] = {
            "validations_run": 0,
            "validation_failures": 0,
            "searches_attempted": 0,
            "search_failures": 0,
            "resolutions": {},
            "submissions_attempted": 0,
            "submissions_successful": 0,
            "submissions_failed": 0,
            "errors_by_type": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_handler.setFormatter(logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"intake_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)  # file always gets everything
            file_handler.setFormatter(logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
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
            message = f"{message} | Context: {json.dumps(context, default=str, sort_keys=True)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_validation(self, field_key: str, state: str):
        """Count a completed field validation."""
        self.metrics["validations_run"] += 1
        if state == "invalid":
            self.metrics["validation_failures"] += 1

    def record_search_attempt(self):
        self.metrics["searches_attempted"] += 1

    def record_search_failure(self, error_type: str):
        """Record a candidate search that degraded to no matches."""
        self.metrics["search_failures"] += 1
        self.record_error(error_type)

    def record_resolution(self, outcome: str):
        resolutions = self.metrics["resolutions"]
        resolutions[outcome] = resolutions.get(outcome, 0) + 1

    def record_submission_attempt(self):
        self.metrics["submissions_attempted"] += 1

    def record_submission_success(self):
        self.metrics["submissions_successful"] += 1

    def record_submission_failure(self, error_type: str):
        self.metrics["submissions_failed"] += 1
        self.record_error(error_type)

    def record_error(self, error_type: str):
        errors = self.metrics["errors_by_type"]
        errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Return current metrics with derived rates."""
        metrics_copy = dict(self.metrics)
        searches = metrics_copy["searches_attempted"]
        metrics_copy["search_failure_rate"] = (
            round(metrics_copy["search_failures"] / searches, 3) if searches else 0.0
        )
        submissions = metrics_copy["submissions_attempted"]
        metrics_copy["submission_success_rate"] = (
            round(metrics_copy["submissions_successful"] / submissions, 3) if submissions else 0.0
        )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Intake Session Metrics ===")
        self.info(
            f"Validations: {metrics['validations_run']} "
            f"({metrics['validation_failures']} invalid)"
        )
        self.info(
            f"Candidate searches: {metrics['searches_attempted']} "
            f"({metrics['search_failure_rate'] * 100:.1f}% failed)"
        )
        self.info(
            f"Submissions: {metrics['submissions_successful']}/{metrics['submissions_attempted']}"
        )

        if metrics["resolutions"]:
            self.info("Resolutions:")
            for outcome, count in sorted(metrics["resolutions"].items()):
                self.info(f"  {outcome}: {count}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "intake",
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
